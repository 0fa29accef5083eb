#!/usr/bin/env python3
"""SDF backup/restore utility."""

import argparse
import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sdfconvert.backup import create_backup, list_backups, restore_backup
from sdfconvert.errors import BackupError


def resolve_backup(sdf: Path, name: str) -> Path:
    candidate = Path(name)
    if not candidate.is_file():
        candidate = sdf.parent / name
    if not candidate.is_file():
        raise SystemExit(f"Backup not found: {name}")
    return candidate


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="SDF backup/restore manager")
    sub = parser.add_subparsers(dest="command")

    create = sub.add_parser("create", help="Create a backup next to the .sdf file")
    create.add_argument("sdf", help="Path to .sdf file")

    restore = sub.add_parser("restore", help="Overwrite the .sdf file from a backup")
    restore.add_argument("sdf", help="Path to .sdf file")
    restore.add_argument("backup", nargs="?", help="Backup path or name (default: newest)")

    listing = sub.add_parser("list", help="List backups of an .sdf file")
    listing.add_argument("sdf", help="Path to .sdf file")

    args = parser.parse_args(argv)

    if args.command == "create":
        try:
            dest = create_backup(args.sdf)
        except BackupError as e:
            raise SystemExit(e.message)
        print(dest)
    elif args.command == "restore":
        sdf = Path(args.sdf)
        if args.backup:
            candidate = resolve_backup(sdf, args.backup)
        else:
            backups = list_backups(sdf)
            if not backups:
                raise SystemExit(f"No backups found for {sdf}")
            candidate = backups[-1]
        try:
            restore_backup(candidate, sdf)
        except OSError as e:
            raise SystemExit(f"Restore failed: {e}")
        print(f"Restored {sdf} from {candidate}")
    elif args.command == "list":
        for backup in list_backups(args.sdf):
            stamp = datetime.fromtimestamp(backup.stat().st_mtime).strftime("%Y-%m-%d %H:%M:%S")
            print(f"{backup}  {stamp}  {backup.stat().st_size} bytes")
    else:
        parser.print_help()
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
