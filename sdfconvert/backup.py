#!/usr/bin/env python3
"""
SDF backup manager.

Safety copies are taken before any destructive operation on a source file.
A backup is written next to the original as ``<file>.backup``; when that
name is taken a timestamp is inserted (``<file>.<yyyyMMdd_HHmmss>.backup``).
Existing backups are never overwritten.
"""

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import List, Union

from sdfconvert.errors import BackupError

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"
_CHUNK_SIZE = 1024 * 1024


def _candidate_paths(source: Path):
    yield source.with_name(source.name + BACKUP_SUFFIX)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    yield source.with_name(f"{source.name}.{stamp}{BACKUP_SUFFIX}")
    counter = 1
    while True:
        yield source.with_name(f"{source.name}.{stamp}_{counter}{BACKUP_SUFFIX}")
        counter += 1


def create_backup(path: Union[str, Path]) -> Path:
    """Copy ``path`` byte-for-byte to a sibling backup file and return its path."""
    source = Path(path)
    if not source.is_file():
        raise BackupError(f"Cannot back up {source}: file not found", str(source))

    try:
        src = open(source, "rb")
    except OSError as e:
        raise BackupError(f"Failed to read {source} for backup: {e}", str(source)) from e

    with src:
        for dest in _candidate_paths(source):
            try:
                # exclusive create: an earlier backup is never clobbered
                dst = open(dest, "xb")
            except FileExistsError:
                continue
            except OSError as e:
                raise BackupError(f"Failed to create backup of {source}: {e}", str(source)) from e
            try:
                with dst:
                    shutil.copyfileobj(src, dst, _CHUNK_SIZE)
            except OSError as e:
                _discard_partial(dest)
                raise BackupError(f"Failed to create backup of {source}: {e}", str(source)) from e
            break

    try:
        shutil.copymode(source, dest)
    except OSError as e:
        logger.debug(f"Could not copy file permissions to {dest}: {e}")

    if dest.stat().st_size != source.stat().st_size:
        _discard_partial(dest)
        raise BackupError(f"Backup of {source} is incomplete (size mismatch)", str(source))

    logger.info(f"Backup created: {dest.name}")
    return dest


def restore_backup(backup_path: Union[str, Path], target_path: Union[str, Path]) -> None:
    """Overwrite ``target_path`` with the bytes of ``backup_path``."""
    backup = Path(backup_path)
    target = Path(target_path)
    if not backup.is_file():
        raise FileNotFoundError(f"Backup not found: {backup}")
    shutil.copyfile(backup, target)
    logger.info(f"Restored {target.name} from {backup.name}")


def list_backups(path: Union[str, Path]) -> List[Path]:
    """Backups of ``path`` found next to it, oldest first."""
    source = Path(path)
    directory = source.parent if str(source.parent) else Path(".")
    if not directory.is_dir():
        return []
    prefix = source.name + "."
    found = [
        p for p in directory.iterdir()
        if p.is_file() and p.name.startswith(prefix) and p.name.endswith(BACKUP_SUFFIX)
    ]
    return sorted(found, key=lambda p: (p.stat().st_mtime, p.name))


def _discard_partial(dest: Path) -> None:
    try:
        os.remove(dest)
    except OSError:
        logger.warning(f"Could not remove incomplete backup {dest}")
