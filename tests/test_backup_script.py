import os
import time

import pytest

from scripts.backup_restore import main
from sdfconvert.backup import list_backups


@pytest.fixture
def sdf(tmp_path):
    path = tmp_path / "clock.sdf"
    path.write_bytes(b"original")
    return path


def test_create_prints_backup_path(sdf, capsys):
    assert main(["create", str(sdf)]) == 0
    assert capsys.readouterr().out.strip().endswith("clock.sdf.backup")
    assert len(list_backups(sdf)) == 1


def test_restore_uses_newest_backup(sdf):
    main(["create", str(sdf)])
    sdf.write_bytes(b"second")
    older = list_backups(sdf)[0]
    main(["create", str(sdf)])
    # force distinct mtimes so ordering does not depend on clock resolution
    os.utime(older, (time.time() - 60, time.time() - 60))
    sdf.write_bytes(b"broken")

    assert main(["restore", str(sdf)]) == 0
    assert sdf.read_bytes() == b"second"


def test_restore_by_name(sdf):
    main(["create", str(sdf)])
    sdf.write_bytes(b"broken")

    assert main(["restore", str(sdf), "clock.sdf.backup"]) == 0
    assert sdf.read_bytes() == b"original"


def test_restore_without_backups(sdf):
    with pytest.raises(SystemExit) as excinfo:
        main(["restore", str(sdf)])
    assert "No backups found" in str(excinfo.value.code)


def test_unknown_backup_name(sdf):
    with pytest.raises(SystemExit) as excinfo:
        main(["restore", str(sdf), "nope.backup"])
    assert "Backup not found" in str(excinfo.value.code)


def test_list_shows_sizes(sdf, capsys):
    main(["create", str(sdf)])
    capsys.readouterr()

    assert main(["list", str(sdf)]) == 0
    assert "8 bytes" in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert "create" in capsys.readouterr().out
