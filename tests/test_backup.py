import os
import unittest
from pathlib import Path

import pytest

from sdfconvert.backup import create_backup, list_backups, restore_backup
from sdfconvert.errors import BackupError, ErrorCode


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "data.sdf"
    path.write_bytes(os.urandom(4096) + b"tail")
    return path


def test_first_backup_uses_plain_suffix(source):
    backup = create_backup(source)

    assert backup.name == "data.sdf.backup"
    assert backup.read_bytes() == source.read_bytes()


def test_existing_backup_is_never_overwritten(source):
    first = create_backup(source)
    first_bytes = first.read_bytes()
    source.write_bytes(b"changed contents")

    second = create_backup(source)

    assert second != first
    assert second.name.startswith("data.sdf.")
    assert second.name.endswith(".backup")
    assert first.read_bytes() == first_bytes
    assert second.read_bytes() == b"changed contents"


def test_same_second_backups_get_distinct_names(source):
    paths = {create_backup(source) for _ in range(4)}
    assert len(paths) == 4


def test_missing_source_raises_backup_error(tmp_path):
    with pytest.raises(BackupError) as excinfo:
        create_backup(tmp_path / "missing.sdf")
    assert excinfo.value.code == ErrorCode.BACKUP_FAILED
    assert "missing.sdf" in excinfo.value.message


def test_restore_overwrites_target(source):
    original = source.read_bytes()
    backup = create_backup(source)
    source.write_bytes(b"corrupted")

    restore_backup(backup, source)

    assert source.read_bytes() == original


def test_restore_from_missing_backup(tmp_path, source):
    with pytest.raises(FileNotFoundError):
        restore_backup(tmp_path / "nope.backup", source)


class TestListBackups(unittest.TestCase):

    def setUp(self):
        import tempfile
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)
        self.sdf = self.dir / "att.sdf"
        self.sdf.write_bytes(b"sdf")

    def tearDown(self):
        self.tmp.cleanup()

    def test_lists_only_backups_of_that_file(self):
        (self.dir / "other.sdf.backup").write_bytes(b"x")
        (self.dir / "att.sdf.notes").write_bytes(b"x")
        first = create_backup(self.sdf)
        second = create_backup(self.sdf)
        os.utime(first, (1_000_000, 1_000_000))

        backups = list_backups(self.sdf)

        self.assertEqual(backups, [first, second])

    def test_no_backups(self):
        self.assertEqual(list_backups(self.sdf), [])
