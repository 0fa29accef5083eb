#!/usr/bin/env python3
"""
SDF Converter Test Configuration - PyTest Configuration and Fixtures

The converter talks to its source through ``SourceEngine``. Tests use a
sqlite3-backed engine that mimics the SQL Server CE behaviour the converter
depends on:

- an ``INFORMATION_SCHEMA`` catalogue (TABLES, COLUMNS, TABLE_CONSTRAINTS,
  KEY_COLUMN_USAGE), attached to every connection
- native error 25138 for files whose ``PRAGMA user_version`` is below the
  current format, cleared by ``upgrade()``
- password errors (native 25028, message mentions "password")
- file sharing violations (native 25035) for a configurable number of opens
"""

import os
import re
import sqlite3
import sys
import time
from pathlib import Path
from typing import Iterable, Optional, Sequence

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sdfconvert.engine import (
    EngineError, FILE_SHARING_VIOLATION_ERROR, PASSWORD_MISMATCH_ERROR, SourceEngine,
    UPGRADE_REQUIRED_ERROR,
)

CURRENT_FORMAT = 40
OLD_FORMAT = 35


def split_declared_type(declared: Optional[str]):
    """
    ``nvarchar(40)`` -> (``nvarchar``, 40, None, None); ``numeric(10,2)`` ->
    (``numeric``, None, 10, 2). SQL CE keeps sizes out of DATA_TYPE.
    """
    match = re.match(r"\s*([a-z_ ]*?)\s*(?:\((\d+)(?:\s*,\s*(\d+))?\))?\s*$", (declared or "").lower())
    if not match:
        return (declared or "").lower(), None, None, None
    base = match.group(1)
    first = int(match.group(2)) if match.group(2) else None
    second = int(match.group(3)) if match.group(3) else None
    if base in ("numeric", "decimal"):
        return base, None, first, second
    return base, first, None, None


def build_catalog(conn: sqlite3.Connection):
    """Expose sqlite_master as an INFORMATION_SCHEMA-style catalogue."""
    conn.execute("ATTACH DATABASE ':memory:' AS INFORMATION_SCHEMA")
    conn.execute("CREATE TABLE INFORMATION_SCHEMA.TABLES (TABLE_NAME TEXT, TABLE_TYPE TEXT)")
    conn.execute(
        "CREATE TABLE INFORMATION_SCHEMA.COLUMNS (TABLE_NAME TEXT, COLUMN_NAME TEXT, "
        "DATA_TYPE TEXT, IS_NULLABLE TEXT, ORDINAL_POSITION INTEGER, CHARACTER_MAXIMUM_LENGTH INTEGER, "
        "NUMERIC_PRECISION INTEGER, NUMERIC_SCALE INTEGER)"
    )
    conn.execute(
        "CREATE TABLE INFORMATION_SCHEMA.TABLE_CONSTRAINTS (CONSTRAINT_NAME TEXT, "
        "TABLE_NAME TEXT, CONSTRAINT_TYPE TEXT)"
    )
    conn.execute(
        "CREATE TABLE INFORMATION_SCHEMA.KEY_COLUMN_USAGE (CONSTRAINT_NAME TEXT, "
        "TABLE_NAME TEXT, COLUMN_NAME TEXT, ORDINAL_POSITION INTEGER)"
    )

    tables = [row[0] for row in conn.execute(
        "SELECT name FROM main.sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
    )]
    for table in tables:
        conn.execute("INSERT INTO INFORMATION_SCHEMA.TABLES VALUES (?, 'TABLE')", (table,))
        quoted = table.replace('"', '""')
        info = conn.execute(f'PRAGMA main.table_info("{quoted}")').fetchall()
        pk_columns = sorted((col for col in info if col[5] > 0), key=lambda col: col[5])
        for cid, name, col_type, notnull, _default, _pk in info:
            base_type, length, precision, scale = split_declared_type(col_type)
            conn.execute(
                "INSERT INTO INFORMATION_SCHEMA.COLUMNS VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (table, name, base_type, "NO" if notnull else "YES", cid + 1, length, precision, scale),
            )
        if pk_columns:
            constraint = f"PK_{table}"
            conn.execute("INSERT INTO INFORMATION_SCHEMA.TABLE_CONSTRAINTS VALUES (?, ?, 'PRIMARY KEY')",
                         (constraint, table))
            for position, col in enumerate(pk_columns, 1):
                conn.execute("INSERT INTO INFORMATION_SCHEMA.KEY_COLUMN_USAGE VALUES (?, ?, ?, ?)",
                             (constraint, table, col[1], position))


class SqliteSdfEngine(SourceEngine):
    """sqlite3 stand-in for the SQL Server CE runtime"""

    def __init__(self, required_password: Optional[str] = None, lock_failures: int = 0,
                 upgrade_error: Optional[EngineError] = None):
        self.required_password = required_password
        self.lock_failures = lock_failures
        self.upgrade_error = upgrade_error
        self.connect_calls = 0
        self.upgrade_calls = 0
        self.connections = []

    def _check_password(self, password):
        if self.required_password is not None and password != self.required_password:
            raise EngineError(
                "The specified password does not match the database password. [ File name = db.sdf ]",
                PASSWORD_MISMATCH_ERROR,
            )

    def connect(self, path, password=None):
        self.connect_calls += 1
        if self.lock_failures > 0:
            self.lock_failures -= 1
            raise EngineError(
                "There is a file sharing violation. A different process might be using the file.",
                FILE_SHARING_VIOLATION_ERROR,
            )

        conn = sqlite3.connect(path)
        version = conn.execute("PRAGMA user_version").fetchone()[0]
        if version < CURRENT_FORMAT:
            conn.close()
            raise EngineError(
                "The database file has been created by an earlier version of SQL Server Compact. "
                "Please upgrade using SqlCeEngine.Upgrade() method.",
                UPGRADE_REQUIRED_ERROR,
            )
        try:
            self._check_password(password)
        except EngineError:
            conn.close()
            raise

        build_catalog(conn)
        self.connections.append(conn)
        return conn

    def upgrade(self, path, password=None):
        self.upgrade_calls += 1
        if self.upgrade_error is not None or (
                self.required_password is not None and password != self.required_password):
            # Fail half way through: the file is left damaged
            with open(path, "ab") as f:
                f.write(b"\x00PARTIAL-UPGRADE")
            if self.upgrade_error is not None:
                raise self.upgrade_error
            self._check_password(password)

        conn = sqlite3.connect(path)
        try:
            conn.execute(f"PRAGMA user_version = {CURRENT_FORMAT}")
            conn.commit()
        finally:
            conn.close()


def make_sdf(path: Path, tables: Iterable[tuple], version: int = CURRENT_FORMAT) -> Path:
    """
    Create a source file. ``tables`` holds ``(create_sql, insert_sql, rows)``
    tuples; ``insert_sql`` may be None.
    """
    conn = sqlite3.connect(path)
    try:
        for create_sql, insert_sql, rows in tables:
            conn.execute(create_sql)
            if insert_sql and rows:
                conn.executemany(insert_sql, rows)
        conn.execute(f"PRAGMA user_version = {version}")
        conn.commit()
    finally:
        conn.close()
    return path


def checkinout_table(rows: Sequence[tuple]) -> tuple:
    return (
        "CREATE TABLE CHECKINOUT (USERID int, CHECKTIME datetime, CHECKTYPE nvarchar(1), "
        "VERIFYCODE int, SENSORID nvarchar(5))",
        "INSERT INTO CHECKINOUT (USERID, CHECKTIME, CHECKTYPE, VERIFYCODE, SENSORID) VALUES (?, ?, ?, ?, ?)",
        rows,
    )


@pytest.fixture
def engine():
    eng = SqliteSdfEngine()
    yield eng
    for conn in eng.connections:
        conn.close()


@pytest.fixture
def checkinout_sdf(tmp_path):
    rows = [
        (7, "2024-01-15 08:30:00", "I", 1, "1"),
        (7, "2024-01-15 17:45:00", "O", 1, "1"),
        (12, "2024-01-15 09:02:13", "I", 15, "1"),
    ]
    return make_sdf(tmp_path / "attendance.sdf", [checkinout_table(rows)])


@pytest.fixture
def open_connection(engine):
    """Open a source file through the fake engine"""
    def _open(path):
        return engine.connect(str(path))
    return _open


@pytest.fixture
def new_york_tz(monkeypatch):
    """Run the test with the machine-local zone set to America/New_York."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()
