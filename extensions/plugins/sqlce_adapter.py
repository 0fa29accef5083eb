#!/usr/bin/env python3
"""
SQL Server Compact Edition Adapter
==================================

Opens ``.sdf`` files through the SQL Server CE ADO.NET provider
(``System.Data.SqlServerCe``) loaded with pythonnet, and exposes them as
DB-API style connections so the converter core never touches .NET types.

- connect(): SqlCeConnection wrapped in ``SqlCeConnectionWrapper``
- upgrade(): SqlCeEngine.Upgrade() (destructive, in place)
- native SqlCeException -> ``EngineError`` with the native error number

Requires a Windows host with the SQL Server Compact 4.0 runtime installed,
or an equivalent CLR runtime that can load the provider assembly.

Version: 1.0.0
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Sequence, Tuple

from sdfconvert.engine import EngineError, SourceEngine
from sdfconvert.errors import EngineUnavailableError

logger = logging.getLogger(__name__)

SQLCE_ASSEMBLY = "System.Data.SqlServerCe"

_runtime = None


class _SqlCeRuntime:
    """Handles to the .NET types, resolved once per process."""

    def __init__(self):
        try:
            import clr
        except (ImportError, RuntimeError) as e:
            raise EngineUnavailableError(
                "pythonnet is not available. Please install it: pip install pythonnet",
                {'cause': str(e)},
            ) from e

        try:
            clr.AddReference(SQLCE_ASSEMBLY)
        except Exception as e:
            raise EngineUnavailableError(
                f"Could not load {SQLCE_ASSEMBLY}. Is the SQL Server Compact 4.0 runtime installed?",
                {'cause': str(e)},
            ) from e

        from System import DBNull
        from System.Globalization import CultureInfo
        from System.Data.SqlServerCe import (
            SqlCeCommand, SqlCeConnection, SqlCeConnectionStringBuilder, SqlCeEngine, SqlCeException,
        )

        self.DBNull = DBNull
        self.invariant_culture = CultureInfo.InvariantCulture
        self.SqlCeCommand = SqlCeCommand
        self.SqlCeConnection = SqlCeConnection
        self.SqlCeConnectionStringBuilder = SqlCeConnectionStringBuilder
        self.SqlCeEngine = SqlCeEngine
        self.SqlCeException = SqlCeException
        logger.debug(f"Loaded {SQLCE_ASSEMBLY}")


def _load_runtime() -> _SqlCeRuntime:
    global _runtime
    if _runtime is None:
        _runtime = _SqlCeRuntime()
    return _runtime


def translate_placeholders(sql: str) -> Tuple[str, List[str]]:
    """
    Rewrite DB-API ``?`` placeholders as ``@p0, @p1, ...``.

    Question marks inside string literals or [bracketed] identifiers are left
    alone. Returns the rewritten SQL and the parameter names in order.
    """
    out = []
    names: List[str] = []
    closer = None
    for ch in sql:
        if closer:
            out.append(ch)
            if ch == closer:
                closer = None
            continue
        if ch == "'":
            closer = "'"
        elif ch == "[":
            closer = "]"
        elif ch == "?":
            name = f"@p{len(names)}"
            names.append(name)
            out.append(name)
            continue
        out.append(ch)
    return "".join(out), names


class SqlCeCursor:
    """Forward-only cursor over a SqlCeDataReader."""

    arraysize = 1000

    def __init__(self, connection: "SqlCeConnectionWrapper"):
        self._connection = connection
        self._runtime = connection.runtime
        self._command = None
        self._reader = None
        self.description = None

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None):
        self._close_reader()
        rewritten, names = translate_placeholders(sql)
        params = list(params or ())
        if len(params) != len(names):
            raise ValueError(f"Expected {len(names)} parameters, got {len(params)}")

        command = self._runtime.SqlCeCommand(rewritten, self._connection.native)
        for name, value in zip(names, params):
            command.Parameters.AddWithValue(name, self._runtime.DBNull.Value if value is None else value)

        try:
            self._reader = command.ExecuteReader()
        except self._runtime.SqlCeException as e:
            command.Dispose()
            raise EngineError(str(e.Message), int(e.NativeError)) from None
        self._command = command
        self.description = [
            (self._reader.GetName(i), None, None, None, None, None, None)
            for i in range(self._reader.FieldCount)
        ]
        return self

    def _read_row(self) -> Optional[tuple]:
        if self._reader is None or not self._reader.Read():
            return None
        reader = self._reader
        return tuple(
            None if reader.IsDBNull(i) else self._to_python(reader.GetValue(i))
            for i in range(reader.FieldCount)
        )

    def _to_python(self, value: Any) -> Any:
        if isinstance(value, (bool, int, float, str)):
            return value
        type_name = value.GetType().FullName
        if type_name == "System.DateTime":
            micro = (value.Ticks % 10_000_000) // 10
            return datetime(value.Year, value.Month, value.Day,
                            value.Hour, value.Minute, value.Second, micro)
        if type_name == "System.Decimal":
            return Decimal(value.ToString(self._runtime.invariant_culture))
        if type_name == "System.Byte[]":
            return bytes(value)
        if type_name == "System.Guid":
            return uuid.UUID(value.ToString())
        if type_name in ("System.Byte", "System.Int16", "System.Int32", "System.Int64"):
            return int(value)
        if type_name in ("System.Single", "System.Double"):
            return float(value)
        return str(value.ToString())

    def fetchone(self) -> Optional[tuple]:
        try:
            return self._read_row()
        except self._runtime.SqlCeException as e:
            raise EngineError(str(e.Message), int(e.NativeError)) from None

    def fetchmany(self, size: Optional[int] = None) -> List[tuple]:
        size = size or self.arraysize
        rows = []
        while len(rows) < size:
            row = self.fetchone()
            if row is None:
                break
            rows.append(row)
        return rows

    def fetchall(self) -> List[tuple]:
        rows = []
        while True:
            row = self.fetchone()
            if row is None:
                return rows
            rows.append(row)

    def _close_reader(self):
        if self._reader is not None:
            self._reader.Close()
            self._reader = None
        if self._command is not None:
            self._command.Dispose()
            self._command = None

    def close(self):
        self._close_reader()
        self.description = None


class SqlCeConnectionWrapper:
    """DB-API facade over an open SqlCeConnection."""

    def __init__(self, runtime: _SqlCeRuntime, native):
        self.runtime = runtime
        self.native = native

    def cursor(self) -> SqlCeCursor:
        return SqlCeCursor(self)

    def close(self):
        if self.native is not None:
            self.native.Close()
            self.native.Dispose()
            self.native = None


class SqlCeEngineAdapter(SourceEngine):
    """``SourceEngine`` backed by the SQL Server CE 4.0 provider"""

    def __init__(self, max_database_size_mb: int = 4091):
        self.max_database_size_mb = max_database_size_mb

    def _connection_string(self, runtime: _SqlCeRuntime, path: str, password: Optional[str]) -> str:
        builder = runtime.SqlCeConnectionStringBuilder()
        builder.DataSource = str(path)
        builder.MaxDatabaseSize = self.max_database_size_mb
        if password:
            builder.Password = password
        return builder.ConnectionString

    def connect(self, path: str, password: Optional[str] = None) -> SqlCeConnectionWrapper:
        runtime = _load_runtime()
        native = runtime.SqlCeConnection(self._connection_string(runtime, path, password))
        try:
            native.Open()
        except runtime.SqlCeException as e:
            native.Dispose()
            raise EngineError(str(e.Message), int(e.NativeError)) from None
        logger.info(f"Opened SQL CE database: {path}")
        return SqlCeConnectionWrapper(runtime, native)

    def upgrade(self, path: str, password: Optional[str] = None) -> None:
        runtime = _load_runtime()
        engine = runtime.SqlCeEngine(self._connection_string(runtime, path, password))
        try:
            logger.info(f"Upgrading SQL CE database in place: {path}")
            engine.Upgrade()
        except runtime.SqlCeException as e:
            raise EngineError(str(e.Message), int(e.NativeError)) from None
        finally:
            engine.Dispose()
