#!/usr/bin/env python3
"""
SDF Schema Discovery
====================

Lists tables, auto-detects the attendance table and maps its columns onto
the target fields (device_uid, timestamp, verify_type) by name heuristics.

Discovery failures are returned as ``SchemaDiscoveryError`` values rather
than raised, so the caller can offer the operator a choice of tables.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from sdfconvert.models import (
    ColumnDescriptor, ColumnMapping, DiscoveryErrorType, RawTableSchema,
    ResolvedSchema, SchemaDiscoveryError, TableDescriptor,
)

logger = logging.getLogger(__name__)

# Known attendance table names (matched case-insensitively)
KNOWN_ATTENDANCE_TABLES: Tuple[str, ...] = ("CHECKINOUT", "att_log", "attendance", "T_LOG")

# Target field -> accepted source column names (matched case-insensitively).
# New aliases go here.
COLUMN_VARIANTS: Dict[str, Tuple[str, ...]] = {
    "device_uid": ("USERID", "UserID", "user_id", "EmpID", "emp_id", "EmployeeID", "employee_id"),
    "timestamp": ("CHECKTIME", "CheckTime", "check_time", "LogTime", "log_time", "DateTime",
                  "AttTime", "att_time"),
    "verify_type": ("VERIFYCODE", "VerifyCode", "verify_code", "VerifyType", "verify_type",
                    "VerifyMethod"),
}

REQUIRED_TARGET_COLUMNS: Tuple[str, ...] = ("device_uid", "timestamp")

DiscoveryResult = Union[ResolvedSchema, SchemaDiscoveryError]


def quote_source_ident(identifier: str) -> str:
    """Bracket-quote a SQL Server CE identifier."""
    return "[" + identifier.replace("]", "]]") + "]"


class SchemaDiscovery:
    """Schema introspection over a borrowed connection (never closed here)."""

    def __init__(self, connection: Any):
        if connection is None:
            raise ValueError("An open connection is required")
        self.connection = connection

    def _query(self, sql: str, params: tuple = ()) -> List[tuple]:
        cursor = self.connection.cursor()
        try:
            if params:
                cursor.execute(sql, params)
            else:
                cursor.execute(sql)
            return list(cursor.fetchall())
        finally:
            cursor.close()

    def list_tables(self) -> List[TableDescriptor]:
        """All user tables, sorted by name, with exact row counts."""
        rows = self._query(
            "SELECT TABLE_NAME FROM INFORMATION_SCHEMA.TABLES "
            "WHERE TABLE_TYPE = 'TABLE' ORDER BY TABLE_NAME"
        )
        names = sorted((row[0] for row in rows), key=lambda n: (n.lower(), n))
        return [TableDescriptor(name, self.get_row_count(name)) for name in names]

    def get_row_count(self, table_name: str) -> int:
        rows = self._query(f"SELECT COUNT(*) FROM {quote_source_ident(table_name)}")
        return int(rows[0][0]) if rows else 0

    def find_table(self, table_name: str,
                   tables: Optional[List[TableDescriptor]] = None) -> Optional[TableDescriptor]:
        """Case-insensitive table lookup."""
        if tables is None:
            tables = self.list_tables()
        wanted = table_name.lower()
        return next((t for t in tables if t.table_name.lower() == wanted), None)

    def get_columns(self, table_name: str) -> List[ColumnDescriptor]:
        rows = self._query(
            "SELECT COLUMN_NAME, DATA_TYPE, IS_NULLABLE, ORDINAL_POSITION, "
            "CHARACTER_MAXIMUM_LENGTH, NUMERIC_PRECISION, NUMERIC_SCALE "
            "FROM INFORMATION_SCHEMA.COLUMNS WHERE TABLE_NAME = ? ORDER BY ORDINAL_POSITION",
            (table_name,),
        )
        return [
            ColumnDescriptor(
                column_name=row[0],
                data_type=row[1],
                is_nullable=str(row[2]).upper() == "YES",
                ordinal_position=int(row[3]),
                character_maximum_length=_optional_int(row[4]),
                numeric_precision=_optional_int(row[5]),
                numeric_scale=_optional_int(row[6]),
            )
            for row in rows
        ]

    def get_primary_key(self, table_name: str) -> List[str]:
        rows = self._query(
            "SELECT KCU.COLUMN_NAME "
            "FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS AS TC "
            "JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE AS KCU "
            "ON TC.CONSTRAINT_NAME = KCU.CONSTRAINT_NAME "
            "WHERE TC.CONSTRAINT_TYPE = 'PRIMARY KEY' AND TC.TABLE_NAME = ? "
            "ORDER BY KCU.ORDINAL_POSITION",
            (table_name,),
        )
        return [row[0] for row in rows]

    def get_table_schema(self, table_name: str) -> RawTableSchema:
        """Full column list for raw export."""
        columns = self.get_columns(table_name)
        return RawTableSchema(
            table_name=table_name,
            row_count=self.get_row_count(table_name),
            columns=tuple(columns),
            primary_key=tuple(self.get_primary_key(table_name)),
        )

    def auto_detect(self) -> DiscoveryResult:
        """Find the attendance table by known names and map its columns."""
        tables = self.list_tables()

        if not tables:
            return SchemaDiscoveryError(
                DiscoveryErrorType.NO_TABLES_FOUND,
                "No tables found in the SDF file. The database may be empty or corrupted.",
            )

        aliases = {alias.lower() for alias in KNOWN_ATTENDANCE_TABLES}
        detected = next((t for t in tables if t.table_name.lower() in aliases), None)

        if detected is None:
            return SchemaDiscoveryError(
                DiscoveryErrorType.NO_ATTENDANCE_TABLE_DETECTED,
                "No attendance table detected. Use --table <name> to specify the table manually.",
                available_tables=tuple(tables),
            )

        logger.info(f"Auto-detected table: {detected.table_name}")
        return self.map_columns(detected.table_name, row_count=detected.row_count)

    def map_columns(self, table_name: str, row_count: Optional[int] = None) -> DiscoveryResult:
        """Map the columns of ``table_name`` onto the target fields."""
        if not table_name or not table_name.strip():
            raise ValueError("Table name cannot be null or empty.")

        columns = self.get_columns(table_name)
        if not columns:
            return SchemaDiscoveryError(
                DiscoveryErrorType.TABLE_NOT_FOUND,
                f"Table '{table_name}' not found in database.",
                available_tables=tuple(self.list_tables()),
            )
        column_names = [c.column_name for c in columns]

        mappings: List[ColumnMapping] = []
        for target, variants in COLUMN_VARIANTS.items():
            column = _match_column(columns, variants)
            if column is not None:
                mappings.append(ColumnMapping(column.column_name, target, column.data_type))

        mapped_targets = {m.target_column for m in mappings}
        missing = [t for t in REQUIRED_TARGET_COLUMNS if t not in mapped_targets]

        if missing:
            details = "\n  ".join(
                f"{col} (expected: {', '.join(COLUMN_VARIANTS[col])})" for col in missing
            )
            return SchemaDiscoveryError(
                DiscoveryErrorType.REQUIRED_COLUMNS_MISSING,
                f"Required columns missing in table '{table_name}':\n  {details}\n\n"
                f"Available columns: {', '.join(column_names)}",
                missing_columns=tuple(missing),
                searched_variants={col: COLUMN_VARIANTS[col] for col in missing},
                actual_columns=tuple(column_names),
            )

        mapped_sources = {m.source_column for m in mappings}
        unmapped = tuple(name for name in column_names if name not in mapped_sources)

        if row_count is None:
            row_count = self.get_row_count(table_name)

        for m in mappings:
            logger.debug(f"Mapped {table_name}.{m.source_column} ({m.source_type}) -> {m.target_column}")

        return ResolvedSchema(table_name, row_count, tuple(mappings), unmapped)


def _match_column(columns: List[ColumnDescriptor],
                  variants: Tuple[str, ...]) -> Optional[ColumnDescriptor]:
    """First column, in ordinal order, whose name equals any variant."""
    wanted = {v.lower() for v in variants}
    ordered = sorted(columns, key=lambda c: c.ordinal_position)
    return next((c for c in ordered if c.column_name.lower() in wanted), None)


def _optional_int(value) -> Optional[int]:
    return None if value is None else int(value)
