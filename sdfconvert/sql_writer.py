#!/usr/bin/env python3
"""
PostgreSQL SQL Writer
=====================

Formats converted records as multi-row ``INSERT`` statements. One statement
is emitted per batch, each ending in an ``ON CONFLICT ... DO NOTHING`` clause
so the output can be re-applied without duplicating rows.

The writer holds configuration only (schema and target table names); all
output goes to the text sink passed to each call.
"""

import math
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence, TextIO, Tuple

from sdfconvert.models import AttendanceRecord, DynamicRecord, RawTableSchema, SourceMetadata
from sdfconvert.type_registry import TypeRegistry

ATTENDANCE_COLUMNS: Tuple[str, ...] = ("device_uid", "timestamp", "verify_type")
ATTENDANCE_NATURAL_KEY: Tuple[str, ...] = ("device_uid", "timestamp")


def quote_ident(identifier: str) -> str:
    """Double-quote a PostgreSQL identifier."""
    return '"' + identifier.replace('"', '""') + '"'


def quote_literal(text: str) -> str:
    # PostgreSQL text cannot hold NUL
    return "'" + text.replace("\x00", "").replace("'", "''") + "'"


def format_value(value: Any) -> str:
    """Render a Python scalar as a PostgreSQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "'NaN'"
        if math.isinf(value):
            return "'Infinity'" if value > 0 else "'-Infinity'"
        return repr(value)
    if isinstance(value, Decimal):
        if value.is_nan():
            return "'NaN'"
        if value.is_infinite():
            return "'Infinity'" if value > 0 else "'-Infinity'"
        return str(value)
    if isinstance(value, datetime):
        if value.utcoffset() is None:
            raise ValueError(f"Naive datetime {value.isoformat()} has no UTC offset")
        return quote_literal(value.isoformat())
    if isinstance(value, (date, time)):
        return quote_literal(value.isoformat())
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "'\\x" + bytes(value).hex() + "'"
    if isinstance(value, str):
        return quote_literal(value)
    raise TypeError(f"Cannot render value of type {type(value).__name__} as SQL")


class PostgresSqlWriter:
    """Writes headers, DDL and batched INSERT statements for PostgreSQL."""

    def __init__(self, schema_name: str = "public", target_table: str = "attendance"):
        if not schema_name:
            raise ValueError("Schema name cannot be empty")
        self.schema_name = schema_name
        self.target_table = target_table

    def qualified(self, table_name: str) -> str:
        return f"{quote_ident(self.schema_name)}.{quote_ident(table_name)}"

    def write_header(self, sink: TextIO, metadata: SourceMetadata,
                     generated_at: Optional[datetime] = None) -> None:
        generated_at = generated_at or datetime.now().astimezone()
        sink.write("-- SDF to PostgreSQL export\n")
        sink.write(f"-- Source file:  {_comment_safe(metadata.sdf_file_name)}\n")
        sink.write(f"-- Source table: {_comment_safe(metadata.table_name)}\n")
        sink.write(f"-- Source rows:  {metadata.record_count}\n")
        sink.write(f"-- Generated:    {generated_at.isoformat(timespec='seconds')}\n")
        sink.write("\n")

    # -- semantic (attendance) mode --

    def write_create_table(self, sink: TextIO) -> None:
        sink.write(
            f"CREATE TABLE IF NOT EXISTS {self.qualified(self.target_table)} (\n"
            f"    {quote_ident('device_uid')} INTEGER NOT NULL,\n"
            f"    {quote_ident('timestamp')} TIMESTAMP WITH TIME ZONE NOT NULL,\n"
            f"    {quote_ident('verify_type')} SMALLINT NOT NULL DEFAULT 0,\n"
            f"    UNIQUE ({_column_list(ATTENDANCE_NATURAL_KEY)})\n"
            ");\n\n"
        )

    def write_batch(self, sink: TextIO, records: Sequence[AttendanceRecord]) -> None:
        if not records:
            return
        rows = ((r.device_uid, r.timestamp, r.verify_type) for r in records)
        self._write_insert(
            sink,
            self.qualified(self.target_table),
            ATTENDANCE_COLUMNS,
            rows,
            f"ON CONFLICT ({_column_list(ATTENDANCE_NATURAL_KEY)}) DO NOTHING",
        )

    # -- raw (dynamic) mode --

    def write_create_dynamic_table(self, sink: TextIO, schema: RawTableSchema) -> List[str]:
        """Emit DDL for a raw table; returns warnings for columns typed by fallback."""
        warnings = []
        lines = []
        for col in schema.columns:
            type_info = TypeRegistry.map_to_ir(col.data_type, col.character_maximum_length,
                                               col.numeric_precision, col.numeric_scale)
            pg_type = TypeRegistry.map_from_ir(type_info)
            is_lossy, reason = TypeRegistry.is_lossy_conversion(col.data_type)
            if is_lossy:
                warnings.append(f"{schema.table_name}.{col.column_name}: {reason}")
            line = f"    {quote_ident(col.column_name)} {pg_type}"
            if not col.is_nullable:
                line += " NOT NULL"
            lines.append(line)
        if schema.primary_key:
            lines.append(f"    PRIMARY KEY ({_column_list(schema.primary_key)})")

        sink.write(f"CREATE TABLE IF NOT EXISTS {self.qualified(schema.table_name)} (\n")
        sink.write(",\n".join(lines))
        sink.write("\n);\n\n")
        return warnings

    def write_dynamic_batch(self, sink: TextIO, records: Sequence[DynamicRecord],
                            schema: RawTableSchema) -> None:
        if not records:
            return
        columns = schema.column_names
        rows = ([record.values.get(c) for c in columns] for record in records)
        if schema.primary_key:
            conflict = f"ON CONFLICT ({_column_list(schema.primary_key)}) DO NOTHING"
        else:
            conflict = "ON CONFLICT DO NOTHING"
        self._write_insert(sink, self.qualified(schema.table_name), columns, rows, conflict)

    def _write_insert(self, sink: TextIO, table: str, columns: Sequence[str],
                      rows: Iterable[Sequence[Any]], conflict_clause: str) -> None:
        sink.write(f"INSERT INTO {table} ({_column_list(columns)}) VALUES\n")
        first = True
        for row in rows:
            if not first:
                sink.write(",\n")
            sink.write("  (" + ", ".join(format_value(v) for v in row) + ")")
            first = False
        sink.write(f"\n{conflict_clause};\n\n")


def _column_list(columns: Iterable[str]) -> str:
    return ", ".join(quote_ident(c) for c in columns)


def _comment_safe(text: str) -> str:
    return " ".join(str(text).splitlines())
