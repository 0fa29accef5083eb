#!/usr/bin/env python3
"""
SDF Conversion Pipeline
=======================

Reads rows from a borrowed connection, validates and converts them, and
writes batched SQL through a ``PostgresSqlWriter``.

Two modes:
- semantic: the three mapped attendance fields (device_uid, timestamp,
  verify_type), ordered by timestamp
- raw: every declared column of a table, in table order, streamed in
  fixed-size batches so memory stays bounded by one batch

Row-level problems never abort a run: the row is skipped (or, for the
optional verify_type, defaulted) and a row-numbered warning is recorded.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from sdfconvert.conversion import (
    to_aware_datetime, to_int16, to_int32, to_local_datetime, to_scalar,
)
from sdfconvert.discovery import quote_source_ident
from sdfconvert.errors import OutputWriteError
from sdfconvert.models import (
    AttendanceRecord, DynamicReadResult, DynamicRecord, ExportOutcome, RawTableSchema,
    ReadResult, ResolvedSchema, SourceMetadata,
)
from sdfconvert.sql_writer import PostgresSqlWriter

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000
PROGRESS_INTERVAL = 100
# Above this many rows read_table_records refuses; use export_table_streaming
IN_MEMORY_ROW_LIMIT = 50_000

ProgressCallback = Callable[[int], None]
PathLike = Union[str, Path]


class _Progress:
    """Reports the processed-row count every ``interval`` rows and once at the end."""

    def __init__(self, callback: Optional[ProgressCallback], interval: int = PROGRESS_INTERVAL):
        self.callback = callback
        self.interval = interval
        self.processed = 0

    def tick(self) -> int:
        self.processed += 1
        if self.callback and self.processed % self.interval == 0:
            self.callback(self.processed)
        return self.processed

    def finish(self) -> None:
        if self.callback:
            self.callback(self.processed)


def check_batch_size(batch_size: int) -> None:
    """One INSERT statement per batch may hold at most BATCH_SIZE tuples."""
    if not 1 <= batch_size <= BATCH_SIZE:
        raise ValueError(f"batch_size must be between 1 and {BATCH_SIZE} (got {batch_size})")


def _iter_rows(cursor, fetch_size: int = BATCH_SIZE):
    while True:
        rows = cursor.fetchmany(fetch_size)
        if not rows:
            break
        yield from rows


# ---------------------------------------------------------------------------
# Semantic mode
# ---------------------------------------------------------------------------

def convert_attendance_row(row: Sequence[Any], row_number: int, has_verify_type: bool,
                           warnings: List[str]) -> Optional[AttendanceRecord]:
    """
    Validate one (device_uid, timestamp[, verify_type]) row.

    Required fields skip the row on failure; verify_type falls back to 0.
    Returns None when the row is skipped (a warning has been appended).
    """
    raw_uid = row[0]
    if raw_uid is None:
        warnings.append(f"Row {row_number}: Skipped - device_uid is null")
        return None
    uid = to_int32(raw_uid)
    if not uid.ok:
        warnings.append(f"Row {row_number}: Skipped - device_uid conversion failed: {uid.error}")
        return None
    if uid.value <= 0:
        warnings.append(f"Row {row_number}: Skipped - device_uid must be positive (got {uid.value})")
        return None

    raw_ts = row[1]
    if raw_ts is None:
        warnings.append(f"Row {row_number}: Skipped - timestamp is null")
        return None
    ts = to_local_datetime(raw_ts)
    if not ts.ok:
        warnings.append(f"Row {row_number}: Skipped - timestamp conversion failed: {ts.error}")
        return None
    aware = to_aware_datetime(ts.value)
    if not aware.ok:
        warnings.append(f"Row {row_number}: Skipped - timestamp conversion failed: {aware.error}")
        return None

    verify_type = 0
    if has_verify_type and row[2] is not None:
        vt = to_int16(row[2])
        if vt.ok:
            verify_type = vt.value
        else:
            warnings.append(f"Row {row_number}: Warning - verify_type conversion failed, using 0: {vt.error}")

    return AttendanceRecord(uid.value, aware.value, verify_type)


def read_records(connection: Any, schema: ResolvedSchema,
                 on_progress: Optional[ProgressCallback] = None) -> ReadResult:
    """Read and validate every attendance row of the mapped table, ordered by timestamp."""
    uid_mapping = schema.find_mapping("device_uid")
    ts_mapping = schema.find_mapping("timestamp")
    vt_mapping = schema.find_mapping("verify_type")

    if uid_mapping is None:
        raise ValueError("Required column mapping for 'device_uid' not found.")
    if ts_mapping is None:
        raise ValueError("Required column mapping for 'timestamp' not found.")

    columns = [uid_mapping.source_column, ts_mapping.source_column]
    if vt_mapping is not None:
        columns.append(vt_mapping.source_column)

    column_list = ", ".join(quote_source_ident(c) for c in columns)
    query = (f"SELECT {column_list} FROM {quote_source_ident(schema.table_name)} "
             f"ORDER BY {quote_source_ident(ts_mapping.source_column)}")
    logger.debug(f"Reading records: {query}")

    records: List[AttendanceRecord] = []
    warnings: List[str] = []
    skipped = 0
    progress = _Progress(on_progress)

    cursor = connection.cursor()
    try:
        cursor.execute(query)
        for row in _iter_rows(cursor):
            row_number = progress.tick()
            record = convert_attendance_row(row, row_number, vt_mapping is not None, warnings)
            if record is None:
                skipped += 1
            else:
                records.append(record)
    finally:
        cursor.close()

    progress.finish()
    logger.info(f"Read {len(records)} records from {schema.table_name} ({skipped} skipped)")
    return ReadResult(tuple(records), skipped, tuple(warnings))


def export_attendance(connection: Any, schema: ResolvedSchema, output_path: PathLike,
                      writer: PostgresSqlWriter, metadata: SourceMetadata,
                      on_progress: Optional[ProgressCallback] = None,
                      include_ddl: bool = False,
                      batch_size: int = BATCH_SIZE) -> ExportOutcome:
    """Semantic export: read mapped attendance records and write them as batched INSERTs."""
    check_batch_size(batch_size)
    result = read_records(connection, schema, on_progress)
    records = result.records
    batch_count = 0

    def _write(sink):
        nonlocal batch_count
        writer.write_header(sink, metadata)
        if include_ddl:
            writer.write_create_table(sink)
        for start in range(0, len(records), batch_size):
            writer.write_batch(sink, records[start:start + batch_size])
            batch_count += 1

    size = _write_output(output_path, _write)
    return ExportOutcome(
        records_written=len(records),
        skipped_count=result.skipped_count,
        batch_count=batch_count,
        file_size_bytes=size,
        warnings=result.warnings,
    )


# ---------------------------------------------------------------------------
# Raw mode
# ---------------------------------------------------------------------------

def convert_dynamic_row(row: Sequence[Any], column_names: Sequence[str], row_number: int,
                        warnings: List[str]) -> Optional[DynamicRecord]:
    values: Dict[str, Any] = {}
    for name, raw in zip(column_names, row):
        converted = to_scalar(raw)
        if converted.ok and isinstance(converted.value, datetime):
            converted = to_aware_datetime(converted.value)
        if not converted.ok:
            warnings.append(f"Row {row_number}: Skipped - {name}: {converted.error}")
            return None
        values[name] = converted.value
    return DynamicRecord(values)


def _raw_select(schema: RawTableSchema) -> str:
    if not schema.columns:
        raise ValueError(f"Table '{schema.table_name}' has no columns to export")
    columns = sorted(schema.columns, key=lambda c: c.ordinal_position)
    column_list = ", ".join(quote_source_ident(c.column_name) for c in columns)
    return f"SELECT {column_list} FROM {quote_source_ident(schema.table_name)}"


def export_table_streaming(connection: Any, schema: RawTableSchema, output_path: PathLike,
                           writer: PostgresSqlWriter, metadata: SourceMetadata,
                           on_progress: Optional[ProgressCallback] = None,
                           include_ddl: bool = False,
                           batch_size: int = BATCH_SIZE) -> ExportOutcome:
    """
    Stream every column of ``schema.table_name`` to ``output_path``.

    At most ``batch_size`` records are held in memory; a batch is flushed as
    soon as it fills and the partial tail is flushed once at end-of-stream.
    """
    check_batch_size(batch_size)
    query = _raw_select(schema)
    column_names = [c.column_name for c in sorted(schema.columns, key=lambda c: c.ordinal_position)]
    warnings: List[str] = []
    written = 0
    skipped = 0
    batch_count = 0
    progress = _Progress(on_progress)

    def _write(sink):
        nonlocal written, skipped, batch_count
        writer.write_header(sink, metadata)
        if include_ddl:
            warnings.extend(writer.write_create_dynamic_table(sink, schema))

        batch: List[DynamicRecord] = []
        cursor = connection.cursor()
        try:
            cursor.execute(query)
            for row in _iter_rows(cursor, batch_size):
                row_number = progress.tick()
                record = convert_dynamic_row(row, column_names, row_number, warnings)
                if record is None:
                    skipped += 1
                    continue
                batch.append(record)
                if len(batch) >= batch_size:
                    writer.write_dynamic_batch(sink, batch, schema)
                    written += len(batch)
                    batch_count += 1
                    batch = []
        finally:
            cursor.close()

        if batch:
            writer.write_dynamic_batch(sink, batch, schema)
            written += len(batch)
            batch_count += 1

    size = _write_output(output_path, _write)
    progress.finish()
    logger.info(f"Exported {written} records from {schema.table_name} in {batch_count} batch(es)")
    return ExportOutcome(
        records_written=written,
        skipped_count=skipped,
        batch_count=batch_count,
        file_size_bytes=size,
        warnings=tuple(warnings),
    )


def read_table_records(connection: Any, schema: RawTableSchema,
                       on_progress: Optional[ProgressCallback] = None,
                       max_rows: int = IN_MEMORY_ROW_LIMIT) -> DynamicReadResult:
    """Read a whole (small) table into memory."""
    if schema.row_count > max_rows:
        raise ValueError(
            f"Table '{schema.table_name}' has {schema.row_count} rows; in-memory reads are limited "
            f"to {max_rows}. Use export_table_streaming instead."
        )

    query = _raw_select(schema)
    column_names = [c.column_name for c in sorted(schema.columns, key=lambda c: c.ordinal_position)]
    records: List[DynamicRecord] = []
    warnings: List[str] = []
    skipped = 0
    progress = _Progress(on_progress)

    cursor = connection.cursor()
    try:
        cursor.execute(query)
        for row in _iter_rows(cursor):
            row_number = progress.tick()
            record = convert_dynamic_row(row, column_names, row_number, warnings)
            if record is None:
                skipped += 1
            else:
                records.append(record)
    finally:
        cursor.close()

    progress.finish()
    return DynamicReadResult(tuple(records), skipped, tuple(warnings))


def _write_output(output_path: PathLike, write: Callable[[Any], None]) -> int:
    """
    Open ``output_path``, run ``write(sink)`` and close it on every exit path.
    Returns the flushed file size. I/O failures become OutputWriteError.
    """
    path = Path(output_path)
    try:
        with open(path, "w", encoding="utf-8", newline="\n") as sink:
            write(sink)
            sink.flush()
    except OSError as e:
        logger.error(f"Failed to write output file {path}: {e}")
        raise OutputWriteError(f"Failed to write output file {path}: {e}", str(path)) from e
    try:
        return os.path.getsize(path)
    except OSError as e:
        raise OutputWriteError(f"Failed to stat output file {path}: {e}", str(path)) from e
