"""
Value objects shared by discovery, the conversion pipeline and the SQL writer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class TableDescriptor:
    """A user table and its exact row count"""
    table_name: str
    row_count: int


@dataclass(frozen=True)
class ColumnDescriptor:
    """Column metadata as reported by INFORMATION_SCHEMA.COLUMNS"""
    column_name: str
    data_type: str
    is_nullable: bool
    ordinal_position: int  # 1-based
    character_maximum_length: Optional[int] = None
    numeric_precision: Optional[int] = None
    numeric_scale: Optional[int] = None


@dataclass(frozen=True)
class ColumnMapping:
    """Maps a source column onto one of the known target fields"""
    source_column: str
    target_column: str
    source_type: str


@dataclass(frozen=True)
class ResolvedSchema:
    """Result of a successful column mapping"""
    table_name: str
    row_count: int
    mappings: Tuple[ColumnMapping, ...]
    unmapped_columns: Tuple[str, ...] = ()

    def find_mapping(self, target_column: str) -> Optional[ColumnMapping]:
        for mapping in self.mappings:
            if mapping.target_column.lower() == target_column.lower():
                return mapping
        return None


@dataclass(frozen=True)
class RawTableSchema:
    """Full column list of a table, used for export without semantic mapping"""
    table_name: str
    row_count: int
    columns: Tuple[ColumnDescriptor, ...]
    primary_key: Tuple[str, ...] = ()

    @property
    def column_names(self) -> List[str]:
        return [c.column_name for c in self.columns]


@dataclass(frozen=True)
class AttendanceRecord:
    """A validated attendance punch, ready to be written"""
    device_uid: int
    timestamp: datetime  # always timezone-aware
    verify_type: int = 0


@dataclass(frozen=True)
class DynamicRecord:
    """One row of a raw export: column name -> value (None for NULL), in table order"""
    values: Dict[str, Any]


@dataclass(frozen=True)
class SourceMetadata:
    """Provenance data for the SQL file header"""
    sdf_file_name: str
    table_name: str
    record_count: int


@dataclass(frozen=True)
class ReadResult:
    records: Tuple[AttendanceRecord, ...]
    skipped_count: int
    warnings: Tuple[str, ...]


@dataclass(frozen=True)
class DynamicReadResult:
    records: Tuple[DynamicRecord, ...]
    skipped_count: int
    warnings: Tuple[str, ...]


@dataclass(frozen=True)
class ExportOutcome:
    """Accumulated statistics for one export run"""
    records_written: int
    skipped_count: int
    batch_count: int
    file_size_bytes: int
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MigrationResult:
    """Summary of a direct load into PostgreSQL"""
    total_records: int
    inserted_count: int
    duplicate_count: int
    error_count: int


class DiscoveryErrorType(Enum):
    NO_TABLES_FOUND = "no_tables_found"
    NO_ATTENDANCE_TABLE_DETECTED = "no_attendance_table_detected"
    REQUIRED_COLUMNS_MISSING = "required_columns_missing"
    TABLE_NOT_FOUND = "table_not_found"


@dataclass(frozen=True)
class SchemaDiscoveryError:
    """
    Structured discovery failure. Carries enough context (tables, columns,
    searched name variants) for the operator to pick a table by hand.
    """
    error_type: DiscoveryErrorType
    message: str
    available_tables: Tuple[TableDescriptor, ...] = ()
    missing_columns: Tuple[str, ...] = ()
    searched_variants: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    actual_columns: Tuple[str, ...] = ()
