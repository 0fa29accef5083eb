#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SDF Converter Package
Exports the main components for clean imports

Version: 1.0.0
"""

from .backup import create_backup, list_backups, restore_backup
from .connection import ConnectionOpener, OpenResult, OpenState
from .discovery import COLUMN_VARIANTS, KNOWN_ATTENDANCE_TABLES, SchemaDiscovery
from .engine import EngineError, SourceEngine
from .errors import (
    BackupError, ConverterError, ErrorCode, LoadError, ManualRecoveryError,
    OutputWriteError, UpgradeError,
)
from .models import (
    AttendanceRecord, ColumnDescriptor, ColumnMapping, DiscoveryErrorType, DynamicRecord,
    ExportOutcome, MigrationResult, RawTableSchema, ResolvedSchema, SchemaDiscoveryError,
    SourceMetadata, TableDescriptor,
)
from .pipeline import (
    BATCH_SIZE, export_attendance, export_table_streaming, read_records, read_table_records,
)
from .sql_writer import PostgresSqlWriter

__all__ = [
    # Connection
    'ConnectionOpener',
    'OpenResult',
    'OpenState',
    'SourceEngine',
    'EngineError',

    # Backup
    'create_backup',
    'restore_backup',
    'list_backups',

    # Discovery
    'SchemaDiscovery',
    'KNOWN_ATTENDANCE_TABLES',
    'COLUMN_VARIANTS',

    # Pipeline and writer
    'read_records',
    'read_table_records',
    'export_attendance',
    'export_table_streaming',
    'PostgresSqlWriter',
    'BATCH_SIZE',

    # Models
    'AttendanceRecord',
    'ColumnDescriptor',
    'ColumnMapping',
    'DiscoveryErrorType',
    'DynamicRecord',
    'ExportOutcome',
    'MigrationResult',
    'RawTableSchema',
    'ResolvedSchema',
    'SchemaDiscoveryError',
    'SourceMetadata',
    'TableDescriptor',

    # Errors
    'ConverterError',
    'ErrorCode',
    'BackupError',
    'UpgradeError',
    'ManualRecoveryError',
    'OutputWriteError',
    'LoadError',
]

__version__ = '1.0.0'
__description__ = 'SQL Server Compact (.sdf) to PostgreSQL converter'
