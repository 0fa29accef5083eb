#!/usr/bin/env python3
"""
SDF Converter Error Hierarchy
Canonical exception classes for the converter.
"""

from enum import Enum


class ErrorCode(Enum):
    UNKNOWN = "UNKNOWN_ERROR"
    SOURCE_NOT_FOUND = "SOURCE_NOT_FOUND"
    SOURCE_LOCKED = "SOURCE_LOCKED"
    PASSWORD_REQUIRED = "PASSWORD_REQUIRED"
    UPGRADE_REQUIRED = "UPGRADE_REQUIRED"
    CONNECTION_FAILED = "CONNECTION_FAILED"
    ENGINE_UNAVAILABLE = "ENGINE_UNAVAILABLE"
    BACKUP_FAILED = "BACKUP_FAILED"
    UPGRADE_FAILED = "UPGRADE_FAILED"
    MANUAL_RECOVERY = "MANUAL_RECOVERY_REQUIRED"
    OUTPUT_ERROR = "OUTPUT_ERROR"
    LOAD_ERROR = "LOAD_ERROR"


class ConverterError(Exception):
    """Base class for all converter exceptions"""
    def __init__(self, message: str, code: ErrorCode = ErrorCode.UNKNOWN, details: dict = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class EngineUnavailableError(ConverterError):
    """Raised when the SQL Server CE runtime cannot be loaded"""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, ErrorCode.ENGINE_UNAVAILABLE, details)


class BackupError(ConverterError):
    """Raised when a safety copy of the source file cannot be made"""
    def __init__(self, message: str, source_path: str = None):
        super().__init__(message, ErrorCode.BACKUP_FAILED, {'source_path': source_path})
        self.source_path = source_path


class UpgradeError(ConverterError):
    """Raised when the in-place format upgrade fails. The original file has been restored."""
    def __init__(self, message: str, backup_path: str = None):
        super().__init__(message, ErrorCode.UPGRADE_FAILED, {'backup_path': backup_path})
        self.backup_path = backup_path


class ManualRecoveryError(ConverterError):
    """Raised when an upgrade failed AND restoring the backup failed too"""
    def __init__(self, message: str, backup_path: str):
        super().__init__(message, ErrorCode.MANUAL_RECOVERY, {'backup_path': backup_path})
        self.backup_path = backup_path


class OutputWriteError(ConverterError):
    """Raised when the SQL output file cannot be created or written"""
    def __init__(self, message: str, output_path: str = None):
        super().__init__(message, ErrorCode.OUTPUT_ERROR, {'output_path': output_path})
        self.output_path = output_path


class LoadError(ConverterError):
    """Raised when the PostgreSQL target cannot be reached"""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, ErrorCode.LOAD_ERROR, details)
