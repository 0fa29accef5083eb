"""
Source engine contract.

The converter talks to the SQL Server CE runtime through a small interface so
the connection protocol, discovery and pipeline can be exercised against any
DB-API style backend. Engines translate their native exceptions into
``EngineError`` carrying the engine's native error number.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

# "The database file has been created by an earlier version of SQL Server Compact."
UPGRADE_REQUIRED_ERROR = 25138
# "There is a file sharing violation. A different process might be using the file."
FILE_SHARING_VIOLATION_ERROR = 25035
# "The specified password does not match the database password."
PASSWORD_MISMATCH_ERROR = 25028

PASSWORD_MARKER = "password"


class EngineError(Exception):
    """An error reported by the underlying database engine"""

    def __init__(self, message: str, native_error: int = 0):
        super().__init__(message)
        self.message = message
        self.native_error = native_error

    def __str__(self):
        if self.native_error:
            return f"{self.message} (native error {self.native_error})"
        return self.message


def is_password_required(error: EngineError) -> bool:
    return PASSWORD_MARKER in (error.message or "").lower()


def is_upgrade_required(error: EngineError) -> bool:
    return error.native_error == UPGRADE_REQUIRED_ERROR


def is_file_locked(error: EngineError) -> bool:
    return error.native_error == FILE_SHARING_VIOLATION_ERROR


class SourceEngine(ABC):
    """Opens and upgrades source database files"""

    @abstractmethod
    def connect(self, path: str, password: Optional[str] = None) -> Any:
        """
        Open ``path`` and return a DB-API 2.0 style connection (``cursor()``,
        ``close()``; cursors accept ``?`` placeholders).

        Raises:
            EngineError: on any engine-level failure
        """

    @abstractmethod
    def upgrade(self, path: str, password: Optional[str] = None) -> None:
        """
        Upgrade ``path`` in place to the current file format. Destructive.

        Raises:
            EngineError: on any engine-level failure
        """
