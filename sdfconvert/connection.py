#!/usr/bin/env python3
"""
SDF Connection Opener
=====================

Establishes a readable connection to a source file whose format version and
encryption state are unknown up front. The negotiation runs as an explicit
state loop:

    START -> OPEN | NEEDS_PASSWORD | NEEDS_UPGRADE | FILE_LOCKED | FAILED
    NEEDS_PASSWORD -> START (with password) | ABANDONED
    NEEDS_UPGRADE -> UPGRADE_IN_PROGRESS | ABANDONED
    UPGRADE_IN_PROGRESS -> START | NEEDS_PASSWORD   (raises on other failures)
    FILE_LOCKED -> START | FAILED

Invariants:
- at most one backup is created per open sequence
- the source file is only mutated inside UPGRADE_IN_PROGRESS, after the
  backup exists on disk
- a failed upgrade restores the original bytes before the failure surfaces
"""

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from sdfconvert.backup import create_backup, restore_backup
from sdfconvert.engine import (
    EngineError, SourceEngine, is_file_locked, is_password_required, is_upgrade_required,
)
from sdfconvert.errors import ErrorCode, ManualRecoveryError, UpgradeError

logger = logging.getLogger(__name__)

PasswordSupplier = Callable[[], Optional[str]]
UpgradeConsent = Callable[[], bool]

# Hard ceiling on loop iterations, independent of the per-condition limits
MAX_STEPS = 32


class OpenState(Enum):
    START = "start"
    NEEDS_PASSWORD = "needs_password"
    NEEDS_UPGRADE = "needs_upgrade"
    UPGRADE_IN_PROGRESS = "upgrade_in_progress"
    FILE_LOCKED = "file_locked"
    OPEN = "open"
    ABANDONED = "abandoned"
    FAILED = "failed"


TERMINAL_STATES = frozenset({OpenState.OPEN, OpenState.ABANDONED, OpenState.FAILED})


@dataclass(frozen=True)
class OpenContext:
    """Immutable data carried between states"""
    path: str
    password: Optional[str] = None
    backup_path: Optional[str] = None
    upgrade_performed: bool = False
    consent_given: bool = False
    password_attempts: int = 0
    lock_attempts: int = 0
    last_error: Optional[EngineError] = None


@dataclass(frozen=True)
class OpenResult:
    """Outcome of an open sequence"""
    state: OpenState
    connection: Any = None
    password: Optional[str] = None
    backup_path: Optional[str] = None
    upgrade_performed: bool = False
    message: str = ""
    error_code: Optional[ErrorCode] = None

    @property
    def is_open(self) -> bool:
        return self.state == OpenState.OPEN


def _no_password() -> Optional[str]:
    return None


def _no_consent() -> bool:
    return False


class ConnectionOpener:
    """
    Drives the open/password/upgrade negotiation and owns the resulting
    connection. Discovery and the pipeline only borrow it; close it through
    ``close()`` or by using the opener as a context manager.
    """

    def __init__(self, engine: SourceEngine,
                 password_supplier: Optional[PasswordSupplier] = None,
                 upgrade_consent: Optional[UpgradeConsent] = None,
                 max_password_attempts: int = 3,
                 lock_retries: int = 3,
                 lock_retry_delay: float = 1.0,
                 sleep: Callable[[float], None] = time.sleep):
        self.engine = engine
        self.password_supplier = password_supplier or _no_password
        self.upgrade_consent = upgrade_consent or _no_consent
        self.max_password_attempts = max_password_attempts
        self.lock_retries = lock_retries
        self.lock_retry_delay = lock_retry_delay
        self._sleep = sleep
        self.connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self):
        """Close the owned connection, if any."""
        if self.connection is not None:
            try:
                self.connection.close()
            finally:
                self.connection = None

    def open(self, path: str, password: Optional[str] = None) -> OpenResult:
        """Run the state loop until a terminal state is reached."""
        if self.connection is not None:
            raise RuntimeError("ConnectionOpener already holds an open connection")

        source = Path(path)
        if not source.is_file():
            return OpenResult(
                OpenState.FAILED,
                message=f"SDF file not found: {path}",
                error_code=ErrorCode.SOURCE_NOT_FOUND,
            )

        state = OpenState.START
        ctx = OpenContext(path=str(source), password=password or None)
        steps = 0

        while state not in TERMINAL_STATES:
            steps += 1
            if steps > MAX_STEPS:
                return self._result(OpenState.FAILED, ctx,
                                    "Gave up opening the database after too many attempts",
                                    ErrorCode.CONNECTION_FAILED)
            logger.debug(f"Open state: {state.value}")
            handler = getattr(self, f"_on_{state.value}")
            state, ctx, result = handler(ctx)
            if result is not None:
                return result

        # Every terminal transition returns a result from its handler
        raise AssertionError(f"Unhandled terminal state {state}")

    # -- state handlers: (ctx) -> (next_state, next_ctx, result_or_None) --

    def _on_start(self, ctx: OpenContext):
        try:
            conn = self.engine.connect(ctx.path, ctx.password)
        except EngineError as e:
            ctx = replace(ctx, last_error=e)
            if is_password_required(e):
                return OpenState.NEEDS_PASSWORD, ctx, None
            if is_upgrade_required(e):
                if ctx.upgrade_performed:
                    return OpenState.FAILED, ctx, self._result(
                        OpenState.FAILED, ctx,
                        f"Database still reports an old format after upgrade: {e.message}",
                        ErrorCode.CONNECTION_FAILED)
                return OpenState.NEEDS_UPGRADE, ctx, None
            if is_file_locked(e):
                return OpenState.FILE_LOCKED, ctx, None
            return OpenState.FAILED, ctx, self._result(
                OpenState.FAILED, ctx, f"Failed to open SDF file: {e.message}",
                ErrorCode.CONNECTION_FAILED)

        self.connection = conn
        logger.info(f"Opened {Path(ctx.path).name}")
        return OpenState.OPEN, ctx, self._result(OpenState.OPEN, ctx, "Database opened")

    def _on_needs_password(self, ctx: OpenContext):
        if ctx.password_attempts >= self.max_password_attempts:
            return OpenState.FAILED, ctx, self._result(
                OpenState.FAILED, ctx,
                f"Database password rejected after {ctx.password_attempts} attempt(s)",
                ErrorCode.PASSWORD_REQUIRED)

        password = self.password_supplier()
        if not password:
            return OpenState.ABANDONED, ctx, self._result(
                OpenState.ABANDONED, ctx,
                "Database is password-protected and no password was provided. "
                "Use --password to provide the password.",
                ErrorCode.PASSWORD_REQUIRED)

        ctx = replace(ctx, password=password, password_attempts=ctx.password_attempts + 1)
        return OpenState.START, ctx, None

    def _on_needs_upgrade(self, ctx: OpenContext):
        if not ctx.consent_given:
            if not self.upgrade_consent():
                return OpenState.ABANDONED, ctx, self._result(
                    OpenState.ABANDONED, ctx,
                    "Database was created with an older SQL Server CE version and requires "
                    "upgrade. Use --upgrade to upgrade it (a backup will be created).",
                    ErrorCode.UPGRADE_REQUIRED)
            ctx = replace(ctx, consent_given=True)

        if ctx.backup_path and Path(ctx.backup_path).is_file():
            logger.info(f"Using existing backup: {Path(ctx.backup_path).name}")
        else:
            # BackupError propagates: nothing may be mutated without a backup
            backup = create_backup(ctx.path)
            ctx = replace(ctx, backup_path=str(backup))

        return OpenState.UPGRADE_IN_PROGRESS, ctx, None

    def _on_upgrade_in_progress(self, ctx: OpenContext):
        if not ctx.backup_path or not Path(ctx.backup_path).is_file():
            raise UpgradeError("Refusing to upgrade without a backup on disk")

        logger.info("Upgrading database to SQL Server CE 4.0 format...")
        try:
            self.engine.upgrade(ctx.path, ctx.password)
        except EngineError as e:
            logger.warning(f"Upgrade failed: {e.message}")
            self._restore(ctx)
            if is_password_required(e):
                logger.info("Database is password-protected")
                return OpenState.NEEDS_PASSWORD, replace(ctx, last_error=e), None
            raise UpgradeError(
                f"Database upgrade failed: {e.message}. Original file has been restored.",
                ctx.backup_path) from e

        logger.info("Upgrade completed successfully.")
        return OpenState.START, replace(ctx, upgrade_performed=True), None

    def _on_file_locked(self, ctx: OpenContext):
        if ctx.lock_attempts >= self.lock_retries:
            return OpenState.FAILED, ctx, self._result(
                OpenState.FAILED, ctx,
                "SDF file is locked by another process. Close the application using it and retry.",
                ErrorCode.SOURCE_LOCKED)
        logger.warning(f"SDF file is locked, retrying in {self.lock_retry_delay}s "
                       f"({ctx.lock_attempts + 1}/{self.lock_retries})")
        self._sleep(self.lock_retry_delay)
        return OpenState.START, replace(ctx, lock_attempts=ctx.lock_attempts + 1), None

    def _restore(self, ctx: OpenContext) -> None:
        logger.info("Restoring from backup...")
        try:
            restore_backup(ctx.backup_path, ctx.path)
        except OSError as e:
            raise ManualRecoveryError(
                "Upgrade failed and backup restoration also failed. "
                f"Manual recovery needed from: {ctx.backup_path}",
                ctx.backup_path) from e
        logger.info("Original file restored from backup.")

    def _result(self, state: OpenState, ctx: OpenContext, message: str,
                error_code: Optional[ErrorCode] = None) -> OpenResult:
        return OpenResult(
            state=state,
            connection=self.connection if state == OpenState.OPEN else None,
            password=ctx.password,
            backup_path=ctx.backup_path,
            upgrade_performed=ctx.upgrade_performed,
            message=message,
            error_code=error_code,
        )
