# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapkeep Exceptions - Custom exceptions for the snapkeep package.

Every restore or backup failure carries an ErrorKind so that callers
(CLI, scheduler, admin API) can report it without inspecting types.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Failure kinds reported by restore and backup operations."""

    INVALID_SNAPSHOT = "invalid_snapshot"
    INSUFFICIENT_SPACE = "insufficient_space"
    RESOURCE_BUSY = "resource_busy"
    CORRUPT_RESTORE = "corrupt_restore"
    RESTORE_VERIFICATION_FAILED = "restore_verification_failed"
    BACKUP_FAILED = "backup_failed"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]


_EXIT_CODES = {
    ErrorKind.INVALID_SNAPSHOT: 3,
    ErrorKind.INSUFFICIENT_SPACE: 4,
    ErrorKind.RESOURCE_BUSY: 5,
    ErrorKind.CORRUPT_RESTORE: 6,
    ErrorKind.RESTORE_VERIFICATION_FAILED: 7,
    ErrorKind.BACKUP_FAILED: 8,
}


class SnapkeepError(Exception):
    """Base exception for all snapkeep errors."""

    kind: ErrorKind | None = None

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(SnapkeepError):
    """Raised when configuration is invalid."""

    pass


class CompressionError(SnapkeepError):
    """Raised when a snapshot cannot be compressed or decompressed."""

    pass


class RestoreError(SnapkeepError):
    """Base class for restore failures."""

    pass


class InvalidSnapshotError(RestoreError):
    """Chosen snapshot is unreadable or empty."""

    kind = ErrorKind.INVALID_SNAPSHOT


class InsufficientSpaceError(RestoreError):
    """Not enough free space on the cache volume to materialize a restore."""

    kind = ErrorKind.INSUFFICIENT_SPACE


class ResourceBusyError(RestoreError):
    """Live path still held by another process after the busy wait."""

    kind = ErrorKind.RESOURCE_BUSY


class CorruptRestoreError(RestoreError):
    """Materialized file failed decompression or integrity checks."""

    kind = ErrorKind.CORRUPT_RESTORE


class RestoreVerificationFailedError(RestoreError):
    """Smoke check against the renamed live file failed."""

    kind = ErrorKind.RESTORE_VERIFICATION_FAILED


class BackupError(SnapkeepError):
    """Base class for backup failures."""

    pass


class BackupFailedError(BackupError):
    """Online backup, verification or compression of a snapshot failed."""

    kind = ErrorKind.BACKUP_FAILED


class JournalError(SnapkeepError):
    """Raised when journal operations fail."""

    pass
