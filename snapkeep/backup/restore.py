# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapkeep Restore - Restore-on-boot of the live database.

When the volatile cache comes up empty, the newest snapshot is
decompressed into a temporary file next to the live path, verified, and
renamed into place. Readers of the live path therefore only ever see it
absent or complete.
"""

import asyncio
import errno
import os
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import List

import aiosqlite
import structlog

from snapkeep.backup.locking import find_open_handles, operation_lock, watched_paths
from snapkeep.backup.manager import (
    SnapshotInfo,
    apply_file_attributes,
    latest_snapshot,
    read_snapshot_head,
)
from snapkeep.config import OperationStatus, SnapkeepConfig
from snapkeep.exceptions import (
    CompressionError,
    CorruptRestoreError,
    ErrorKind,
    InsufficientSpaceError,
    InvalidSnapshotError,
    ResourceBusyError,
    RestoreVerificationFailedError,
    SnapkeepError,
)
from snapkeep.vault.compressor import decompress_file
from snapkeep.vault.engine import has_sqlite_header, integrity_check, smoke_check

logger = structlog.get_logger()

RESTORE_TEMP_SUFFIX = ".restore"


@dataclass
class RestoreResult:
    """Result of a restore-on-boot invocation."""

    operation_id: str  # ULID
    status: OperationStatus
    started_at: str
    snapshot: str | None = None
    reason: str | None = None  # Why nothing was done, for skipped results
    error_kind: ErrorKind | None = None
    error: str | None = None
    restored_bytes: int = 0
    duration_seconds: float = 0.0

    @property
    def exit_code(self) -> int:
        if self.status is OperationStatus.FAILED and self.error_kind is not None:
            return self.error_kind.exit_code
        return 0

    def to_dict(self) -> dict:
        return {
            "operation_id": self.operation_id,
            "status": self.status.value,
            "started_at": self.started_at,
            "snapshot": self.snapshot,
            "reason": self.reason,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "restored_bytes": self.restored_bytes,
            "duration_seconds": self.duration_seconds,
        }


async def restore_if_needed(config: SnapkeepConfig) -> RestoreResult:
    """
    Restore the live database from the newest snapshot if it is missing.

    This is the main entry point for boot-time restores. It:
    1. Leaves an existing live database untouched
    2. Picks the snapshot with the newest embedded timestamp
    3. Checks the snapshot, free space and that nothing holds the live path
    4. Decompresses into a temporary file and verifies it
    5. Renames the file into place and runs a smoke query

    Failures are reported in the result, never raised.

    Args:
        config: Snapkeep configuration

    Returns:
        RestoreResult with operation details
    """
    from ulid import ULID

    start_time = datetime.now(UTC)
    result = RestoreResult(
        operation_id=str(ULID()),
        status=OperationStatus.SUCCESS,
        started_at=start_time.isoformat(),
    )

    logger.info(
        "restore_starting",
        operation_id=result.operation_id,
        live_db=str(config.live_db_path),
    )

    try:
        await _restore(config, result)
    except SnapkeepError as e:
        result.status = OperationStatus.FAILED
        result.error_kind = e.kind
        result.error = e.message
        logger.error(
            "restore_failed",
            operation_id=result.operation_id,
            error_kind=e.kind.value if e.kind else None,
            error=e.message,
            details=e.details,
        )
    except OSError as e:
        # Filesystem failure outside the checked steps
        result.status = OperationStatus.FAILED
        result.error_kind = (
            ErrorKind.INSUFFICIENT_SPACE
            if e.errno == errno.ENOSPC
            else ErrorKind.CORRUPT_RESTORE
        )
        result.error = f"Restore of {config.db_name} failed: {e}"
        logger.error(
            "restore_failed",
            operation_id=result.operation_id,
            error_kind=result.error_kind.value,
            error=result.error,
        )

    result.duration_seconds = (datetime.now(UTC) - start_time).total_seconds()

    if result.status is not OperationStatus.FAILED:
        logger.info(
            "restore_completed",
            operation_id=result.operation_id,
            status=result.status.value,
            reason=result.reason,
            snapshot=result.snapshot,
            restored_bytes=result.restored_bytes,
            duration_seconds=result.duration_seconds,
        )

    return result


async def _restore(config: SnapkeepConfig, result: RestoreResult) -> None:
    live_path = config.live_db_path

    if live_path.exists():
        result.status = OperationStatus.SKIPPED
        result.reason = "live_database_present"
        return

    snapshot = latest_snapshot(config)
    if snapshot is None:
        # First run: the application creates its schema itself
        result.status = OperationStatus.SKIPPED
        result.reason = "no_snapshots"
        return

    result.snapshot = snapshot.name

    await _check_snapshot_readable(snapshot)

    config.cache_dir.mkdir(parents=True, exist_ok=True)
    _check_free_space(config)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + config.busy_wait_seconds

    async with operation_lock(config, timeout=config.busy_wait_seconds):
        await _wait_until_not_held(config, max(deadline - loop.time(), 0.0))

        if live_path.exists():
            # Created by the application while we were waiting
            result.status = OperationStatus.SKIPPED
            result.reason = "live_database_present"
            return

        remove_stale_restore_files(config)
        result.restored_bytes = await _materialize(config, snapshot)


async def _check_snapshot_readable(snapshot: SnapshotInfo) -> None:
    """Raise InvalidSnapshotError unless the snapshot can be read and is non-empty."""
    try:
        head = await read_snapshot_head(snapshot.path)
    except OSError as e:
        raise InvalidSnapshotError(
            f"Snapshot {snapshot.name} is not readable: {e}",
            details={"snapshot": str(snapshot.path)},
        ) from e

    if not head:
        raise InvalidSnapshotError(
            f"Snapshot {snapshot.name} is empty",
            details={"snapshot": str(snapshot.path)},
        )


def _check_free_space(config: SnapkeepConfig) -> None:
    free = shutil.disk_usage(config.cache_dir).free
    if free < config.min_free_bytes:
        raise InsufficientSpaceError(
            f"Only {free} bytes free in {config.cache_dir}, "
            f"{config.min_free_bytes} required",
            details={
                "cache_dir": str(config.cache_dir),
                "free_bytes": free,
                "required_bytes": config.min_free_bytes,
            },
        )


async def _wait_until_not_held(config: SnapkeepConfig, wait_seconds: float) -> None:
    """
    Probe for processes holding the live path, waiting once if one is found.

    Raises:
        ResourceBusyError: If a holder is still present after the wait
    """
    paths = watched_paths(config)
    holders = find_open_handles(paths, exclude_pid=os.getpid())
    if not holders:
        return

    logger.warning(
        "live_database_busy",
        pids=holders,
        wait_seconds=wait_seconds,
    )
    await asyncio.sleep(wait_seconds)

    holders = find_open_handles(paths, exclude_pid=os.getpid())
    if holders:
        raise ResourceBusyError(
            f"{config.live_db_path} is held open by another process",
            details={"pids": holders},
        )


def remove_stale_restore_files(config: SnapkeepConfig) -> List[str]:
    """
    Delete temporaries left behind by a cancelled restore.

    Must only be called while holding the operation lock.
    """
    removed: List[str] = []
    for entry in config.cache_dir.glob(f".{config.db_name}.*{RESTORE_TEMP_SUFFIX}"):
        try:
            entry.unlink()
            removed.append(entry.name)
        except FileNotFoundError:
            continue
    if removed:
        logger.info("stale_restore_files_removed", files=removed)
    return removed


async def _materialize(config: SnapkeepConfig, snapshot: SnapshotInfo) -> int:
    """Decompress, verify and rename the snapshot onto the live path."""
    live_path = config.live_db_path
    fd, temp_name = tempfile.mkstemp(
        prefix=f".{config.db_name}.",
        suffix=RESTORE_TEMP_SUFFIX,
        dir=config.cache_dir,
    )
    os.close(fd)
    temp_path = Path(temp_name)

    try:
        try:
            size = await decompress_file(snapshot.path, temp_path, snapshot.codec)
        except CompressionError as e:
            cause = e.__cause__
            if isinstance(cause, OSError) and cause.errno == errno.ENOSPC:
                raise InsufficientSpaceError(
                    f"Cache volume filled up while restoring {snapshot.name}",
                    details={"cache_dir": str(config.cache_dir), "cause": str(cause)},
                ) from e
            raise CorruptRestoreError(
                f"Snapshot {snapshot.name} failed to decompress",
                details={"snapshot": snapshot.name, "cause": e.message},
            ) from e

        await _verify_materialized(temp_path, snapshot, size)

        try:
            apply_file_attributes(temp_path, config)
        except OSError as e:
            raise CorruptRestoreError(
                f"Could not prepare restored file from {snapshot.name}: {e}",
                details={"snapshot": snapshot.name, "path": str(temp_path)},
            ) from e

        os.replace(temp_path, live_path)
        logger.info(
            "live_database_restored",
            snapshot=snapshot.name,
            live_db=str(live_path),
            size=size,
        )
    finally:
        # Never linked into place unless the rename above succeeded
        temp_path.unlink(missing_ok=True)

    try:
        await smoke_check(live_path)
    except aiosqlite.Error as e:
        live_path.unlink(missing_ok=True)
        raise RestoreVerificationFailedError(
            f"Restored database failed its smoke check: {e}",
            details={"snapshot": snapshot.name},
        ) from e

    return size


async def _verify_materialized(temp_path: Path, snapshot: SnapshotInfo, size: int) -> None:
    """Header and PRAGMA integrity_check on the decompressed file."""
    if size == 0:
        raise CorruptRestoreError(
            f"Snapshot {snapshot.name} decompressed to an empty file",
            details={"snapshot": snapshot.name},
        )

    if not has_sqlite_header(temp_path):
        raise CorruptRestoreError(
            f"Snapshot {snapshot.name} does not contain an SQLite database",
            details={"snapshot": snapshot.name},
        )

    try:
        problems = await integrity_check(temp_path)
    except aiosqlite.Error as e:
        raise CorruptRestoreError(
            f"Snapshot {snapshot.name} could not be opened: {e}",
            details={"snapshot": snapshot.name},
        ) from e

    if problems:
        raise CorruptRestoreError(
            f"Snapshot {snapshot.name} failed integrity check",
            details={"snapshot": snapshot.name, "problems": problems[:10]},
        )
