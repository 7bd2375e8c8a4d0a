# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapkeep Snapshot - Hot backup of the live database into the archive.

Each run that finds a live database produces exactly one new compressed
snapshot in the durable directory, then applies retention.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import List

import aiosqlite
import structlog

from snapkeep.backup.locking import operation_lock
from snapkeep.backup.manager import (
    PARTIAL_PREFIX,
    apply_file_attributes,
    next_free_snapshot_path,
    prune_old_snapshots,
    remove_partial_files,
    sha256_file,
    stamp_mtime,
)
from snapkeep.config import OperationStatus, SnapkeepConfig
from snapkeep.exceptions import (
    BackupFailedError,
    CompressionError,
    ErrorKind,
    SnapkeepError,
)
from snapkeep.vault.compressor import compress_file, get_compression_stats
from snapkeep.vault.engine import integrity_check, online_backup

logger = structlog.get_logger()


@dataclass
class BackupResult:
    """Result of a snapshot (backup) invocation."""

    operation_id: str  # ULID
    status: OperationStatus
    started_at: str
    snapshot: str | None = None
    reason: str | None = None
    error_kind: ErrorKind | None = None
    error: str | None = None
    database_bytes: int = 0
    snapshot_bytes: int = 0
    sha256: str | None = None
    pruned: List[str] = field(default_factory=list)
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
            "database_bytes": self.database_bytes,
            "snapshot_bytes": self.snapshot_bytes,
            "sha256": self.sha256,
            "pruned": list(self.pruned),
            "duration_seconds": self.duration_seconds,
        }


async def backup_database(
    config: SnapkeepConfig,
    lock_timeout: float | None = None,
) -> BackupResult:
    """
    Take a compressed snapshot of the live database and apply retention.

    The online backup API is used rather than a file copy, so the snapshot
    is consistent even while the application is writing. Safe to run
    repeatedly; partial files are never left in the archive.

    Args:
        config: Snapkeep configuration
        lock_timeout: Seconds to wait for a concurrent operation to finish,
            None for busy_wait_seconds

    Returns:
        BackupResult with operation details
    """
    from ulid import ULID

    start_time = datetime.now(UTC)
    result = BackupResult(
        operation_id=str(ULID()),
        status=OperationStatus.SUCCESS,
        started_at=start_time.isoformat(),
    )

    if not config.live_db_path.exists():
        logger.warning("live_database_missing", live_db=str(config.live_db_path))
        result.status = OperationStatus.SKIPPED
        result.reason = "live_database_missing"
        return result

    logger.info(
        "backup_starting",
        operation_id=result.operation_id,
        live_db=str(config.live_db_path),
        backup_dir=str(config.backup_dir),
    )

    try:
        config.backup_dir.mkdir(parents=True, exist_ok=True)
        if lock_timeout is None:
            lock_timeout = config.busy_wait_seconds
        async with operation_lock(config, timeout=lock_timeout):
            remove_partial_files(config.backup_dir)
            await _take_snapshot(config, result, start_time)
    except OSError as e:
        # backup_dir could not be prepared
        result.status = OperationStatus.FAILED
        result.error_kind = ErrorKind.BACKUP_FAILED
        result.error = f"Cannot prepare {config.backup_dir}: {e}"
    except SnapkeepError as e:
        result.status = OperationStatus.FAILED
        result.error_kind = e.kind
        result.error = e.message

    if result.status is OperationStatus.FAILED:
        result.duration_seconds = (datetime.now(UTC) - start_time).total_seconds()
        logger.error(
            "backup_failed",
            operation_id=result.operation_id,
            error_kind=result.error_kind.value if result.error_kind else None,
            error=result.error,
        )
        return result

    summary = await prune_old_snapshots(config)
    result.pruned = summary.removed

    result.duration_seconds = (datetime.now(UTC) - start_time).total_seconds()
    logger.info(
        "backup_completed",
        operation_id=result.operation_id,
        snapshot=result.snapshot,
        database_bytes=result.database_bytes,
        snapshot_bytes=result.snapshot_bytes,
        pruned=len(result.pruned),
        duration_seconds=result.duration_seconds,
    )
    return result


async def _take_snapshot(
    config: SnapkeepConfig,
    result: BackupResult,
    timestamp: datetime,
) -> None:
    """
    Online copy, verify, compress and publish one snapshot.

    Raises:
        BackupFailedError: If any step fails; partial files are removed
    """
    raw_partial = config.backup_dir / f"{PARTIAL_PREFIX}{result.operation_id}.db"
    compressed_partial = config.backup_dir / (
        f"{PARTIAL_PREFIX}{result.operation_id}{config.compression.suffix}"
    )

    try:
        try:
            result.database_bytes = await online_backup(config.live_db_path, raw_partial)
        except (aiosqlite.Error, OSError) as e:
            raise BackupFailedError(
                f"Online backup of {config.db_name} failed: {e}",
                details={"live_db": str(config.live_db_path)},
            ) from e

        if config.verify_snapshots:
            await _verify_copy(raw_partial, config)

        try:
            result.snapshot_bytes = await compress_file(
                raw_partial,
                compressed_partial,
                config.compression,
                config.compression_level,
            )
        except CompressionError as e:
            raise BackupFailedError(
                f"Compression of {config.db_name} failed",
                details={"cause": e.message},
            ) from e

        final_path, final_ts = next_free_snapshot_path(config, timestamp)
        try:
            apply_file_attributes(compressed_partial, config)
            os.replace(compressed_partial, final_path)
            stamp_mtime(final_path, final_ts)
        except OSError as e:
            final_path.unlink(missing_ok=True)
            raise BackupFailedError(
                f"Could not publish snapshot {final_path.name}: {e}",
                details={"snapshot": final_path.name},
            ) from e

        result.snapshot = final_path.name
        try:
            result.sha256 = await sha256_file(final_path)
        except OSError as e:
            logger.warning("snapshot_hash_failed", snapshot=final_path.name, error=str(e))

        logger.debug(
            "snapshot_written",
            snapshot=final_path.name,
            **get_compression_stats(result.database_bytes, result.snapshot_bytes),
        )
    finally:
        _discard(raw_partial)
        _discard(compressed_partial)


async def _verify_copy(path: Path, config: SnapkeepConfig) -> None:
    try:
        problems = await integrity_check(path)
    except aiosqlite.Error as e:
        raise BackupFailedError(
            f"Snapshot copy of {config.db_name} could not be verified: {e}",
        ) from e

    if problems:
        raise BackupFailedError(
            f"Snapshot copy of {config.db_name} failed integrity check",
            details={"problems": problems[:10]},
        )


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("partial_cleanup_failed", path=str(path), error=str(e))
