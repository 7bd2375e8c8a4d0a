# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapkeep Core - Orchestration of backup and restore runs.

This module wraps the two operations with the bookkeeping a long-running
host needs: counters, the last results, and a journal entry per run.
"""

from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import TypedDict

import aiosqlite
import structlog

from snapkeep.backup.manager import RetentionSummary, get_snapshot_stats, prune_old_snapshots
from snapkeep.backup.restore import RestoreResult, restore_if_needed
from snapkeep.backup.snapshot import BackupResult, backup_database
from snapkeep.config import OperationStatus, SnapkeepConfig
from snapkeep.exceptions import JournalError
from snapkeep.vault.journal import (
    OperationRecord,
    get_journal_stats,
    init_journal_db,
    now_iso,
    record_operation,
)

logger = structlog.get_logger()


@dataclass
class KeeperMetrics:
    """Metrics for snapshot operations."""

    total_backups: int
    total_restores: int
    total_failures: int
    last_backup_at: datetime | None
    last_restore_at: datetime | None
    snapshot_count: int
    archive_size_bytes: int
    newest_snapshot: str | None
    last_error: str | None
    journal: dict | None


class KeeperState(TypedDict):
    """Runtime state for snapshot operations."""

    journal_db_path: Path | None  # None when the journal is disabled
    total_backups: int
    total_restores: int
    total_failures: int
    last_backup_at: datetime | None
    last_restore_at: datetime | None
    last_error: str | None
    last_backup: BackupResult | None
    last_restore: RestoreResult | None


async def initialize_state(config: SnapkeepConfig) -> KeeperState:
    """
    Initialize runtime state for snapshot operations.

    Creates the journal schema when the backup directory exists. A missing
    backup directory is not an error: the first backup creates it.

    Args:
        config: Snapkeep configuration

    Returns:
        Initialized KeeperState dictionary
    """
    journal_db_path = None
    if config.journal_enabled:
        journal_db_path = config.journal_path
        if config.backup_dir.is_dir():
            try:
                await init_journal_db(journal_db_path)
            except JournalError as e:
                logger.warning("journal_unavailable", error=str(e))

    return KeeperState(
        journal_db_path=journal_db_path,
        total_backups=0,
        total_restores=0,
        total_failures=0,
        last_backup_at=None,
        last_restore_at=None,
        last_error=None,
        last_backup=None,
        last_restore=None,
    )


async def run_backup_cycle(
    config: SnapkeepConfig,
    state: KeeperState | None = None,
) -> BackupResult:
    """
    Run one backup and record it.

    Args:
        config: Snapkeep configuration
        state: Runtime state (created on the fly when omitted)

    Returns:
        BackupResult from backup_database
    """
    if state is None:
        state = await initialize_state(config)

    result = await backup_database(config)

    state["last_backup"] = result
    if result.status is OperationStatus.SUCCESS:
        state["total_backups"] += 1
        state["last_backup_at"] = datetime.now(UTC)
    elif result.status is OperationStatus.FAILED:
        state["total_failures"] += 1
        state["last_error"] = result.error

    await _journal(
        config,
        state,
        OperationRecord(
            id=result.operation_id,
            kind="backup",
            status=result.status.value,
            error_kind=result.error_kind.value if result.error_kind else None,
            snapshot=result.snapshot,
            started_at=result.started_at,
            completed_at=now_iso(),
            stats={
                "database_bytes": result.database_bytes,
                "snapshot_bytes": result.snapshot_bytes,
                "sha256": result.sha256,
                "pruned": result.pruned,
                "reason": result.reason,
                "duration_seconds": result.duration_seconds,
            },
            error=result.error,
        ),
    )
    return result


async def run_restore_cycle(
    config: SnapkeepConfig,
    state: KeeperState | None = None,
) -> RestoreResult:
    """
    Run restore_if_needed and record it.

    Args:
        config: Snapkeep configuration
        state: Runtime state (created on the fly when omitted)

    Returns:
        RestoreResult from restore_if_needed
    """
    if state is None:
        state = await initialize_state(config)

    result = await restore_if_needed(config)

    state["last_restore"] = result
    if result.status is OperationStatus.SUCCESS:
        state["total_restores"] += 1
        state["last_restore_at"] = datetime.now(UTC)
    elif result.status is OperationStatus.FAILED:
        state["total_failures"] += 1
        state["last_error"] = result.error

    await _journal(
        config,
        state,
        OperationRecord(
            id=result.operation_id,
            kind="restore",
            status=result.status.value,
            error_kind=result.error_kind.value if result.error_kind else None,
            snapshot=result.snapshot,
            started_at=result.started_at,
            completed_at=now_iso(),
            stats={
                "restored_bytes": result.restored_bytes,
                "reason": result.reason,
                "duration_seconds": result.duration_seconds,
            },
            error=result.error,
        ),
    )
    return result


async def run_prune_cycle(
    config: SnapkeepConfig,
    state: KeeperState | None = None,
    dry_run: bool = False,
) -> RetentionSummary:
    """Run retention cleanup on its own and record it (unless dry_run)."""
    from ulid import ULID

    if state is None:
        state = await initialize_state(config)

    started_at = now_iso()
    summary = await prune_old_snapshots(config, dry_run=dry_run)

    if not dry_run:
        await _journal(
            config,
            state,
            OperationRecord(
                id=str(ULID()),
                kind="prune",
                status=OperationStatus.SUCCESS.value,
                error_kind=None,
                snapshot=None,
                started_at=started_at,
                completed_at=now_iso(),
                stats=summary.to_dict(),
                error=None,
            ),
        )
    return summary


async def _journal(
    config: SnapkeepConfig,
    state: KeeperState,
    record: OperationRecord,
) -> None:
    """Append a record to the journal; failures are logged, never raised."""
    db_path = state["journal_db_path"]
    if db_path is None or not config.backup_dir.is_dir():
        return

    try:
        await init_journal_db(db_path)
        async with aiosqlite.connect(db_path) as db:
            await record_operation(db, record)
    except (JournalError, aiosqlite.Error, OSError) as e:
        logger.warning(
            "journal_write_failed",
            operation_id=record["id"],
            kind=record["kind"],
            error=str(e),
        )


async def get_metrics(config: SnapkeepConfig, state: KeeperState) -> KeeperMetrics:
    """Get current snapshot metrics."""
    archive = get_snapshot_stats(config)

    journal_stats = None
    db_path = state["journal_db_path"]
    if db_path is not None and db_path.exists():
        try:
            async with aiosqlite.connect(db_path) as db:
                journal_stats = await get_journal_stats(db)
        except aiosqlite.Error as e:
            logger.warning("journal_stats_failed", error=str(e))

    return KeeperMetrics(
        total_backups=state["total_backups"],
        total_restores=state["total_restores"],
        total_failures=state["total_failures"],
        last_backup_at=state["last_backup_at"],
        last_restore_at=state["last_restore_at"],
        snapshot_count=archive["snapshot_count"],
        archive_size_bytes=archive["total_bytes"],
        newest_snapshot=archive["newest_snapshot"],
        last_error=state["last_error"],
        journal=journal_stats,
    )


async def shutdown_state(state: KeeperState) -> None:
    """Release runtime state."""
    state["last_backup"] = None
    state["last_restore"] = None
    logger.info(
        "keeper_state_shutdown_complete",
        total_backups=state["total_backups"],
        total_restores=state["total_restores"],
        total_failures=state["total_failures"],
    )
