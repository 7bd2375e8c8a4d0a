# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapkeep Journal - Append-only record of backup, restore and prune runs.

The journal lives next to the snapshots on durable storage so the history
survives reboots. Records are only ever inserted, never updated or deleted.
"""

import json
from datetime import datetime, UTC
from pathlib import Path
from typing import List, TypedDict

import aiosqlite
import structlog

from snapkeep.exceptions import JournalError

logger = structlog.get_logger()


class OperationRecord(TypedDict):
    """Record of one snapkeep operation."""

    id: str  # ULID
    kind: str  # backup, restore, prune
    status: str  # success, skipped, failed
    error_kind: str | None
    snapshot: str | None  # Snapshot filename involved, if any
    started_at: str  # ISO 8601
    completed_at: str  # ISO 8601
    stats: dict
    error: str | None


_COLUMNS = "id, kind, status, error_kind, snapshot, started_at, completed_at, stats, error"


def _row_to_record(row) -> OperationRecord:
    return OperationRecord(
        id=row[0],
        kind=row[1],
        status=row[2],
        error_kind=row[3],
        snapshot=row[4],
        started_at=row[5],
        completed_at=row[6],
        stats=json.loads(row[7]),
        error=row[8],
    )


async def init_journal_db(db_path: Path) -> None:
    """
    Initialize the journal database schema.

    Creates tables if they don't exist. This is idempotent.

    Args:
        db_path: Path to the SQLite database file
    """
    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS operations (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    status TEXT NOT NULL,
                    error_kind TEXT,
                    snapshot TEXT,
                    started_at TEXT NOT NULL,
                    completed_at TEXT NOT NULL,
                    stats TEXT NOT NULL,
                    error TEXT
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_operations_started_at
                ON operations(started_at)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_operations_kind
                ON operations(kind)
            """)

            await db.commit()

        logger.debug("journal_db_initialized", db_path=str(db_path))

    except (aiosqlite.Error, OSError) as e:
        raise JournalError(
            f"Failed to initialize journal database: {e}",
            details={"db_path": str(db_path)},
        ) from e


async def record_operation(
    db: aiosqlite.Connection,
    record: OperationRecord,
) -> None:
    """
    Append an operation record.

    Args:
        db: SQLite database connection
        record: Completed operation record
    """
    await db.execute(
        f"INSERT INTO operations ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            record["id"],
            record["kind"],
            record["status"],
            record["error_kind"],
            record["snapshot"],
            record["started_at"],
            record["completed_at"],
            json.dumps(record["stats"], default=str),
            record["error"],
        ),
    )
    await db.commit()

    logger.debug(
        "operation_recorded",
        operation_id=record["id"],
        kind=record["kind"],
        status=record["status"],
    )


async def get_operation(
    db: aiosqlite.Connection,
    operation_id: str,
) -> OperationRecord | None:
    """
    Get an operation record.

    Args:
        db: SQLite database connection
        operation_id: Operation ID

    Returns:
        Operation record or None if not found
    """
    async with db.execute(
        f"SELECT {_COLUMNS} FROM operations WHERE id = ?",
        (operation_id,),
    ) as cursor:
        row = await cursor.fetchone()

        if row:
            return _row_to_record(row)

        return None


async def list_operations(
    db: aiosqlite.Connection,
    limit: int = 50,
    offset: int = 0,
    kind: str | None = None,
) -> List[OperationRecord]:
    """
    List operations, newest first.

    Args:
        db: SQLite database connection
        limit: Maximum number of records to return
        offset: Number of records to skip
        kind: Optional filter (backup, restore, prune)

    Returns:
        List of operation records
    """
    query = f"SELECT {_COLUMNS} FROM operations"
    params: List = []

    if kind:
        query += " WHERE kind = ?"
        params.append(kind)

    # ULIDs sort by creation time within the same started_at
    query += " ORDER BY started_at DESC, id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    records: List[OperationRecord] = []

    async with db.execute(query, params) as cursor:
        async for row in cursor:
            records.append(_row_to_record(row))

    return records


async def get_journal_stats(db: aiosqlite.Connection) -> dict:
    """
    Get journal statistics.

    Returns:
        Dict with journal statistics
    """
    stats: dict = {}

    async with db.execute("SELECT COUNT(*) FROM operations") as cursor:
        row = await cursor.fetchone()
        stats["total_operations"] = row[0] if row else 0

    async with db.execute(
        "SELECT kind, status, COUNT(*) FROM operations GROUP BY kind, status"
    ) as cursor:
        by_kind: dict = {}
        async for row in cursor:
            by_kind.setdefault(row[0], {})[row[1]] = row[2]
        stats["operations_by_kind"] = by_kind

    async with db.execute(
        "SELECT MAX(completed_at) FROM operations WHERE kind = 'backup' AND status = 'success'"
    ) as cursor:
        row = await cursor.fetchone()
        stats["last_successful_backup"] = row[0] if row else None

    async with db.execute(
        "SELECT error_kind, COUNT(*) FROM operations "
        "WHERE error_kind IS NOT NULL GROUP BY error_kind"
    ) as cursor:
        stats["failures_by_kind"] = {row[0]: row[1] async for row in cursor}

    return stats


def now_iso() -> str:
    return datetime.now(UTC).isoformat()
