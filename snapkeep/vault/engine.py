# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SQLite engine operations used by backup and restore.

Only three capabilities of the database engine are relied on:
1. Online hot backup of a live database into a new file
2. Integrity verification (PRAGMA integrity_check)
3. A trivial liveness query
"""

from pathlib import Path

import aiosqlite
import structlog

logger = structlog.get_logger()

SQLITE_HEADER = b"SQLite format 3\x00"

# Milliseconds to wait on a locked database before giving up
BUSY_TIMEOUT_MS = 2000


def _uri(path: Path, mode: str) -> str:
    return f"{path.resolve().as_uri()}?mode={mode}"


def connect_existing(path: Path) -> aiosqlite.Connection:
    """
    Open an existing database without ever creating it.

    Returns the aiosqlite connection proxy; use it as an async context manager.
    """
    return aiosqlite.connect(_uri(path, "rw"), uri=True, timeout=BUSY_TIMEOUT_MS / 1000)


def has_sqlite_header(path: Path) -> bool:
    """Check the 16-byte magic string at the start of a database file."""
    with open(path, "rb") as handle:
        return handle.read(len(SQLITE_HEADER)) == SQLITE_HEADER


async def online_backup(source: Path, dest: Path) -> int:
    """
    Copy a live database into dest using SQLite's online backup API.

    The copy is switched to rollback-journal mode so it is a single
    self-contained file even when the source runs in WAL mode.

    Args:
        source: Live database path (must exist)
        dest: New file to create

    Returns:
        Size of the copy in bytes

    Raises:
        aiosqlite.Error: If the engine reports an error
    """
    async with connect_existing(source) as src_db:
        async with aiosqlite.connect(_uri(dest, "rwc"), uri=True) as dest_db:
            await src_db.backup(dest_db)
            async with dest_db.execute("PRAGMA journal_mode=DELETE") as cursor:
                await cursor.fetchone()

    size = dest.stat().st_size
    logger.debug("online_backup_complete", source=str(source), dest=str(dest), size=size)
    return size


async def integrity_check(path: Path) -> list[str]:
    """
    Run PRAGMA integrity_check against a database file.

    Returns:
        Problems reported by the engine; empty when the file is consistent

    Raises:
        aiosqlite.Error: If the file cannot be opened as a database
    """
    async with connect_existing(path) as db:
        async with db.execute("PRAGMA integrity_check") as cursor:
            rows = [str(row[0]) async for row in cursor]

    if rows == ["ok"]:
        return []
    return rows or ["integrity_check returned no rows"]


async def smoke_check(path: Path) -> None:
    """
    Run a trivial read query against a database file.

    Raises:
        aiosqlite.Error: If the query fails
    """
    async with connect_existing(path) as db:
        async with db.execute("SELECT count(*) FROM sqlite_master") as cursor:
            await cursor.fetchone()
