# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for snapkeep tests.

Provides temporary cache/backup directories, a test configuration and
helpers that build real SQLite databases and snapshot files.
"""

import gzip
import os
import tempfile
from datetime import datetime, UTC
from pathlib import Path
from typing import Generator, Iterable, Set

import aiosqlite
import pytest
import structlog
import zstandard

# Set test environment variables
os.environ["SNAPKEEP_ADMIN_API_KEY"] = "test-api-key-12345"


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Undo structlog configuration done by CLI tests."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path):
    """Create a test configuration rooted in temp_dir."""
    from snapkeep.config import SnapkeepConfig

    return SnapkeepConfig(
        db_name="app.db",
        cache_dir=temp_dir / "cache",
        backup_dir=temp_dir / "backups",
        retention_days=30,
        min_free_bytes=0,
        busy_wait_seconds=0.05,
        schedule_time=None,
    )


async def make_live_db(path: Path, rows: Iterable[int] = (1, 2, 3)) -> Path:
    """Create a SQLite database with an items table holding rows."""
    path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(path) as db:
        await db.execute("CREATE TABLE IF NOT EXISTS items (id INTEGER PRIMARY KEY)")
        await db.executemany("INSERT INTO items (id) VALUES (?)", [(r,) for r in rows])
        await db.commit()
    return path


async def read_rows(path: Path) -> Set[int]:
    """Return the ids stored in the items table."""
    async with aiosqlite.connect(path) as db:
        async with db.execute("SELECT id FROM items") as cursor:
            return {row[0] async for row in cursor}


async def make_snapshot(
    backup_dir: Path,
    db_name: str,
    timestamp: datetime,
    rows: Iterable[int] = (1, 2, 3),
    codec: str = "gzip",
) -> Path:
    """
    Write a snapshot file the way a backup run names and stamps it.

    The database is built in a scratch file next to the snapshot and
    compressed with the stdlib gzip module or zstandard.
    """
    backup_dir.mkdir(parents=True, exist_ok=True)
    scratch = backup_dir / f"scratch-{timestamp.strftime('%Y%m%d%H%M%S')}.sqlite"
    await make_live_db(scratch, rows)
    raw = scratch.read_bytes()
    scratch.unlink()

    stamp = timestamp.astimezone(UTC).strftime("%Y%m%d_%H%M%S")
    if codec == "gzip":
        path = backup_dir / f"{db_name}_{stamp}.db.gz"
        path.write_bytes(gzip.compress(raw))
    else:
        path = backup_dir / f"{db_name}_{stamp}.db.zst"
        path.write_bytes(zstandard.ZstdCompressor().compress(raw))

    epoch = timestamp.timestamp()
    os.utime(path, (epoch, epoch))
    return path
