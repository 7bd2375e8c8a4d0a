# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Mutual exclusion between snapshot operations and detection of open handles.

Every backup and restore of a database takes the same advisory lock file
in the cache directory. Restores additionally check that no other process
has the live database (or its WAL/SHM/journal siblings) open.
"""

import asyncio
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Iterable, List

import structlog
from filelock import FileLock, Timeout

from snapkeep.config import SnapkeepConfig
from snapkeep.exceptions import ResourceBusyError

logger = structlog.get_logger()

PROC_ROOT = Path("/proc")

_SIBLING_SUFFIXES = ("", "-wal", "-shm", "-journal")


def watched_paths(config: SnapkeepConfig) -> List[Path]:
    """The live database path and the engine's sidecar files."""
    live = config.live_db_path
    return [live.with_name(live.name + suffix) for suffix in _SIBLING_SUFFIXES]


def find_open_handles(
    paths: Iterable[Path],
    exclude_pid: int | None = None,
    proc_root: Path = PROC_ROOT,
) -> List[int]:
    """
    Find processes holding any of paths open.

    Scans /proc/<pid>/fd symlinks, the same information lsof reports.
    Processes we are not allowed to inspect are skipped. Returns an empty
    list on systems without /proc.

    Args:
        paths: Files to look for (need not exist)
        exclude_pid: PID to ignore, usually our own
        proc_root: Mount point of procfs

    Returns:
        Sorted PIDs with at least one matching descriptor
    """
    targets = {os.path.realpath(p) for p in paths}
    holders: set[int] = set()

    if not proc_root.is_dir():
        return []

    for entry in proc_root.iterdir():
        if not entry.name.isdigit():
            continue
        pid = int(entry.name)
        if pid == exclude_pid:
            continue
        try:
            descriptors = list((entry / "fd").iterdir())
        except (PermissionError, FileNotFoundError, NotADirectoryError):
            continue
        for fd in descriptors:
            try:
                target = os.readlink(fd)
            except OSError:
                continue
            if target in targets:
                holders.add(pid)
                break

    return sorted(holders)


@asynccontextmanager
async def operation_lock(
    config: SnapkeepConfig,
    timeout: float,
) -> AsyncIterator[FileLock]:
    """
    Hold the per-database advisory lock for the duration of the block.

    Raises:
        ResourceBusyError: If the lock is not acquired within timeout or the
            lock file cannot be opened
    """
    lock = FileLock(str(config.lock_path), thread_local=False)
    try:
        await asyncio.to_thread(lock.acquire, timeout=timeout)
    except Timeout as e:
        raise ResourceBusyError(
            f"Another snapkeep operation holds {config.lock_path.name}",
            details={"lock_path": str(config.lock_path), "timeout": timeout},
        ) from e
    except OSError as e:
        raise ResourceBusyError(
            f"Cannot take lock {config.lock_path.name}: {e}",
            details={"lock_path": str(config.lock_path)},
        ) from e

    logger.debug("operation_lock_acquired", lock_path=str(config.lock_path))
    try:
        yield lock
    finally:
        lock.release()
        logger.debug("operation_lock_released", lock_path=str(config.lock_path))
