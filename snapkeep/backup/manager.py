# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapkeep Snapshot Manager - Snapshot catalogue and retention.

This module names, lists and prunes snapshot files in the durable
directory. Snapshot filenames embed a UTC timestamp with second
resolution:

    <db_name>_<YYYYMMDD_HHMMSS>.db.gz   (or .db.zst)

The embedded timestamp is the ordering key everywhere; file mtimes are
set to match it when a snapshot is written.
"""

import hashlib
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import List

import aiofiles
import structlog

from snapkeep.config import CompressionCodec, SnapkeepConfig
from snapkeep.exceptions import CompressionError
from snapkeep.vault.compressor import verify_compressed_file

logger = structlog.get_logger()

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Prefix for in-progress files; never matches the snapshot pattern
PARTIAL_PREFIX = ".snapkeep-partial-"


@dataclass(frozen=True)
class SnapshotInfo:
    """A snapshot file found in the durable directory."""

    path: Path
    name: str
    timestamp: datetime
    codec: CompressionCodec
    size_bytes: int

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": str(self.path),
            "timestamp": self.timestamp.isoformat(),
            "codec": self.codec.value,
            "size_bytes": self.size_bytes,
        }


@dataclass
class RetentionSummary:
    """Outcome of a retention cleanup pass."""

    removed: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    freed_bytes: int = 0
    dry_run: bool = False

    def to_dict(self) -> dict:
        return {
            "removed": list(self.removed),
            "kept": list(self.kept),
            "failed": list(self.failed),
            "freed_bytes": self.freed_bytes,
            "dry_run": self.dry_run,
        }


def _name_pattern(db_name: str) -> re.Pattern:
    return re.compile(
        rf"^{re.escape(db_name)}_(?P<ts>\d{{8}}_\d{{6}})(?P<suffix>\.db\.(?:gz|zst))$"
    )


def snapshot_name(
    db_name: str,
    timestamp: datetime,
    codec: CompressionCodec = CompressionCodec.GZIP,
) -> str:
    """
    Build the filename for a snapshot taken at timestamp.

    Args:
        db_name: Live database filename
        timestamp: Aware or naive-UTC datetime
        codec: Compression codec (selects the suffix)

    Returns:
        e.g. 'app.db_20240101_020000.db.gz'
    """
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(UTC)
    return f"{db_name}_{timestamp.strftime(TIMESTAMP_FORMAT)}{codec.suffix}"


def parse_snapshot_name(db_name: str, name: str) -> tuple[datetime, CompressionCodec] | None:
    """
    Parse a snapshot filename.

    Returns:
        (UTC timestamp, codec), or None if name is not a snapshot of db_name
    """
    match = _name_pattern(db_name).match(name)
    if not match:
        return None
    try:
        timestamp = datetime.strptime(match.group("ts"), TIMESTAMP_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        return None
    codec = CompressionCodec.GZIP if match.group("suffix") == ".db.gz" else CompressionCodec.ZSTD
    return (timestamp, codec)


def list_snapshots(config: SnapkeepConfig) -> List[SnapshotInfo]:
    """
    List snapshots for the configured database, oldest first.

    Files that do not match the snapshot pattern are ignored.
    """
    backup_dir = config.backup_dir
    if not backup_dir.is_dir():
        return []

    snapshots: List[SnapshotInfo] = []
    for entry in backup_dir.iterdir():
        parsed = parse_snapshot_name(config.db_name, entry.name)
        if parsed is None:
            continue
        try:
            if not entry.is_file():
                continue
            size = entry.stat().st_size
        except FileNotFoundError:
            # Pruned concurrently
            continue
        timestamp, codec = parsed
        snapshots.append(
            SnapshotInfo(
                path=entry,
                name=entry.name,
                timestamp=timestamp,
                codec=codec,
                size_bytes=size,
            )
        )

    snapshots.sort(key=lambda s: (s.timestamp, s.name))
    return snapshots


def latest_snapshot(config: SnapkeepConfig) -> SnapshotInfo | None:
    """Return the snapshot with the greatest embedded timestamp, if any."""
    snapshots = list_snapshots(config)
    return snapshots[-1] if snapshots else None


def find_snapshot(config: SnapkeepConfig, name: str) -> SnapshotInfo | None:
    """Look up a snapshot by filename."""
    for snapshot in list_snapshots(config):
        if snapshot.name == name:
            return snapshot
    return None


def next_free_snapshot_path(
    config: SnapkeepConfig,
    timestamp: datetime,
) -> tuple[Path, datetime]:
    """
    Pick a snapshot path that does not exist yet.

    Names are unique per timestamp: if a snapshot already exists for this
    second (in either codec), the timestamp moves forward one second at a
    time until a free slot is found.
    """
    timestamp = timestamp.astimezone(UTC).replace(microsecond=0)
    while True:
        taken = any(
            (config.backup_dir / snapshot_name(config.db_name, timestamp, codec)).exists()
            for codec in CompressionCodec
        )
        if not taken:
            return (
                config.backup_dir / snapshot_name(config.db_name, timestamp, config.compression),
                timestamp,
            )
        timestamp += timedelta(seconds=1)


def stamp_mtime(path: Path, timestamp: datetime) -> None:
    """Set atime and mtime of path to the snapshot timestamp."""
    epoch = timestamp.timestamp()
    os.utime(path, (epoch, epoch))


def apply_file_attributes(path: Path, config: SnapkeepConfig) -> None:
    """
    Apply the configured mode and optional owner to path, then fsync it.

    Raises:
        OSError: If permissions or ownership cannot be changed
    """
    os.chmod(path, config.file_mode)
    if config.owner_uid is not None or config.owner_gid is not None:
        os.chown(
            path,
            config.owner_uid if config.owner_uid is not None else -1,
            config.owner_gid if config.owner_gid is not None else -1,
        )
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def remove_partial_files(directory: Path) -> List[str]:
    """
    Delete leftovers of cancelled runs.

    Must only be called while holding the operation lock.
    """
    removed: List[str] = []
    if not directory.is_dir():
        return removed
    for entry in directory.glob(f"{PARTIAL_PREFIX}*"):
        try:
            entry.unlink()
            removed.append(entry.name)
        except FileNotFoundError:
            continue
    if removed:
        logger.info("stale_partials_removed", directory=str(directory), files=removed)
    return removed


async def prune_old_snapshots(
    config: SnapkeepConfig,
    dry_run: bool = False,
    now: datetime | None = None,
) -> RetentionSummary:
    """
    Delete snapshots older than the retention window.

    The newest ``retention_keep_minimum`` snapshots are always kept, so
    cleanup never leaves the archive empty.

    Args:
        config: Snapkeep configuration
        dry_run: If True, only report what would be deleted
        now: Reference time (defaults to the current time)

    Returns:
        RetentionSummary listing removed and kept snapshots
    """
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(days=config.retention_days)
    summary = RetentionSummary(dry_run=dry_run)

    snapshots = list_snapshots(config)
    protected = {s.name for s in snapshots[-config.retention_keep_minimum:]}

    for snapshot in snapshots:
        if snapshot.name in protected or snapshot.timestamp >= cutoff:
            summary.kept.append(snapshot.name)
            continue

        if not dry_run:
            try:
                snapshot.path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(
                    "prune_file_error",
                    path=str(snapshot.path),
                    error=str(e),
                )
                summary.failed.append(snapshot.name)
                continue

        summary.removed.append(snapshot.name)
        summary.freed_bytes += snapshot.size_bytes

        logger.debug(
            "snapshot_pruned" if not dry_run else "snapshot_would_prune",
            snapshot=snapshot.name,
            age_days=(now - snapshot.timestamp).days,
        )

    logger.info(
        "snapshot_pruning_complete",
        removed=len(summary.removed),
        kept=len(summary.kept),
        freed_bytes=summary.freed_bytes,
        dry_run=dry_run,
    )

    return summary


def get_snapshot_stats(config: SnapkeepConfig) -> dict:
    """
    Get statistics about the snapshot archive.

    Returns:
        Dict with snapshot statistics
    """
    snapshots = list_snapshots(config)

    return {
        "snapshot_count": len(snapshots),
        "total_bytes": sum(s.size_bytes for s in snapshots),
        "oldest_snapshot": snapshots[0].name if snapshots else None,
        "newest_snapshot": snapshots[-1].name if snapshots else None,
        "oldest_timestamp": snapshots[0].timestamp.isoformat() if snapshots else None,
        "newest_timestamp": snapshots[-1].timestamp.isoformat() if snapshots else None,
    }


async def sha256_file(path: Path) -> str:
    """
    Calculate the SHA-256 of a file.

    Returns:
        Hex-encoded hash
    """
    digest = hashlib.sha256()
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(1024 * 1024)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


async def read_snapshot_head(path: Path, size: int = 64) -> bytes:
    """Read the first bytes of a snapshot file."""
    async with aiofiles.open(path, "rb") as f:
        return await f.read(size)


async def verify_snapshot_file(path: Path) -> tuple[bool, str]:
    """
    Verify that a snapshot decompresses completely.

    Args:
        path: Snapshot file to verify

    Returns:
        Tuple of (is_valid, sha256 of the compressed file)
    """
    try:
        actual_hash = await sha256_file(path)
    except OSError as e:
        logger.error("snapshot_verification_failed", snapshot=path.name, error=str(e))
        return (False, "")

    try:
        decompressed = await verify_compressed_file(path)
    except CompressionError as e:
        logger.error("snapshot_verification_failed", snapshot=path.name, error=str(e))
        return (False, actual_hash)

    if decompressed == 0:
        logger.error("snapshot_verification_failed", snapshot=path.name, error="empty")
        return (False, actual_hash)

    return (True, actual_hash)
