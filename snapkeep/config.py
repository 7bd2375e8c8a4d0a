# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapkeep Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation so that a single
value can be passed into every operation without ambient state.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List
import re


class CompressionCodec(str, Enum):
    """Compression codec used for snapshot files."""

    GZIP = "gzip"
    ZSTD = "zstd"

    @property
    def suffix(self) -> str:
        """Filename suffix for snapshots written with this codec."""
        return ".db.gz" if self is CompressionCodec.GZIP else ".db.zst"


class OperationStatus(str, Enum):
    """Outcome of a single restore or backup invocation."""

    SUCCESS = "success"
    SKIPPED = "skipped"  # Nothing to do
    FAILED = "failed"


# Codec level bounds: gzip 0-9, zstd 1-22
_LEVEL_BOUNDS = {
    CompressionCodec.GZIP: (0, 9),
    CompressionCodec.ZSTD: (1, 22),
}

DEFAULT_MIN_FREE_BYTES = 200 * 1024 * 1024


def _validate_db_name(name: str) -> bool:
    """A database name must be a plain filename."""
    if not name or name in (".", ".."):
        return False
    if "/" in name or "\\" in name or "\x00" in name:
        return False
    return True


def _validate_schedule_time(time_str: str) -> bool:
    """Validate HH:MM time format."""
    if not time_str:
        return False
    try:
        parts = time_str.split(":")
        if len(parts) != 2:
            return False
        hour, minute = int(parts[0]), int(parts[1])
        return 0 <= hour <= 23 and 0 <= minute <= 59
    except (ValueError, AttributeError):
        return False


def _validate_unit_prefix(prefix: str) -> bool:
    return bool(prefix) and re.match(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$", prefix) is not None


@dataclass(frozen=True)
class SnapkeepConfig:
    """
    Immutable configuration for the backup/restore manager.

    Holds every tunable the operations need: where the live database and
    the snapshot archive live, the retention window, the restore safety
    margin and the busy-wait duration.
    """

    # Live database filename, also the snapshot name prefix
    db_name: str = "app.db"

    # Volatile (RAM-backed) directory holding the live database
    cache_dir: Path = field(default_factory=lambda: Path("/var/cache/app"))

    # Durable directory holding compressed snapshots
    backup_dir: Path = field(default_factory=lambda: Path("/opt/app_backups"))

    # Snapshots older than this many days are eligible for deletion
    retention_days: int = 30

    # The newest N snapshots are never pruned, regardless of age
    retention_keep_minimum: int = 1

    # Free space required on the cache volume before a restore
    min_free_bytes: int = DEFAULT_MIN_FREE_BYTES

    # Single fixed wait when the live path is held open
    busy_wait_seconds: float = 5.0

    # Snapshot compression
    compression: CompressionCodec = CompressionCodec.GZIP
    compression_level: int | None = None

    # Permissions and optional ownership for restored files and snapshots
    file_mode: int = 0o644
    owner_uid: int | None = None
    owner_gid: int | None = None

    # Run PRAGMA integrity_check on the online copy before compressing
    verify_snapshots: bool = True

    # Record each operation in the journal database
    journal_enabled: bool = True

    # Daily backup time in HH:MM (local time of the scheduler), None disables
    schedule_time: str | None = "02:00"

    # Jitter for the daily backup
    randomized_delay_seconds: int = 300

    # Upper bound for the shutdown-triggered backup
    shutdown_timeout_seconds: int = 30

    # Prefix for generated systemd unit names
    unit_prefix: str = "snapkeep"

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        # Normalize paths given as strings
        if not isinstance(self.cache_dir, Path):
            object.__setattr__(self, "cache_dir", Path(self.cache_dir))
        if not isinstance(self.backup_dir, Path):
            object.__setattr__(self, "backup_dir", Path(self.backup_dir))
        if not isinstance(self.compression, CompressionCodec):
            try:
                object.__setattr__(
                    self, "compression", CompressionCodec(str(self.compression).lower())
                )
            except ValueError:
                pass

        errors: List[str] = []

        if not _validate_db_name(self.db_name):
            errors.append(f"Invalid db_name: {self.db_name!r}")

        if self.retention_days < 0:
            errors.append(f"retention_days must be >= 0, got {self.retention_days}")

        if self.retention_keep_minimum < 1:
            errors.append(
                f"retention_keep_minimum must be >= 1, got {self.retention_keep_minimum}"
            )

        if self.min_free_bytes < 0:
            errors.append(f"min_free_bytes must be >= 0, got {self.min_free_bytes}")

        if self.busy_wait_seconds < 0:
            errors.append(f"busy_wait_seconds must be >= 0, got {self.busy_wait_seconds}")

        if not isinstance(self.compression, CompressionCodec):
            errors.append(f"Invalid compression: {self.compression!r}")
        elif self.compression_level is not None:
            low, high = _LEVEL_BOUNDS[self.compression]
            if not low <= self.compression_level <= high:
                errors.append(
                    f"compression_level for {self.compression.value} must be "
                    f"{low}-{high}, got {self.compression_level}"
                )

        if not 0 <= self.file_mode <= 0o777:
            errors.append(f"file_mode must be between 0o000 and 0o777, got {oct(self.file_mode)}")

        if self.schedule_time and not _validate_schedule_time(self.schedule_time):
            errors.append(f"Invalid schedule_time format: {self.schedule_time}, expected HH:MM")

        if self.randomized_delay_seconds < 0:
            errors.append(
                f"randomized_delay_seconds must be >= 0, got {self.randomized_delay_seconds}"
            )

        if self.shutdown_timeout_seconds <= 0:
            errors.append(
                f"shutdown_timeout_seconds must be > 0, got {self.shutdown_timeout_seconds}"
            )

        if not _validate_unit_prefix(self.unit_prefix):
            errors.append(f"Invalid unit_prefix: {self.unit_prefix!r}")

        # Raise all errors at once
        if errors:
            from snapkeep.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def live_db_path(self) -> Path:
        """Path of the live database in the volatile cache."""
        return self.cache_dir / self.db_name

    @property
    def lock_path(self) -> Path:
        """Advisory lock shared by every snapshot operation on this database."""
        return self.cache_dir / f".{self.db_name}.lock"

    @property
    def journal_path(self) -> Path:
        return self.backup_dir / "snapkeep-journal.db"

    def with_updates(self, **kwargs) -> "SnapkeepConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return SnapkeepConfig(**current)
