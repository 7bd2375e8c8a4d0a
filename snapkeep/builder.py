# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapkeep Builder - Functional builder pattern for configuration.

This module provides pure functions for building SnapkeepConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from pathlib import Path
from typing import Any, Callable, Dict

from snapkeep.config import (
    DEFAULT_MIN_FREE_BYTES,
    CompressionCodec,
    SnapkeepConfig,
    _validate_schedule_time,
)


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_config() -> ConfigDict:
    """
    Create an initial configuration dictionary.

    Returns:
        Dict with default values for all configuration fields
    """
    return {
        "db_name": "app.db",
        "cache_dir": Path("/var/cache/app"),
        "backup_dir": Path("/opt/app_backups"),
        "retention_days": 30,
        "retention_keep_minimum": 1,
        "min_free_bytes": DEFAULT_MIN_FREE_BYTES,
        "busy_wait_seconds": 5.0,
        "compression": CompressionCodec.GZIP,
        "compression_level": None,
        "file_mode": 0o644,
        "owner_uid": None,
        "owner_gid": None,
        "verify_snapshots": True,
        "journal_enabled": True,
        "schedule_time": "02:00",
        "randomized_delay_seconds": 300,
        "shutdown_timeout_seconds": 30,
        "unit_prefix": "snapkeep",
    }


def with_db_name(config: ConfigDict, db_name: str) -> ConfigDict:
    """
    Set the live database filename.

    Args:
        config: Current configuration dictionary
        db_name: Filename of the live database (e.g. 'pharmastock.db')

    Returns:
        New configuration dictionary with db_name set
    """
    return {**config, "db_name": db_name}


def with_cache_dir(config: ConfigDict, cache_dir: Path | str) -> ConfigDict:
    """Set the volatile directory holding the live database."""
    return {**config, "cache_dir": Path(cache_dir)}


def with_backup_dir(config: ConfigDict, backup_dir: Path | str) -> ConfigDict:
    """Set the durable directory holding snapshots."""
    return {**config, "backup_dir": Path(backup_dir)}


def keep_snapshots_for(config: ConfigDict, days: int) -> ConfigDict:
    """
    Set the retention window in days.

    Snapshots older than this become eligible for deletion after each backup.

    Args:
        config: Current configuration dictionary
        days: Retention window in days

    Returns:
        New configuration dictionary with retention window set
    """
    if days < 0:
        raise ValueError(f"retention days must be >= 0, got {days}")
    return {**config, "retention_days": days}


def keep_at_least(config: ConfigDict, count: int) -> ConfigDict:
    """
    Set how many of the newest snapshots survive retention regardless of age.

    Args:
        config: Current configuration dictionary
        count: Number of snapshots always kept (>= 1)

    Returns:
        New configuration dictionary with the keep minimum set
    """
    if count < 1:
        raise ValueError(f"retention_keep_minimum must be >= 1, got {count}")
    return {**config, "retention_keep_minimum": count}


def require_free_space(config: ConfigDict, megabytes: int) -> ConfigDict:
    """Set the free-space safety margin (in MiB) checked before a restore."""
    if megabytes < 0:
        raise ValueError(f"free space margin must be >= 0, got {megabytes}")
    return {**config, "min_free_bytes": megabytes * 1024 * 1024}


def wait_when_busy(config: ConfigDict, seconds: float) -> ConfigDict:
    """Set the single busy wait used when the live path is held open."""
    if seconds < 0:
        raise ValueError(f"busy wait must be >= 0, got {seconds}")
    return {**config, "busy_wait_seconds": seconds}


def use_compression(
    config: ConfigDict,
    codec: CompressionCodec | str,
    level: int | None = None,
) -> ConfigDict:
    """
    Select the snapshot compression codec.

    Args:
        config: Current configuration dictionary
        codec: 'gzip' (default, .db.gz) or 'zstd' (.db.zst)
        level: Optional codec level; None uses the codec default

    Returns:
        New configuration dictionary with compression set
    """
    if isinstance(codec, str):
        codec = CompressionCodec(codec.lower())
    return {**config, "compression": codec, "compression_level": level}


def owned_by(config: ConfigDict, uid: int, gid: int, mode: int = 0o644) -> ConfigDict:
    """
    Set ownership and permissions applied to restored files and snapshots.

    Ownership changes need root; leave unset to keep the process owner.
    """
    return {**config, "owner_uid": uid, "owner_gid": gid, "file_mode": mode}


def run_daily_at(config: ConfigDict, time: str) -> ConfigDict:
    """
    Set the daily backup time.

    Args:
        config: Current configuration dictionary
        time: Time in HH:MM format (e.g., '02:00')

    Returns:
        New configuration dictionary with schedule set
    """
    if not _validate_schedule_time(time):
        raise ValueError(f"Invalid time format: {time}, expected HH:MM")
    return {**config, "schedule_time": time}


def disable_schedule(config: ConfigDict) -> ConfigDict:
    """Disable the in-process daily backup schedule."""
    return {**config, "schedule_time": None}


def disable_journal(config: ConfigDict) -> ConfigDict:
    """Stop recording operations in the journal database."""
    return {**config, "journal_enabled": False}


def build_config(config_dict: ConfigDict) -> SnapkeepConfig:
    """
    Validate and build an immutable SnapkeepConfig from a configuration dictionary.

    Raises:
        ConfigurationError: If validation fails
    """
    return SnapkeepConfig(**config_dict)


def pipe(*funcs: BuilderFunc) -> BuilderFunc:
    """
    Compose multiple builder functions into a single function.

        config = pipe(
            lambda c: with_db_name(c, "pharmastock.db"),
            lambda c: keep_snapshots_for(c, 14),
        )(create_empty_config())
    """

    def composed(config: ConfigDict) -> ConfigDict:
        result = config
        for func in funcs:
            result = func(result)
        return result

    return composed


def build_from_steps(*steps: BuilderFunc) -> SnapkeepConfig:
    """
    Build config by applying a sequence of builder functions.

    This is a convenience function that combines pipe() and build_config().
    """
    return build_config(pipe(*steps)(create_empty_config()))


def create_config(
    db_name: str = "app.db",
    *,
    cache_dir: str | Path | None = None,
    backup_dir: str | Path | None = None,
    retention_days: int = 30,
    keep_minimum: int = 1,
    compression: str | CompressionCodec = "gzip",
    compression_level: int | None = None,
    schedule_time: str | None = "02:00",
    **kwargs: Any,
) -> SnapkeepConfig:
    """
    Create snapkeep configuration from simple parameters.

    This is the recommended user-facing API for creating configurations.

    Example:
        config = create_config(
            "pharmastock.db",
            cache_dir="/var/cache/PharmaStock",
            backup_dir="/opt/PharmaStock_backups",
        )
    """
    config_dict = create_empty_config()
    config_dict = with_db_name(config_dict, db_name)

    if cache_dir:
        config_dict = with_cache_dir(config_dict, cache_dir)

    if backup_dir:
        config_dict = with_backup_dir(config_dict, backup_dir)

    config_dict = keep_snapshots_for(config_dict, retention_days)
    config_dict = keep_at_least(config_dict, keep_minimum)
    config_dict = use_compression(config_dict, compression, compression_level)

    if schedule_time:
        config_dict = run_daily_at(config_dict, schedule_time)
    else:
        config_dict = disable_schedule(config_dict)

    # Apply any additional kwargs
    for key, value in kwargs.items():
        if key in config_dict:
            config_dict[key] = value

    return build_config(config_dict)
