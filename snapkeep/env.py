# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers.

The zero-argument entry points used by systemd read everything from the
environment, so unit files only need Environment= lines. Variables map
one-to-one onto SnapkeepConfig fields.
"""

from __future__ import annotations

import grp
import os
import pwd
from pathlib import Path
from typing import Mapping

from snapkeep.builder import (
    create_empty_config,
    build_config,
    disable_schedule,
    keep_at_least,
    keep_snapshots_for,
    run_daily_at,
    use_compression,
    wait_when_busy,
    with_backup_dir,
    with_cache_dir,
    with_db_name,
)
from snapkeep.config import CompressionCodec, SnapkeepConfig
from snapkeep.errors import (
    explain_invalid_compression_env,
    explain_invalid_file_mode_env,
    explain_invalid_flag_env,
    explain_invalid_number_env,
    explain_invalid_owner_env,
    explain_invalid_retention_days_env,
)
from snapkeep.exceptions import ConfigurationError

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_int(name: str, value: str | None, default: int, *, minimum: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            explain_invalid_number_env(name, value, f"an integer >= {minimum}")
        ) from exc
    if number < minimum:
        raise ConfigurationError(
            explain_invalid_number_env(name, value, f"an integer >= {minimum}")
        )
    return number


def _parse_retention_days(value: str | None) -> int:
    if not value:
        return 30
    try:
        days = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_retention_days_env(value)) from exc
    if days < 0:
        raise ConfigurationError(explain_invalid_retention_days_env(value))
    return days


def _parse_seconds(name: str, value: str | None, default: float) -> float:
    if not value:
        return default
    try:
        seconds = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            explain_invalid_number_env(name, value, "a non-negative number of seconds")
        ) from exc
    if seconds < 0:
        raise ConfigurationError(
            explain_invalid_number_env(name, value, "a non-negative number of seconds")
        )
    return seconds


def _parse_compression(value: str | None) -> CompressionCodec:
    if not value:
        return CompressionCodec.GZIP
    try:
        return CompressionCodec(value.strip().lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_compression_env(value)) from exc


def _parse_file_mode(value: str | None) -> int:
    if not value:
        return 0o644
    text = value.strip().lower()
    if text.startswith("0o"):
        text = text[2:]
    try:
        mode = int(text, 8)
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_file_mode_env(value)) from exc
    if not 0 <= mode <= 0o777:
        raise ConfigurationError(explain_invalid_file_mode_env(value))
    return mode


def _parse_flag(name: str, value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigurationError(explain_invalid_flag_env(name, value))


def parse_owner(value: str | None) -> tuple[int | None, int | None]:
    """
    Resolve a 'user:group' string into numeric ids.

    Either side may be a name known to this host or a numeric id. A bare
    'user' uses that user's primary group.
    """
    if not value:
        return (None, None)

    user_part, _, group_part = value.strip().partition(":")
    if not user_part:
        raise ConfigurationError(explain_invalid_owner_env(value))

    try:
        if user_part.isdigit():
            uid = int(user_part)
            primary_gid = None
        else:
            entry = pwd.getpwnam(user_part)
            uid, primary_gid = entry.pw_uid, entry.pw_gid

        if group_part:
            gid = int(group_part) if group_part.isdigit() else grp.getgrnam(group_part).gr_gid
        elif primary_gid is not None:
            gid = primary_gid
        else:
            gid = pwd.getpwuid(uid).pw_gid
    except KeyError as exc:
        raise ConfigurationError(explain_invalid_owner_env(value)) from exc

    return (uid, gid)


def create_config_from_env(environ: Mapping[str, str] | None = None) -> SnapkeepConfig:
    """
    Create a SnapkeepConfig from environment variables.

    Optional environment variables:
        - SNAPKEEP_DB_NAME: Live database filename (default: app.db)
        - SNAPKEEP_CACHE_DIR: Volatile directory (default: /var/cache/app)
        - SNAPKEEP_BACKUP_DIR: Durable snapshot directory (default: /opt/app_backups)
        - SNAPKEEP_RETENTION_DAYS: Retention window in days (default: 30)
        - SNAPKEEP_KEEP_MINIMUM: Newest snapshots always kept (default: 1)
        - SNAPKEEP_MIN_FREE_MB: Free space required for restores (default: 200)
        - SNAPKEEP_BUSY_WAIT_SECONDS: Busy wait during restore (default: 5)
        - SNAPKEEP_COMPRESSION: 'gzip' | 'zstd' (default: gzip)
        - SNAPKEEP_COMPRESSION_LEVEL: Codec level (default: codec default)
        - SNAPKEEP_FILE_MODE: Octal permissions (default: 644)
        - SNAPKEEP_OWNER: 'user:group' applied to restored files and snapshots
        - SNAPKEEP_SCHEDULE_TIME: Daily backup HH:MM, or 'off' (default: 02:00)
        - SNAPKEEP_RANDOMIZED_DELAY: Daily backup jitter in seconds (default: 300)
        - SNAPKEEP_SHUTDOWN_TIMEOUT: Shutdown backup limit in seconds (default: 30)
        - SNAPKEEP_JOURNAL: Record operations in the journal (default: on)
        - SNAPKEEP_UNIT_PREFIX: systemd unit name prefix (default: snapkeep)
    """
    env = os.environ if environ is None else environ

    config = create_empty_config()

    if env.get("SNAPKEEP_DB_NAME"):
        config = with_db_name(config, env["SNAPKEEP_DB_NAME"])
    if env.get("SNAPKEEP_CACHE_DIR"):
        config = with_cache_dir(config, Path(env["SNAPKEEP_CACHE_DIR"]))
    if env.get("SNAPKEEP_BACKUP_DIR"):
        config = with_backup_dir(config, Path(env["SNAPKEEP_BACKUP_DIR"]))

    config = keep_snapshots_for(
        config, _parse_retention_days(env.get("SNAPKEEP_RETENTION_DAYS"))
    )
    config = keep_at_least(
        config, _parse_int("SNAPKEEP_KEEP_MINIMUM", env.get("SNAPKEEP_KEEP_MINIMUM"), 1, minimum=1)
    )
    config = wait_when_busy(
        config,
        _parse_seconds("SNAPKEEP_BUSY_WAIT_SECONDS", env.get("SNAPKEEP_BUSY_WAIT_SECONDS"), 5.0),
    )

    min_free_mb = _parse_int("SNAPKEEP_MIN_FREE_MB", env.get("SNAPKEEP_MIN_FREE_MB"), 200)
    config["min_free_bytes"] = min_free_mb * 1024 * 1024

    level_env = env.get("SNAPKEEP_COMPRESSION_LEVEL")
    level = (
        _parse_int("SNAPKEEP_COMPRESSION_LEVEL", level_env, 0) if level_env else None
    )
    config = use_compression(config, _parse_compression(env.get("SNAPKEEP_COMPRESSION")), level)

    config["file_mode"] = _parse_file_mode(env.get("SNAPKEEP_FILE_MODE"))
    config["owner_uid"], config["owner_gid"] = parse_owner(env.get("SNAPKEEP_OWNER"))

    schedule = env.get("SNAPKEEP_SCHEDULE_TIME")
    if schedule:
        if schedule.strip().lower() in _FALSE:
            config = disable_schedule(config)
        else:
            try:
                config = run_daily_at(config, schedule.strip())
            except ValueError as exc:
                raise ConfigurationError(str(exc)) from exc

    config["randomized_delay_seconds"] = _parse_int(
        "SNAPKEEP_RANDOMIZED_DELAY", env.get("SNAPKEEP_RANDOMIZED_DELAY"), 300
    )
    config["shutdown_timeout_seconds"] = _parse_int(
        "SNAPKEEP_SHUTDOWN_TIMEOUT", env.get("SNAPKEEP_SHUTDOWN_TIMEOUT"), 30, minimum=1
    )
    config["journal_enabled"] = _parse_flag(
        "SNAPKEEP_JOURNAL", env.get("SNAPKEEP_JOURNAL"), True
    )
    if env.get("SNAPKEEP_UNIT_PREFIX"):
        config["unit_prefix"] = env["SNAPKEEP_UNIT_PREFIX"]

    return build_config(config)
