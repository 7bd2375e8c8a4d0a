# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapkeep systemd Integration - Unit files for the scheduling triggers.

Renders the units that run backups daily and at shutdown, and restores at
boot. Units are plain data built from the config; this module writes
files but never talks to systemctl. Enabling the units is left to the
installer.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

import structlog

from snapkeep.config import SnapkeepConfig

logger = structlog.get_logger()

DEFAULT_UNIT_DIR = Path("/etc/systemd/system")
DEFAULT_BIN_DIR = Path("/usr/local/bin")

SHUTDOWN_TARGETS = "shutdown.target reboot.target halt.target"


@dataclass(frozen=True)
class UnitFile:
    """A rendered systemd unit."""

    name: str
    content: str


def unit_environment(config: SnapkeepConfig) -> Dict[str, str]:
    """
    Environment variables that reproduce config in the entry points.

    The inverse of create_config_from_env for the fields the entry points
    use.
    """
    env = {
        "SNAPKEEP_DB_NAME": config.db_name,
        "SNAPKEEP_CACHE_DIR": str(config.cache_dir),
        "SNAPKEEP_BACKUP_DIR": str(config.backup_dir),
        "SNAPKEEP_RETENTION_DAYS": str(config.retention_days),
        "SNAPKEEP_KEEP_MINIMUM": str(config.retention_keep_minimum),
        "SNAPKEEP_MIN_FREE_MB": str(config.min_free_bytes // (1024 * 1024)),
        "SNAPKEEP_BUSY_WAIT_SECONDS": f"{config.busy_wait_seconds:g}",
        "SNAPKEEP_COMPRESSION": config.compression.value,
        "SNAPKEEP_FILE_MODE": f"{config.file_mode:03o}",
        "SNAPKEEP_JOURNAL": "on" if config.journal_enabled else "off",
    }
    if config.compression_level is not None:
        env["SNAPKEEP_COMPRESSION_LEVEL"] = str(config.compression_level)
    if config.owner_uid is not None:
        owner = str(config.owner_uid)
        if config.owner_gid is not None:
            owner += f":{config.owner_gid}"
        env["SNAPKEEP_OWNER"] = owner
    return env


def _render(sections: List[tuple[str, List[tuple[str, str]]]]) -> str:
    blocks = []
    for title, entries in sections:
        lines = [f"[{title}]"]
        lines.extend(f"{key}={value}" for key, value in entries)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


def _environment_entries(config: SnapkeepConfig) -> List[tuple[str, str]]:
    return [
        ("Environment", f'"{key}={value}"')
        for key, value in unit_environment(config).items()
    ]


def _mounts(config: SnapkeepConfig) -> str:
    return f"{config.cache_dir} {config.backup_dir}"


def render_backup_service(config: SnapkeepConfig, bin_dir: Path = DEFAULT_BIN_DIR) -> UnitFile:
    """Oneshot service that takes one snapshot."""
    content = _render([
        ("Unit", [
            ("Description", f"Snapkeep backup of {config.db_name}"),
            ("After", "local-fs.target"),
            ("RequiresMountsFor", _mounts(config)),
        ]),
        ("Service", [
            ("Type", "oneshot"),
            ("ExecStart", str(bin_dir / "snapkeep-backup")),
            *_environment_entries(config),
            ("StandardOutput", "journal"),
            ("StandardError", "journal"),
        ]),
    ])
    return UnitFile(f"{config.unit_prefix}-backup.service", content)


def render_backup_timer(config: SnapkeepConfig) -> UnitFile | None:
    """Daily timer for the backup service; None when no schedule is set."""
    if not config.schedule_time:
        return None

    hour, minute = map(int, config.schedule_time.split(":"))
    content = _render([
        ("Unit", [
            ("Description", f"Daily snapkeep backup of {config.db_name}"),
        ]),
        ("Timer", [
            ("OnCalendar", f"*-*-* {hour:02d}:{minute:02d}:00"),
            ("Persistent", "true"),
            ("RandomizedDelaySec", str(config.randomized_delay_seconds)),
            ("Unit", f"{config.unit_prefix}-backup.service"),
        ]),
        ("Install", [
            ("WantedBy", "timers.target"),
        ]),
    ])
    return UnitFile(f"{config.unit_prefix}-backup.timer", content)


def render_shutdown_backup_service(
    config: SnapkeepConfig,
    bin_dir: Path = DEFAULT_BIN_DIR,
) -> UnitFile:
    """Backup that runs once before shutdown, reboot or halt."""
    content = _render([
        ("Unit", [
            ("Description", f"Snapkeep shutdown backup of {config.db_name}"),
            ("DefaultDependencies", "no"),
            ("Before", SHUTDOWN_TARGETS),
            ("RequiresMountsFor", _mounts(config)),
        ]),
        ("Service", [
            ("Type", "oneshot"),
            ("ExecStart", str(bin_dir / "snapkeep-backup")),
            *_environment_entries(config),
            ("TimeoutStartSec", str(config.shutdown_timeout_seconds)),
            ("RemainAfterExit", "yes"),
            ("StandardOutput", "journal"),
            ("StandardError", "journal"),
        ]),
        ("Install", [
            ("WantedBy", SHUTDOWN_TARGETS),
        ]),
    ])
    return UnitFile(f"{config.unit_prefix}-shutdown-backup.service", content)


def render_restore_service(
    config: SnapkeepConfig,
    bin_dir: Path = DEFAULT_BIN_DIR,
    before: List[str] | None = None,
) -> UnitFile:
    """
    Boot-time restore, ordered after local filesystems.

    Args:
        config: Snapkeep configuration
        bin_dir: Directory holding the snapkeep entry points
        before: Application units that must start after the restore
    """
    unit_entries = [
        ("Description", f"Snapkeep restore of {config.db_name}"),
        ("After", "local-fs.target"),
        ("RequiresMountsFor", _mounts(config)),
    ]
    if before:
        unit_entries.append(("Before", " ".join(before)))

    content = _render([
        ("Unit", unit_entries),
        ("Service", [
            ("Type", "oneshot"),
            ("ExecStart", str(bin_dir / "snapkeep-restore")),
            *_environment_entries(config),
            ("RemainAfterExit", "yes"),
            ("StandardOutput", "journal"),
            ("StandardError", "journal"),
        ]),
        ("Install", [
            ("WantedBy", "multi-user.target"),
        ]),
    ])
    return UnitFile(f"{config.unit_prefix}-restore.service", content)


def render_units(
    config: SnapkeepConfig,
    bin_dir: Path = DEFAULT_BIN_DIR,
    before: List[str] | None = None,
) -> List[UnitFile]:
    """Render every unit for config."""
    units = [
        render_backup_service(config, bin_dir),
        render_backup_timer(config),
        render_shutdown_backup_service(config, bin_dir),
        render_restore_service(config, bin_dir, before),
    ]
    return [unit for unit in units if unit is not None]


def write_units(
    config: SnapkeepConfig,
    unit_dir: Path = DEFAULT_UNIT_DIR,
    bin_dir: Path = DEFAULT_BIN_DIR,
    before: List[str] | None = None,
) -> List[Path]:
    """
    Write the unit files into unit_dir with mode 0644.

    Returns:
        Paths of the written files
    """
    unit_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []

    for unit in render_units(config, bin_dir, before):
        path = unit_dir / unit.name
        path.write_text(unit.content)
        path.chmod(0o644)
        written.append(path)

    logger.info(
        "systemd_units_written",
        unit_dir=str(unit_dir),
        units=[p.name for p in written],
    )
    return written
