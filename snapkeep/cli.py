# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Command-line interface.

    snapkeep [global options] <command> [command options]

Configuration comes from SNAPKEEP_* environment variables with the global
options applied on top. snapkeep-backup and snapkeep-restore are the
zero-argument entry points run by the systemd units.

Exit codes: 0 success or nothing to do, 2 configuration error, 3-8 the
failure kinds of restore and backup.
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import List, Mapping

import aiosqlite

from snapkeep import __version__
from snapkeep.backup.manager import (
    find_snapshot,
    get_snapshot_stats,
    latest_snapshot,
    list_snapshots,
    verify_snapshot_file,
)
from snapkeep.config import SnapkeepConfig
from snapkeep.core import (
    initialize_state,
    run_backup_cycle,
    run_prune_cycle,
    run_restore_cycle,
)
from snapkeep.env import create_config_from_env
from snapkeep.exceptions import ConfigurationError, ErrorKind
from snapkeep.integrations.systemd import DEFAULT_BIN_DIR, render_units, write_units
from snapkeep.log import LOG_FORMATS, configure_logging
from snapkeep.vault.journal import get_journal_stats, list_operations

EXIT_OK = 0
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snapkeep",
        description="Snapshot, prune and restore a SQLite database kept in a volatile cache.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("SNAPKEEP_LOG_LEVEL", "info"),
        help="Minimum log level (default: info)",
    )
    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=os.environ.get("SNAPKEEP_LOG_FORMAT", "console"),
        help="Log renderer; use json under journald (default: console)",
    )
    parser.add_argument("--db-name", help="Live database filename")
    parser.add_argument("--cache-dir", type=Path, help="Volatile directory holding the live file")
    parser.add_argument("--backup-dir", type=Path, help="Durable snapshot directory")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("backup", help="Take one snapshot and apply retention")
    sub.add_parser("restore", help="Restore the live database if it is missing")
    sub.add_parser("list", help="List snapshots, oldest first")

    prune = sub.add_parser("prune", help="Delete snapshots outside the retention window")
    prune.add_argument("--dry-run", action="store_true", help="Only report what would be deleted")

    verify = sub.add_parser("verify", help="Fully decompress a snapshot to check it")
    verify.add_argument("name", nargs="?", help="Snapshot filename (default: newest)")

    sub.add_parser("stats", help="Archive and journal statistics")

    journal = sub.add_parser("journal", help="Show recent operations")
    journal.add_argument("--limit", type=int, default=20, help="Number of records (default: 20)")
    journal.add_argument("--kind", choices=("backup", "restore", "prune"), help="Filter by kind")

    units = sub.add_parser("units", help="Render systemd units")
    units.add_argument("--output", type=Path, help="Write unit files into this directory")
    units.add_argument(
        "--bin-dir",
        type=Path,
        default=DEFAULT_BIN_DIR,
        help=f"Directory holding the entry points (default: {DEFAULT_BIN_DIR})",
    )
    units.add_argument(
        "--before",
        action="append",
        default=[],
        help="Application unit the restore must precede (repeatable)",
    )

    return parser


def load_config(
    args: argparse.Namespace,
    environ: Mapping[str, str] | None = None,
) -> SnapkeepConfig:
    """
    Build the configuration from the environment and command-line overrides.

    Raises:
        ConfigurationError: If the resulting configuration is invalid
    """
    config = create_config_from_env(environ)

    overrides = {}
    if args.db_name:
        overrides["db_name"] = args.db_name
    if args.cache_dir:
        overrides["cache_dir"] = args.cache_dir
    if args.backup_dir:
        overrides["backup_dir"] = args.backup_dir

    return config.with_updates(**overrides) if overrides else config


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _dispatch(args: argparse.Namespace, config: SnapkeepConfig) -> int:
    command = args.command

    if command == "backup":
        result = await run_backup_cycle(config)
        _print_json(result.to_dict())
        return result.exit_code

    if command == "restore":
        result = await run_restore_cycle(config)
        _print_json(result.to_dict())
        return result.exit_code

    if command == "list":
        for snapshot in list_snapshots(config):
            print(f"{snapshot.name}\t{snapshot.size_bytes}\t{snapshot.timestamp.isoformat()}")
        return EXIT_OK

    if command == "prune":
        summary = await run_prune_cycle(config, dry_run=args.dry_run)
        _print_json(summary.to_dict())
        return EXIT_OK

    if command == "verify":
        snapshot = find_snapshot(config, args.name) if args.name else latest_snapshot(config)
        if snapshot is None:
            print(f"snapshot not found: {args.name or '(newest)'}", file=sys.stderr)
            return ErrorKind.INVALID_SNAPSHOT.exit_code
        ok, digest = await verify_snapshot_file(snapshot.path)
        _print_json({"snapshot": snapshot.name, "valid": ok, "sha256": digest})
        return EXIT_OK if ok else ErrorKind.INVALID_SNAPSHOT.exit_code

    if command == "stats":
        stats = {"archive": get_snapshot_stats(config), "journal": None}
        if config.journal_enabled and config.journal_path.exists():
            async with aiosqlite.connect(config.journal_path) as db:
                stats["journal"] = await get_journal_stats(db)
        _print_json(stats)
        return EXIT_OK

    if command == "journal":
        state = await initialize_state(config)
        db_path = state["journal_db_path"]
        records: List = []
        if db_path is not None and db_path.exists():
            async with aiosqlite.connect(db_path) as db:
                records = await list_operations(db, limit=args.limit, kind=args.kind)
        _print_json(records)
        return EXIT_OK

    if command == "units":
        if args.output:
            for path in write_units(config, args.output, args.bin_dir, args.before):
                print(path)
        else:
            for unit in render_units(config, args.bin_dir, args.before):
                print(f"# {unit.name}")
                print(unit.content)
        return EXIT_OK

    raise ValueError(f"Unknown command: {command}")


def main(argv: List[str] | None = None) -> int:
    """Run the CLI and return its exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        configure_logging(args.log_level, args.log_format)
    except ValueError as e:
        parser.error(str(e))

    try:
        config = load_config(args)
    except ConfigurationError as e:
        print(f"snapkeep: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    return asyncio.run(_dispatch(args, config))


def backup_main() -> None:
    """Entry point for snapkeep-backup."""
    sys.exit(main(["backup"]))


def restore_main() -> None:
    """Entry point for snapkeep-restore."""
    sys.exit(main(["restore"]))


if __name__ == "__main__":
    sys.exit(main())
