# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapshot Engine - Snapshot catalogue, backup and restore operations.
"""

from snapkeep.backup.manager import (
    SnapshotInfo,
    RetentionSummary,
    snapshot_name,
    parse_snapshot_name,
    list_snapshots,
    latest_snapshot,
    find_snapshot,
    prune_old_snapshots,
    get_snapshot_stats,
    sha256_file,
    verify_snapshot_file,
)

from snapkeep.backup.restore import (
    restore_if_needed,
    RestoreResult,
)

from snapkeep.backup.snapshot import (
    backup_database,
    BackupResult,
)

__all__ = [
    # Catalogue
    "SnapshotInfo",
    "RetentionSummary",
    "snapshot_name",
    "parse_snapshot_name",
    "list_snapshots",
    "latest_snapshot",
    "find_snapshot",
    "prune_old_snapshots",
    "get_snapshot_stats",
    "sha256_file",
    "verify_snapshot_file",
    # Restore
    "restore_if_needed",
    "RestoreResult",
    # Backup
    "backup_database",
    "BackupResult",
]
