# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapkeep - Durable snapshots for a SQLite database kept in a volatile cache.

Restores the live database from the newest compressed snapshot at boot,
takes hot snapshots daily and at shutdown, and prunes snapshots outside
the retention window without ever deleting the last one.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from snapkeep.builder import create_config
from snapkeep.config import SnapkeepConfig, CompressionCodec, OperationStatus

# Environment-based configuration
from snapkeep.env import create_config_from_env

# Operations
from snapkeep.backup import (
    backup_database,
    restore_if_needed,
    prune_old_snapshots,
    list_snapshots,
    latest_snapshot,
    BackupResult,
    RestoreResult,
)

# Core functions
from snapkeep.core import (
    initialize_state,
    run_backup_cycle,
    run_restore_cycle,
    run_prune_cycle,
    get_metrics,
    shutdown_state,
)

from snapkeep.exceptions import ErrorKind, SnapkeepError

__all__ = [
    # Version
    "__version__",
    # Configuration
    "create_config",
    "create_config_from_env",
    "SnapkeepConfig",
    "CompressionCodec",
    "OperationStatus",
    # Operations
    "backup_database",
    "restore_if_needed",
    "prune_old_snapshots",
    "list_snapshots",
    "latest_snapshot",
    "BackupResult",
    "RestoreResult",
    # Core orchestration functions
    "initialize_state",
    "run_backup_cycle",
    "run_restore_cycle",
    "run_prune_cycle",
    "get_metrics",
    "shutdown_state",
    # Errors
    "ErrorKind",
    "SnapkeepError",
]
