# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapshot Vault - Compression, engine access and the operations journal.
"""

from snapkeep.vault.journal import (
    init_journal_db,
    record_operation,
    get_operation,
    list_operations,
    get_journal_stats,
    OperationRecord,
)

from snapkeep.vault.compressor import (
    compress_file,
    decompress_file,
    verify_compressed_file,
    codec_for_path,
)

from snapkeep.vault.engine import (
    online_backup,
    integrity_check,
    smoke_check,
    has_sqlite_header,
)

__all__ = [
    # Journal functions
    "init_journal_db",
    "record_operation",
    "get_operation",
    "list_operations",
    "get_journal_stats",
    # Types
    "OperationRecord",
    # Compressor
    "compress_file",
    "decompress_file",
    "verify_compressed_file",
    "codec_for_path",
    # Engine
    "online_backup",
    "integrity_check",
    "smoke_check",
    "has_sqlite_header",
]
