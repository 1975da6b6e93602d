# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Engine - Backup creation, restore and storage lifecycle.
"""

from snapvault.backup.manager import (
    DeletionReport,
    delete_backup,
    purge_pending_deletions,
    prune_backups,
    get_backup_stats,
)

from snapvault.backup.create import create_backup

from snapvault.backup.restore import (
    restore_backup,
    RestoreResult,
)

__all__ = [
    # Manager
    "DeletionReport",
    "delete_backup",
    "purge_pending_deletions",
    "prune_backups",
    "get_backup_stats",
    # Create
    "create_backup",
    # Restore
    "restore_backup",
    "RestoreResult",
]
