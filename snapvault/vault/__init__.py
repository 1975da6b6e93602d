# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Vault - Backup catalog and operations audit trail.
"""

from snapvault.vault.catalog import (
    BackupRecord,
    OperationRecord,
    PendingDeletion,
    init_catalog_db,
    append_record,
    get_record,
    list_records,
    remove_record,
    retire_record,
    list_pending_deletions,
    resolve_pending_deletion,
    record_deletion_failure,
    record_operation,
    complete_operation,
    list_operations,
    get_catalog_stats,
)

__all__ = [
    # Types
    "BackupRecord",
    "OperationRecord",
    "PendingDeletion",
    # Schema
    "init_catalog_db",
    # Backups
    "append_record",
    "get_record",
    "list_records",
    "remove_record",
    "retire_record",
    # Pending deletions
    "list_pending_deletions",
    "resolve_pending_deletion",
    "record_deletion_failure",
    # Operations
    "record_operation",
    "complete_operation",
    "list_operations",
    "get_catalog_stats",
]
