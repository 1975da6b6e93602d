# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault - Encrypted backup and restore for on-device app data.

Snapshots a records directory (and optionally a media directory) into a
compressed, authenticated-encrypted archive, catalogs it, optionally
mirrors it to a remote store, and restores it atomically.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from snapvault.builder import create_config

# Core functions
from snapvault.core import (
    initialize_state,
    list_backups,
    get_backup,
    get_metrics,
    shutdown_state,
)

# Operations
from snapvault.backup import (
    create_backup,
    restore_backup,
    delete_backup,
    prune_backups,
    purge_pending_deletions,
)

# Progress and cancellation
from snapvault.progress import CancelToken, ProgressChannel, ProgressState, Stage

# Environment-based configuration and profiles (additional helpers)
from snapvault.env import (
    create_config_from_env,
    local_only,
    cloud_mirrored,
)

# Scheduling
from snapvault.scheduler import setup_auto_backup

from snapvault.errors import describe_failure

__all__ = [
    # Version
    "__version__",
    # Configuration creation (primary user-facing APIs)
    "create_config",
    "create_config_from_env",
    "local_only",
    "cloud_mirrored",
    # Core functions
    "initialize_state",
    "list_backups",
    "get_backup",
    "get_metrics",
    "shutdown_state",
    # Operations
    "create_backup",
    "restore_backup",
    "delete_backup",
    "prune_backups",
    "purge_pending_deletions",
    "setup_auto_backup",
    # Progress
    "CancelToken",
    "ProgressChannel",
    "ProgressState",
    "Stage",
    "describe_failure",
]
