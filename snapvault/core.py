# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Core - Runtime state shared by every operation.

initialize_state() prepares the vault directory, catalog database, key
provider and remote store once; the orchestrators in snapvault.backup
receive the resulting VaultState on every call.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, List, TypedDict

import aiosqlite
import structlog

from snapvault.config import SnapVaultConfig
from snapvault.crypto.keys import FileKeyProvider, KeyProvider
from snapvault.guard import OperationGuard
from snapvault.remote import RemoteStore, create_remote_store
from snapvault.vault import BackupRecord, get_catalog_stats, get_record, init_catalog_db, list_records

logger = structlog.get_logger()


@dataclass
class VaultMetrics:
    """Metrics for backup and restore operations."""

    total_backups: int
    total_restores: int
    total_deletions: int
    last_backup_at: datetime | None
    catalog_backups: int
    remote_backups: int
    archive_bytes: int
    pending_deletions: int
    busy: bool
    last_error: str | None


class VaultState(TypedDict):
    """Runtime state for backup operations."""

    vault_path: Path
    catalog_db_path: Path
    guard: OperationGuard
    key_provider: KeyProvider
    remote_store: RemoteStore | None
    scheduler: Any  # AsyncIOScheduler when auto-backup is enabled
    last_backup_at: datetime | None
    total_backups: int
    total_restores: int
    total_deletions: int
    last_error: str | None


async def initialize_state(
    config: SnapVaultConfig,
    remote_store: RemoteStore | None = None,
    key_provider: KeyProvider | None = None,
) -> VaultState:
    """
    Initialize runtime state for backup operations.

    Creates the vault directories, initializes the catalog database and
    removes staging directories left behind by an interrupted operation.

    Args:
        config: SnapVault configuration
        remote_store: Remote store to use instead of the configured one
        key_provider: Key provider to use instead of the device key file

    Returns:
        Initialized VaultState dictionary
    """
    from snapvault.backup.manager import sweep_stale_staging

    # Create directories
    config.vault_path.mkdir(parents=True, exist_ok=True)
    config.archives_path.mkdir(parents=True, exist_ok=True)
    config.staging_root.mkdir(parents=True, exist_ok=True)

    # Initialize database
    await init_catalog_db(config.catalog_db_path)

    # No operation can be running yet, so anything in staging is stale
    sweep_stale_staging(config)

    if key_provider is None:
        key_provider = FileKeyProvider(config.resolved_key_path)
    if remote_store is None:
        remote_store = create_remote_store(config)

    last_backup_at = None
    async with aiosqlite.connect(config.catalog_db_path) as db:
        newest = await list_records(db, limit=1)
        if newest:
            last_backup_at = newest[0].created_at

    logger.info(
        "vault_state_initialized",
        vault_path=str(config.vault_path),
        remote=config.remote_backend.value if config.remote_backend else None,
    )

    return VaultState(
        vault_path=config.vault_path,
        catalog_db_path=config.catalog_db_path,
        guard=OperationGuard(),
        key_provider=key_provider,
        remote_store=remote_store,
        scheduler=None,
        last_backup_at=last_backup_at,
        total_backups=0,
        total_restores=0,
        total_deletions=0,
        last_error=None,
    )


async def list_backups(state: VaultState, limit: int | None = None) -> List[BackupRecord]:
    """List committed backups, newest first."""
    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        return await list_records(db, limit=limit)


async def get_backup(state: VaultState, backup_id: str) -> BackupRecord | None:
    """Get a committed backup by id."""
    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        return await get_record(db, backup_id)


async def get_metrics(config: SnapVaultConfig, state: VaultState) -> VaultMetrics:
    """Get current backup metrics."""
    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        stats = await get_catalog_stats(db)

    archive_bytes = sum(
        f.stat().st_size for f in config.archives_path.glob("*.snapvault") if f.is_file()
    )

    return VaultMetrics(
        total_backups=state["total_backups"],
        total_restores=state["total_restores"],
        total_deletions=state["total_deletions"],
        last_backup_at=state["last_backup_at"],
        catalog_backups=stats["total_backups"],
        remote_backups=stats["remote_backups"],
        archive_bytes=archive_bytes,
        pending_deletions=stats["pending_deletions"],
        busy=state["guard"].busy,
        last_error=state["last_error"],
    )


async def shutdown_state(state: VaultState) -> None:
    """Stop the auto-backup scheduler if it is running."""
    scheduler = state["scheduler"]
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        state["scheduler"] = None

    logger.info("vault_state_shutdown_complete")
