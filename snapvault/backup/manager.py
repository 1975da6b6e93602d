# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Backup Manager - Backup storage lifecycle.

This module owns everything on disk around a backup: the staging area an
operation works in, the committed encrypted archives, deletion of backups
and their blobs, and retention pruning.
"""

import shutil
import tempfile
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Iterator, List

import aiosqlite
import structlog
from ulid import ULID

from snapvault.config import SnapVaultConfig
from snapvault.core import VaultState
from snapvault.exceptions import (
    CatalogError,
    NotFoundError,
    PreparationError,
    SnapVaultError,
)
from snapvault.vault import (
    PendingDeletion,
    complete_operation,
    get_record,
    list_pending_deletions,
    list_records,
    record_deletion_failure,
    record_operation,
    resolve_pending_deletion,
    retire_record,
)

logger = structlog.get_logger()

ARCHIVE_SUFFIX = ".snapvault"


@dataclass
class DeletionReport:
    """Outcome of deleting one backup."""

    record_id: str
    catalog_removed: bool = False
    local_deleted: bool = False
    local_error: str | None = None
    remote_deleted: bool = False
    remote_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.catalog_removed and self.local_error is None and self.remote_error is None


@contextmanager
def stage_errors(error_cls: type[SnapVaultError], action: str) -> Iterator[None]:
    """
    Convert unexpected exceptions inside a pipeline stage into the stage's error.

    SnapVaultError subclasses (including cancellation) pass through unchanged.
    """
    try:
        yield
    except SnapVaultError:
        raise
    except Exception as e:
        raise error_cls(f"Failed to {action}: {e}", details={"error_type": type(e).__name__}) from e


# ============================================================================
# Staging
# ============================================================================

@asynccontextmanager
async def staging_area(
    config: SnapVaultConfig,
    prefix: str,
    required_bytes: int = 0,
) -> AsyncIterator[Path]:
    """
    Allocate a private staging directory for one operation.

    The directory is removed on every exit path, including errors and
    cancellation.

    Args:
        config: SnapVault configuration
        prefix: Directory name prefix ("backup" or "restore")
        required_bytes: Free space the operation expects to need

    Raises:
        PreparationError: If the directory cannot be created or the disk
            does not have required_bytes free
    """
    try:
        config.staging_root.mkdir(parents=True, exist_ok=True)
        free = shutil.disk_usage(config.staging_root).free
        if free < required_bytes:
            raise PreparationError(
                "Not enough free space for staging",
                details={"required_bytes": required_bytes, "free_bytes": free},
            )
        path = Path(tempfile.mkdtemp(prefix=f"{prefix}-", dir=config.staging_root))
    except OSError as e:
        raise PreparationError(
            f"Failed to create staging directory: {e}",
            details={"staging_root": str(config.staging_root)},
        ) from e

    logger.debug("staging_allocated", path=str(path))
    try:
        yield path
    finally:
        _remove_tree(path)


def _remove_tree(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("staging_cleanup_failed", path=str(path), error=str(e))


def sweep_stale_staging(config: SnapVaultConfig) -> int:
    """
    Remove staging directories left behind by an interrupted process.

    Only safe while no operation is running.

    Returns:
        Number of entries removed
    """
    if not config.staging_root.is_dir():
        return 0

    removed = 0
    for entry in config.staging_root.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            _remove_tree(entry)
        else:
            entry.unlink(missing_ok=True)
        removed += 1

    if removed:
        logger.info("stale_staging_removed", count=removed)
    return removed


# ============================================================================
# Local archives
# ============================================================================

def archive_path_for(config: SnapVaultConfig, backup_id: str) -> Path:
    return config.archives_path / f"{backup_id}{ARCHIVE_SUFFIX}"


def commit_archive(config: SnapVaultConfig, encrypted_path: Path, backup_id: str) -> Path:
    """
    Move a finished encrypted archive into the archives directory.

    Staging lives inside the vault, so this is a single rename: the archive
    appears under its final name complete or not at all.

    Returns:
        Path of the committed archive
    """
    target = archive_path_for(config, backup_id)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        encrypted_path.replace(target)
    except OSError as e:
        raise CatalogError(
            f"Failed to store encrypted archive: {e}",
            details={"backup_id": backup_id},
        ) from e

    logger.debug("archive_committed", backup_id=backup_id, path=str(target))
    return target


def delete_local_archive(config: SnapVaultConfig, path: Path) -> bool:
    """
    Delete a committed archive.

    Only files inside the archives directory are ever deleted.

    Returns:
        True if the file existed
    """
    archives = config.archives_path.absolute()
    if archives not in path.absolute().parents:
        raise NotFoundError(
            "Archive is outside the vault archives directory",
            details={"path": str(path)},
        )
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


# ============================================================================
# Deletion
# ============================================================================

async def _delete_blob(
    config: SnapVaultConfig,
    state: VaultState,
    db: aiosqlite.Connection,
    item: PendingDeletion,
) -> str | None:
    """Delete one scheduled blob; returns an error message on failure."""
    try:
        if item["target"] == "local":
            delete_local_archive(config, Path(item["reference"]))
        else:
            store = state["remote_store"]
            if store is None:
                raise CatalogError("No remote store configured")
            try:
                await store.delete(item["reference"])
            except NotFoundError:
                # Already gone
                pass
    except (SnapVaultError, OSError) as e:
        await record_deletion_failure(db, item["id"], str(e))
        logger.warning(
            "blob_delete_failed",
            backup_id=item["backup_id"],
            target=item["target"],
            reference=item["reference"],
            error=str(e),
        )
        return str(e)

    await resolve_pending_deletion(db, item["id"])
    return None


async def _delete_record(
    config: SnapVaultConfig,
    state: VaultState,
    db: aiosqlite.Connection,
    record_id: str,
) -> DeletionReport:
    record = await get_record(db, record_id)
    if record is None:
        raise NotFoundError("Backup not found", details={"backup_id": record_id})

    operation_id = str(ULID())
    await record_operation(db, operation_id, "delete", record_id)

    report = DeletionReport(record_id=record_id)
    pending = await retire_record(db, record)
    report.catalog_removed = True

    for item in pending:
        error = await _delete_blob(config, state, db, item)
        if item["target"] == "local":
            report.local_deleted = error is None
            report.local_error = error
        else:
            report.remote_deleted = error is None
            report.remote_error = error

    failures = [e for e in (report.local_error, report.remote_error) if e]
    await complete_operation(
        db,
        operation_id,
        "succeeded" if report.ok else "failed",
        "; ".join(failures) or None,
    )
    state["total_deletions"] += 1

    logger.info(
        "backup_deleted",
        backup_id=record_id,
        local_deleted=report.local_deleted,
        remote_deleted=report.remote_deleted,
        ok=report.ok,
    )
    return report


async def delete_backup(
    config: SnapVaultConfig,
    state: VaultState,
    record_id: str,
) -> DeletionReport:
    """
    Delete a backup and its blobs.

    The catalog row is removed and its blobs are scheduled for deletion in
    one transaction, so the catalog never lists a backup whose blobs are
    partly gone. Blob deletion failures are reported in the returned
    DeletionReport and stay scheduled for purge_pending_deletions().

    Raises:
        NotFoundError: If no backup has this id
        ConcurrencyError: If another operation is running
    """
    with state["guard"].hold("delete"):
        async with aiosqlite.connect(state["catalog_db_path"]) as db:
            return await _delete_record(config, state, db, record_id)


async def purge_pending_deletions(config: SnapVaultConfig, state: VaultState) -> int:
    """
    Retry blob deletions that failed earlier.

    Returns:
        Number of blobs deleted
    """
    with state["guard"].hold("purge"):
        async with aiosqlite.connect(state["catalog_db_path"]) as db:
            pending = await list_pending_deletions(db)
            purged = 0
            for item in pending:
                if await _delete_blob(config, state, db, item) is None:
                    purged += 1

    logger.info("pending_deletions_purged", purged=purged, remaining=len(pending) - purged)
    return purged


async def apply_retention(
    config: SnapVaultConfig,
    state: VaultState,
    keep: int,
) -> List[DeletionReport]:
    """
    Delete the oldest backups beyond the newest `keep`.

    The caller must hold the operation guard.
    """
    if keep < 1:
        raise ValueError("keep must be at least 1")

    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        records = await list_records(db)
        reports = [
            await _delete_record(config, state, db, record.id)
            for record in records[keep:]
        ]

    if reports:
        logger.info("backups_pruned", deleted=len(reports), kept=keep)
    return reports


async def prune_backups(
    config: SnapVaultConfig,
    state: VaultState,
    keep: int,
) -> List[DeletionReport]:
    """Keep only the newest `keep` backups."""
    with state["guard"].hold("prune"):
        return await apply_retention(config, state, keep)


def get_backup_stats(config: SnapVaultConfig) -> dict:
    """
    Get statistics about local backup storage.

    Returns:
        Dict with archive count, sizes and free space
    """
    archives = [f for f in config.archives_path.glob(f"*{ARCHIVE_SUFFIX}") if f.is_file()]
    sizes = [f.stat().st_size for f in archives]
    staging = (
        [p for p in config.staging_root.iterdir()]
        if config.staging_root.is_dir()
        else []
    )

    return {
        "archive_count": len(archives),
        "archive_bytes": sum(sizes),
        "largest_archive_bytes": max(sizes, default=0),
        "staging_entries": len(staging),
        "free_bytes": shutil.disk_usage(config.vault_path).free,
    }
