# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Catalog - Durable registry of backups and operations.

The catalog stores metadata only; archive blobs live in the vault's
archives directory and/or the remote store. It holds three tables:

1. backups - one immutable row per committed backup
2. operations - audit trail of every backup, restore and delete attempt
3. pending_deletions - blobs whose record is gone but whose deletion has
   not succeeded yet, so storage can never leak silently
"""

from dataclasses import asdict, dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import List, TypedDict

import aiosqlite
import structlog

from snapvault.exceptions import CatalogError

logger = structlog.get_logger()


@dataclass(frozen=True)
class BackupRecord:
    """Catalog entry for one backup. Never mutated after commit."""

    id: str  # ULID
    created_at: datetime  # Pipeline start (UTC)
    file_count: int  # Source files, manifest excluded
    total_size_bytes: int  # Source bytes before compression
    remote_id: str | None = None
    is_encrypted: bool = True
    local_archive_path: str | None = None
    archive_size_bytes: int = 0
    includes_media: bool = False
    device_id: str | None = None
    app_version: str = "1.0.0"
    format_version: int = 1

    @property
    def is_local(self) -> bool:
        return self.local_archive_path is not None

    @property
    def is_remote(self) -> bool:
        return self.remote_id is not None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


class OperationRecord(TypedDict):
    """Audit record of a backup, restore or delete."""

    id: str  # ULID
    kind: str  # backup, restore, delete
    target_id: str | None  # Backup id the operation worked on
    started_at: str  # ISO 8601
    completed_at: str | None  # ISO 8601
    status: str  # running, succeeded, failed, cancelled
    error: str | None


class PendingDeletion(TypedDict):
    """A blob scheduled for deletion."""

    id: int
    backup_id: str
    target: str  # local or remote
    reference: str  # Local path or remote id
    attempts: int
    last_error: str | None
    created_at: str


_RECORD_COLUMNS = """
    id, created_at, file_count, total_size_bytes, remote_id, is_encrypted,
    local_archive_path, archive_size_bytes, includes_media, device_id,
    app_version, format_version
"""


def _row_to_record(row) -> BackupRecord:
    return BackupRecord(
        id=row[0],
        created_at=datetime.fromisoformat(row[1]),
        file_count=row[2],
        total_size_bytes=row[3],
        remote_id=row[4],
        is_encrypted=bool(row[5]),
        local_archive_path=row[6],
        archive_size_bytes=row[7],
        includes_media=bool(row[8]),
        device_id=row[9],
        app_version=row[10],
        format_version=row[11],
    )


async def init_catalog_db(db_path: Path) -> None:
    """
    Initialize the catalog database schema.

    Creates tables if they don't exist. This is idempotent.

    Args:
        db_path: Path to the SQLite database file
    """
    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")

            await db.execute("""
                CREATE TABLE IF NOT EXISTS backups (
                    id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    file_count INTEGER NOT NULL,
                    total_size_bytes INTEGER NOT NULL,
                    remote_id TEXT,
                    is_encrypted INTEGER NOT NULL,
                    local_archive_path TEXT,
                    archive_size_bytes INTEGER NOT NULL,
                    includes_media INTEGER NOT NULL,
                    device_id TEXT,
                    app_version TEXT NOT NULL,
                    format_version INTEGER NOT NULL,
                    CHECK (remote_id IS NOT NULL OR local_archive_path IS NOT NULL)
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS operations (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    target_id TEXT,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    status TEXT NOT NULL,
                    error TEXT
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS pending_deletions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    backup_id TEXT NOT NULL,
                    target TEXT NOT NULL,
                    reference TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_backups_created_at
                ON backups(created_at)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_operations_started_at
                ON operations(started_at)
            """)

            await db.commit()

        logger.info("catalog_db_initialized", db_path=str(db_path))

    except aiosqlite.Error as e:
        raise CatalogError(
            f"Failed to initialize catalog database: {e}",
            details={"db_path": str(db_path)},
        ) from e


# ============================================================================
# Backups
# ============================================================================

async def append_record(db: aiosqlite.Connection, record: BackupRecord) -> None:
    """
    Commit a backup record.

    A single INSERT in its own transaction: the record is either fully
    visible afterwards or not at all.
    """
    try:
        await db.execute(
            f"INSERT INTO backups ({_RECORD_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.id,
                record.created_at.isoformat(),
                record.file_count,
                record.total_size_bytes,
                record.remote_id,
                int(record.is_encrypted),
                record.local_archive_path,
                record.archive_size_bytes,
                int(record.includes_media),
                record.device_id,
                record.app_version,
                record.format_version,
            ),
        )
        await db.commit()
    except aiosqlite.Error as e:
        await db.rollback()
        raise CatalogError(
            f"Failed to commit backup record: {e}",
            details={"backup_id": record.id},
        ) from e

    logger.info(
        "backup_record_committed",
        backup_id=record.id,
        file_count=record.file_count,
        remote=record.is_remote,
    )


async def get_record(db: aiosqlite.Connection, backup_id: str) -> BackupRecord | None:
    """
    Get a backup record by id.

    Returns:
        The record or None if not found
    """
    async with db.execute(
        f"SELECT {_RECORD_COLUMNS} FROM backups WHERE id = ?",
        (backup_id,),
    ) as cursor:
        row = await cursor.fetchone()
        return _row_to_record(row) if row else None


async def list_records(
    db: aiosqlite.Connection,
    limit: int | None = None,
) -> List[BackupRecord]:
    """
    List backup records, newest first.

    Args:
        db: SQLite database connection
        limit: Maximum number of records to return

    Returns:
        List of backup records
    """
    query = f"SELECT {_RECORD_COLUMNS} FROM backups ORDER BY created_at DESC, id DESC"
    params: List = []
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)

    records: List[BackupRecord] = []
    async with db.execute(query, params) as cursor:
        async for row in cursor:
            records.append(_row_to_record(row))
    return records


async def remove_record(db: aiosqlite.Connection, backup_id: str) -> bool:
    """
    Remove a backup record without touching its blobs.

    Returns:
        True if a record was removed
    """
    try:
        cursor = await db.execute("DELETE FROM backups WHERE id = ?", (backup_id,))
        await db.commit()
    except aiosqlite.Error as e:
        await db.rollback()
        raise CatalogError(
            f"Failed to remove backup record: {e}",
            details={"backup_id": backup_id},
        ) from e
    return cursor.rowcount > 0


async def retire_record(
    db: aiosqlite.Connection,
    record: BackupRecord,
) -> List[PendingDeletion]:
    """
    Remove a record and schedule deletion of its blobs atomically.

    Args:
        db: SQLite database connection
        record: Record to retire

    Returns:
        The pending deletions created (one per blob)
    """
    now = datetime.now(UTC).isoformat()
    targets = []
    if record.local_archive_path:
        targets.append(("local", record.local_archive_path))
    if record.remote_id:
        targets.append(("remote", record.remote_id))

    pending: List[PendingDeletion] = []
    try:
        cursor = await db.execute("DELETE FROM backups WHERE id = ?", (record.id,))
        if cursor.rowcount == 0:
            await db.rollback()
            return pending
        for target, reference in targets:
            cursor = await db.execute(
                """
                INSERT INTO pending_deletions (backup_id, target, reference, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (record.id, target, reference, now),
            )
            pending.append(
                PendingDeletion(
                    id=cursor.lastrowid,
                    backup_id=record.id,
                    target=target,
                    reference=reference,
                    attempts=0,
                    last_error=None,
                    created_at=now,
                )
            )
        await db.commit()
    except aiosqlite.Error as e:
        await db.rollback()
        raise CatalogError(
            f"Failed to remove backup record: {e}",
            details={"backup_id": record.id},
        ) from e

    logger.info("backup_record_removed", backup_id=record.id, pending=len(pending))
    return pending


# ============================================================================
# Pending deletions
# ============================================================================

async def list_pending_deletions(db: aiosqlite.Connection) -> List[PendingDeletion]:
    records: List[PendingDeletion] = []
    async with db.execute(
        """
        SELECT id, backup_id, target, reference, attempts, last_error, created_at
        FROM pending_deletions
        ORDER BY id
        """
    ) as cursor:
        async for row in cursor:
            records.append(
                PendingDeletion(
                    id=row[0],
                    backup_id=row[1],
                    target=row[2],
                    reference=row[3],
                    attempts=row[4],
                    last_error=row[5],
                    created_at=row[6],
                )
            )
    return records


async def resolve_pending_deletion(db: aiosqlite.Connection, pending_id: int) -> None:
    """Drop a pending deletion once its blob is gone."""
    await db.execute("DELETE FROM pending_deletions WHERE id = ?", (pending_id,))
    await db.commit()


async def record_deletion_failure(
    db: aiosqlite.Connection,
    pending_id: int,
    error: str,
) -> None:
    await db.execute(
        """
        UPDATE pending_deletions
        SET attempts = attempts + 1, last_error = ?
        WHERE id = ?
        """,
        (error, pending_id),
    )
    await db.commit()


# ============================================================================
# Operations audit trail
# ============================================================================

async def record_operation(
    db: aiosqlite.Connection,
    operation_id: str,
    kind: str,
    target_id: str | None = None,
) -> None:
    """
    Record the start of an operation.

    Args:
        db: SQLite database connection
        operation_id: Unique operation ID (ULID)
        kind: backup, restore or delete
        target_id: Backup id the operation works on
    """
    now = datetime.now(UTC).isoformat()

    await db.execute(
        """
        INSERT INTO operations (id, kind, target_id, started_at, status)
        VALUES (?, ?, ?, ?, 'running')
        """,
        (operation_id, kind, target_id, now),
    )
    await db.commit()

    logger.debug("operation_recorded", operation_id=operation_id, kind=kind)


async def complete_operation(
    db: aiosqlite.Connection,
    operation_id: str,
    status: str,
    error: str | None = None,
) -> None:
    """
    Mark an operation as finished.

    Args:
        db: SQLite database connection
        operation_id: Operation ID
        status: succeeded, failed or cancelled
        error: Error message if the operation failed
    """
    now = datetime.now(UTC).isoformat()

    await db.execute(
        """
        UPDATE operations
        SET completed_at = ?, status = ?, error = ?
        WHERE id = ?
        """,
        (now, status, error, operation_id),
    )
    await db.commit()


async def list_operations(
    db: aiosqlite.Connection,
    limit: int = 50,
    kind: str | None = None,
) -> List[OperationRecord]:
    """
    List operations, newest first.

    Args:
        db: SQLite database connection
        limit: Maximum number of records to return
        kind: Optional filter by kind

    Returns:
        List of operation records
    """
    query = "SELECT id, kind, target_id, started_at, completed_at, status, error FROM operations"
    params: List = []

    if kind:
        query += " WHERE kind = ?"
        params.append(kind)

    query += " ORDER BY started_at DESC, id DESC LIMIT ?"
    params.append(limit)

    records: List[OperationRecord] = []

    async with db.execute(query, params) as cursor:
        async for row in cursor:
            records.append(
                OperationRecord(
                    id=row[0],
                    kind=row[1],
                    target_id=row[2],
                    started_at=row[3],
                    completed_at=row[4],
                    status=row[5],
                    error=row[6],
                )
            )

    return records


async def get_catalog_stats(db: aiosqlite.Connection) -> dict:
    """
    Get catalog statistics.

    Returns:
        Dict with catalog statistics
    """
    stats = {}

    async with db.execute(
        "SELECT COUNT(*), SUM(total_size_bytes), SUM(archive_size_bytes), "
        "SUM(remote_id IS NOT NULL), MAX(created_at) FROM backups"
    ) as cursor:
        row = await cursor.fetchone()
        stats["total_backups"] = row[0] or 0
        stats["total_source_bytes"] = row[1] or 0
        stats["total_archive_bytes"] = row[2] or 0
        stats["remote_backups"] = row[3] or 0
        stats["last_backup_at"] = row[4]

    async with db.execute(
        "SELECT kind, status, COUNT(*) FROM operations GROUP BY kind, status"
    ) as cursor:
        stats["operations"] = {f"{row[0]}:{row[1]}": row[2] async for row in cursor}

    async with db.execute("SELECT COUNT(*) FROM pending_deletions") as cursor:
        row = await cursor.fetchone()
        stats["pending_deletions"] = row[0] if row else 0

    return stats
