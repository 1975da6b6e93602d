# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Backup Orchestrator - Create encrypted backups.

Pipeline:
1. preparing   - acquire the operation guard, allocate staging
2. collecting  - snapshot records (and media) into staging
3. compressing - pack staging into a tar.zst archive
4. encrypting  - seal the archive with the device key
5. uploading   - optional copy to the remote store
6. commit      - move the archive into the vault and catalog it

On any failure or cancellation every partial artifact (staging, uploaded
blob, uncatalogued archive) is removed before the error is raised.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path

import aiosqlite
import structlog
from ulid import ULID

from snapvault.archive import (
    build_manifest,
    collect_sources,
    enumerate_sources,
    get_compression_stats,
    pack_archive,
    write_manifest,
)
from snapvault.archive.packager import ARCHIVE_FORMAT_VERSION
from snapvault.backup.manager import (
    ARCHIVE_SUFFIX,
    apply_retention,
    commit_archive,
    delete_local_archive,
    stage_errors,
    staging_area,
)
from snapvault.config import SnapVaultConfig
from snapvault.core import VaultState
from snapvault.crypto import encrypt_file
from snapvault.errors import describe_failure, explain_remote_not_configured
from snapvault.exceptions import (
    CatalogError,
    CollectionError,
    CompressionError,
    ConfigurationError,
    EncryptionError,
    NetworkError,
    NotFoundError,
    OperationCancelled,
    SnapVaultError,
)
from snapvault.progress import CancelToken, ProgressReporter, ProgressSink, Stage
from snapvault.vault import BackupRecord, append_record, complete_operation, record_operation

logger = structlog.get_logger()

# Staging holds the copied sources, the archive and its encrypted form
_STAGING_OVERHEAD = 3


@dataclass
class _Artifacts:
    """Blobs created by a running backup that may need to be discarded."""

    remote_id: str | None = None
    archive_path: Path | None = None
    committed: bool = False


async def _discard_artifacts(
    config: SnapVaultConfig,
    state: VaultState,
    backup_id: str,
    artifacts: _Artifacts,
) -> None:
    """Remove blobs of a backup that never made it into the catalog."""
    if artifacts.committed:
        return

    if artifacts.remote_id is not None and state["remote_store"] is not None:
        try:
            await state["remote_store"].delete(artifacts.remote_id)
        except NotFoundError:
            pass
        except SnapVaultError as e:
            logger.error(
                "orphaned_remote_blob",
                backup_id=backup_id,
                remote_id=artifacts.remote_id,
                error=str(e),
            )

    if artifacts.archive_path is not None:
        try:
            delete_local_archive(config, artifacts.archive_path)
        except OSError as e:
            logger.error(
                "orphaned_local_archive",
                backup_id=backup_id,
                path=str(artifacts.archive_path),
                error=str(e),
            )


async def create_backup(
    config: SnapVaultConfig,
    state: VaultState,
    include_media: bool = True,
    upload_remote: bool = False,
    on_progress: ProgressSink | None = None,
    cancel_token: CancelToken | None = None,
) -> BackupRecord:
    """
    Create a new encrypted backup of the records (and media) directories.

    Args:
        config: SnapVault configuration
        state: Runtime state
        include_media: Collect the media directory too
        upload_remote: Copy the encrypted archive to the remote store
        on_progress: Sink receiving ProgressState snapshots
        cancel_token: Token the caller can use to abort the backup

    Returns:
        The committed BackupRecord

    Raises:
        ConcurrencyError: If another operation is running
        NetworkError: If the upload failed; the backup was kept locally and
            `exc.record` holds its committed record
        SnapVaultError: The error of the stage that failed
    """
    reporter = ProgressReporter("backup", on_progress, cancel_token)

    if upload_remote and state["remote_store"] is None:
        error = ConfigurationError(explain_remote_not_configured())
        await reporter.fail(describe_failure(error))
        raise error

    with state["guard"].hold("backup"):
        backup_id = str(ULID())
        created_at = datetime.now(UTC)
        started = asyncio.get_running_loop().time()
        artifacts = _Artifacts()

        logger.info(
            "backup_started",
            backup_id=backup_id,
            include_media=include_media,
            upload_remote=upload_remote,
        )

        async with aiosqlite.connect(state["catalog_db_path"]) as db:
            await record_operation(db, backup_id, "backup", backup_id)
            try:
                record = await _run_pipeline(
                    config,
                    state,
                    db,
                    reporter,
                    backup_id,
                    created_at,
                    include_media,
                    upload_remote,
                    artifacts,
                )
            except BaseException as e:
                await _discard_artifacts(config, state, backup_id, artifacts)
                cancelled = isinstance(e, (OperationCancelled, asyncio.CancelledError))
                await complete_operation(
                    db,
                    backup_id,
                    "cancelled" if cancelled else "failed",
                    str(e) or type(e).__name__,
                )
                state["last_error"] = str(e) or type(e).__name__
                await reporter.fail(describe_failure(e))
                logger.error(
                    "backup_failed",
                    backup_id=backup_id,
                    stage=reporter.stage.value,
                    error=str(e),
                    error_type=type(e).__name__,
                    committed=artifacts.committed,
                )
                raise

            await complete_operation(db, backup_id, "succeeded")

        if config.max_backups is not None:
            try:
                await apply_retention(config, state, config.max_backups)
            except SnapVaultError as e:
                logger.warning("backup_retention_failed", backup_id=backup_id, error=str(e))

        state["last_backup_at"] = created_at
        state["total_backups"] += 1
        await reporter.complete("Backup completed")

        logger.info(
            "backup_completed",
            backup_id=backup_id,
            file_count=record.file_count,
            total_size_bytes=record.total_size_bytes,
            archive_size_bytes=record.archive_size_bytes,
            remote_id=record.remote_id,
            duration_seconds=round(asyncio.get_running_loop().time() - started, 3),
        )
        return record


async def _run_pipeline(
    config: SnapVaultConfig,
    state: VaultState,
    db: aiosqlite.Connection,
    reporter: ProgressReporter,
    backup_id: str,
    created_at: datetime,
    include_media: bool,
    upload_remote: bool,
    artifacts: _Artifacts,
) -> BackupRecord:
    # Stage 1: prepare
    await reporter.enter_stage(Stage.PREPARING, 0, 5)
    include_media = include_media and config.media_path is not None
    sources = enumerate_sources(config.records_path, config.media_path, include_media)
    source_bytes = sum(s.size for s in sources)
    reporter.checkpoint()

    async with staging_area(config, "backup", source_bytes * _STAGING_OVERHEAD) as staging:
        content_dir = staging / "content"
        plain_archive = staging / "archive.tar.zst"
        encrypted = staging / f"{backup_id}{ARCHIVE_SUFFIX}"

        # Stage 2: collect
        with stage_errors(CollectionError, "collect source data"):
            await reporter.enter_stage(Stage.COLLECTING, 5, 40, total_items=len(sources))
            content_dir.mkdir()
            entries = await collect_sources(
                sources,
                content_dir,
                on_item=reporter.track_items(),
                checkpoint=reporter.checkpoint,
            )
            manifest = build_manifest(
                backup_id,
                created_at,
                entries,
                includes_media=include_media,
                device_id=config.device_id,
                app_version=config.app_version,
            )
            write_manifest(content_dir, manifest)

        # Stage 3: compress
        with stage_errors(CompressionError, "compress archive"):
            await reporter.enter_stage(Stage.COMPRESSING, 40, 65)
            compressed_size = await pack_archive(
                content_dir,
                manifest,
                plain_archive,
                level=config.zstd_level,
                on_progress=reporter.track_bytes(),
                checkpoint=reporter.checkpoint,
            )

        stats = get_compression_stats(manifest["total_size_bytes"], compressed_size)
        logger.debug("backup_compressed", backup_id=backup_id, **stats)

        # Stage 4: encrypt
        with stage_errors(EncryptionError, "encrypt archive"):
            await reporter.enter_stage(Stage.ENCRYPTING, 65, 80 if upload_remote else 95)
            secret = await state["key_provider"].get_secret()
            archive_size = await encrypt_file(
                plain_archive,
                encrypted,
                secret,
                chunk_size=config.chunk_size,
                on_progress=reporter.track_bytes(),
                checkpoint=reporter.checkpoint,
            )
            plain_archive.unlink()

        # Stage 5: upload
        upload_error: NetworkError | None = None
        if upload_remote:
            await reporter.enter_stage(Stage.UPLOADING, 80, 99)
            try:
                with stage_errors(NetworkError, "upload archive"):
                    artifacts.remote_id = await state["remote_store"].upload(
                        encrypted,
                        f"{backup_id}{ARCHIVE_SUFFIX}",
                        on_progress=reporter.track_bytes(),
                    )
            except NetworkError as e:
                # The local archive becomes the only copy
                upload_error = e
                logger.warning("backup_upload_failed", backup_id=backup_id, error=str(e))
            reporter.checkpoint()

        # Stage 6: commit
        with stage_errors(CatalogError, "commit backup"):
            if artifacts.remote_id is None or config.retain_local_archive:
                artifacts.archive_path = commit_archive(config, encrypted, backup_id)

            record = BackupRecord(
                id=backup_id,
                created_at=created_at,
                file_count=manifest["file_count"],
                total_size_bytes=manifest["total_size_bytes"],
                remote_id=artifacts.remote_id,
                is_encrypted=True,
                local_archive_path=str(artifacts.archive_path) if artifacts.archive_path else None,
                archive_size_bytes=archive_size,
                includes_media=include_media,
                device_id=config.device_id,
                app_version=config.app_version,
                format_version=ARCHIVE_FORMAT_VERSION,
            )
            await append_record(db, record)
            artifacts.committed = True

    if upload_error is not None:
        state["last_backup_at"] = created_at
        state["total_backups"] += 1
        raise NetworkError(
            f"Backup saved locally but upload failed: {upload_error.message}",
            details={"backup_id": backup_id, **upload_error.details},
            record=record,
        ) from upload_error

    return record
