# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Restore Orchestrator - Replace live data with a backup.

Safety guarantees:
1. The archive is authenticated chunk by chunk; nothing unauthenticated
   is ever unpacked
2. Unpacked content must match its manifest and the catalog record
   (backup id, file count, sizes, digests) before anything live is touched
3. Live directories are swapped by rename and rolled back if any step of
   the swap fails, so the app sees either the old data or the new data
"""

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

import aiosqlite
import structlog
from ulid import ULID

from snapvault.archive import load_manifest, unpack_archive, verify_content
from snapvault.archive.packager import MEDIA_DIR, RECORDS_DIR
from snapvault.backup.manager import stage_errors, staging_area
from snapvault.config import SnapVaultConfig
from snapvault.core import VaultState
from snapvault.crypto import decrypt_file
from snapvault.errors import describe_failure, explain_remote_not_configured
from snapvault.exceptions import (
    CompressionError,
    ConfigurationError,
    EncryptionError,
    NetworkError,
    NotFoundError,
    OperationCancelled,
    ValidationError,
)
from snapvault.progress import CancelToken, ProgressReporter, ProgressSink, Stage
from snapvault.vault import BackupRecord, complete_operation, get_record, record_operation

logger = structlog.get_logger()


@dataclass
class RestoreResult:
    """Result of a restore operation."""

    operation_id: str  # ULID
    backup_id: str
    source: str  # "local" or "remote"
    restored_file_count: int
    restored_bytes: int
    includes_media: bool
    duration_seconds: float


def _resolve_source(
    config: SnapVaultConfig,
    state: VaultState,
    record: BackupRecord,
    from_remote: bool,
) -> Path | None:
    """Check that the requested copy exists; returns the local archive path."""
    if from_remote:
        if record.remote_id is None:
            raise NotFoundError(
                "Backup has no remote copy",
                details={"backup_id": record.id},
            )
        if state["remote_store"] is None:
            raise ConfigurationError(explain_remote_not_configured())
        return None

    if record.local_archive_path is None:
        raise NotFoundError(
            "Backup has no local copy",
            details={"backup_id": record.id, "remote_id": record.remote_id},
        )
    path = Path(record.local_archive_path)
    if not path.is_file():
        raise NotFoundError(
            "Local backup archive is missing",
            details={"backup_id": record.id, "path": str(path)},
        )
    return path


# ============================================================================
# Swap
# ============================================================================

def _stage_incoming(pairs: List[Tuple[Path, Path]], operation_id: str) -> List[Tuple[Path, Path]]:
    """Move staged directories next to their live targets."""
    incoming: List[Tuple[Path, Path]] = []
    try:
        for staged, live in pairs:
            live.parent.mkdir(parents=True, exist_ok=True)
            target = live.with_name(f".{live.name}.incoming-{operation_id}")
            shutil.move(str(staged), str(target))
            incoming.append((target, live))
    except OSError:
        for target, _ in incoming:
            shutil.rmtree(target, ignore_errors=True)
        raise
    return incoming


def _swap_into_place(incoming: List[Tuple[Path, Path]], operation_id: str) -> None:
    """
    Rename incoming directories over the live ones.

    Live directories are renamed aside first. If any rename fails, every
    completed swap is reverted before the error propagates.
    """
    done: List[Tuple[Path, Path | None, Path]] = []
    try:
        for target, live in incoming:
            previous = None
            if live.exists():
                previous = live.with_name(f".{live.name}.previous-{operation_id}")
                live.rename(previous)
            try:
                target.rename(live)
            except OSError:
                if previous is not None:
                    previous.rename(live)
                raise
            done.append((live, previous, target))
    except OSError:
        try:
            for live, previous, target in reversed(done):
                live.rename(target)
                if previous is not None:
                    previous.rename(live)
        except OSError as rollback_error:
            logger.error(
                "restore_rollback_failed",
                operation_id=operation_id,
                error=str(rollback_error),
            )
        for target, _ in incoming:
            shutil.rmtree(target, ignore_errors=True)
        raise

    for live, previous, _ in done:
        if previous is not None:
            try:
                shutil.rmtree(previous)
            except OSError as e:
                logger.warning("previous_data_cleanup_failed", path=str(previous), error=str(e))


def _apply_restored_content(
    config: SnapVaultConfig,
    content_dir: Path,
    includes_media: bool,
    operation_id: str,
) -> None:
    pairs = [(content_dir / RECORDS_DIR, config.records_path)]
    if includes_media:
        pairs.append((content_dir / MEDIA_DIR, config.media_path))

    for staged, _ in pairs:
        staged.mkdir(exist_ok=True)

    incoming = _stage_incoming(pairs, operation_id)
    _swap_into_place(incoming, operation_id)


# ============================================================================
# Orchestrator
# ============================================================================

async def restore_backup(
    config: SnapVaultConfig,
    state: VaultState,
    record_id: str,
    from_remote: bool = False,
    on_progress: ProgressSink | None = None,
    cancel_token: CancelToken | None = None,
) -> RestoreResult:
    """
    Restore a backup over the live records (and media) directories.

    Live data is only touched after the archive has been decrypted,
    unpacked and validated in staging. The caller must restart whatever
    reads the replaced directories.

    Args:
        config: SnapVault configuration
        state: Runtime state
        record_id: Id of the backup to restore
        from_remote: Download the remote copy instead of using the local one
        on_progress: Sink receiving ProgressState snapshots
        cancel_token: Token the caller can use to abort before the swap

    Returns:
        RestoreResult with restore details

    Raises:
        NotFoundError: Unknown backup or missing blob
        IntegrityError: The archive failed authentication
        ValidationError: The unpacked content does not match its manifest
        ConcurrencyError: If another operation is running
    """
    reporter = ProgressReporter("restore", on_progress, cancel_token)

    with state["guard"].hold("restore"):
        operation_id = str(ULID())
        started = asyncio.get_running_loop().time()

        async with aiosqlite.connect(state["catalog_db_path"]) as db:
            record = await get_record(db, record_id)
            if record is None:
                error = NotFoundError("Backup not found", details={"backup_id": record_id})
                await reporter.fail(describe_failure(error))
                raise error

            await record_operation(db, operation_id, "restore", record_id)
            logger.info(
                "restore_started",
                operation_id=operation_id,
                backup_id=record_id,
                from_remote=from_remote,
            )

            try:
                manifest = await _run_pipeline(
                    config, state, reporter, record, from_remote, operation_id
                )
            except BaseException as e:
                cancelled = isinstance(e, (OperationCancelled, asyncio.CancelledError))
                await complete_operation(
                    db,
                    operation_id,
                    "cancelled" if cancelled else "failed",
                    str(e) or type(e).__name__,
                )
                state["last_error"] = str(e) or type(e).__name__
                await reporter.fail(describe_failure(e))
                logger.error(
                    "restore_failed",
                    operation_id=operation_id,
                    backup_id=record_id,
                    stage=reporter.stage.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise

            await complete_operation(db, operation_id, "succeeded")

        state["total_restores"] += 1
        await reporter.complete("Restore completed")

        result = RestoreResult(
            operation_id=operation_id,
            backup_id=record_id,
            source="remote" if from_remote else "local",
            restored_file_count=manifest["file_count"],
            restored_bytes=manifest["total_size_bytes"],
            includes_media=bool(manifest.get("includes_media")),
            duration_seconds=round(asyncio.get_running_loop().time() - started, 3),
        )

        logger.info(
            "restore_completed",
            operation_id=operation_id,
            backup_id=record_id,
            file_count=result.restored_file_count,
            source=result.source,
            duration_seconds=result.duration_seconds,
        )
        return result


async def _run_pipeline(
    config: SnapVaultConfig,
    state: VaultState,
    reporter: ProgressReporter,
    record: BackupRecord,
    from_remote: bool,
    operation_id: str,
):
    await reporter.enter_stage(Stage.PREPARING, 0, 5)
    local_archive = _resolve_source(config, state, record, from_remote)
    if record.includes_media and config.media_path is None:
        raise ValidationError(
            "Backup contains media but no media_path is configured",
            details={"backup_id": record.id},
        )

    required = record.archive_size_bytes + record.total_size_bytes * 2
    async with staging_area(config, "restore", required) as staging:
        # Fetch
        await reporter.enter_stage(Stage.COLLECTING, 5, 30, current_item=record.id)
        if local_archive is None:
            local_archive = staging / "download.snapvault"
            with stage_errors(NetworkError, "download archive"):
                await state["remote_store"].download(
                    record.remote_id,
                    local_archive,
                    on_progress=reporter.track_bytes(),
                )
        reporter.checkpoint()

        # Decrypt
        plain_archive = staging / "archive.tar.zst"
        with stage_errors(EncryptionError, "decrypt archive"):
            await reporter.enter_stage(Stage.ENCRYPTING, 30, 55)
            secret = await state["key_provider"].get_secret()
            await decrypt_file(
                local_archive,
                plain_archive,
                secret,
                on_progress=reporter.track_bytes(),
                checkpoint=reporter.checkpoint,
            )
        if from_remote:
            local_archive.unlink()

        # Unpack
        content_dir = staging / "content"
        with stage_errors(CompressionError, "unpack archive"):
            await reporter.enter_stage(Stage.COMPRESSING, 55, 85)
            await unpack_archive(
                plain_archive,
                content_dir,
                on_progress=reporter.track_bytes(),
                checkpoint=reporter.checkpoint,
            )
            plain_archive.unlink()

        # Validate
        await reporter.enter_stage(Stage.COMPRESSING, 85, 92, current_item="validating")
        with stage_errors(ValidationError, "validate restored content"):
            manifest = load_manifest(content_dir)
            await verify_content(content_dir, manifest, record.id, record.file_count)
        includes_media = bool(manifest.get("includes_media"))
        if includes_media and config.media_path is None:
            raise ValidationError(
                "Backup contains media but no media_path is configured",
                details={"backup_id": record.id},
            )

        # Last chance to cancel; the swap itself is not interruptible
        reporter.checkpoint()

        # Swap
        await reporter.enter_stage(Stage.COMPRESSING, 92, 99, current_item="applying")
        with stage_errors(CompressionError, "replace live data"):
            _apply_restored_content(config, content_dir, includes_media, operation_id)

    return manifest
