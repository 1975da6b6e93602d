# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Critical Safety Tests for SnapVault.

These tests verify the core safety guarantees:
1. Round trip - A restored backup is byte-identical to the source data
2. Tamper evidence - Any modified or truncated archive is rejected
3. No partial state - Failed or cancelled backups leave nothing behind
4. Live data safety - A failed restore never touches live data
5. Mutual exclusion - Only one operation runs at a time
6. Catalog consistency - Deleting a backup never leaves dangling records

These tests MUST pass before any release.
"""

import asyncio
import shutil
from pathlib import Path

import aiosqlite
import pytest

import snapvault.backup.create as create_module
from snapvault.backup import create_backup, delete_backup, purge_pending_deletions, restore_backup
from snapvault.core import initialize_state, list_backups
from snapvault.exceptions import (
    CatalogError,
    CollectionError,
    CompressionError,
    ConcurrencyError,
    EncryptionError,
    IntegrityError,
    NetworkError,
    NotFoundError,
    OperationCancelled,
    ValidationError,
)
from snapvault.progress import CancelToken, Stage
from snapvault.vault import list_operations, list_pending_deletions

from conftest import (
    LARGE_MEDIA_SIZE,
    SMALL_MEDIA_SIZE,
    FailingRemoteStore,
    archive_files,
    remote_blobs,
    snapshot_tree,
    staging_entries,
)


async def _operations(state, kind=None):
    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        return await list_operations(db, kind=kind)


# ============================================================================
# Test 1: ROUND TRIP
# ============================================================================

@pytest.mark.asyncio
async def test_round_trip_restores_identical_bytes(local_config, local_state, app_data):
    """
    CRITICAL: Restoring a backup must reproduce every source file exactly.
    """
    records_before = snapshot_tree(app_data["records"])
    media_before = snapshot_tree(app_data["media"])

    record = await create_backup(local_config, local_state)

    # Change live data after the backup
    (app_data["records"] / "record_00.json").write_text("overwritten", encoding="utf-8")
    (app_data["records"] / "record_02.json").unlink()
    (app_data["records"] / "new_record.json").write_text("{}", encoding="utf-8")
    (app_data["media"] / "thumb.jpg").unlink()

    result = await restore_backup(local_config, local_state, record.id)

    assert snapshot_tree(app_data["records"]) == records_before
    assert snapshot_tree(app_data["media"]) == media_before
    assert result.restored_file_count == record.file_count
    assert result.source == "local"
    assert staging_entries(local_config) == []

    # No swap leftovers next to the live directories
    leftovers = [p.name for p in app_data["records"].parent.iterdir() if p.name.startswith(".")]
    assert leftovers == []


@pytest.mark.asyncio
async def test_example_scenario_remote_backup_and_restore(test_config, test_state, app_data):
    """
    CRITICAL: 10 records + 2 media files backed up with upload, then restored
    from the remote copy on a wiped device.
    """
    records_before = snapshot_tree(app_data["records"])
    media_before = snapshot_tree(app_data["media"])
    source_bytes = sum(len(b) for b in records_before.values()) + sum(
        len(b) for b in media_before.values()
    )

    record = await create_backup(test_config, test_state, include_media=True, upload_remote=True)

    assert record.file_count == 12
    assert record.total_size_bytes == source_bytes
    assert SMALL_MEDIA_SIZE + LARGE_MEDIA_SIZE < record.total_size_bytes < 510 * 1024
    assert record.is_encrypted is True
    assert record.remote_id == f"{record.id}.snapvault"
    assert record.includes_media is True
    assert record.device_id == "test-device"
    assert remote_blobs(test_config) == [record.remote_id]

    # Wipe the device's data and local archive
    shutil.rmtree(app_data["records"])
    shutil.rmtree(app_data["media"])
    Path(record.local_archive_path).unlink()

    result = await restore_backup(test_config, test_state, record.id, from_remote=True)

    assert result.source == "remote"
    assert result.restored_file_count == 12
    assert snapshot_tree(app_data["records"]) == records_before
    assert snapshot_tree(app_data["media"]) == media_before


@pytest.mark.asyncio
async def test_backup_without_media_leaves_media_untouched_on_restore(
    local_config, local_state, app_data
):
    """Restoring a records-only backup must not touch the media directory."""
    record = await create_backup(local_config, local_state, include_media=False)
    assert record.file_count == 10
    assert record.includes_media is False

    (app_data["media"] / "new_photo.jpg").write_bytes(b"\xff\xd8\xff")
    media_before = snapshot_tree(app_data["media"])

    await restore_backup(local_config, local_state, record.id)

    assert snapshot_tree(app_data["media"]) == media_before


# ============================================================================
# Test 2: TAMPER EVIDENCE
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("offset", [0, 4, 10, 30, 40, -20, -1])
async def test_flipped_bit_is_rejected_and_live_data_unchanged(
    local_config, local_state, app_data, offset
):
    """
    CRITICAL: A single flipped bit anywhere in the archive must fail the
    restore with IntegrityError and leave live data untouched.
    """
    record = await create_backup(local_config, local_state)
    archive = Path(record.local_archive_path)

    data = bytearray(archive.read_bytes())
    data[offset] ^= 0x01
    archive.write_bytes(bytes(data))

    (app_data["records"] / "record_00.json").write_text("changed after backup", encoding="utf-8")
    records_before = snapshot_tree(app_data["records"])
    media_before = snapshot_tree(app_data["media"])

    with pytest.raises(IntegrityError):
        await restore_backup(local_config, local_state, record.id)

    assert snapshot_tree(app_data["records"]) == records_before
    assert snapshot_tree(app_data["media"]) == media_before
    assert staging_entries(local_config) == []

    operations = await _operations(local_state, kind="restore")
    assert operations[0]["status"] == "failed"


@pytest.mark.asyncio
@pytest.mark.parametrize("keep", [0, 10, 32, 100])
async def test_truncated_archive_is_rejected(local_config, local_state, app_data, keep):
    """CRITICAL: A truncated archive must never be partially restored."""
    record = await create_backup(local_config, local_state)
    archive = Path(record.local_archive_path)
    archive.write_bytes(archive.read_bytes()[:keep])

    records_before = snapshot_tree(app_data["records"])

    with pytest.raises(IntegrityError):
        await restore_backup(local_config, local_state, record.id)

    assert snapshot_tree(app_data["records"]) == records_before


@pytest.mark.asyncio
async def test_archive_of_another_backup_fails_validation(local_config, local_state, app_data):
    """An authentic archive that belongs to a different backup must be refused."""
    first = await create_backup(local_config, local_state)
    (app_data["records"] / "extra.json").write_text("{}", encoding="utf-8")
    second = await create_backup(local_config, local_state)

    shutil.copyfile(first.local_archive_path, second.local_archive_path)
    records_before = snapshot_tree(app_data["records"])

    with pytest.raises(ValidationError):
        await restore_backup(local_config, local_state, second.id)

    assert snapshot_tree(app_data["records"]) == records_before


# ============================================================================
# Test 3: NO PARTIAL STATE ON FAILURE
# ============================================================================

async def _async_failure(*args, **kwargs):
    raise RuntimeError("injected failure")


def _sync_failure(*args, **kwargs):
    raise RuntimeError("injected failure")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "target,replacement,expected",
    [
        ("collect_sources", _async_failure, CollectionError),
        ("pack_archive", _async_failure, CompressionError),
        ("encrypt_file", _async_failure, EncryptionError),
        ("commit_archive", _sync_failure, CatalogError),
        ("append_record", _async_failure, CatalogError),
    ],
)
async def test_failed_stage_leaves_no_partial_state(
    test_config, test_state, monkeypatch, target, replacement, expected
):
    """
    CRITICAL: A failure at any stage must raise that stage's error and
    remove staging files, uploaded blobs and uncatalogued archives.
    """
    monkeypatch.setattr(create_module, target, replacement)
    states = []

    with pytest.raises(expected):
        await create_backup(test_config, test_state, upload_remote=True, on_progress=states.append)

    assert staging_entries(test_config) == []
    assert archive_files(test_config) == []
    assert remote_blobs(test_config) == []
    assert await list_backups(test_state) == []
    assert states[-1].stage == Stage.FAILED
    assert test_state["guard"].busy is False

    operations = await _operations(test_state, kind="backup")
    assert operations[0]["status"] == "failed"
    assert "injected failure" in operations[0]["error"]


@pytest.mark.asyncio
async def test_upload_failure_keeps_local_backup(test_config, test_state):
    """
    CRITICAL: When the upload fails the local archive is the safety net:
    it is committed as a local-only backup and the error carries the record.
    """
    test_state["remote_store"] = FailingRemoteStore(fail_upload=True)

    with pytest.raises(NetworkError) as exc_info:
        await create_backup(test_config, test_state, upload_remote=True)

    record = exc_info.value.record
    assert record is not None
    assert record.remote_id is None
    assert Path(record.local_archive_path).is_file()
    assert [r.id for r in await list_backups(test_state)] == [record.id]
    assert staging_entries(test_config) == []


@pytest.mark.asyncio
async def test_missing_records_directory_fails_collection(local_config, local_state, app_data):
    shutil.rmtree(app_data["records"])

    with pytest.raises(CollectionError):
        await create_backup(local_config, local_state)

    assert staging_entries(local_config) == []


@pytest.mark.asyncio
async def test_stale_staging_is_swept_on_startup(local_config):
    stale = local_config.staging_root / "backup-crashed"
    stale.mkdir(parents=True)
    (stale / "archive.tar.zst").write_bytes(b"partial")

    await initialize_state(local_config)

    assert staging_entries(local_config) == []


# ============================================================================
# Test 4: CANCELLATION
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("cancel_at", [Stage.COLLECTING, Stage.COMPRESSING, Stage.ENCRYPTING, Stage.UPLOADING])
async def test_cancelled_backup_leaves_no_partial_state(test_config, test_state, cancel_at):
    """CRITICAL: Cancellation at any stage cleans up exactly like a failure."""
    token = CancelToken()

    def sink(progress):
        if progress.stage == cancel_at:
            token.cancel()

    with pytest.raises(OperationCancelled):
        await create_backup(
            test_config, test_state, upload_remote=True, on_progress=sink, cancel_token=token
        )

    assert staging_entries(test_config) == []
    assert archive_files(test_config) == []
    assert remote_blobs(test_config) == []
    assert await list_backups(test_state) == []

    operations = await _operations(test_state, kind="backup")
    assert operations[0]["status"] == "cancelled"


@pytest.mark.asyncio
async def test_task_cancellation_cleans_up_and_releases_guard(local_config, local_state):
    entered = asyncio.Event()
    never = asyncio.Event()

    async def sink(progress):
        if progress.stage == Stage.COLLECTING and not entered.is_set():
            entered.set()
            await never.wait()

    task = asyncio.create_task(create_backup(local_config, local_state, on_progress=sink))
    await entered.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert local_state["guard"].busy is False
    assert staging_entries(local_config) == []
    assert await list_backups(local_state) == []


@pytest.mark.asyncio
async def test_cancelled_restore_leaves_live_data_unchanged(local_config, local_state, app_data):
    record = await create_backup(local_config, local_state)
    (app_data["records"] / "record_01.json").write_text("newer", encoding="utf-8")
    records_before = snapshot_tree(app_data["records"])

    token = CancelToken()

    def sink(progress):
        if progress.stage == Stage.COMPRESSING:
            token.cancel()

    with pytest.raises(OperationCancelled):
        await restore_backup(local_config, local_state, record.id, on_progress=sink, cancel_token=token)

    assert snapshot_tree(app_data["records"]) == records_before
    assert staging_entries(local_config) == []


@pytest.mark.asyncio
async def test_failed_media_swap_rolls_back_records(
    local_config, local_state, app_data, monkeypatch
):
    """If media cannot be swapped in, the already swapped records are put back."""
    record = await create_backup(local_config, local_state)
    (app_data["records"] / "record_00.json").write_text("edited after backup", encoding="utf-8")
    (app_data["media"] / "thumb.jpg").write_bytes(b"new thumbnail")
    records_before = snapshot_tree(app_data["records"])
    media_before = snapshot_tree(app_data["media"])

    original_rename = Path.rename

    def rename(self, target):
        if self.name.startswith(".media.incoming-"):
            raise OSError("Device or resource busy")
        return original_rename(self, target)

    monkeypatch.setattr(Path, "rename", rename)

    with pytest.raises(CompressionError):
        await restore_backup(local_config, local_state, record.id)

    assert snapshot_tree(app_data["records"]) == records_before
    assert snapshot_tree(app_data["media"]) == media_before
    assert sorted(p.name for p in app_data["records"].parent.iterdir()) == ["media", "records"]
    assert staging_entries(local_config) == []

    operations = await _operations(local_state, kind="restore")
    assert operations[0]["status"] == "failed"


# ============================================================================
# Test 5: PROGRESS
# ============================================================================

@pytest.mark.asyncio
async def test_progress_is_monotonic_and_completes_at_100(test_config, test_state):
    states = []

    await create_backup(test_config, test_state, upload_remote=True, on_progress=states.append)

    percents = [s.percent for s in states]
    assert percents == sorted(percents)
    assert all(0 <= p <= 100 for p in percents)
    assert states[-1].stage == Stage.COMPLETED
    assert states[-1].percent == 100
    assert all(s.percent < 100 for s in states[:-1])

    stages = []
    for s in states:
        if not stages or stages[-1] != s.stage:
            stages.append(s.stage)
    assert stages == [
        Stage.PREPARING,
        Stage.COLLECTING,
        Stage.COMPRESSING,
        Stage.ENCRYPTING,
        Stage.UPLOADING,
        Stage.COMPLETED,
    ]

    collecting = [s for s in states if s.stage == Stage.COLLECTING and s.current_item]
    assert len(collecting) == 12
    assert collecting[-1].processed_items == collecting[-1].total_items == 12


@pytest.mark.asyncio
async def test_restore_progress_is_monotonic(local_config, local_state):
    record = await create_backup(local_config, local_state)
    states = []

    await restore_backup(local_config, local_state, record.id, on_progress=states.append)

    percents = [s.percent for s in states]
    assert percents == sorted(percents)
    assert states[-1].stage == Stage.COMPLETED
    assert all(s.operation == "restore" for s in states)


@pytest.mark.asyncio
async def test_broken_progress_sink_does_not_abort_backup(local_config, local_state):
    def sink(progress):
        raise RuntimeError("renderer crashed")

    record = await create_backup(local_config, local_state, on_progress=sink)

    assert record.file_count == 12


# ============================================================================
# Test 6: MUTUAL EXCLUSION
# ============================================================================

@pytest.mark.asyncio
async def test_second_operation_is_rejected_while_backup_runs(local_config, local_state):
    """CRITICAL: Only one backup, restore or delete may run at a time."""
    existing = await create_backup(local_config, local_state)

    entered = asyncio.Event()
    release = asyncio.Event()

    async def sink(progress):
        if progress.stage == Stage.COLLECTING and not entered.is_set():
            entered.set()
            await release.wait()

    first = asyncio.create_task(create_backup(local_config, local_state, on_progress=sink))
    await entered.wait()

    with pytest.raises(ConcurrencyError):
        await create_backup(local_config, local_state)
    with pytest.raises(ConcurrencyError):
        await restore_backup(local_config, local_state, existing.id)
    with pytest.raises(ConcurrencyError):
        await delete_backup(local_config, local_state, existing.id)

    release.set()
    record = await first

    assert record.file_count == 12
    assert len(await list_backups(local_state)) == 2

    # Guard is free again
    await create_backup(local_config, local_state)


# ============================================================================
# Test 7: CATALOG CONSISTENCY ON DELETE
# ============================================================================

@pytest.mark.asyncio
async def test_delete_removes_record_and_blobs(test_config, test_state):
    first = await create_backup(test_config, test_state, upload_remote=True)
    second = await create_backup(test_config, test_state, upload_remote=True)

    report = await delete_backup(test_config, test_state, first.id)

    assert report.ok
    assert report.local_deleted and report.remote_deleted
    assert [r.id for r in await list_backups(test_state)] == [second.id]
    assert not Path(first.local_archive_path).exists()
    assert remote_blobs(test_config) == [second.remote_id]
    assert Path(second.local_archive_path).is_file()


@pytest.mark.asyncio
async def test_delete_reports_blob_failures_and_purge_retries(test_config, test_state):
    """
    CRITICAL: A failed blob deletion is reported, never swallowed, and stays
    scheduled so the blob cannot leak silently.
    """
    record = await create_backup(test_config, test_state, upload_remote=True)
    directory_store = test_state["remote_store"]
    test_state["remote_store"] = FailingRemoteStore(fail_delete=True)

    report = await delete_backup(test_config, test_state, record.id)

    assert report.catalog_removed
    assert report.local_deleted
    assert not report.remote_deleted
    assert "Connection refused" in report.remote_error
    assert report.ok is False
    assert await list_backups(test_state) == []

    async with aiosqlite.connect(test_state["catalog_db_path"]) as db:
        pending = await list_pending_deletions(db)
    assert [(p["target"], p["reference"], p["attempts"]) for p in pending] == [
        ("remote", record.remote_id, 1)
    ]

    test_state["remote_store"] = directory_store
    purged = await purge_pending_deletions(test_config, test_state)

    assert purged == 1
    assert remote_blobs(test_config) == []
    async with aiosqlite.connect(test_state["catalog_db_path"]) as db:
        assert await list_pending_deletions(db) == []


@pytest.mark.asyncio
async def test_delete_unknown_backup_raises_not_found(local_config, local_state):
    with pytest.raises(NotFoundError):
        await delete_backup(local_config, local_state, "01HZZZZZZZZZZZZZZZZZZZZZZZ")


@pytest.mark.asyncio
async def test_restore_of_missing_remote_copy_raises_not_found(local_config, local_state):
    record = await create_backup(local_config, local_state)

    with pytest.raises(NotFoundError):
        await restore_backup(local_config, local_state, record.id, from_remote=True)
