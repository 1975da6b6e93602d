# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for SnapVault tests.

Provides a sample app data set, test configuration, initialized runtime
state and remote store fakes.
"""

import tempfile
from pathlib import Path
from typing import Dict, Generator

import pytest
import pytest_asyncio

from snapvault.exceptions import NetworkError, NotFoundError

RECORD_COUNT = 10
SMALL_MEDIA_SIZE = 3 * 1024
LARGE_MEDIA_SIZE = 500 * 1024


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def app_data(temp_dir: Path) -> Dict[str, Path]:
    """
    Create the example data set: 10 record files and 2 media files
    (3 KB and 500 KB).
    """
    records = temp_dir / "app" / "records"
    media = temp_dir / "app" / "media"
    (records / "sessions").mkdir(parents=True)
    media.mkdir(parents=True)

    for i in range(RECORD_COUNT):
        subdir = records / "sessions" if i % 2 else records
        (subdir / f"record_{i:02d}.json").write_text(
            f'{{"id": {i}, "title": "Session {i}", "notes": "{"x" * (100 + i)}"}}',
            encoding="utf-8",
        )

    (media / "thumb.jpg").write_bytes(bytes(range(256)) * (SMALL_MEDIA_SIZE // 256))
    (media / "recording.m4a").write_bytes(
        bytes((i * 7) % 251 for i in range(LARGE_MEDIA_SIZE))
    )

    return {"records": records, "media": media}


def snapshot_tree(root: Path) -> Dict[str, bytes]:
    """Map of relative path -> content for every file under root."""
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


@pytest.fixture
def test_config(temp_dir: Path, app_data: Dict[str, Path]):
    """Create a test configuration with a directory remote store."""
    from snapvault.config import RemoteBackend, SnapVaultConfig

    return SnapVaultConfig(
        records_path=app_data["records"],
        media_path=app_data["media"],
        vault_path=temp_dir / "vault",
        device_id="test-device",
        app_version="2.3.0",
        remote_backend=RemoteBackend.DIRECTORY,
        remote_directory=temp_dir / "remote",
        chunk_size=64 * 1024,
        zstd_level=3,
    )


@pytest.fixture
def local_config(test_config):
    """Create a test configuration without a remote store."""
    return test_config.with_updates(remote_backend=None, remote_directory=None)


@pytest_asyncio.fixture
async def test_state(test_config):
    """Create initialized runtime state for testing."""
    from snapvault.core import initialize_state, shutdown_state

    state = await initialize_state(test_config)
    yield state
    await shutdown_state(state)


@pytest_asyncio.fixture
async def local_state(local_config):
    """Create initialized runtime state without a remote store."""
    from snapvault.core import initialize_state, shutdown_state

    state = await initialize_state(local_config)
    yield state
    await shutdown_state(state)


class FailingRemoteStore:
    """Remote store whose operations fail with NetworkError on demand."""

    def __init__(self, fail_upload: bool = True, fail_download: bool = True, fail_delete: bool = True):
        self.fail_upload = fail_upload
        self.fail_download = fail_download
        self.fail_delete = fail_delete
        self.blobs: Dict[str, bytes] = {}
        self.deleted: list = []

    async def upload(self, path: Path, name: str, on_progress=None) -> str:
        if self.fail_upload:
            raise NetworkError("Connection reset by peer", details={"name": name})
        self.blobs[name] = path.read_bytes()
        if on_progress is not None:
            await on_progress(len(self.blobs[name]), len(self.blobs[name]))
        return name

    async def download(self, remote_id: str, destination: Path, on_progress=None) -> Path:
        if self.fail_download:
            raise NetworkError("Connection timed out", details={"remote_id": remote_id})
        if remote_id not in self.blobs:
            raise NotFoundError("Remote backup not found", details={"remote_id": remote_id})
        destination.write_bytes(self.blobs[remote_id])
        return destination

    async def delete(self, remote_id: str) -> None:
        if self.fail_delete:
            raise NetworkError("Connection refused", details={"remote_id": remote_id})
        if remote_id not in self.blobs:
            raise NotFoundError("Remote backup not found", details={"remote_id": remote_id})
        del self.blobs[remote_id]
        self.deleted.append(remote_id)


def staging_entries(config) -> list:
    """Entries currently in the vault staging directory."""
    if not config.staging_root.exists():
        return []
    return list(config.staging_root.iterdir())


def archive_files(config) -> list:
    """Committed local archives."""
    if not config.archives_path.exists():
        return []
    return sorted(config.archives_path.iterdir())


def remote_blobs(config) -> list:
    """Blobs in the directory remote store."""
    if config.remote_directory is None or not config.remote_directory.exists():
        return []
    return sorted(p.name for p in config.remote_directory.iterdir())
