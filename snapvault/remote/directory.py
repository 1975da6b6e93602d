# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Directory Remote Store - Encrypted archives in a mounted directory.

Useful for network shares and removable drives. Uploads are written to a
temporary name and renamed, so a failed transfer never leaves a blob under
its final name. An unreachable mount surfaces as NetworkError.
"""

from pathlib import Path

import aiofiles
import structlog

from snapvault.exceptions import NetworkError, NotFoundError
from snapvault.progress import TransferCallback

logger = structlog.get_logger()

_COPY_CHUNK = 1024 * 1024


async def _copy(
    source: Path,
    destination: Path,
    on_progress: TransferCallback | None,
) -> int:
    total = source.stat().st_size
    copied = 0
    async with aiofiles.open(source, "rb") as src, aiofiles.open(destination, "wb") as dst:
        while True:
            chunk = await src.read(_COPY_CHUNK)
            if not chunk:
                break
            await dst.write(chunk)
            copied += len(chunk)
            if on_progress is not None:
                await on_progress(copied, total)
    return copied


class DirectoryRemoteStore:
    """RemoteStore backed by a directory; the remote id is the file name."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _blob_path(self, remote_id: str) -> Path:
        if not remote_id or "/" in remote_id or "\\" in remote_id or remote_id in (".", ".."):
            raise NotFoundError("Invalid remote id", details={"remote_id": remote_id})
        return self.root / remote_id

    async def upload(
        self,
        path: Path,
        name: str,
        on_progress: TransferCallback | None = None,
    ) -> str:
        target = self._blob_path(name)
        temp = target.with_name(f".{target.name}.partial")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            size = await _copy(path, temp, on_progress)
            temp.replace(target)
        except OSError as e:
            temp.unlink(missing_ok=True)
            raise NetworkError(
                f"Upload failed: {e}",
                details={"root": str(self.root), "name": name},
            ) from e
        except BaseException:
            temp.unlink(missing_ok=True)
            raise

        logger.info("remote_upload_complete", root=str(self.root), name=name, size=size)
        return name

    async def download(
        self,
        remote_id: str,
        destination: Path,
        on_progress: TransferCallback | None = None,
    ) -> Path:
        source = self._blob_path(remote_id)
        if not self.root.is_dir():
            raise NetworkError("Remote directory is not reachable", details={"root": str(self.root)})
        if not source.is_file():
            raise NotFoundError("Remote backup not found", details={"remote_id": remote_id})
        try:
            size = await _copy(source, destination, on_progress)
        except OSError as e:
            raise NetworkError(
                f"Download failed: {e}",
                details={"root": str(self.root), "remote_id": remote_id},
            ) from e

        logger.info("remote_download_complete", root=str(self.root), remote_id=remote_id, size=size)
        return destination

    async def delete(self, remote_id: str) -> None:
        blob = self._blob_path(remote_id)
        if not self.root.is_dir():
            raise NetworkError("Remote directory is not reachable", details={"root": str(self.root)})
        try:
            blob.unlink()
        except FileNotFoundError as e:
            raise NotFoundError("Remote backup not found", details={"remote_id": remote_id}) from e
        except OSError as e:
            raise NetworkError(
                f"Delete failed: {e}",
                details={"root": str(self.root), "remote_id": remote_id},
            ) from e

        logger.info("remote_blob_deleted", root=str(self.root), remote_id=remote_id)
