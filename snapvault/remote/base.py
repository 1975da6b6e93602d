# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Remote Store Adapter - Capability interface for off-device backup copies.

The pipeline only needs three operations. Every failure surfaces as
NetworkError (retryable by the caller) or NotFoundError.
"""

from pathlib import Path
from typing import Protocol

from snapvault.progress import TransferCallback


class RemoteStore(Protocol):
    """Object store holding encrypted archives."""

    async def upload(
        self,
        path: Path,
        name: str,
        on_progress: TransferCallback | None = None,
    ) -> str:
        """
        Upload the blob at `path` under `name`.

        Returns:
            Remote id used for later download/delete

        Raises:
            NetworkError: If the transfer fails; no partial blob remains
        """
        ...

    async def download(
        self,
        remote_id: str,
        destination: Path,
        on_progress: TransferCallback | None = None,
    ) -> Path:
        """
        Download a blob into `destination`.

        Raises:
            NotFoundError: If the blob does not exist
            NetworkError: If the transfer fails
        """
        ...

    async def delete(self, remote_id: str) -> None:
        """
        Delete a blob.

        Raises:
            NotFoundError: If the blob does not exist
            NetworkError: If the store cannot be reached
        """
        ...
