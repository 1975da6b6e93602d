# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Remote - Off-device storage for encrypted archives.
"""

from snapvault.config import RemoteBackend, SnapVaultConfig
from snapvault.remote.base import RemoteStore
from snapvault.remote.directory import DirectoryRemoteStore
from snapvault.remote.s3 import S3RemoteStore


def create_remote_store(config: SnapVaultConfig) -> RemoteStore | None:
    """
    Build the remote store described by the configuration.

    Returns:
        A RemoteStore, or None for local-only setups
    """
    if config.remote_backend == RemoteBackend.S3:
        return S3RemoteStore(
            config.remote_bucket or "",
            region=config.remote_region,
            prefix=config.remote_prefix,
            endpoint_url=config.remote_endpoint_url,
            part_size=config.upload_part_size,
        )
    if config.remote_backend == RemoteBackend.DIRECTORY and config.remote_directory:
        return DirectoryRemoteStore(config.remote_directory)
    return None


__all__ = [
    "RemoteStore",
    "S3RemoteStore",
    "DirectoryRemoteStore",
    "create_remote_store",
]
