# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation to prevent
accidental modification while a backup or restore is running.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List
import re


class RemoteBackend(str, Enum):
    """Remote object store used for off-device copies."""

    S3 = "s3"
    DIRECTORY = "directory"  # Mounted network share or removable drive


# Smallest part S3 accepts for multipart uploads (except the last part)
MIN_UPLOAD_PART_SIZE = 5 * 1024 * 1024

# Cipher chunk bounds
MIN_CHUNK_SIZE = 4 * 1024
MAX_CHUNK_SIZE = 64 * 1024 * 1024


def _validate_bucket_name(bucket: str) -> bool:
    """
    Validate S3 bucket name according to AWS rules.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens
    - Must start and end with letter or number
    - No consecutive periods
    - Not formatted as IP address
    """
    if not bucket or len(bucket) < 3 or len(bucket) > 63:
        return False

    # Must be lowercase letters, numbers, hyphens, or periods
    if not re.match(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$", bucket):
        return False

    # No consecutive periods
    if ".." in bucket:
        return False

    # Not IP address format
    if re.match(r"^\d+\.\d+\.\d+\.\d+$", bucket):
        return False

    return True


def _paths_overlap(a: Path, b: Path) -> bool:
    """Check whether one path contains the other."""
    a = a.expanduser().absolute()
    b = b.expanduser().absolute()
    return a == b or a in b.parents or b in a.parents


@dataclass(frozen=True)
class SnapVaultConfig:
    """
    Immutable configuration for backup and restore.

    This configuration is frozen after creation so that an in-flight
    operation always sees the values it started with.
    """

    # Required: directory holding the structured records export
    records_path: Path

    # Directory holding media files (optional)
    media_path: Path | None = None

    # Vault directory: catalog database, archives and staging area
    vault_path: Path = field(default_factory=lambda: Path("./snapvault_vault"))

    # Device secret file (default: <vault_path>/device.key)
    key_path: Path | None = None

    # Provenance written into every backup
    device_id: str | None = None
    app_version: str = "1.0.0"

    # Remote store
    remote_backend: RemoteBackend | None = None
    remote_bucket: str | None = None
    remote_region: str = "us-east-1"
    remote_prefix: str = "snapvault/"
    remote_endpoint_url: str | None = None
    remote_directory: Path | None = None

    # Keep the encrypted archive on the device after a successful upload
    retain_local_archive: bool = True

    # zstd compression level (1-22)
    zstd_level: int = 10

    # Plaintext bytes per authenticated cipher chunk
    chunk_size: int = 1024 * 1024

    # Bytes per multipart upload part
    upload_part_size: int = 8 * 1024 * 1024

    # PBKDF2 iterations when the secret is derived from a passphrase
    kdf_iterations: int = 100_000

    # Automatic backups (hours between runs, None disables)
    auto_backup_interval_hours: int | None = None
    auto_backup_include_media: bool = True

    # Keep at most this many backups (None keeps everything)
    max_backups: int | None = None

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not self.records_path:
            errors.append("records_path is required")

        if self.media_path and self.records_path and _paths_overlap(self.records_path, self.media_path):
            errors.append("records_path and media_path must not contain each other")

        for name in ("records_path", "media_path"):
            source = getattr(self, name)
            if source and _paths_overlap(source, self.vault_path):
                errors.append(f"{name} must not overlap vault_path")

        # Validate remote configuration consistency
        if self.remote_backend == RemoteBackend.S3:
            if not self.remote_bucket or not _validate_bucket_name(self.remote_bucket):
                errors.append(f"Invalid bucket name: {self.remote_bucket}")
            if self.upload_part_size < MIN_UPLOAD_PART_SIZE:
                errors.append(
                    f"upload_part_size must be >= {MIN_UPLOAD_PART_SIZE}, got {self.upload_part_size}"
                )
        elif self.remote_backend == RemoteBackend.DIRECTORY:
            if not self.remote_directory:
                errors.append("remote_directory required when remote_backend is 'directory'")

        if not self.retain_local_archive and self.remote_backend is None:
            errors.append("retain_local_archive=False requires a remote store")

        if not 1 <= self.zstd_level <= 22:
            errors.append(f"zstd_level must be between 1 and 22, got {self.zstd_level}")

        if not MIN_CHUNK_SIZE <= self.chunk_size <= MAX_CHUNK_SIZE:
            errors.append(
                f"chunk_size must be between {MIN_CHUNK_SIZE} and {MAX_CHUNK_SIZE}, got {self.chunk_size}"
            )

        if self.kdf_iterations < 10_000:
            errors.append(f"kdf_iterations must be >= 10000, got {self.kdf_iterations}")

        if self.auto_backup_interval_hours is not None and self.auto_backup_interval_hours < 1:
            errors.append(
                f"auto_backup_interval_hours must be >= 1, got {self.auto_backup_interval_hours}"
            )

        if self.max_backups is not None and self.max_backups < 1:
            errors.append(f"max_backups must be >= 1, got {self.max_backups}")

        # Raise all errors at once
        if errors:
            from snapvault.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def resolved_key_path(self) -> Path:
        """Device secret location."""
        return self.key_path or self.vault_path / "device.key"

    @property
    def catalog_db_path(self) -> Path:
        return self.vault_path / "catalog.db"

    @property
    def archives_path(self) -> Path:
        return self.vault_path / "archives"

    @property
    def staging_root(self) -> Path:
        return self.vault_path / "staging"

    def with_updates(self, **kwargs) -> "SnapVaultConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import fields

        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(kwargs)
        return SnapVaultConfig(**current)
