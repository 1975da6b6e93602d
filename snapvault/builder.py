# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Builder - Functional builder pattern for configuration.

This module provides pure functions for building SnapVaultConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from pathlib import Path
from typing import Any, Callable, Dict

from snapvault.config import RemoteBackend, SnapVaultConfig


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def _as_path(value: Path | str) -> Path:
    return Path(value) if isinstance(value, str) else value


def create_empty_config() -> ConfigDict:
    """
    Create an initial empty configuration dictionary.

    Returns:
        Dict with default values for all configuration fields
    """
    return {
        "records_path": None,
        "media_path": None,
        "vault_path": Path("./snapvault_vault"),
        "key_path": None,
        "device_id": None,
        "app_version": "1.0.0",
        "remote_backend": None,
        "remote_bucket": None,
        "remote_region": "us-east-1",
        "remote_prefix": "snapvault/",
        "remote_endpoint_url": None,
        "remote_directory": None,
        "retain_local_archive": True,
        "zstd_level": 10,
        "chunk_size": 1024 * 1024,
        "upload_part_size": 8 * 1024 * 1024,
        "kdf_iterations": 100_000,
        "auto_backup_interval_hours": None,
        "auto_backup_include_media": True,
        "max_backups": None,
    }


def with_records(config: ConfigDict, records_path: Path | str) -> ConfigDict:
    """
    Set the directory holding the structured records export.

    Args:
        config: Current configuration dictionary
        records_path: Directory that is always included in backups

    Returns:
        New configuration dictionary with records_path set
    """
    return {**config, "records_path": _as_path(records_path)}


def with_media(config: ConfigDict, media_path: Path | str) -> ConfigDict:
    """
    Set the directory holding media files.

    Media is only collected when a backup is created with include_media=True.
    """
    return {**config, "media_path": _as_path(media_path)}


def enable_vault(config: ConfigDict, vault_path: Path | str) -> ConfigDict:
    """
    Configure the vault directory (catalog, archives, staging area).

    Args:
        config: Current configuration dictionary
        vault_path: Path to the vault directory

    Returns:
        New configuration dictionary with vault path set
    """
    return {**config, "vault_path": _as_path(vault_path)}


def with_key_file(config: ConfigDict, key_path: Path | str) -> ConfigDict:
    """Store the device secret somewhere other than the vault."""
    return {**config, "key_path": _as_path(key_path)}


def with_device(config: ConfigDict, device_id: str, app_version: str | None = None) -> ConfigDict:
    """Set provenance fields recorded in every backup."""
    updated = {**config, "device_id": device_id}
    if app_version:
        updated["app_version"] = app_version
    return updated


def upload_to_s3(
    config: ConfigDict,
    bucket: str,
    *,
    region: str = "us-east-1",
    prefix: str = "snapvault/",
    endpoint_url: str | None = None,
) -> ConfigDict:
    """
    Enable uploads to an S3-compatible bucket.

    Args:
        config: Current configuration dictionary
        bucket: Bucket receiving the encrypted archives
        region: AWS region
        prefix: Key prefix for uploaded archives
        endpoint_url: Custom endpoint for S3-compatible stores (MinIO, R2, ...)

    Returns:
        New configuration dictionary with the S3 remote enabled
    """
    return {
        **config,
        "remote_backend": RemoteBackend.S3,
        "remote_bucket": bucket,
        "remote_region": region,
        "remote_prefix": prefix,
        "remote_endpoint_url": endpoint_url,
    }


def upload_to_directory(config: ConfigDict, directory: Path | str) -> ConfigDict:
    """
    Enable uploads to a mounted directory (network share, external drive).
    """
    return {
        **config,
        "remote_backend": RemoteBackend.DIRECTORY,
        "remote_directory": _as_path(directory),
    }


def keep_local_archives(config: ConfigDict, keep: bool = True) -> ConfigDict:
    """
    Choose whether uploaded archives also stay on the device.

    Archives that were not uploaded are always kept locally.
    """
    return {**config, "retain_local_archive": keep}


def auto_backup_every(config: ConfigDict, hours: int, include_media: bool = True) -> ConfigDict:
    """
    Enable automatic backups.

    Args:
        config: Current configuration dictionary
        hours: Minimum number of hours between automatic backups
        include_media: Whether automatic backups collect media files

    Returns:
        New configuration dictionary with automatic backups enabled
    """
    if hours < 1:
        raise ValueError(f"auto backup interval must be >= 1 hour, got {hours}")
    return {
        **config,
        "auto_backup_interval_hours": hours,
        "auto_backup_include_media": include_media,
    }


def keep_last(config: ConfigDict, count: int) -> ConfigDict:
    """Keep at most `count` backups; older ones are pruned after each backup."""
    if count < 1:
        raise ValueError(f"backup count must be >= 1, got {count}")
    return {**config, "max_backups": count}


def with_compression_level(config: ConfigDict, level: int) -> ConfigDict:
    """Set the zstd compression level (1-22)."""
    return {**config, "zstd_level": level}


def build_config(config_dict: ConfigDict) -> SnapVaultConfig:
    """
    Validate and build an immutable SnapVaultConfig from a configuration dictionary.

    Args:
        config_dict: Configuration dictionary built using builder functions

    Returns:
        Validated, immutable SnapVaultConfig instance

    Raises:
        ConfigurationError: If validation fails
    """
    if not config_dict.get("records_path"):
        from snapvault.exceptions import ConfigurationError

        raise ConfigurationError("records_path is required")

    return SnapVaultConfig(**config_dict)


def pipe(*funcs: BuilderFunc) -> BuilderFunc:
    """
    Compose multiple builder functions into a single function.

    This allows a more readable pipeline style:

        config = pipe(
            lambda c: with_records(c, "/data/records"),
            lambda c: upload_to_s3(c, "my-backups"),
        )(create_empty_config())

    Args:
        *funcs: Builder functions to compose

    Returns:
        A single function that applies all functions in sequence
    """

    def composed(config: ConfigDict) -> ConfigDict:
        result = config
        for func in funcs:
            result = func(result)
        return result

    return composed


def build_from_steps(*steps: BuilderFunc) -> SnapVaultConfig:
    """
    Build config by applying a sequence of builder functions.

    Example:
        config = build_from_steps(
            lambda c: with_records(c, "/data/records"),
            lambda c: with_media(c, "/data/media"),
            lambda c: auto_backup_every(c, 24),
        )
    """
    config = create_empty_config()
    for step in steps:
        config = step(config)
    return build_config(config)


def create_config(
    records_path: str | Path,
    *,
    media_path: str | Path | None = None,
    vault_path: str | Path | None = None,
    remote: str | RemoteBackend | None = None,
    remote_bucket: str | None = None,
    remote_region: str = "us-east-1",
    remote_prefix: str = "snapvault/",
    remote_endpoint_url: str | None = None,
    remote_directory: str | Path | None = None,
    auto_backup_interval_hours: int | None = None,
    max_backups: int | None = None,
    **kwargs: Any,
) -> SnapVaultConfig:
    """
    Create SnapVault configuration from simple parameters.

    This is the recommended user-facing API for creating configurations.

    Args:
        records_path: Directory with the structured records export (required)
        media_path: Directory with media files (optional)
        vault_path: Vault directory (default: "./snapvault_vault")
        remote: Remote backend: "s3" or "directory" (optional)
        remote_bucket: Bucket name when remote is "s3"
        remote_region: AWS region when remote is "s3"
        remote_prefix: Key prefix when remote is "s3"
        remote_endpoint_url: Endpoint for S3-compatible stores
        remote_directory: Target directory when remote is "directory"
        auto_backup_interval_hours: Hours between automatic backups (optional)
        max_backups: Number of backups to keep (optional)
        **kwargs: Additional configuration options

    Returns:
        Validated, immutable SnapVaultConfig instance

    Example:
        config = create_config(
            "/data/app/records",
            media_path="/data/app/media",
            remote="s3",
            remote_bucket="my-app-backups",
            auto_backup_interval_hours=24,
        )
    """
    # Start with defaults
    config_dict = with_records(create_empty_config(), records_path)

    if media_path:
        config_dict = with_media(config_dict, media_path)

    if vault_path:
        config_dict = enable_vault(config_dict, vault_path)

    if remote:
        backend = RemoteBackend(remote.lower()) if isinstance(remote, str) else remote
        if backend == RemoteBackend.S3:
            config_dict = upload_to_s3(
                config_dict,
                remote_bucket or "",
                region=remote_region,
                prefix=remote_prefix,
                endpoint_url=remote_endpoint_url,
            )
        else:
            config_dict = {
                **config_dict,
                "remote_backend": RemoteBackend.DIRECTORY,
                "remote_directory": _as_path(remote_directory) if remote_directory else None,
            }

    if auto_backup_interval_hours:
        config_dict = auto_backup_every(config_dict, auto_backup_interval_hours)

    if max_backups:
        config_dict = keep_last(config_dict, max_backups)

    # Apply any additional kwargs
    for key, value in kwargs.items():
        if key in config_dict:
            config_dict[key] = value

    # Build and return validated config
    return build_config(config_dict)
