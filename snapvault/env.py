# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers and backup profiles.

These helpers are small, convenient wrappers around create_config() and
SnapVaultConfig.with_updates(). They make it easy to:

- Build a configuration from environment variables
- Apply ready-made backup profiles
"""

from __future__ import annotations

import os
from pathlib import Path

from snapvault.builder import create_config
from snapvault.config import RemoteBackend, SnapVaultConfig
from snapvault.errors import (
    explain_invalid_positive_int_env,
    explain_invalid_remote_env,
    explain_missing_bucket_env,
    explain_missing_records_env,
    explain_missing_remote_directory_env,
)
from snapvault.exceptions import ConfigurationError


def _parse_remote(value: str | None) -> RemoteBackend | None:
    if not value:
        return None
    try:
        return RemoteBackend(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_remote_env(value)) from exc


def _parse_positive_int(name: str, value: str | None) -> int | None:
    if not value:
        return None
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_positive_int_env(name, value)) from exc
    if number < 1:
        raise ConfigurationError(explain_invalid_positive_int_env(name, value))
    return number


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def create_config_from_env() -> SnapVaultConfig:
    """
    Create a SnapVaultConfig from environment variables.

    Required:
        - SNAPVAULT_RECORDS_PATH: Directory with the structured records export

    Optional environment variables:
        - SNAPVAULT_MEDIA_PATH: Directory with media files
        - SNAPVAULT_VAULT_PATH: Vault directory (default: ./snapvault_vault)
        - SNAPVAULT_KEY_PATH: Device secret file (default: <vault>/device.key)
        - SNAPVAULT_DEVICE_ID: Device identifier recorded in backups
        - SNAPVAULT_REMOTE: 's3' | 'directory' (default: local-only)
        - SNAPVAULT_S3_BUCKET / AWS_REGION / SNAPVAULT_S3_PREFIX / SNAPVAULT_S3_ENDPOINT_URL
        - SNAPVAULT_REMOTE_DIR: Target directory for the 'directory' remote
        - SNAPVAULT_KEEP_LOCAL: Keep archives on device after upload (default: true)
        - SNAPVAULT_AUTO_BACKUP_HOURS: Hours between automatic backups
        - SNAPVAULT_MAX_BACKUPS: Number of backups to keep
    """

    records_path = os.getenv("SNAPVAULT_RECORDS_PATH")
    if not records_path:
        raise ConfigurationError(explain_missing_records_env())

    remote = _parse_remote(os.getenv("SNAPVAULT_REMOTE"))
    bucket = os.getenv("SNAPVAULT_S3_BUCKET")
    remote_dir = os.getenv("SNAPVAULT_REMOTE_DIR")

    if remote == RemoteBackend.S3 and not bucket:
        raise ConfigurationError(explain_missing_bucket_env())
    if remote == RemoteBackend.DIRECTORY and not remote_dir:
        raise ConfigurationError(explain_missing_remote_directory_env())

    vault_path_env = os.getenv("SNAPVAULT_VAULT_PATH")
    key_path_env = os.getenv("SNAPVAULT_KEY_PATH")

    return create_config(
        records_path,
        media_path=os.getenv("SNAPVAULT_MEDIA_PATH") or None,
        vault_path=Path(vault_path_env) if vault_path_env else None,
        remote=remote,
        remote_bucket=bucket,
        remote_region=os.getenv("AWS_REGION", "us-east-1"),
        remote_prefix=os.getenv("SNAPVAULT_S3_PREFIX", "snapvault/"),
        remote_endpoint_url=os.getenv("SNAPVAULT_S3_ENDPOINT_URL") or None,
        remote_directory=remote_dir,
        auto_backup_interval_hours=_parse_positive_int(
            "SNAPVAULT_AUTO_BACKUP_HOURS", os.getenv("SNAPVAULT_AUTO_BACKUP_HOURS")
        ),
        max_backups=_parse_positive_int("SNAPVAULT_MAX_BACKUPS", os.getenv("SNAPVAULT_MAX_BACKUPS")),
        key_path=Path(key_path_env) if key_path_env else None,
        device_id=os.getenv("SNAPVAULT_DEVICE_ID") or None,
        retain_local_archive=_parse_bool(os.getenv("SNAPVAULT_KEEP_LOCAL"), True),
    )


# ============================================================================
# Profiles
# ============================================================================

def local_only(config: SnapVaultConfig) -> SnapVaultConfig:
    """
    Keep every backup on the device.

    - Disables the remote store
    - Always retains local archives
    """

    return config.with_updates(
        remote_backend=None,
        retain_local_archive=True,
    )


def cloud_mirrored(config: SnapVaultConfig) -> SnapVaultConfig:
    """
    Daily automatic backups mirrored to the configured remote store.

    - Automatic backup at least once a day
    - Local archives retained as the safety net
    - Keeps the 7 most recent backups unless a smaller limit is set
    """

    if config.remote_backend is None:
        raise ConfigurationError("cloud_mirrored() requires a configured remote store")

    return config.with_updates(
        auto_backup_interval_hours=min(config.auto_backup_interval_hours or 24, 24),
        retain_local_archive=True,
        max_backups=min(config.max_backups or 7, 7),
    )
