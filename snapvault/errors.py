# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for SnapVault.

These helpers centralize wording for common configuration errors and for
the terminal failure of a backup or restore, so that every caller presents
consistent, actionable messages.
"""

from snapvault.exceptions import (
    CatalogError,
    CollectionError,
    CompressionError,
    ConcurrencyError,
    ConfigurationError,
    EncryptionError,
    IntegrityError,
    NetworkError,
    NotFoundError,
    OperationCancelled,
    PreparationError,
    ValidationError,
)


def explain_missing_records_env() -> str:
    """
    Explain that the records directory environment variable is missing.
    """

    return (
        "Records directory is not configured. "
        "Set the SNAPVAULT_RECORDS_PATH environment variable or pass records_path=... to create_config()."
    )


def explain_missing_bucket_env() -> str:
    """
    Explain that S3 upload was requested without a bucket.
    """

    return (
        "SNAPVAULT_REMOTE is 's3' but no bucket is configured. "
        "Set the SNAPVAULT_S3_BUCKET environment variable or pass remote_bucket=... to create_config()."
    )


def explain_missing_remote_directory_env() -> str:
    """
    Explain that directory upload was requested without a target directory.
    """

    return (
        "SNAPVAULT_REMOTE is 'directory' but no target is configured. "
        "Set the SNAPVAULT_REMOTE_DIR environment variable to a mounted directory."
    )


def explain_invalid_remote_env(value: str | None) -> str:
    """
    Explain that SNAPVAULT_REMOTE is invalid.
    """

    return (
        f"Invalid SNAPVAULT_REMOTE value: {value!r}. "
        "Expected 's3' or 'directory', or leave unset for local-only backups."
    )


def explain_invalid_positive_int_env(name: str, value: str | None) -> str:
    """
    Explain that a numeric environment variable is invalid.
    """

    return f"Invalid {name} value: {value!r}. It must be a positive integer."


def explain_remote_not_configured() -> str:
    """
    Explain that an upload or remote restore was requested without a remote store.
    """

    return (
        "No remote store is configured, so backups cannot be uploaded or downloaded. "
        "Configure one with upload_to_s3()/upload_to_directory() or SNAPVAULT_REMOTE."
    )


_FAILURE_MESSAGES = [
    (ConcurrencyError, "Another backup or restore is already running. Wait for it to finish and try again."),
    (IntegrityError, "The backup is corrupted or was tampered with and cannot be restored."),
    (NetworkError, "The remote backup store could not be reached. Check the network connection and retry."),
    (NotFoundError, "The requested backup no longer exists."),
    (ValidationError, "The backup is incomplete and was not applied. Your current data is unchanged."),
    (OperationCancelled, "The operation was cancelled. No changes were made."),
    (PreparationError, "There is not enough free space to prepare the backup."),
    (CollectionError, "Some app data could not be read, so the backup was not created."),
    (CompressionError, "The backup archive could not be written or unpacked."),
    (EncryptionError, "The backup could not be encrypted. Check that the device key is available."),
    (CatalogError, "The backup list could not be updated."),
    (ConfigurationError, "Backups are not configured correctly."),
]


def describe_failure(error: BaseException) -> str:
    """
    Return a short, actionable message for a failed backup or restore.

    Args:
        error: The exception raised by an orchestrator

    Returns:
        A message suitable for showing to an end user
    """
    for kind, message in _FAILURE_MESSAGES:
        if isinstance(error, kind):
            return message
    return "The operation failed unexpectedly."
