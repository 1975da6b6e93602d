# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Exceptions - Custom exceptions for the snapvault package.

Every pipeline stage raises exactly one of these kinds so that callers can
tell "no network" apart from "corrupted backup" without inspecting stage
internals.
"""


class SnapVaultError(Exception):
    """Base exception for all SnapVault errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(SnapVaultError):
    """Raised when configuration is invalid."""

    pass


class CatalogError(SnapVaultError):
    """Raised when the backup catalog cannot be read or written."""

    pass


class PreparationError(SnapVaultError):
    """Raised when the staging area cannot be allocated."""

    pass


class CollectionError(SnapVaultError):
    """Raised when source data cannot be read."""

    pass


class CompressionError(SnapVaultError):
    """Raised when packing or unpacking the archive fails."""

    pass


class EncryptionError(SnapVaultError):
    """Raised when the archive cannot be encrypted or the key is unusable."""

    pass


class IntegrityError(SnapVaultError):
    """
    Raised when an encrypted archive fails authentication.

    Always fatal to a restore. Never retried automatically.
    """

    pass


class NetworkError(SnapVaultError):
    """
    Raised when a remote store transfer fails.

    Retryable by the caller. When raised from create_backup after the local
    archive was committed, ``record`` holds the local-only BackupRecord.
    """

    def __init__(self, message: str, details: dict | None = None, record=None):
        super().__init__(message, details)
        self.record = record


class NotFoundError(SnapVaultError):
    """Raised for an unknown backup id or a missing remote blob."""

    pass


class ConcurrencyError(SnapVaultError):
    """Raised when another backup or restore operation is already running."""

    pass


class ValidationError(SnapVaultError):
    """Raised when restored content fails structural checks."""

    pass


class OperationCancelled(SnapVaultError):
    """Raised when the caller cancelled an operation at a safe checkpoint."""

    pass
