# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Key Providers - Device-held secrets for archive encryption.

The secret never leaves the device and is never logged; only its short
fingerprint (key_id) appears in log events.
"""

import asyncio
import hashlib
import os
import secrets
from pathlib import Path
from typing import Protocol

import aiofiles
import structlog
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from snapvault.exceptions import EncryptionError

logger = structlog.get_logger()

SECRET_LENGTH = 32  # 256-bit device secret


class KeyProvider(Protocol):
    """Source of the device secret that archive keys are derived from."""

    async def get_secret(self) -> bytes:
        ...


def key_id(secret: bytes) -> str:
    """Short, non-reversible fingerprint of a secret for logs and diagnostics."""
    return hashlib.sha256(secret).hexdigest()[:16]


def generate_secret() -> bytes:
    return secrets.token_bytes(SECRET_LENGTH)


def _restrict_permissions(path: Path) -> None:
    """Set 0600 on POSIX systems."""
    if os.name != "nt":
        os.chmod(path, 0o600)


class FileKeyProvider:
    """
    Device secret stored in a local file.

    The file is created with a fresh random secret on first use and
    written atomically (temp file, then rename).
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._secret: bytes | None = None

    async def get_secret(self) -> bytes:
        if self._secret is None:
            if self.path.exists():
                self._secret = await self._read()
            else:
                self._secret = await self._create()
        return self._secret

    async def _read(self) -> bytes:
        try:
            async with aiofiles.open(self.path, "rb") as f:
                secret = await f.read()
        except OSError as e:
            raise EncryptionError(
                f"Failed to read device key: {e}",
                details={"key_path": str(self.path)},
            ) from e

        if len(secret) != SECRET_LENGTH:
            raise EncryptionError(
                f"Device key must be {SECRET_LENGTH} bytes",
                details={"key_path": str(self.path), "length": len(secret)},
            )

        logger.debug("device_key_loaded", key_id=key_id(secret))
        return secret

    async def _create(self) -> bytes:
        secret = generate_secret()
        temp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(secret)
            _restrict_permissions(temp_path)
            temp_path.rename(self.path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise EncryptionError(
                f"Failed to create device key: {e}",
                details={"key_path": str(self.path)},
            ) from e

        logger.info("device_key_created", key_path=str(self.path), key_id=key_id(secret))
        return secret


class PassphraseKeyProvider:
    """
    Secret derived from a user passphrase with PBKDF2-HMAC-SHA256.

    The same passphrase yields the same secret on every device, which lets
    a backup made on one device be restored on another.
    """

    def __init__(
        self,
        passphrase: str,
        iterations: int = 100_000,
        salt: bytes = b"snapvault.passphrase.v1",
    ) -> None:
        if not passphrase:
            raise EncryptionError("Passphrase must not be empty")
        self._passphrase = passphrase
        self._iterations = iterations
        self._salt = salt
        self._secret: bytes | None = None

    async def get_secret(self) -> bytes:
        if self._secret is None:
            loop = asyncio.get_running_loop()
            self._secret = await loop.run_in_executor(None, self._derive)
        return self._secret

    def _derive(self) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=SECRET_LENGTH,
            salt=self._salt,
            iterations=self._iterations,
        )
        return kdf.derive(self._passphrase.encode("utf-8"))
