# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Cipher - Authenticated encryption for archive blobs.

Archives are encrypted with AES-256-GCM in fixed-size chunks so that large
media backups stream through memory and report progress per chunk.

Layout:
    header  = MAGIC(4) | VERSION(1) | SALT(16) | NONCE_PREFIX(7) | CHUNK_SIZE(4)
    chunk_i = AESGCM(key).encrypt(NONCE_PREFIX | i(4) | last(1), plaintext_i, header)

The key is derived per archive with HKDF-SHA256 from the device secret and
the random salt. The header is authenticated as associated data of every
chunk, the chunk index and the final-chunk flag are bound into the nonce, so
tampering, reordering, truncation and appended data all fail decryption.
"""

import os
import struct
from pathlib import Path
from typing import Callable

import aiofiles
import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from snapvault.config import MAX_CHUNK_SIZE, MIN_CHUNK_SIZE
from snapvault.exceptions import EncryptionError, IntegrityError
from snapvault.progress import TransferCallback

logger = structlog.get_logger()

MAGIC = b"SNPV"
FORMAT_VERSION = 1
SALT_LENGTH = 16
NONCE_PREFIX_LENGTH = 7
TAG_LENGTH = 16
DEFAULT_CHUNK_SIZE = 1024 * 1024

_HEADER = struct.Struct(">4sB16s7sI")
HEADER_SIZE = _HEADER.size
_MAX_CHUNKS = 2**32
_HKDF_INFO = b"snapvault.archive.v1"


def derive_key(secret: bytes, salt: bytes) -> bytes:
    """Derive the 256-bit archive key from the device secret."""
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        info=_HKDF_INFO,
    ).derive(secret)


class _ChunkSealer:
    """Encrypts consecutive chunks of one archive."""

    def __init__(self, secret: bytes, chunk_size: int) -> None:
        if not MIN_CHUNK_SIZE <= chunk_size <= MAX_CHUNK_SIZE:
            raise EncryptionError(f"Unsupported chunk size: {chunk_size}")
        salt = os.urandom(SALT_LENGTH)
        self._prefix = os.urandom(NONCE_PREFIX_LENGTH)
        self.chunk_size = chunk_size
        self.header = _HEADER.pack(MAGIC, FORMAT_VERSION, salt, self._prefix, chunk_size)
        self._aead = AESGCM(derive_key(secret, salt))
        self._index = 0

    def seal(self, chunk: bytes, last: bool) -> bytes:
        if self._index >= _MAX_CHUNKS:
            raise EncryptionError("Archive too large for a single encryption stream")
        nonce = _nonce(self._prefix, self._index, last)
        self._index += 1
        return self._aead.encrypt(nonce, chunk, self.header)


class _ChunkOpener:
    """Authenticates and decrypts consecutive chunks of one archive."""

    def __init__(self, secret: bytes, header: bytes) -> None:
        if len(header) != HEADER_SIZE:
            raise IntegrityError("Encrypted archive is truncated (incomplete header)")
        magic, version, salt, prefix, chunk_size = _HEADER.unpack(header)
        if magic != MAGIC:
            raise IntegrityError("Not a SnapVault archive or header corrupted")
        if version != FORMAT_VERSION:
            raise IntegrityError(
                "Unsupported or corrupted archive version",
                details={"version": version},
            )
        if not MIN_CHUNK_SIZE <= chunk_size <= MAX_CHUNK_SIZE:
            raise IntegrityError("Archive header corrupted (invalid chunk size)")
        self.header = header
        self.block_size = chunk_size + TAG_LENGTH
        self._prefix = prefix
        self._aead = AESGCM(derive_key(secret, salt))
        self._index = 0

    def open(self, block: bytes, last: bool) -> bytes:
        if len(block) < TAG_LENGTH or self._index >= _MAX_CHUNKS:
            raise IntegrityError("Encrypted archive is truncated")
        nonce = _nonce(self._prefix, self._index, last)
        try:
            plaintext = self._aead.decrypt(nonce, block, self.header)
        except InvalidTag as e:
            raise IntegrityError(
                "Archive authentication failed",
                details={"chunk": self._index},
            ) from e
        self._index += 1
        return plaintext


def _nonce(prefix: bytes, index: int, last: bool) -> bytes:
    return prefix + struct.pack(">IB", index, 1 if last else 0)


def encrypt(plaintext: bytes, secret: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> bytes:
    """
    Encrypt a blob held in memory.

    Args:
        plaintext: Data to encrypt
        secret: Device secret
        chunk_size: Plaintext bytes per authenticated chunk

    Returns:
        Header followed by the encrypted chunks
    """
    sealer = _ChunkSealer(secret, chunk_size)
    parts = [sealer.header]
    offset = 0
    while True:
        chunk = plaintext[offset:offset + chunk_size]
        offset += chunk_size
        last = offset >= len(plaintext)
        parts.append(sealer.seal(chunk, last))
        if last:
            return b"".join(parts)


def decrypt(ciphertext: bytes, secret: bytes) -> bytes:
    """
    Decrypt a blob produced by encrypt() or encrypt_file().

    Raises:
        IntegrityError: If the data was modified, truncated or the key is wrong
    """
    opener = _ChunkOpener(secret, ciphertext[:HEADER_SIZE])
    parts = []
    offset = HEADER_SIZE
    while True:
        block = ciphertext[offset:offset + opener.block_size]
        offset += opener.block_size
        last = offset >= len(ciphertext)
        parts.append(opener.open(block, last))
        if last:
            return b"".join(parts)


async def encrypt_file(
    source: Path,
    destination: Path,
    secret: bytes,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_progress: TransferCallback | None = None,
    checkpoint: Callable[[], None] | None = None,
) -> int:
    """
    Encrypt a file chunk by chunk.

    Args:
        source: Plaintext archive
        destination: Encrypted archive to create
        secret: Device secret
        chunk_size: Plaintext bytes per chunk
        on_progress: Awaited with (plaintext_bytes_done, plaintext_bytes_total)
        checkpoint: Called after every chunk; may raise to abort

    Returns:
        Size of the encrypted archive in bytes
    """
    total = source.stat().st_size
    sealer = _ChunkSealer(secret, chunk_size)
    written = 0
    done = 0

    async with aiofiles.open(source, "rb") as src, aiofiles.open(destination, "wb") as dst:
        await dst.write(sealer.header)
        written += len(sealer.header)

        current = await src.read(chunk_size)
        while True:
            upcoming = await src.read(chunk_size) if len(current) == chunk_size else b""
            last = not upcoming
            block = sealer.seal(current, last)
            await dst.write(block)
            written += len(block)
            done += len(current)

            if on_progress is not None:
                await on_progress(done, total)
            if checkpoint is not None:
                checkpoint()
            if last:
                break
            current = upcoming

    logger.debug("archive_encrypted", source=str(source), size=written)
    return written


async def decrypt_file(
    source: Path,
    destination: Path,
    secret: bytes,
    on_progress: TransferCallback | None = None,
    checkpoint: Callable[[], None] | None = None,
) -> int:
    """
    Authenticate and decrypt a file chunk by chunk.

    The destination only ever holds authenticated plaintext, but it is only
    complete once this function returns; callers must not use it on error.

    Returns:
        Size of the decrypted archive in bytes

    Raises:
        IntegrityError: On any authentication failure or truncation
    """
    total = source.stat().st_size
    written = 0

    async with aiofiles.open(source, "rb") as src, aiofiles.open(destination, "wb") as dst:
        opener = _ChunkOpener(secret, await src.read(HEADER_SIZE))
        done = HEADER_SIZE

        current = await src.read(opener.block_size)
        while True:
            upcoming = await src.read(opener.block_size) if len(current) == opener.block_size else b""
            last = not upcoming
            plaintext = opener.open(current, last)
            await dst.write(plaintext)
            written += len(plaintext)
            done += len(current)

            if on_progress is not None:
                await on_progress(done, total)
            if checkpoint is not None:
                checkpoint()
            if last:
                break
            current = upcoming

    logger.debug("archive_decrypted", source=str(source), size=written)
    return written
