# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Crypto - Authenticated archive encryption and device key providers.
"""

from snapvault.crypto.cipher import (
    decrypt,
    decrypt_file,
    encrypt,
    encrypt_file,
)

from snapvault.crypto.keys import (
    FileKeyProvider,
    KeyProvider,
    PassphraseKeyProvider,
    key_id,
)

__all__ = [
    # Cipher
    "encrypt",
    "decrypt",
    "encrypt_file",
    "decrypt_file",
    # Keys
    "KeyProvider",
    "FileKeyProvider",
    "PassphraseKeyProvider",
    "key_id",
]
