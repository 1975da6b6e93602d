# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Archive - Collection and packaging of backup content.
"""

from snapvault.archive.compressor import (
    get_compression_stats,
)

from snapvault.archive.packager import (
    Manifest,
    ManifestEntry,
    SourceFile,
    build_manifest,
    collect_sources,
    enumerate_sources,
    load_manifest,
    pack_archive,
    unpack_archive,
    verify_content,
    write_manifest,
)

__all__ = [
    # Compressor
    "get_compression_stats",
    # Packager
    "Manifest",
    "ManifestEntry",
    "SourceFile",
    "enumerate_sources",
    "collect_sources",
    "build_manifest",
    "write_manifest",
    "load_manifest",
    "pack_archive",
    "unpack_archive",
    "verify_content",
]
