# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Compressor - zstd compression for archive blobs.

Archives are written as a single zstd frame wrapping a tar stream. This
module owns the zstd settings and the thread pool used for archive work.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import BinaryIO

import zstandard as zstd

# Thread pool for CPU-bound compression and archive I/O
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="snapvault-archive")

# Default compression settings
DEFAULT_ZSTD_LEVEL = 10


def get_executor() -> ThreadPoolExecutor:
    return _executor


def open_compressed_writer(fh: BinaryIO, level: int = DEFAULT_ZSTD_LEVEL) -> zstd.ZstdCompressionWriter:
    """
    Wrap a binary file in a zstd stream writer.

    Closing the writer finishes the frame and closes `fh`.
    """
    cctx = zstd.ZstdCompressor(level=level, write_checksum=True)
    return cctx.stream_writer(fh)


def open_decompressed_reader(fh: BinaryIO) -> zstd.ZstdDecompressionReader:
    """Wrap a binary file in a zstd stream reader."""
    dctx = zstd.ZstdDecompressor()
    return dctx.stream_reader(fh)


def get_compression_stats(
    original_size: int,
    compressed_size: int,
) -> dict:
    """
    Calculate compression statistics.

    Args:
        original_size: Source data size in bytes
        compressed_size: Archive size in bytes

    Returns:
        Dict with compression statistics
    """
    if compressed_size == 0:
        return {
            "original_size": original_size,
            "compressed_size": compressed_size,
            "compression_ratio": 0,
            "space_saved_bytes": 0,
            "space_saved_percent": 0,
        }

    ratio = original_size / compressed_size
    saved_bytes = original_size - compressed_size
    saved_percent = (saved_bytes / original_size) * 100 if original_size > 0 else 0

    return {
        "original_size": original_size,
        "compressed_size": compressed_size,
        "compression_ratio": round(ratio, 2),
        "space_saved_bytes": saved_bytes,
        "space_saved_percent": round(saved_percent, 2),
    }
