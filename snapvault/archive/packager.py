# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Archive Packager - Collect, pack and unpack backup content.

A backup's content is a directory with this layout:

    manifest.json     file list with sizes and sha256 digests
    records/...       structured records export (always present)
    media/...         media files (only when media was included)

It is packed into a tar stream inside one zstd frame. Entries are sorted
and ownership/permissions normalized so the same input always produces
the same archive bytes.
"""

import asyncio
import hashlib
import json
import os
import shutil
import tarfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Awaitable, BinaryIO, Callable, List, TypedDict

import structlog
import zstandard as zstd

from snapvault.archive.compressor import (
    DEFAULT_ZSTD_LEVEL,
    get_executor,
    open_compressed_writer,
    open_decompressed_reader,
)
from snapvault.exceptions import CollectionError, CompressionError, ValidationError

logger = structlog.get_logger()

ARCHIVE_FORMAT_VERSION = 1
MANIFEST_NAME = "manifest.json"
RECORDS_DIR = "records"
MEDIA_DIR = "media"

_COPY_BUFFER = 1024 * 1024

ItemCallback = Callable[[int, int, str], Awaitable[None]]
ByteCallback = Callable[[int, int], Awaitable[None]]
Checkpoint = Callable[[], None]


class ManifestEntry(TypedDict):
    """One source file inside the archive."""

    path: str  # POSIX path relative to the content root
    size: int
    sha256: str


class Manifest(TypedDict):
    """Description of an archive's content."""

    format_version: int
    backup_id: str
    created_at: str  # ISO 8601
    device_id: str | None
    app_version: str
    includes_media: bool
    file_count: int
    total_size_bytes: int
    files: List[ManifestEntry]


@dataclass(frozen=True)
class SourceFile:
    """A file selected for backup."""

    source: Path
    relative: str
    size: int


# ============================================================================
# Collection
# ============================================================================

def _walk(root: Path, prefix: str) -> List[SourceFile]:
    files: List[SourceFile] = []
    for path in sorted(root.rglob("*")):
        if path.is_symlink() or not path.is_file():
            continue
        relative = PurePosixPath(prefix, *path.relative_to(root).parts).as_posix()
        files.append(SourceFile(source=path, relative=relative, size=path.stat().st_size))
    return files


def enumerate_sources(
    records_path: Path,
    media_path: Path | None,
    include_media: bool,
) -> List[SourceFile]:
    """
    List every file that belongs in a backup.

    Records are always included; media only when requested. A missing media
    directory simply contributes no files.

    Raises:
        CollectionError: If the records directory is missing or unreadable
    """
    if not records_path.is_dir():
        raise CollectionError(
            "Records directory does not exist",
            details={"records_path": str(records_path)},
        )

    try:
        files = _walk(records_path, RECORDS_DIR)
        if include_media and media_path is not None and media_path.is_dir():
            files.extend(_walk(media_path, MEDIA_DIR))
    except OSError as e:
        raise CollectionError(
            f"Failed to enumerate source data: {e}",
            details={"records_path": str(records_path)},
        ) from e

    return files


def _copy_and_hash(source: Path, destination: Path) -> tuple[int, str]:
    """Copy a file and return (size, sha256) of what was copied."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    digest = hashlib.sha256()
    size = 0
    with open(source, "rb") as src, open(destination, "wb") as dst:
        while True:
            chunk = src.read(_COPY_BUFFER)
            if not chunk:
                break
            digest.update(chunk)
            dst.write(chunk)
            size += len(chunk)
    shutil.copystat(source, destination)
    return size, digest.hexdigest()


async def collect_sources(
    sources: List[SourceFile],
    content_dir: Path,
    on_item: ItemCallback | None = None,
    checkpoint: Checkpoint | None = None,
) -> List[ManifestEntry]:
    """
    Snapshot source files into the staging content directory.

    Copying first isolates the archive from writes the app makes while
    the backup runs. Sizes and digests come from the copied bytes.

    Args:
        sources: Files from enumerate_sources()
        content_dir: Staging content root
        on_item: Awaited with (processed, total, relative_path) after each file
        checkpoint: Called after each file; may raise to abort

    Returns:
        Manifest entries in archive order
    """
    loop = asyncio.get_running_loop()
    entries: List[ManifestEntry] = []
    total = len(sources)

    for index, item in enumerate(sources, start=1):
        destination = content_dir / PurePosixPath(item.relative)
        try:
            size, sha256 = await loop.run_in_executor(
                get_executor(), _copy_and_hash, item.source, destination
            )
        except OSError as e:
            raise CollectionError(
                f"Failed to read source file: {e}",
                details={"path": str(item.source)},
            ) from e

        entries.append(ManifestEntry(path=item.relative, size=size, sha256=sha256))

        if on_item is not None:
            await on_item(index, total, item.relative)
        if checkpoint is not None:
            checkpoint()

    logger.debug("sources_collected", file_count=len(entries))
    return entries


def build_manifest(
    backup_id: str,
    created_at: datetime,
    entries: List[ManifestEntry],
    includes_media: bool,
    device_id: str | None = None,
    app_version: str = "1.0.0",
) -> Manifest:
    return Manifest(
        format_version=ARCHIVE_FORMAT_VERSION,
        backup_id=backup_id,
        created_at=created_at.isoformat(),
        device_id=device_id,
        app_version=app_version,
        includes_media=includes_media,
        file_count=len(entries),
        total_size_bytes=sum(e["size"] for e in entries),
        files=entries,
    )


def write_manifest(content_dir: Path, manifest: Manifest) -> Path:
    path = content_dir / MANIFEST_NAME
    path.write_text(json.dumps(manifest, indent=2, sort_keys=True), encoding="utf-8")
    return path


def load_manifest(content_dir: Path) -> Manifest:
    """
    Read the manifest of an unpacked archive.

    Raises:
        ValidationError: If the manifest is missing or malformed
    """
    path = content_dir / MANIFEST_NAME
    try:
        manifest = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ValidationError("Archive has no manifest") from e
    except (OSError, ValueError) as e:
        raise ValidationError(f"Archive manifest is unreadable: {e}") from e

    required = ("format_version", "backup_id", "file_count", "total_size_bytes", "files")
    if not isinstance(manifest, dict) or any(key not in manifest for key in required):
        raise ValidationError("Archive manifest is incomplete")
    if manifest["format_version"] != ARCHIVE_FORMAT_VERSION:
        raise ValidationError(
            "Unsupported archive format",
            details={"format_version": manifest["format_version"]},
        )
    return manifest


# ============================================================================
# Packing
# ============================================================================

def _tarinfo(name: str, path: Path) -> tarfile.TarInfo:
    stat = path.stat()
    info = tarfile.TarInfo(name)
    info.size = stat.st_size
    info.mtime = int(stat.st_mtime)
    info.mode = 0o644
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


def _add_file(tar: tarfile.TarFile, name: str, path: Path) -> None:
    with open(path, "rb") as fh:
        tar.addfile(_tarinfo(name, path), fh)


async def pack_archive(
    content_dir: Path,
    manifest: Manifest,
    archive_path: Path,
    level: int = DEFAULT_ZSTD_LEVEL,
    on_progress: ByteCallback | None = None,
    checkpoint: Checkpoint | None = None,
) -> int:
    """
    Pack the staging content directory into one compressed archive.

    The manifest is the first entry, followed by the files in manifest
    order. Progress is reported in source bytes packed.

    Returns:
        Compressed archive size in bytes
    """
    loop = asyncio.get_running_loop()
    executor = get_executor()
    total = manifest["total_size_bytes"]
    done = 0

    fh: BinaryIO = open(archive_path, "wb")
    try:
        writer = open_compressed_writer(fh, level)
        tar = tarfile.open(fileobj=writer, mode="w|", format=tarfile.PAX_FORMAT)

        await loop.run_in_executor(
            executor, _add_file, tar, MANIFEST_NAME, content_dir / MANIFEST_NAME
        )
        for entry in manifest["files"]:
            await loop.run_in_executor(
                executor, _add_file, tar, entry["path"], content_dir / PurePosixPath(entry["path"])
            )
            done += entry["size"]
            if on_progress is not None:
                await on_progress(done, total)
            if checkpoint is not None:
                checkpoint()

        await loop.run_in_executor(executor, tar.close)
        await loop.run_in_executor(executor, writer.close)
    except (OSError, tarfile.TarError, zstd.ZstdError) as e:
        raise CompressionError(
            f"Failed to pack archive: {e}",
            details={"archive_path": str(archive_path)},
        ) from e
    finally:
        if not fh.closed:
            fh.close()

    size = archive_path.stat().st_size
    logger.debug("archive_packed", archive_path=str(archive_path), source_bytes=total, size=size)
    return size


# ============================================================================
# Unpacking
# ============================================================================

def _safe_member_path(dest_dir: Path, member: tarfile.TarInfo) -> Path:
    name = PurePosixPath(member.name)
    if name.is_absolute() or ".." in name.parts or not member.isfile():
        raise ValidationError(
            f"Unsafe entry in archive: {member.name}",
            details={"type": member.type.decode("ascii", "replace")},
        )
    return dest_dir.joinpath(*name.parts)


def _extract_next(tar: tarfile.TarFile, dest_dir: Path) -> str | None:
    """Extract the next member; returns its name or None at end of archive."""
    member = tar.next()
    if member is None:
        return None
    target = _safe_member_path(dest_dir, member)
    target.parent.mkdir(parents=True, exist_ok=True)
    source = tar.extractfile(member)
    with open(target, "wb") as out:
        shutil.copyfileobj(source, out, _COPY_BUFFER)
    os.utime(target, (member.mtime, member.mtime))
    return member.name


async def unpack_archive(
    archive_path: Path,
    dest_dir: Path,
    on_progress: ByteCallback | None = None,
    checkpoint: Checkpoint | None = None,
) -> List[str]:
    """
    Extract a compressed archive into a staging directory.

    Only regular files with relative, non-escaping paths are accepted.
    Progress is reported in compressed bytes consumed.

    Returns:
        Names of the extracted entries in archive order
    """
    loop = asyncio.get_running_loop()
    executor = get_executor()
    total = archive_path.stat().st_size
    names: List[str] = []

    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        with open(archive_path, "rb") as fh:
            reader = open_decompressed_reader(fh)
            tar = tarfile.open(fileobj=reader, mode="r|")
            while True:
                name = await loop.run_in_executor(executor, _extract_next, tar, dest_dir)
                if name is None:
                    break
                names.append(name)
                if on_progress is not None:
                    await on_progress(min(fh.tell(), total), total)
                if checkpoint is not None:
                    checkpoint()
            tar.close()
    except (OSError, tarfile.TarError, zstd.ZstdError) as e:
        raise CompressionError(
            f"Failed to unpack archive: {e}",
            details={"archive_path": str(archive_path)},
        ) from e

    logger.debug("archive_unpacked", archive_path=str(archive_path), entries=len(names))
    return names


# ============================================================================
# Validation
# ============================================================================

def _sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_COPY_BUFFER), b""):
            digest.update(chunk)
    return digest.hexdigest()


async def verify_content(
    content_dir: Path,
    manifest: Manifest,
    expected_backup_id: str,
    expected_file_count: int,
) -> None:
    """
    Check that unpacked content is complete and matches its manifest.

    Raises:
        ValidationError: On any mismatch
    """
    if manifest["backup_id"] != expected_backup_id:
        raise ValidationError(
            "Archive belongs to a different backup",
            details={"expected": expected_backup_id, "found": manifest["backup_id"]},
        )

    entries = manifest["files"]
    if not (len(entries) == manifest["file_count"] == expected_file_count):
        raise ValidationError(
            "File count does not match manifest",
            details={
                "manifest_entries": len(entries),
                "manifest_count": manifest["file_count"],
                "catalog_count": expected_file_count,
            },
        )

    present = {
        p.relative_to(content_dir).as_posix()
        for p in content_dir.rglob("*")
        if p.is_file()
    }
    present.discard(MANIFEST_NAME)
    listed = {e["path"] for e in entries}
    if present != listed:
        raise ValidationError(
            "Archive content does not match manifest",
            details={
                "missing": sorted(listed - present)[:10],
                "unexpected": sorted(present - listed)[:10],
            },
        )

    loop = asyncio.get_running_loop()
    for entry in entries:
        path = content_dir / PurePosixPath(entry["path"])
        if path.stat().st_size != entry["size"]:
            raise ValidationError("File size does not match manifest", details={"path": entry["path"]})
        digest = await loop.run_in_executor(get_executor(), _sha256_file, path)
        if digest != entry["sha256"]:
            raise ValidationError("File digest does not match manifest", details={"path": entry["path"]})
