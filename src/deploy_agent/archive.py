"""Minimal ZIP writer for deploy artifacts.

Produces the subset of the PKWARE format that static-site ingestion needs:
deflated entries, no timestamps, no extra fields, no encryption, no ZIP64,
a single disk. Each fixed-size record is described by an offset table below
and packed with ``struct.pack_into`` so every field can be audited against
APPNOTE.TXT in one place.
"""

from __future__ import annotations

import asyncio
import os
import struct
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Sequence

import structlog

from .deny_list import collect_files
from .errors import ArchiveError, EncodeIOError

_logger = structlog.get_logger(__name__)

LOCAL_FILE_HEADER_SIGNATURE = 0x04034B50
CENTRAL_DIRECTORY_SIGNATURE = 0x02014B50
END_OF_CENTRAL_DIRECTORY_SIGNATURE = 0x06054B50

VERSION = 20  # 2.0: deflate
METHOD_DEFLATE = 8

_MAX_U16 = 0xFFFF
_MAX_U32 = 0xFFFFFFFF

# (field, byte offset, struct code); all little-endian
Layout = tuple[tuple[str, int, str], ...]

LOCAL_FILE_HEADER: Layout = (
    ("signature", 0, "I"),
    ("version_needed", 4, "H"),
    ("flags", 6, "H"),
    ("method", 8, "H"),
    ("mod_time", 10, "H"),
    ("mod_date", 12, "H"),
    ("crc32", 14, "I"),
    ("compressed_size", 18, "I"),
    ("uncompressed_size", 22, "I"),
    ("name_length", 26, "H"),
    ("extra_length", 28, "H"),
)
LOCAL_FILE_HEADER_SIZE = 30

CENTRAL_DIRECTORY_HEADER: Layout = (
    ("signature", 0, "I"),
    ("version_made_by", 4, "H"),
    ("version_needed", 6, "H"),
    ("flags", 8, "H"),
    ("method", 10, "H"),
    ("mod_time", 12, "H"),
    ("mod_date", 14, "H"),
    ("crc32", 16, "I"),
    ("compressed_size", 20, "I"),
    ("uncompressed_size", 24, "I"),
    ("name_length", 28, "H"),
    ("extra_length", 30, "H"),
    ("comment_length", 32, "H"),
    ("disk_number_start", 34, "H"),
    ("internal_attributes", 36, "H"),
    ("external_attributes", 38, "I"),
    ("local_header_offset", 42, "I"),
)
CENTRAL_DIRECTORY_HEADER_SIZE = 46

END_OF_CENTRAL_DIRECTORY: Layout = (
    ("signature", 0, "I"),
    ("disk_number", 4, "H"),
    ("central_directory_disk", 6, "H"),
    ("entries_on_disk", 8, "H"),
    ("entries_total", 10, "H"),
    ("central_directory_size", 12, "I"),
    ("central_directory_offset", 16, "I"),
    ("comment_length", 20, "H"),
)
END_OF_CENTRAL_DIRECTORY_SIZE = 22


def pack_record(layout: Layout, size: int, values: Mapping[str, int]) -> bytes:
    """Pack *values* into a fixed-size record; every field in *layout* must be given."""
    missing = [name for name, _, _ in layout if name not in values]
    if missing:
        raise ValueError(f"record fields missing: {', '.join(missing)}")
    buffer = bytearray(size)
    for name, offset, code in layout:
        struct.pack_into("<" + code, buffer, offset, values[name])
    return bytes(buffer)


def unpack_record(layout: Layout, data: bytes, offset: int = 0) -> dict[str, int]:
    return {name: struct.unpack_from("<" + code, data, offset + field_offset)[0] for name, field_offset, code in layout}


@dataclass(slots=True, frozen=True)
class FileEntry:
    """One file to archive: a ``/``-separated relative path and its raw bytes."""

    relative_path: str
    content: bytes


@dataclass(slots=True, frozen=True)
class _ArchiveEntry:
    name: bytes
    compressed: bytes
    uncompressed_size: int
    crc32: int
    local_header_offset: int

    @property
    def compressed_size(self) -> int:
        return len(self.compressed)


def deflate_raw(data: bytes) -> bytes:
    """Raw DEFLATE (no zlib/gzip wrapper); empty input yields an empty payload."""
    if not data:
        return b""
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -zlib.MAX_WBITS)
    return compressor.compress(data) + compressor.flush()


def _check_u32(value: int, what: str, path: str) -> None:
    if value > _MAX_U32:
        raise ArchiveError(f"{what} for {path} exceeds 4 GiB; ZIP64 archives are not supported.")


def encode_entries(entries: Iterable[FileEntry]) -> bytes:
    """Encode *entries* (in the given order) into a complete ZIP archive."""
    parts: list[bytes] = []
    records: list[_ArchiveEntry] = []
    offset = 0

    for entry in entries:
        path = entry.relative_path.replace("\\", "/")
        name = path.encode("utf-8")
        if len(name) > _MAX_U16:
            raise ArchiveError(f"Path too long for a ZIP entry: {path[:80]}...")
        _check_u32(len(entry.content), "File size", path)
        compressed = deflate_raw(entry.content)
        _check_u32(len(compressed), "Compressed size", path)
        record = _ArchiveEntry(
            name=name,
            compressed=compressed,
            uncompressed_size=len(entry.content),
            crc32=zlib.crc32(entry.content) & _MAX_U32,
            local_header_offset=offset,
        )
        _check_u32(offset, "Local header offset", path)
        header = pack_record(
            LOCAL_FILE_HEADER,
            LOCAL_FILE_HEADER_SIZE,
            {
                "signature": LOCAL_FILE_HEADER_SIGNATURE,
                "version_needed": VERSION,
                "flags": 0,
                "method": METHOD_DEFLATE,
                "mod_time": 0,
                "mod_date": 0,
                "crc32": record.crc32,
                "compressed_size": record.compressed_size,
                "uncompressed_size": record.uncompressed_size,
                "name_length": len(name),
                "extra_length": 0,
            },
        )
        parts.extend((header, name, compressed))
        records.append(record)
        offset += LOCAL_FILE_HEADER_SIZE + len(name) + len(compressed)

    if len(records) > _MAX_U16:
        raise ArchiveError(f"Too many files for a ZIP archive ({len(records)} > {_MAX_U16}).")

    central_directory_offset = offset
    central_directory_size = 0
    for record in records:
        header = pack_record(
            CENTRAL_DIRECTORY_HEADER,
            CENTRAL_DIRECTORY_HEADER_SIZE,
            {
                "signature": CENTRAL_DIRECTORY_SIGNATURE,
                "version_made_by": VERSION,
                "version_needed": VERSION,
                "flags": 0,
                "method": METHOD_DEFLATE,
                "mod_time": 0,
                "mod_date": 0,
                "crc32": record.crc32,
                "compressed_size": record.compressed_size,
                "uncompressed_size": record.uncompressed_size,
                "name_length": len(record.name),
                "extra_length": 0,
                "comment_length": 0,
                "disk_number_start": 0,
                "internal_attributes": 0,
                "external_attributes": 0,
                "local_header_offset": record.local_header_offset,
            },
        )
        parts.extend((header, record.name))
        central_directory_size += CENTRAL_DIRECTORY_HEADER_SIZE + len(record.name)

    if central_directory_offset + central_directory_size > _MAX_U32:
        raise ArchiveError("Archive exceeds 4 GiB; ZIP64 archives are not supported.")

    parts.append(
        pack_record(
            END_OF_CENTRAL_DIRECTORY,
            END_OF_CENTRAL_DIRECTORY_SIZE,
            {
                "signature": END_OF_CENTRAL_DIRECTORY_SIGNATURE,
                "disk_number": 0,
                "central_directory_disk": 0,
                "entries_on_disk": len(records),
                "entries_total": len(records),
                "central_directory_size": central_directory_size,
                "central_directory_offset": central_directory_offset,
                "comment_length": 0,
            },
        )
    )
    return b"".join(parts)


def _read_file(root: Path, relative_path: str) -> FileEntry:
    path = root.joinpath(*relative_path.split("/"))
    try:
        content = path.read_bytes()
    except OSError as exc:
        raise EncodeIOError(f"Cannot read {relative_path}: {exc.strerror or exc}") from exc
    return FileEntry(relative_path.replace("\\", "/"), content)


async def read_entries(root: str | os.PathLike[str], files: Sequence[str]) -> list[FileEntry]:
    """Read *files* concurrently in worker threads; the result keeps the order of *files*."""
    root_path = Path(root)
    return list(await asyncio.gather(*(asyncio.to_thread(_read_file, root_path, name) for name in files)))


async def create_zip_buffer(root: str | os.PathLike[str], files: Sequence[str]) -> bytes:
    """Read *files* under *root* and return the encoded archive."""
    entries = await read_entries(root, files)
    data = encode_entries(entries)
    _logger.info("archive.encoded", root=str(root), entries=len(entries), size=len(data))
    return data


async def write_zip_file(root: str | os.PathLike[str], destination: str | os.PathLike[str]) -> Path:
    """Archive the deployable files of *root* into *destination* (which must not exist)."""
    dest = Path(destination).resolve()
    if dest.exists():
        raise ArchiveError(f"Cannot overwrite existing archive {dest}; choose a new filename.")
    files = collect_files(root)
    data = await create_zip_buffer(root, files)
    dest.parent.mkdir(parents=True, exist_ok=True)
    with dest.open("xb") as handle:
        handle.write(data)
    return dest


__all__ = [
    "CENTRAL_DIRECTORY_HEADER",
    "END_OF_CENTRAL_DIRECTORY",
    "FileEntry",
    "LOCAL_FILE_HEADER",
    "create_zip_buffer",
    "deflate_raw",
    "encode_entries",
    "pack_record",
    "read_entries",
    "unpack_record",
    "write_zip_file",
]
