import io
import struct
import zipfile

import pytest

from deploy_agent.archive import (
    CENTRAL_DIRECTORY_HEADER,
    END_OF_CENTRAL_DIRECTORY,
    LOCAL_FILE_HEADER,
    FileEntry,
    create_zip_buffer,
    deflate_raw,
    encode_entries,
    pack_record,
    unpack_record,
    write_zip_file,
)
from deploy_agent.deny_list import collect_files
from deploy_agent.errors import ArchiveError, EncodeIOError


def _central_records(data: bytes) -> list[dict[str, int]]:
    eocd = unpack_record(END_OF_CENTRAL_DIRECTORY, data, len(data) - 22)
    offset = eocd["central_directory_offset"]
    records = []
    for _ in range(eocd["entries_total"]):
        record = unpack_record(CENTRAL_DIRECTORY_HEADER, data, offset)
        records.append(record)
        offset += 46 + record["name_length"] + record["extra_length"] + record["comment_length"]
    return records


def test_encode_round_trip_with_standard_reader():
    entries = [
        FileEntry("index.html", b"<h1>Hello</h1>"),
        FileEntry("empty.txt", b""),
        FileEntry("a/b/c.txt", b"nested " * 200),
    ]
    data = encode_entries(entries)

    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        assert archive.testzip() is None
        assert archive.namelist() == ["index.html", "empty.txt", "a/b/c.txt"]
        for entry in entries:
            assert archive.read(entry.relative_path) == entry.content
            info = archive.getinfo(entry.relative_path)
            assert info.compress_type == zipfile.ZIP_DEFLATED
            assert info.flag_bits == 0


def test_encode_structural_invariants():
    entries = [FileEntry(f"dir/file{i}.txt", f"content {i}".encode()) for i in range(5)]
    data = encode_entries(entries)

    eocd = unpack_record(END_OF_CENTRAL_DIRECTORY, data, len(data) - 22)
    assert eocd["signature"] == 0x06054B50
    assert eocd["entries_on_disk"] == eocd["entries_total"] == 5
    assert eocd["central_directory_offset"] + eocd["central_directory_size"] == len(data) - 22
    assert eocd["comment_length"] == 0

    for record in _central_records(data):
        assert record["signature"] == 0x02014B50
        assert struct.unpack_from("<I", data, record["local_header_offset"])[0] == 0x04034B50
        local = unpack_record(LOCAL_FILE_HEADER, data, record["local_header_offset"])
        assert local["crc32"] == record["crc32"]
        assert local["compressed_size"] == record["compressed_size"]
        assert local["mod_time"] == local["mod_date"] == 0
        assert local["version_needed"] == 20
        assert local["method"] == 8


def test_empty_file_has_empty_payload():
    data = encode_entries([FileEntry("empty.txt", b"")])
    local = unpack_record(LOCAL_FILE_HEADER, data)
    assert local["compressed_size"] == 0
    assert local["uncompressed_size"] == 0
    assert local["crc32"] == 0
    assert deflate_raw(b"") == b""


def test_empty_archive_is_just_eocd():
    data = encode_entries([])
    assert len(data) == 22
    assert unpack_record(END_OF_CENTRAL_DIRECTORY, data)["entries_total"] == 0
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        assert archive.namelist() == []


def test_backslash_paths_are_normalized():
    data = encode_entries([FileEntry("css\\style.css", b"body{}")])
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        assert archive.namelist() == ["css/style.css"]


def test_encoding_is_deterministic():
    entries = [FileEntry("a.txt", b"alpha"), FileEntry("b.txt", b"beta")]
    assert encode_entries(entries) == encode_entries(entries)


def test_pack_record_requires_every_field():
    with pytest.raises(ValueError, match="crc32"):
        pack_record(LOCAL_FILE_HEADER, 30, {name: 0 for name, _, _ in LOCAL_FILE_HEADER if name != "crc32"})


def test_too_many_entries_rejected():
    entries = [FileEntry(f"f{i}", b"") for i in range(0x10000)]
    with pytest.raises(ArchiveError, match="Too many files"):
        encode_entries(entries)


@pytest.mark.asyncio
async def test_create_zip_buffer_reads_files_in_order(site_dir):
    files = collect_files(site_dir)
    data = await create_zip_buffer(site_dir, files)

    assert unpack_record(END_OF_CENTRAL_DIRECTORY, data, len(data) - 22)["entries_total"] == 2
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        assert archive.namelist() == ["css/style.css", "index.html"]
        assert archive.read("index.html") == b"<h1>Hello</h1>"


@pytest.mark.asyncio
async def test_create_zip_buffer_missing_file_raises(tmp_path):
    (tmp_path / "present.txt").write_text("here")
    with pytest.raises(EncodeIOError) as excinfo:
        await create_zip_buffer(tmp_path, ["present.txt", "gone.txt"])
    assert "gone.txt" in str(excinfo.value)
    assert isinstance(excinfo.value, ArchiveError)


@pytest.mark.asyncio
async def test_write_zip_file_refuses_overwrite(site_dir, tmp_path):
    dest = tmp_path / "out" / "site.zip"
    written = await write_zip_file(site_dir, dest)

    assert written == dest.resolve()
    with zipfile.ZipFile(dest) as archive:
        assert ".env" not in archive.namelist()
        assert sorted(archive.namelist()) == ["css/style.css", "index.html"]

    with pytest.raises(ArchiveError, match="Cannot overwrite"):
        await write_zip_file(site_dir, dest)
