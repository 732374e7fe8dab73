from __future__ import annotations

import io
import stat

import pytest
from helpers import newc_bytes
from hypothesis import given
from hypothesis import strategies as st

from rockctl.archive.cpio import HEADER_SIZE, NEWC_MAGIC, CpioEntry, NewcWriter, encode_header, iter_entries
from rockctl.errors import ArchiveFormatError


def _decode(data: bytes) -> list[CpioEntry]:
    return list(iter_entries(io.BytesIO(data)))


def test_header_is_ascii_hex_with_newc_magic() -> None:
    header = encode_header(CpioEntry.regular("sbin/init", b"abc", 0o755), ino=7)
    assert header[:6] == NEWC_MAGIC
    fields = [int(header[6 + i * 8 : 14 + i * 8], 16) for i in range(13)]
    ino, mode, _uid, _gid, nlink, _mtime, filesize = fields[:7]
    namesize = fields[11]
    assert ino == 7
    assert mode == stat.S_IFREG | 0o755
    assert nlink == 1
    assert filesize == 3
    assert namesize == len("sbin/init") + 1
    assert header[HEADER_SIZE : HEADER_SIZE + namesize] == b"sbin/init\x00"
    assert len(header) % 4 == 0


def test_stream_ends_with_trailer() -> None:
    data = newc_bytes([CpioEntry.directory("bin")])
    assert b"TRAILER!!!\x00" in data
    assert len(data) % 4 == 0


@given(
    name=st.text(alphabet="abcdefghijklmnopqrstuvwxyz/_-.", min_size=1, max_size=40),
    data=st.binary(max_size=64),
)
def test_member_offsets_stay_four_byte_aligned(name: str, data: bytes) -> None:
    blob = newc_bytes([CpioEntry.regular(name, data), CpioEntry.directory("dev")])
    assert len(blob) % 4 == 0
    entries = _decode(blob)
    assert [e.name for e in entries] == [name, "dev"]
    assert entries[0].data == data


def test_member_kinds_survive_decoding() -> None:
    entries = _decode(
        newc_bytes(
            [
                CpioEntry.directory("dev", 0o755),
                CpioEntry.device("dev/console", "chardev", 0o620, 5, 1),
                CpioEntry.symlink("bin/sh", "busybox"),
            ]
        )
    )
    assert [e.kind for e in entries] == ["dir", "chardev", "symlink"]
    assert entries[0].nlink == 2
    assert (entries[1].rdevmajor, entries[1].rdevminor, entries[1].permissions) == (5, 1, 0o620)
    assert entries[2].link_target == "busybox"


def test_writer_refuses_members_after_close() -> None:
    writer = NewcWriter(io.BytesIO())
    writer.add(CpioEntry.directory("bin"))
    writer.close()
    assert writer.count == 1
    with pytest.raises(ValueError):
        writer.add(CpioEntry.directory("sbin"))


def test_bad_magic_is_a_format_error() -> None:
    blob = bytearray(newc_bytes([CpioEntry.directory("bin")]))
    blob[:6] = b"070707"
    with pytest.raises(ArchiveFormatError, match="magic"):
        _decode(bytes(blob))


def test_truncated_data_is_a_format_error() -> None:
    blob = newc_bytes([CpioEntry.regular("sbin/init", b"x" * 100)])
    with pytest.raises(ArchiveFormatError, match="truncated"):
        _decode(blob[: HEADER_SIZE + 20])


def test_missing_trailer_is_a_format_error() -> None:
    buf = io.BytesIO()
    writer = NewcWriter(buf)
    writer.add(CpioEntry.directory("bin"))
    with pytest.raises(ArchiveFormatError, match="TRAILER"):
        _decode(buf.getvalue())


def test_members_before_damage_are_still_yielded() -> None:
    buf = io.BytesIO()
    writer = NewcWriter(buf)
    writer.add(CpioEntry.directory("bin"))
    writer.add(CpioEntry.regular("bin/busybox", b"y" * 40))
    raw = buf.getvalue()[:-10]
    seen: list[str] = []
    with pytest.raises(ArchiveFormatError):
        for entry in iter_entries(io.BytesIO(raw)):
            seen.append(entry.name)
    assert seen == ["bin"]
