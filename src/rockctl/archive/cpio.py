"""Portable ASCII ("newc") CPIO encoding.

Each member is a 110 byte ASCII header (``070701`` followed by thirteen
8-digit hex fields), the NUL-terminated name padded to a 4 byte boundary,
then the data padded the same way. The stream ends with a ``TRAILER!!!``
member. This module is a neutral codec: it writes whatever names it is
given and leaves naming policy to the builder and the verifier.
"""

from __future__ import annotations

import stat
from collections.abc import Iterator
from dataclasses import dataclass
from typing import BinaryIO, Literal

from ..errors import ArchiveFormatError

NEWC_MAGIC = b"070701"
NEWC_CRC_MAGIC = b"070702"
HEADER_SIZE = 110
TRAILER_NAME = "TRAILER!!!"

EntryKind = Literal["file", "dir", "symlink", "chardev", "blockdev", "fifo", "socket"]

_KIND_BY_FMT = {
    stat.S_IFREG: "file",
    stat.S_IFDIR: "dir",
    stat.S_IFLNK: "symlink",
    stat.S_IFCHR: "chardev",
    stat.S_IFBLK: "blockdev",
    stat.S_IFIFO: "fifo",
    stat.S_IFSOCK: "socket",
}
_FMT_BY_KIND = {kind: fmt for fmt, kind in _KIND_BY_FMT.items()}

_FIELDS = (
    "ino",
    "mode",
    "uid",
    "gid",
    "nlink",
    "mtime",
    "filesize",
    "devmajor",
    "devminor",
    "rdevmajor",
    "rdevminor",
    "namesize",
    "check",
)


def pad4(length: int) -> int:
    return (4 - length % 4) % 4


@dataclass(frozen=True)
class CpioEntry:
    name: str
    mode: int
    data: bytes = b""
    uid: int = 0
    gid: int = 0
    mtime: int = 0
    nlink: int = 1
    ino: int = 0
    rdevmajor: int = 0
    rdevminor: int = 0

    @property
    def kind(self) -> EntryKind:
        return _KIND_BY_FMT.get(stat.S_IFMT(self.mode), "file")  # type: ignore[return-value]

    @property
    def permissions(self) -> int:
        return stat.S_IMODE(self.mode)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def link_target(self) -> str | None:
        if self.kind != "symlink":
            return None
        return self.data.decode("utf-8", errors="surrogateescape")

    @classmethod
    def directory(cls, name: str, permissions: int = 0o755, mtime: int = 0) -> CpioEntry:
        return cls(name, stat.S_IFDIR | permissions, nlink=2, mtime=mtime)

    @classmethod
    def regular(cls, name: str, data: bytes, permissions: int = 0o644, mtime: int = 0) -> CpioEntry:
        return cls(name, stat.S_IFREG | permissions, data, mtime=mtime)

    @classmethod
    def symlink(cls, name: str, target: str, mtime: int = 0) -> CpioEntry:
        return cls(name, stat.S_IFLNK | 0o777, target.encode("utf-8", errors="surrogateescape"), mtime=mtime)

    @classmethod
    def device(
        cls, name: str, kind: EntryKind, permissions: int, major: int, minor: int, mtime: int = 0
    ) -> CpioEntry:
        return cls(name, _FMT_BY_KIND[kind] | permissions, mtime=mtime, rdevmajor=major, rdevminor=minor)


def encode_header(entry: CpioEntry, ino: int) -> bytes:
    name = entry.name.encode("utf-8", errors="surrogateescape") + b"\x00"
    values = {
        "ino": ino,
        "mode": entry.mode,
        "uid": entry.uid,
        "gid": entry.gid,
        "nlink": entry.nlink,
        "mtime": entry.mtime,
        "filesize": len(entry.data),
        "devmajor": 0,
        "devminor": 0,
        "rdevmajor": entry.rdevmajor,
        "rdevminor": entry.rdevminor,
        "namesize": len(name),
        "check": 0,
    }
    header = NEWC_MAGIC + b"".join(b"%08X" % (values[f] & 0xFFFFFFFF) for f in _FIELDS)
    return header + name + b"\x00" * pad4(HEADER_SIZE + len(name))


class NewcWriter:
    """Append members to a binary stream; ``close`` writes the trailer."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._next_ino = 1
        self._closed = False
        self.count = 0

    def add(self, entry: CpioEntry) -> None:
        if self._closed:
            raise ValueError("cpio stream already closed")
        ino = entry.ino or self._next_ino
        self._next_ino += 1
        self._stream.write(encode_header(entry, ino))
        if entry.data:
            self._stream.write(entry.data)
            self._stream.write(b"\x00" * pad4(len(entry.data)))
        self.count += 1

    def close(self) -> None:
        if self._closed:
            return
        trailer = CpioEntry(TRAILER_NAME, 0, nlink=1)
        self._stream.write(encode_header(trailer, 0))
        self._closed = True


def _read_exact(stream: BinaryIO, size: int, what: str) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise ArchiveFormatError(f"archive truncated while reading {what} ({len(data)} of {size} bytes)")
    return data


def _parse_header(raw: bytes) -> dict[str, int]:
    magic = raw[:6]
    if magic not in (NEWC_MAGIC, NEWC_CRC_MAGIC):
        raise ArchiveFormatError(f"bad cpio magic {magic!r}; expected newc 070701")
    fields: dict[str, int] = {}
    for index, name in enumerate(_FIELDS):
        chunk = raw[6 + index * 8 : 14 + index * 8]
        try:
            fields[name] = int(chunk, 16)
        except ValueError as exc:
            raise ArchiveFormatError(f"bad cpio header field {name}: {chunk!r}") from exc
    return fields


def iter_entries(stream: BinaryIO) -> Iterator[CpioEntry]:
    """Yield members up to the trailer.

    Raises ``ArchiveFormatError`` on bad magic, truncation, or a stream that
    ends without a trailer; members yielded before the error stay valid.
    """
    while True:
        raw = stream.read(HEADER_SIZE)
        if not raw:
            raise ArchiveFormatError("archive ends without a TRAILER!!! member")
        if len(raw) != HEADER_SIZE:
            raise ArchiveFormatError(f"archive truncated inside a member header ({len(raw)} bytes)")
        fields = _parse_header(raw)
        namesize = fields["namesize"]
        if namesize == 0:
            raise ArchiveFormatError("cpio member with empty name")
        name_raw = _read_exact(stream, namesize, "member name")
        _read_exact(stream, pad4(HEADER_SIZE + namesize), "name padding")
        name = name_raw.rstrip(b"\x00").decode("utf-8", errors="surrogateescape")
        if name == TRAILER_NAME:
            return
        filesize = fields["filesize"]
        data = _read_exact(stream, filesize, f"data of {name}") if filesize else b""
        _read_exact(stream, pad4(filesize), f"data padding of {name}")
        yield CpioEntry(
            name=name,
            mode=fields["mode"],
            data=data,
            uid=fields["uid"],
            gid=fields["gid"],
            mtime=fields["mtime"],
            nlink=fields["nlink"],
            ino=fields["ino"],
            rdevmajor=fields["rdevmajor"],
            rdevminor=fields["rdevminor"],
        )
