from __future__ import annotations

import gzip
import os
import shutil
import tempfile
import zlib
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from ..core.fs import safe_member_path
from ..core.logging import log_event
from ..errors import ArchiveFormatError, PreconditionError
from .cpio import CpioEntry, iter_entries

if TYPE_CHECKING:
    from ..core.context import RunContext

GZIP_MAGIC = b"\x1f\x8b"
DEVICE_KINDS = ("chardev", "blockdev", "fifo", "socket")


@dataclass
class ArchiveContents:
    """Everything read from one archive, including a format error that cut it short."""

    entries: list[CpioEntry] = field(default_factory=list)
    format_error: str | None = None

    @property
    def complete(self) -> bool:
        return self.format_error is None


@dataclass
class ExtractedArchive:
    archive: Path
    root: Path
    contents: ArchiveContents
    devices: dict[str, CpioEntry] = field(default_factory=dict)
    rejected: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def entries(self) -> list[CpioEntry]:
        return self.contents.entries

    @property
    def format_error(self) -> str | None:
        return self.contents.format_error


@contextmanager
def _open_stream(archive: Path) -> Iterator[BinaryIO]:
    with archive.open("rb") as raw:
        magic = raw.read(2)
        raw.seek(0)
        if magic == GZIP_MAGIC:
            with gzip.GzipFile(fileobj=raw, mode="rb") as stream:
                yield stream  # type: ignore[misc]
        else:
            yield raw


def read_archive(archive: Path) -> ArchiveContents:
    """Decode every member of a gzip (or plain) newc archive.

    Unopenable files raise ``PreconditionError``. Format damage inside the
    stream is recorded on the result next to the members read before it.
    """
    if not archive.is_file():
        raise PreconditionError(f"archive not found: {archive}")
    contents = ArchiveContents()
    try:
        with _open_stream(archive) as stream:
            for entry in iter_entries(stream):
                contents.entries.append(entry)
    except ArchiveFormatError as exc:
        contents.format_error = exc.message
    except (EOFError, gzip.BadGzipFile, zlib.error) as exc:
        contents.format_error = f"gzip stream damaged: {exc}"
    return contents


def list_archive(archive: Path) -> list[CpioEntry]:
    contents = read_archive(archive)
    if contents.format_error:
        raise ArchiveFormatError(f"{archive}: {contents.format_error}")
    return contents.entries


def _parent_inside(root: Path, rel: Path) -> bool:
    # a symlinked parent directory from an earlier member must not lead outside root
    base = os.path.realpath(root)
    parent = os.path.realpath(root / rel.parent)
    return parent == base or parent.startswith(base + os.sep)


def _write_member(root: Path, rel: Path, entry: CpioEntry) -> None:
    dest = root / rel
    dest.parent.mkdir(parents=True, exist_ok=True)
    if dest.is_symlink() or (dest.exists() and not dest.is_dir()):
        dest.unlink()
    elif dest.is_dir() and entry.kind != "dir":
        # a later member of another type replaces the directory, as the kernel unpacker does
        shutil.rmtree(dest)
    if entry.kind == "dir":
        dest.mkdir(exist_ok=True)
    elif entry.kind == "symlink":
        os.symlink(entry.link_target or "", dest)
    else:
        dest.write_bytes(entry.data)
        os.chmod(dest, entry.permissions)


def extract_into(archive: Path, dest: Path, ctx: RunContext | None = None) -> ExtractedArchive:
    """Unpack ``archive`` under ``dest``.

    Member names are normalized before writing; names escaping ``dest`` are
    rejected and listed, and members that cannot be written are kept in
    ``failed`` with the reason. Device, fifo and socket members are never created
    on the host; they are kept in ``devices`` keyed by absolute image path.
    Directory modes are applied last so read-only directories still fill.
    """
    contents = read_archive(archive)
    extracted = ExtractedArchive(archive=archive, root=dest, contents=contents)
    dest.mkdir(parents=True, exist_ok=True)
    dir_modes: list[tuple[Path, int]] = []
    for entry in contents.entries:
        rel = safe_member_path(entry.name)
        if rel is None:
            if entry.name not in (".", "./", "/"):
                extracted.rejected.append(entry.name)
            continue
        if not _parent_inside(dest, Path(*rel.parts)):
            extracted.rejected.append(entry.name)
            continue
        try:
            if entry.kind in DEVICE_KINDS:
                (dest / rel).parent.mkdir(parents=True, exist_ok=True)
                extracted.devices[f"/{rel.as_posix()}"] = entry
                continue
            _write_member(dest, Path(*rel.parts), entry)
        except OSError as exc:
            extracted.failed[entry.name] = exc.strerror or str(exc)
            continue
        if entry.kind == "dir":
            dir_modes.append((dest / Path(*rel.parts), entry.permissions))
    for path, mode in reversed(dir_modes):
        # a later member may have replaced the directory with a symlink
        if path.is_dir() and not path.is_symlink():
            os.chmod(path, mode | 0o700)
    log_event(
        ctx,
        "info",
        "archive",
        "extract",
        archive=str(archive),
        entries=len(contents.entries),
        devices=len(extracted.devices),
        rejected=len(extracted.rejected),
        failed=len(extracted.failed),
        format_error=contents.format_error or "",
    )
    return extracted


@contextmanager
def scratch_extract(archive: Path, ctx: RunContext | None = None) -> Iterator[ExtractedArchive]:
    """Extract into a temporary directory removed on exit."""
    with tempfile.TemporaryDirectory(prefix="rockctl-extract-") as tmp:
        yield extract_into(archive, Path(tmp) / "root", ctx)
