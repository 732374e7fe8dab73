"""Turn a staged root tree into a gzip-compressed newc initramfs.

The build is bracketed by two verifications: the staged tree is checked
before anything is written, and the produced archive is unpacked and
checked again on its own, independent of the source tree.
"""

from __future__ import annotations

import gzip
import os
import stat
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from ..contract import CONTRACT
from ..core.fs import contract_relpath, remove_quietly
from ..core.logging import log_event
from ..errors import PreconditionError
from ..verify.base import Finding, VerificationResult
from ..verify.runner import verify_path
from .cpio import CpioEntry, NewcWriter

if TYPE_CHECKING:
    from ..core.context import RunContext

DEFAULT_OUTPUT = "initrd.cpio.gz"

Stage = Literal["pre-check", "write", "post-check", "done"]


@dataclass
class BuildResult:
    source: Path
    output: Path
    success: bool
    stage: Stage
    entries: int = 0
    compressed_size: int = 0
    pre_check: VerificationResult | None = None
    post_check: VerificationResult | None = None
    write_error: str | None = None
    synthesized_devices: list[str] = field(default_factory=list)

    @property
    def critical_errors(self) -> list[Finding]:
        if self.write_error:
            return [Finding("archive/write", str(self.output), "writing the archive failed", self.write_error)]
        check = self.post_check if self.stage in ("post-check", "done") else self.pre_check
        return list(check.critical_errors) if check else []

    @property
    def warnings(self) -> list[Finding]:
        check = self.post_check or self.pre_check
        return list(check.warnings) if check else []

    def to_payload(self, run_id: str) -> dict[str, Any]:
        return {
            "schema_name": "rockctl.build.v1",
            "schema_version": 1,
            "tool": "rockctl",
            "run_id": run_id,
            "status": "ok" if self.success else "fail",
            "source": str(self.source),
            "output": str(self.output),
            "success": self.success,
            "stage": self.stage,
            "entries": self.entries,
            "compressed_size": self.compressed_size,
            "critical_errors": [f.to_payload() for f in self.critical_errors],
            "warnings": [f.to_payload() for f in self.warnings],
        }


def _entry_name(relative: Path) -> str:
    """Archive member name for a tree-relative path: never './' or '/' prefixed."""
    name = relative.as_posix()
    while name.startswith("./"):
        name = name[2:]
    return name.lstrip("/")


def _walk(directory: Path) -> Iterator[Path]:
    # sorted, parents before children, symlinked directories are not followed
    for child in sorted(directory.iterdir(), key=lambda p: p.name):
        yield child
        if child.is_dir() and not child.is_symlink():
            yield from _walk(child)


def _entry_for(path: Path, name: str, mtime: int | None) -> CpioEntry | None:
    st = path.lstat()
    when = int(st.st_mtime) if mtime is None else mtime
    perms = stat.S_IMODE(st.st_mode)
    if stat.S_ISDIR(st.st_mode):
        return CpioEntry.directory(name, perms, when)
    if stat.S_ISLNK(st.st_mode):
        return CpioEntry.symlink(name, os.readlink(path), when)
    if stat.S_ISREG(st.st_mode):
        return CpioEntry.regular(name, path.read_bytes(), perms, when)
    if stat.S_ISCHR(st.st_mode) or stat.S_ISBLK(st.st_mode):
        kind = "chardev" if stat.S_ISCHR(st.st_mode) else "blockdev"
        return CpioEntry.device(name, kind, perms, os.major(st.st_rdev), os.minor(st.st_rdev), when)
    if stat.S_ISFIFO(st.st_mode):
        return CpioEntry(name, st.st_mode, mtime=when)
    return None


def _device_entries(present: set[str], mtime: int) -> list[CpioEntry]:
    out: list[CpioEntry] = []
    for node in CONTRACT.device_nodes:
        name = contract_relpath(node.path)
        if name not in present:
            out.append(CpioEntry.device(name, "chardev", node.mode, node.major, node.minor, mtime))
    return out


def build_image(
    source: Path,
    output: Path,
    mtime: int | None = None,
    device_nodes: bool = False,
    strict_devices: bool = False,
    compresslevel: int = 9,
    ctx: RunContext | None = None,
) -> BuildResult:
    """Build ``output`` from the staged tree at ``source``.

    Returns a failed result without touching ``output`` when the staged tree
    does not verify. A failed write removes the partial file, and an archive
    that does not verify after the build is removed as well.
    """
    if not source.is_dir():
        raise PreconditionError(f"staged tree not found: {source}")
    # synthesized device members satisfy strict mode only once they are in the archive
    pre = verify_path(source, "integration", strict_devices and not device_nodes, ctx)
    if not pre.success:
        log_event(ctx, "error", "build", "pre-check", source=str(source), critical=len(pre.critical_errors))
        return BuildResult(source, output, False, "pre-check", pre_check=pre)

    output.parent.mkdir(parents=True, exist_ok=True)
    skip = output.resolve()
    count = 0
    synthesized: list[str] = []
    try:
        with output.open("wb") as raw, gzip.GzipFile(
            filename="", mode="wb", fileobj=raw, compresslevel=compresslevel, mtime=mtime or 0
        ) as stream:
            writer = NewcWriter(stream)  # type: ignore[arg-type]
            present: set[str] = set()
            for path in _walk(source):
                if not path.is_symlink() and path.resolve() == skip:
                    continue
                name = _entry_name(path.relative_to(source))
                entry = _entry_for(path, name, mtime)
                if entry is None:
                    log_event(ctx, "warn", "build", "skip-member", path=str(path), reason="unsupported file type")
                    continue
                writer.add(entry)
                present.add(name)
            if device_nodes:
                for entry in _device_entries(present, mtime or 0):
                    writer.add(entry)
                    synthesized.append(f"/{entry.name}")
            writer.close()
            count = writer.count
    except OSError as exc:
        remove_quietly(output)
        log_event(ctx, "error", "build", "write", output=str(output), error=str(exc))
        return BuildResult(source, output, False, "write", pre_check=pre, write_error=str(exc))

    size = output.stat().st_size
    log_event(ctx, "info", "build", "write", output=str(output), entries=count, compressed_size=size)
    post = verify_path(output, "integration", strict_devices, ctx)
    if not post.success:
        remove_quietly(output)
        log_event(ctx, "error", "build", "post-check", output=str(output), critical=len(post.critical_errors))
        return BuildResult(source, output, False, "post-check", count, size, pre, post, None, synthesized)
    return BuildResult(source, output, True, "done", count, size, pre, post, None, synthesized)
