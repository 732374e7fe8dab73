"""ELF dependency resolver.

Reads the declared shared-library needs (``DT_NEEDED``) of one binary with
pyelftools and resolves each name against an explicit, ordered list of
search directories. The first directory holding a match wins, as with the
dynamic linker. Nothing here reads the environment; callers assemble the
search list (see ``rockctl.deps.search``).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from elftools.common.exceptions import ELFError
from elftools.elf.dynamic import DynamicSection, DynamicSegment
from elftools.elf.elffile import ELFFile

from ..core.fs import resolve_in_root
from ..core.logging import log_event
from ..errors import BinaryFormatError, PreconditionError

if TYPE_CHECKING:
    from ..core.context import RunContext

BinaryKind = Literal["elf", "script"]
LibcFamily = Literal["static", "musl", "glibc", "unknown"]

ELF_MAGIC = b"\x7fELF"

_ARCHITECTURES = {
    "EM_X86_64": "x86_64",
    "EM_386": "i386",
    "EM_AARCH64": "aarch64",
    "EM_ARM": "arm",
    "EM_RISCV": "riscv",
    "EM_PPC64": "ppc64",
    "EM_S390": "s390",
}


def architecture_name(machine: str) -> str:
    if machine in _ARCHITECTURES:
        return _ARCHITECTURES[machine]
    return machine[3:].lower() if machine.startswith("EM_") else machine.lower()


def is_system_library(name: str) -> bool:
    """Loader and libc components are provided by the target itself."""
    return name.startswith("libc.") or name.startswith("ld-")


@dataclass(frozen=True)
class DependencyRecord:
    name: str
    found: bool
    system: bool
    path: str | None = None
    real_path: str | None = None
    size: int | None = None

    @property
    def unresolved_non_system(self) -> bool:
        return not self.found and not self.system

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "found": self.found,
            "system": self.system,
            "path": self.path,
            "real_path": self.real_path,
            "size": self.size,
        }


@dataclass(frozen=True)
class ScanResult:
    binary: str
    kind: BinaryKind
    architecture: str
    is_static: bool
    binary_size: int
    search_paths: tuple[str, ...]
    dependencies: tuple[DependencyRecord, ...] = field(default_factory=tuple)
    interpreter: str | None = None

    @property
    def unresolved(self) -> list[str]:
        return [d.name for d in self.dependencies if d.unresolved_non_system]

    @property
    def missing(self) -> list[str]:
        return [d.name for d in self.dependencies if not d.found]

    @property
    def satisfied(self) -> bool:
        return not self.unresolved

    @property
    def libc(self) -> LibcFamily:
        return libc_family(self)

    @property
    def portable(self) -> bool:
        """Static and musl-linked binaries suit the minimal target distribution."""
        return self.kind == "script" or self.libc in ("static", "musl")

    @property
    def total_size(self) -> int:
        return self.binary_size + sum(d.size or 0 for d in self.dependencies if d.found)

    def needs(self, fragment: str) -> list[DependencyRecord]:
        return [d for d in self.dependencies if fragment in d.name]


def libc_family(result: ScanResult) -> LibcFamily:
    if result.kind == "script":
        return "unknown"
    if result.is_static:
        return "static"
    names = [d.name for d in result.dependencies]
    interp = result.interpreter or ""
    if "musl" in interp or any("musl" in n for n in names):
        return "musl"
    if "ld-linux" in interp or any(n.startswith("libc.so.6") or n.startswith("ld-linux") for n in names):
        return "glibc"
    return "unknown"


def _read_needed(handle: Any) -> tuple[str, bool, list[str], str | None]:
    elf = ELFFile(handle)
    machine = architecture_name(str(elf["e_machine"]))
    needed: list[str] = []
    dynamic = False
    interpreter: str | None = None
    for section in elf.iter_sections():
        if isinstance(section, DynamicSection):
            dynamic = True
            needed.extend(t.needed for t in section.iter_tags() if t.entry.d_tag == "DT_NEEDED")
    for segment in elf.iter_segments():
        if segment["p_type"] == "PT_INTERP":
            interpreter = segment.get_interp_name()
        elif not dynamic and isinstance(segment, DynamicSegment):
            # stripped section headers; fall back to the program header view
            dynamic = True
            needed.extend(t.needed for t in segment.iter_tags() if t.entry.d_tag == "DT_NEEDED")
    return machine, dynamic and bool(needed), needed, interpreter


def _resolve(name: str, search_paths: Sequence[str], root: Path | None) -> DependencyRecord:
    system = is_system_library(name)
    for directory in search_paths:
        candidate = Path(directory) / name
        real = resolve_in_root(candidate, root)
        if real is None or not real.is_file():
            continue
        is_link = candidate.is_symlink()
        return DependencyRecord(
            name=name,
            found=True,
            system=system,
            path=str(candidate),
            real_path=str(real) if is_link else None,
            size=real.stat().st_size,
        )
    return DependencyRecord(name=name, found=False, system=system)


def scan_binary(
    binary: Path,
    search_paths: Sequence[str],
    root: Path | None = None,
    ctx: RunContext | None = None,
) -> ScanResult:
    """Enumerate and resolve the declared shared-library needs of ``binary``.

    ``root`` anchors absolute symlink targets found while resolving, for scans
    of libraries inside a staged tree. Interpreter scripts come back as
    ``kind="script"`` with no dependencies; anything else that is not ELF
    raises ``BinaryFormatError``.
    """
    real_binary = resolve_in_root(binary, root)
    if real_binary is None or not real_binary.is_file():
        raise PreconditionError(f"binary not found: {binary}")
    size = real_binary.stat().st_size
    with real_binary.open("rb") as handle:
        head = handle.read(4)
        handle.seek(0)
        if head[:2] == b"#!":
            log_event(ctx, "debug", "deps", "scan", binary=str(binary), kind="script")
            return ScanResult(str(binary), "script", "script", False, size, tuple(search_paths))
        if head != ELF_MAGIC:
            raise BinaryFormatError(f"{binary}: not an ELF binary; cannot determine dependencies")
        try:
            machine, dynamic, needed, interpreter = _read_needed(handle)
        except ELFError as exc:
            raise BinaryFormatError(f"{binary}: malformed ELF ({exc}); cannot determine dependencies") from exc
    if not dynamic:
        log_event(ctx, "debug", "deps", "scan", binary=str(binary), kind="elf", static=True)
        return ScanResult(str(binary), "elf", machine, True, size, tuple(search_paths))
    records = tuple(_resolve(name, search_paths, root) for name in needed)
    result = ScanResult(
        binary=str(binary),
        kind="elf",
        architecture=machine,
        is_static=False,
        binary_size=size,
        search_paths=tuple(search_paths),
        dependencies=records,
        interpreter=interpreter,
    )
    log_event(
        ctx,
        "debug",
        "deps",
        "scan",
        binary=str(binary),
        kind="elf",
        needed=len(records),
        unresolved=len(result.unresolved),
    )
    return result


def scan_payload(result: ScanResult, run_id: str) -> dict[str, Any]:
    return {
        "schema_name": "rockctl.scan.v1",
        "schema_version": 1,
        "tool": "rockctl",
        "run_id": run_id,
        "status": "ok" if result.satisfied else "fail",
        "binary": result.binary,
        "kind": result.kind,
        "architecture": result.architecture,
        "is_static": result.is_static,
        "libc": result.libc,
        "portable": result.portable,
        "total_size": result.total_size,
        "search_paths": list(result.search_paths),
        "dependencies": [d.to_payload() for d in result.dependencies],
        "unresolved": result.unresolved,
    }
