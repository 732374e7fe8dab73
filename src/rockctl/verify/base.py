from __future__ import annotations

import os
import stat
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from ..archive.cpio import CpioEntry
from ..core.fs import resolve_in_root, under_root

Level = Literal["integration", "structure", "dependencies"]
LEVELS: tuple[Level, ...] = ("integration", "structure", "dependencies")


@dataclass(frozen=True)
class Finding:
    check: str
    path: str
    reason: str
    detail: str = ""

    def to_payload(self) -> dict[str, str]:
        return {"check": self.check, "path": self.path, "reason": self.reason, "detail": self.detail}

    def render(self) -> str:
        text = f"{self.path}: {self.reason}"
        return f"{text} ({self.detail})" if self.detail else text


class FindingSink:
    """Shared accumulator handed to every check; checks only ever append."""

    def __init__(self) -> None:
        self.critical: list[Finding] = []
        self.warnings: list[Finding] = []
        self.info: list[Finding] = []
        self.check_id = ""

    def error(self, path: str, reason: str, detail: str = "") -> None:
        self.critical.append(Finding(self.check_id, path, reason, detail))

    def warn(self, path: str, reason: str, detail: str = "") -> None:
        self.warnings.append(Finding(self.check_id, path, reason, detail))

    def note(self, path: str, reason: str, detail: str = "") -> None:
        self.info.append(Finding(self.check_id, path, reason, detail))

    def flag(self, critical: bool, path: str, reason: str, detail: str = "") -> None:
        if critical:
            self.error(path, reason, detail)
        else:
            self.warn(path, reason, detail)


@dataclass(frozen=True)
class DeviceInfo:
    kind: str
    permissions: int
    major: int
    minor: int


@dataclass
class FsView:
    """Read-only view of a staged tree or an extracted archive.

    ``devices`` overlays device members an archive carried but the host
    could not create. ``entry_names``, ``format_error``, ``rejected`` and ``failed`` are
    only set for archives.
    """

    root: Path
    devices: dict[str, CpioEntry] = field(default_factory=dict)
    entry_names: list[str] | None = None
    format_error: str | None = None
    rejected: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    source: Path | None = None

    @property
    def is_archive(self) -> bool:
        return self.entry_names is not None

    def path(self, contract_path: str) -> Path:
        return under_root(self.root, contract_path)

    def lexists(self, contract_path: str) -> bool:
        return contract_path in self.devices or os.path.lexists(self.path(contract_path))

    def is_symlink(self, contract_path: str) -> bool:
        return self.path(contract_path).is_symlink()

    def is_dir(self, contract_path: str) -> bool:
        resolved = self.resolve(contract_path)
        return resolved is not None and resolved.is_dir()

    def readlink(self, contract_path: str) -> str:
        return os.readlink(self.path(contract_path))

    def resolve(self, contract_path: str) -> Path | None:
        return resolve_in_root(self.path(contract_path), self.root)

    def device(self, contract_path: str) -> DeviceInfo | None:
        entry = self.devices.get(contract_path)
        if entry is not None:
            return DeviceInfo(entry.kind, entry.permissions, entry.rdevmajor, entry.rdevminor)
        target = self.path(contract_path)
        try:
            st = target.lstat()
        except FileNotFoundError:
            return None
        if stat.S_ISCHR(st.st_mode):
            kind = "chardev"
        elif stat.S_ISBLK(st.st_mode):
            kind = "blockdev"
        elif stat.S_ISDIR(st.st_mode):
            kind = "dir"
        elif stat.S_ISLNK(st.st_mode):
            kind = "symlink"
        else:
            kind = "file"
        major = os.major(st.st_rdev) if kind in ("chardev", "blockdev") else 0
        minor = os.minor(st.st_rdev) if kind in ("chardev", "blockdev") else 0
        return DeviceInfo(kind, stat.S_IMODE(st.st_mode), major, minor)


@dataclass(frozen=True)
class VerifyOptions:
    strict_devices: bool = False


CheckFunc = Callable[[FsView, FindingSink, VerifyOptions], None]


@dataclass(frozen=True)
class CheckDef:
    check_id: str
    levels: tuple[Level, ...]
    fn: CheckFunc


@dataclass
class VerificationResult:
    target: str
    target_kind: Literal["directory", "archive"]
    level: Level
    critical_errors: list[Finding]
    warnings: list[Finding]
    info: list[Finding]
    checks: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.critical_errors

    def to_payload(self, run_id: str) -> dict[str, Any]:
        return {
            "schema_name": "rockctl.verify.v1",
            "schema_version": 1,
            "tool": "rockctl",
            "run_id": run_id,
            "status": "ok" if self.success else "fail",
            "target": self.target,
            "target_kind": self.target_kind,
            "level": self.level,
            "success": self.success,
            "critical_errors": [f.to_payload() for f in self.critical_errors],
            "warnings": [f.to_payload() for f in self.warnings],
            "info": [f.to_payload() for f in self.info],
            "checks": self.checks,
        }
