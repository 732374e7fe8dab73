from __future__ import annotations

import os
from pathlib import Path, PurePosixPath


def contract_relpath(path: str) -> str:
    """Map an absolute contract path (``/bin/sh``) to a tree-relative one (``bin/sh``)."""
    return path.lstrip("/")


def under_root(root: Path, contract_path: str) -> Path:
    return root / contract_relpath(contract_path)


def safe_member_path(name: str) -> PurePosixPath | None:
    """Normalize an archive member name for extraction; ``None`` when it escapes the root."""
    parts = [p for p in PurePosixPath(name).parts if p not in ("/", ".")]
    if not parts or any(p == ".." for p in parts):
        return None
    return PurePosixPath(*parts)


def resolve_in_root(path: Path, root: Path | None = None, max_hops: int = 40) -> Path | None:
    """Follow a symlink chain starting at ``path``.

    Absolute link targets are re-anchored under ``root`` when one is given, so
    links inside a staged tree resolve against the tree instead of the host.
    Returns ``None`` for dangling links and loops.
    """
    current = path
    for _ in range(max_hops):
        if not current.is_symlink():
            return Path(os.path.normpath(current)) if current.exists() else None
        target = os.readlink(current)
        if target.startswith("/") and root is not None:
            current = root / target.lstrip("/")
        else:
            current = current.parent / target
    return None


def remove_quietly(path: Path) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


def format_size(num_bytes: int) -> str:
    unit = 1024
    if num_bytes < unit:
        return f"{num_bytes} B"
    value = float(num_bytes)
    for suffix in "KMGTPE":
        value /= unit
        if value < unit:
            return f"{value:.2f} {suffix}B"
    return f"{value:.2f} EB"
