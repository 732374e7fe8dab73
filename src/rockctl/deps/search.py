from __future__ import annotations

from collections.abc import Iterable

STANDARD_LIBRARY_DIRS: tuple[str, ...] = (
    "/lib",
    "/lib64",
    "/usr/lib",
    "/usr/lib64",
    "/usr/local/lib",
    "/usr/local/lib64",
)


def assemble_search_paths(
    explicit: Iterable[str] = (),
    configured: Iterable[str] = (),
    sysroot: str | None = None,
    ld_library_path: str | None = None,
) -> list[str]:
    """Build the ordered host search list for the dependency resolver.

    Explicit paths replace everything else. Otherwise the order is
    LD_LIBRARY_PATH entries, configured paths, sysroot-prefixed standard
    directories, then the standard directories. Duplicates keep their first
    position.
    """
    explicit = [p for p in explicit if p]
    if explicit:
        return _dedupe(explicit)
    ordered: list[str] = []
    if ld_library_path:
        ordered.extend(p for p in ld_library_path.split(":") if p)
    ordered.extend(p for p in configured if p)
    if sysroot:
        base = sysroot.rstrip("/")
        ordered.extend(f"{base}{d}" for d in STANDARD_LIBRARY_DIRS)
    ordered.extend(STANDARD_LIBRARY_DIRS)
    return _dedupe(ordered)


def _dedupe(paths: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for path in paths:
        if path in seen:
            continue
        seen.add(path)
        out.append(path)
    return out
