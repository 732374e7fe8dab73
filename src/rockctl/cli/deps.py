from __future__ import annotations

import argparse
from pathlib import Path

from ..core.context import RunContext
from ..core.fs import format_size
from ..deps.resolver import ScanResult, scan_binary, scan_payload
from ..deps.search import assemble_search_paths
from ..exit_codes import ERR_WILL_NOT_BOOT, OK
from .output import common_fields, emit
from .verify import add_json_flag


def configure_deps_parser(sub: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    p = sub.add_parser("deps", help="shared-library dependency analysis of one binary")
    deps_sub = p.add_subparsers(dest="deps_cmd", required=True)
    for name, help_text in (
        ("scan", "list declared needs with resolved paths and sizes"),
        ("verify", "fail when any declared need is not found"),
        ("alpine", "musl portability judgment for the minimal target"),
    ):
        sp = deps_sub.add_parser(name, help=help_text)
        sp.add_argument("binary")
        _add_search_flag(sp)
        add_json_flag(sp)
    check = deps_sub.add_parser("check", help="does BINARY need a library whose name contains LIB")
    check.add_argument("binary")
    check.add_argument("library")
    _add_search_flag(check)
    add_json_flag(check)


def _add_search_flag(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--search-path",
        action="append",
        default=[],
        help="library directory, repeatable; replaces the default search order",
    )


def search_paths_for(ctx: RunContext, explicit: list[str]) -> list[str]:
    return assemble_search_paths(
        explicit=explicit,
        configured=ctx.config.library_search_paths,
        sysroot=ctx.sysroot,
        ld_library_path=ctx.ld_library_path,
    )


def _scan_lines(result: ScanResult) -> list[str]:
    lines = [
        f"binary: {result.binary}",
        f"architecture: {result.architecture}",
        f"libc: {result.libc}",
    ]
    if result.kind == "script":
        lines.append("interpreter script: no shared-library dependencies")
        return lines
    if result.is_static:
        lines.append("statically linked: no dependencies")
        return lines
    for dep in result.dependencies:
        if dep.found:
            lines.append(f"  ok      {dep.name:<30} {dep.path} ({format_size(dep.size or 0)})")
            if dep.real_path:
                lines.append(f"          -> {dep.real_path}")
        elif dep.system:
            lines.append(f"  system  {dep.name:<30} provided by the target")
        else:
            lines.append(f"  MISSING {dep.name}")
    lines.append(f"total size with dependencies: {format_size(result.total_size)}")
    return lines


def _alpine_lines(result: ScanResult) -> list[str]:
    if result.kind == "script":
        return ["interpreter script: portable as long as its interpreter is in the image"]
    if result.is_static:
        return ["statically linked: suits the minimal musl image as is"]
    if result.libc == "musl":
        lines = ["musl-linked binary: native to the minimal image"]
    else:
        lines = [
            f"{result.libc}-linked binary: may not run on a musl image",
            "consider rebuilding against musl, linking statically, or shipping a glibc compatibility layer",
        ]
    for dep in result.dependencies:
        state = "ok" if dep.found else ("system" if dep.system else "MISSING")
        lines.append(f"  {state:<7} {dep.name}")
    return lines


def run_deps_command(ctx: RunContext, ns: argparse.Namespace) -> int:
    paths = search_paths_for(ctx, ns.search_path)
    result = scan_binary(Path(ns.binary), paths, ctx=ctx)
    sub = ns.deps_cmd
    if sub == "scan":
        emit(ctx, scan_payload(result, ctx.run_id), _scan_lines(result), "rockctl.scan.v1")
        return OK if result.satisfied else ERR_WILL_NOT_BOOT
    if sub == "verify":
        missing = result.missing
        payload = scan_payload(result, ctx.run_id)
        payload["status"] = "ok" if not missing else "fail"
        lines = _scan_lines(result)
        if missing:
            lines.append(f"missing: {' '.join(missing)}")
        else:
            lines.append(f"all {len(result.dependencies)} dependencies found")
        emit(ctx, payload, lines, "rockctl.scan.v1")
        return OK if not missing else ERR_WILL_NOT_BOOT
    if sub == "check":
        matches = result.needs(ns.library)
        required = bool(matches)
        found = all(d.found for d in matches)
        if not required:
            line = f"{Path(result.binary).name} does not require {ns.library}"
        elif found:
            line = f"{Path(result.binary).name} requires {matches[0].name} (found at {matches[0].path})"
        else:
            line = f"{Path(result.binary).name} requires {matches[0].name} (NOT FOUND)"
        payload = {
            **common_fields(ctx, "ok" if found else "fail"),
            "binary": result.binary,
            "library": ns.library,
            "required": required,
            "found": found,
            "matches": [d.to_payload() for d in matches],
        }
        emit(ctx, payload, [line])
        return OK if found else ERR_WILL_NOT_BOOT
    if sub == "alpine":
        payload = {
            **common_fields(ctx),
            "binary": result.binary,
            "libc": result.libc,
            "is_static": result.is_static,
            "portable": result.portable,
            "dependencies": [d.to_payload() for d in result.dependencies],
        }
        emit(ctx, payload, _alpine_lines(result))
        return OK
    return 2
