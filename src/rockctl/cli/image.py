from __future__ import annotations

import argparse
from pathlib import Path

from ..archive.builder import DEFAULT_OUTPUT, build_image
from ..archive.reader import extract_into, list_archive
from ..contract import CONTRACT
from ..core.context import RunContext
from ..core.fs import format_size
from ..errors import PreconditionError
from ..exit_codes import ERR_WILL_NOT_BOOT, OK
from ..verify.runner import verify_path
from .output import common_fields, emit, finding_lines
from .verify import add_json_flag, render_verification


def configure_image_parser(sub: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    p = sub.add_parser("image", help="build and inspect initramfs archives")
    image_sub = p.add_subparsers(dest="image_cmd", required=True)

    build = image_sub.add_parser("build", help="build a gzip newc archive from a staged tree")
    build.add_argument("source", help="staged root directory")
    build.add_argument("--output", "-o", default=DEFAULT_OUTPUT, help=f"archive path (default {DEFAULT_OUTPUT})")
    build.add_argument("--mtime", type=int, default=None, help="fixed member mtime for reproducible archives")
    build.add_argument("--device-nodes", action="store_true", help="add missing contract device nodes to the archive")
    build.add_argument("--strict-devices", action="store_true", help="treat missing device nodes as critical")
    add_json_flag(build)

    extract = image_sub.add_parser("extract", help="unpack an archive for inspection")
    extract.add_argument("archive")
    extract.add_argument("--dest", default=None, help="target directory (default <name>_extracted)")
    add_json_flag(extract)

    listing = image_sub.add_parser("list", help="list archive members")
    listing.add_argument("archive")
    add_json_flag(listing)

    verify = image_sub.add_parser("verify", help="full contract verification of a built archive")
    verify.add_argument("archive")
    verify.add_argument("--strict-devices", action="store_true", help="treat missing device nodes as critical")
    add_json_flag(verify)


def _default_dest(archive: Path) -> Path:
    return archive.parent / f"{archive.name.split('.', 1)[0]}_extracted"


def _run_build(ctx: RunContext, ns: argparse.Namespace) -> int:
    strict = ns.strict_devices or ctx.config.strict_device_nodes
    result = build_image(
        Path(ns.source),
        Path(ns.output),
        mtime=ns.mtime,
        device_nodes=ns.device_nodes,
        strict_devices=strict,
        ctx=ctx,
    )
    if result.success:
        head = f"built {result.output}: {result.entries} entries, {format_size(result.compressed_size)}"
    else:
        head = f"build failed at {result.stage}: {result.output} not produced"
    lines = [head]
    if result.synthesized_devices:
        lines.append("synthesized device nodes: " + " ".join(result.synthesized_devices))
    lines.extend(finding_lines(ctx, result.critical_errors, result.warnings, []))
    emit(ctx, result.to_payload(ctx.run_id), lines, "rockctl.build.v1")
    return OK if result.success else ERR_WILL_NOT_BOOT


def _run_extract(ctx: RunContext, ns: argparse.Namespace) -> int:
    archive = Path(ns.archive)
    if not archive.is_file():
        raise PreconditionError(f"archive not found: {archive}")
    dest = Path(ns.dest) if ns.dest else _default_dest(archive)
    extracted = extract_into(archive, dest, ctx)
    critical_paths = [m.destination for m in CONTRACT.binaries] + [CONTRACT.shell_path]
    found: list[dict[str, object]] = []
    lines = [f"extracted {len(extracted.entries)} entries from {archive} into {dest}"]
    for path in critical_paths:
        target = dest / path.lstrip("/")
        if target.is_symlink():
            link = str(target.readlink())
            found.append({"path": path, "type": "symlink", "target": link})
            lines.append(f"  {path} -> {link}")
        elif target.is_file():
            size = target.stat().st_size
            found.append({"path": path, "type": "file", "size": size})
            lines.append(f"  {path} ({format_size(size)})")
        else:
            found.append({"path": path, "type": "missing"})
            lines.append(f"  {path} MISSING")
    for name in extracted.rejected:
        lines.append(f"  rejected unsafe member {name}")
    if extracted.format_error:
        lines.append(f"archive damaged: {extracted.format_error}")
    status = "ok" if extracted.contents.complete and not extracted.rejected else "fail"
    payload = {
        **common_fields(ctx, status),
        "archive": str(archive),
        "dest": str(dest),
        "entries": len(extracted.entries),
        "devices": sorted(extracted.devices),
        "rejected": extracted.rejected,
        "format_error": extracted.format_error,
        "critical_paths": found,
    }
    emit(ctx, payload, lines)
    return OK if status == "ok" else ERR_WILL_NOT_BOOT


def _run_list(ctx: RunContext, ns: argparse.Namespace) -> int:
    entries = list_archive(Path(ns.archive))
    rows = [
        {
            "name": e.name,
            "type": e.kind,
            "mode": f"{e.permissions:04o}",
            "size": e.size,
            "link_target": e.link_target,
        }
        for e in entries
    ]
    lines = []
    for row in rows:
        suffix = f" -> {row['link_target']}" if row["link_target"] else ""
        lines.append(f"{row['type']:<8} {row['mode']} {row['size']:>10} {row['name']}{suffix}")
    emit(ctx, {**common_fields(ctx), "archive": ns.archive, "entries": rows}, lines)
    return OK


def run_image_command(ctx: RunContext, ns: argparse.Namespace) -> int:
    sub = ns.image_cmd
    if sub == "build":
        return _run_build(ctx, ns)
    if sub == "extract":
        return _run_extract(ctx, ns)
    if sub == "list":
        return _run_list(ctx, ns)
    if sub == "verify":
        archive = Path(ns.archive)
        if not archive.is_file():
            raise PreconditionError(f"archive not found: {archive}")
        strict = ns.strict_devices or ctx.config.strict_device_nodes
        return render_verification(ctx, verify_path(archive, "integration", strict, ctx))
    return 2
