from __future__ import annotations

import argparse
import os
import sys

from .. import __version__
from ..contracts.validate import validate_file
from ..core.context import RunContext
from ..core.logging import log_event
from ..errors import ScriptError
from ..exit_codes import ERR_INTERNAL, ERR_USAGE, OK
from .contract import configure_contract_parser, run_contract_command
from .deps import configure_deps_parser, run_deps_command
from .image import configure_image_parser, run_image_command
from .output import common_fields, emit, render_error
from .verify import add_json_flag, configure_verify_parser, run_verify_command


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rockctl", description="build, verify and boot-test ROCK-OS initramfs images")
    p.add_argument("--version", action="version", version=f"rockctl {__version__}")
    p.add_argument("--run-id", help="run identifier carried in logs and payloads")
    p.add_argument("--config", help="YAML config file (default: $ROCKCTL_CONFIG)")
    p.add_argument("--format", choices=["text", "json"], default=None, help="output format")
    p.add_argument("--json", action="store_true", help="shorthand for --format json")
    p.add_argument("--log-json", action="store_true", help="emit log events on stderr as JSON")
    vg = p.add_mutually_exclusive_group()
    vg.add_argument("--verbose", action="store_true", help="enable debug events and info findings")
    vg.add_argument("--quiet", action="store_true", help="only emit warnings, errors and critical findings")
    sub = p.add_subparsers(dest="cmd", required=True)

    configure_image_parser(sub)
    configure_verify_parser(sub)
    configure_deps_parser(sub)
    configure_contract_parser(sub)

    val_p = sub.add_parser("validate-output", help="validate a saved JSON payload against a packaged schema")
    val_p.add_argument("--schema", required=True)
    val_p.add_argument("--file", required=True)
    add_json_flag(val_p)
    return p


def _wants_json(ns: argparse.Namespace) -> bool:
    if ns.json or ns.format == "json":
        return True
    return ns.format is None and "CI" in os.environ


def main(argv: list[str] | None = None) -> int:
    p = build_parser()
    ns = p.parse_args(argv)
    as_json = _wants_json(ns)
    try:
        ctx = RunContext.from_args(
            ns.run_id,
            "json" if as_json else "text",
            ns.verbose,
            ns.quiet,
            ns.log_json,
            ns.config,
        )
        log_event(ctx, "debug", "cli", "start", cmd=ns.cmd, fmt=ctx.output_format)
        if ns.cmd == "image":
            return run_image_command(ctx, ns)
        if ns.cmd == "verify":
            return run_verify_command(ctx, ns)
        if ns.cmd == "deps":
            return run_deps_command(ctx, ns)
        if ns.cmd == "contract":
            return run_contract_command(ctx, ns)
        if ns.cmd == "validate-output":
            validate_file(ns.schema, ns.file)
            payload = {**common_fields(ctx), "schema": ns.schema, "file": ns.file}
            emit(ctx, payload, [f"{ns.file} conforms to {ns.schema}"])
            return OK
        return ERR_USAGE
    except ScriptError as exc:
        render_error(exc, as_json)
        return exc.code
    except Exception as exc:  # pragma: no cover
        render_error(ScriptError(f"internal error: {exc}", ERR_INTERNAL, "internal"), as_json)
        return ERR_INTERNAL


if __name__ == "__main__":
    sys.exit(main())
