from __future__ import annotations

import argparse

from ..contract import CONTRACT, kernel_cmdline, validate_kernel_cmdline
from ..core.context import RunContext
from ..exit_codes import OK
from .output import common_fields, emit
from .verify import add_json_flag


def configure_contract_parser(sub: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    p = sub.add_parser("contract", help="show the rock-init integration contract")
    contract_sub = p.add_subparsers(dest="contract_cmd", required=True)
    show = contract_sub.add_parser("show", help="binary destinations, directories, device nodes, kernel policy")
    add_json_flag(show)
    cmdline = contract_sub.add_parser("cmdline", help="kernel command line for a boot mode")
    cmdline.add_argument("mode", nargs="?", default="debug", help="debug or production; unknown modes use debug")
    add_json_flag(cmdline)
    check = contract_sub.add_parser("check-cmdline", help="validate a kernel command line against the contract")
    check.add_argument("cmdline")
    add_json_flag(check)


def _show_lines() -> list[str]:
    lines = [f"integration contract v{CONTRACT.version}", "", "binaries:"]
    for b in CONTRACT.binaries:
        lines.append(f"  {b.source:<14} -> {b.destination:<24} {b.permissions:04o}")
    lines.append(f"  shell          -> {CONTRACT.shell_path} (symlink to busybox)")
    lines.append(f"  config key     -> {CONTRACT.config_key_path}")
    lines.append("")
    lines.append("directories (critical): " + " ".join(CONTRACT.critical_directories))
    lines.append("directories (optional): " + " ".join(CONTRACT.optional_directories))
    lines.append("")
    lines.append("device nodes:")
    for d in CONTRACT.device_nodes:
        lines.append(f"  {d.path:<14} c {d.major},{d.minor} {d.mode:04o}")
    lines.append("")
    lines.append("busybox symlinks: " + " ".join(CONTRACT.busybox_applets))
    kernel = CONTRACT.kernel
    lines.append("")
    lines.append(f"kernel: {kernel.init_token} (never {kernel.forbidden_token}...)")
    lines.append("  required:   " + " ".join(kernel.required_flags))
    lines.append("  debug:      " + " ".join(kernel.debug_flags))
    lines.append("  production: " + " ".join(kernel.production_flags))
    return lines


def run_contract_command(ctx: RunContext, ns: argparse.Namespace) -> int:
    sub = ns.contract_cmd
    if sub == "show":
        emit(ctx, {**common_fields(ctx), "contract": CONTRACT.to_payload()}, _show_lines())
        return OK
    if sub == "cmdline":
        line = kernel_cmdline(ns.mode)
        emit(ctx, {**common_fields(ctx), "mode": ns.mode, "cmdline": line}, [line])
        return OK
    if sub == "check-cmdline":
        validate_kernel_cmdline(ns.cmdline)
        emit(ctx, {**common_fields(ctx), "cmdline": ns.cmdline}, ["kernel command line satisfies the contract"])
        return OK
    return 2
