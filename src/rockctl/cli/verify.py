from __future__ import annotations

import argparse
import sys
from pathlib import Path

from ..boot.classify import BootOutcome
from ..boot.validator import run_boot_trial
from ..core.context import RunContext
from ..exit_codes import ERR_INCONCLUSIVE, ERR_WILL_NOT_BOOT, OK
from ..verify.base import LEVELS, VerificationResult
from ..verify.runner import verify_path
from .output import emit, finding_lines

_BOOT_EXIT = {
    BootOutcome.SUCCESS: OK,
    BootOutcome.PARTIAL_SUCCESS: OK,
    BootOutcome.FAILED: ERR_WILL_NOT_BOOT,
    BootOutcome.INCONCLUSIVE: ERR_INCONCLUSIVE,
}


def add_json_flag(p: argparse.ArgumentParser) -> None:
    p.add_argument("--json", action="store_true", default=argparse.SUPPRESS, help="emit JSON output")


def configure_verify_parser(sub: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    p = sub.add_parser("verify", help="verify a staged tree or archive against the integration contract")
    verify_sub = p.add_subparsers(dest="verify_cmd", required=True)
    for level, help_text in (
        ("integration", "run the full contract battery"),
        ("structure", "entry names, binaries, shell, directories, device nodes, busybox links"),
        ("dependencies", "shared-library completeness of the contract binaries"),
    ):
        lp = verify_sub.add_parser(level, help=help_text)
        lp.add_argument("path", help="staged directory or .cpio.gz archive")
        lp.add_argument("--strict-devices", action="store_true", help="treat missing device nodes as critical")
        add_json_flag(lp)

    boot = verify_sub.add_parser("boot", help="boot the archive once in an emulator and classify the console")
    boot.add_argument("archive")
    boot.add_argument("--kernel", required=True, help="kernel image (bzImage)")
    boot.add_argument("--mode", choices=["debug", "production"], default=None)
    boot.add_argument("--timeout", type=float, default=None, help="deadline in seconds (default 10)")
    boot.add_argument("--memory", default=None, help="guest memory (default 256M)")
    boot.add_argument("--emulator", default=None, help="emulator binary (default qemu-system-x86_64)")
    boot.add_argument("--stop-on-success", action="store_true", help="end the trial at the first success marker")
    add_json_flag(boot)


def render_verification(ctx: RunContext, result: VerificationResult) -> int:
    lines = [f"verify {result.level}: {result.target} ({result.target_kind})"]
    for row in result.checks:
        mark = "PASS" if row["status"] == "pass" else "FAIL"
        lines.append(f"  [{mark}] {row['id']} errors={row['errors']} warnings={row['warnings']}")
    lines.extend(finding_lines(ctx, result.critical_errors, result.warnings, result.info))
    verdict = "PASS" if result.success else "FAIL: image will not boot"
    lines.append(f"result: {verdict} ({len(result.critical_errors)} critical, {len(result.warnings)} warnings)")
    emit(ctx, result.to_payload(ctx.run_id), lines, "rockctl.verify.v1")
    return OK if result.success else ERR_WILL_NOT_BOOT


def _stream_console(text: str) -> None:
    sys.stderr.write(text)
    sys.stderr.flush()


def run_boot_command(ctx: RunContext, ns: argparse.Namespace) -> int:
    cfg = ctx.config
    trial = run_boot_trial(
        Path(ns.archive),
        Path(ns.kernel),
        mode=ns.mode or cfg.boot_mode,
        timeout_seconds=ns.timeout if ns.timeout is not None else cfg.boot_timeout_seconds,
        memory=ns.memory or cfg.emulator_memory,
        emulator=ns.emulator or cfg.emulator_binary,
        extra_args=cfg.emulator_extra_args,
        stop_on_success=ns.stop_on_success,
        on_output=None if ctx.quiet else _stream_console,
        ctx=ctx,
    )
    lines = [
        f"boot: {trial.archive} with {trial.kernel}",
        f"cmdline: {trial.cmdline}",
        f"outcome: {trial.outcome.value} (timed_out={trial.timed_out} killed={trial.killed} "
        f"duration_ms={trial.duration_ms})",
    ]
    if trial.outcome is BootOutcome.PARTIAL_SUCCESS:
        lines.append("note: kernel handed off to /sbin/init but rock-init never identified itself")
    emit(ctx, trial.to_payload(ctx.run_id), lines, "rockctl.boot.v1")
    return _BOOT_EXIT[trial.outcome]


def run_verify_command(ctx: RunContext, ns: argparse.Namespace) -> int:
    if ns.verify_cmd == "boot":
        return run_boot_command(ctx, ns)
    if ns.verify_cmd not in LEVELS:
        return 2
    strict = ns.strict_devices or ctx.config.strict_device_nodes
    result = verify_path(Path(ns.path), ns.verify_cmd, strict, ctx)
    return render_verification(ctx, result)
