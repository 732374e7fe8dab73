from __future__ import annotations

import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..archive.reader import ExtractedArchive, scratch_extract
from ..core.logging import log_event
from ..errors import PreconditionError
from .base import LEVELS, FindingSink, FsView, Level, VerificationResult, VerifyOptions
from .checks import CHECKS

if TYPE_CHECKING:
    from ..core.context import RunContext


def view_of_extracted(extracted: ExtractedArchive) -> FsView:
    return FsView(
        root=extracted.root,
        devices=dict(extracted.devices),
        entry_names=[e.name for e in extracted.entries],
        format_error=extracted.format_error,
        rejected=list(extracted.rejected),
        failed=dict(extracted.failed),
        source=extracted.archive,
    )


def run_checks(
    view: FsView,
    level: Level = "integration",
    options: VerifyOptions | None = None,
    target: str | None = None,
    ctx: RunContext | None = None,
) -> VerificationResult:
    """Run every check registered for ``level``; no check stops the battery."""
    if level not in LEVELS:
        raise ValueError(f"unknown verification level `{level}`")
    opts = options or VerifyOptions()
    sink = FindingSink()
    rows: list[dict[str, Any]] = []
    for chk in CHECKS:
        if level not in chk.levels:
            continue
        sink.check_id = chk.check_id
        errors_before = len(sink.critical)
        warnings_before = len(sink.warnings)
        start = time.perf_counter()
        chk.fn(view, sink, opts)
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        errors = len(sink.critical) - errors_before
        rows.append(
            {
                "id": chk.check_id,
                "status": "pass" if errors == 0 else "fail",
                "errors": errors,
                "warnings": len(sink.warnings) - warnings_before,
                "duration_ms": elapsed_ms,
            }
        )
        log_event(ctx, "debug", "verify", "check", check=chk.check_id, errors=errors, duration_ms=elapsed_ms)
    result = VerificationResult(
        target=target or str(view.source or view.root),
        target_kind="archive" if view.is_archive else "directory",
        level=level,
        critical_errors=sink.critical,
        warnings=sink.warnings,
        info=sink.info,
        checks=rows,
    )
    log_event(
        ctx,
        "info",
        "verify",
        "summary",
        target=result.target,
        verify_level=level,
        success=result.success,
        critical=len(result.critical_errors),
        warnings=len(result.warnings),
    )
    return result


def verify_path(
    target: Path,
    level: Level = "integration",
    strict_devices: bool = False,
    ctx: RunContext | None = None,
) -> VerificationResult:
    """Verify a staged directory or a built archive against the contract.

    Archives are unpacked into a scratch directory first, so both kinds go
    through the same battery.
    """
    options = VerifyOptions(strict_devices=strict_devices)
    if target.is_dir():
        return run_checks(FsView(root=target), level, options, str(target), ctx)
    if target.is_file():
        with scratch_extract(target, ctx) as extracted:
            return run_checks(view_of_extracted(extracted), level, options, str(target), ctx)
    raise PreconditionError(f"verification target not found: {target}")
