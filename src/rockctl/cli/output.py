from __future__ import annotations

import sys
from collections.abc import Iterable
from typing import Any

from ..contracts.validate import validate
from ..core.context import RunContext
from ..core.serialize import dumps_json
from ..errors import ScriptError
from ..verify.base import Finding


def common_fields(ctx: RunContext, status: str = "ok") -> dict[str, Any]:
    return {"schema_version": 1, "tool": "rockctl", "run_id": ctx.run_id, "status": status}


def emit(ctx: RunContext, payload: dict[str, Any], lines: Iterable[str], schema_name: str | None = None) -> None:
    """Print a payload as JSON or its text rendering; schema-backed payloads are validated first."""
    if schema_name is not None:
        validate(schema_name, payload)
    if ctx.as_json:
        print(dumps_json(payload))
        return
    for line in lines:
        print(line)


def finding_lines(ctx: RunContext, critical: list[Finding], warnings: list[Finding], info: list[Finding]) -> list[str]:
    out = [f"CRITICAL {f.render()}" for f in critical]
    if not ctx.quiet:
        out.extend(f"WARNING  {f.render()}" for f in warnings)
    if ctx.verbose:
        out.extend(f"INFO     {f.render()}" for f in info)
    return out


def error_payload(exc: ScriptError) -> dict[str, Any]:
    return {
        "schema_name": "rockctl.error.v1",
        "schema_version": 1,
        "tool": "rockctl",
        "status": "error",
        "errors": [{"code": exc.code, "message": exc.message, "kind": exc.kind}],
    }


def render_error(exc: ScriptError, as_json: bool) -> None:
    if as_json:
        print(dumps_json(error_payload(exc)), file=sys.stderr)
    else:
        print(f"rockctl: {exc.kind}: {exc.message}", file=sys.stderr)
