from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from .config import RockConfig, load_config

OutputFormat = Literal["text", "json"]


@dataclass(frozen=True)
class RunContext:
    run_id: str
    output_format: OutputFormat = "text"
    verbose: bool = False
    quiet: bool = False
    log_json: bool = False
    config: RockConfig = field(default_factory=RockConfig)
    sysroot: str | None = None
    ld_library_path: str | None = None

    @property
    def as_json(self) -> bool:
        return self.output_format == "json"

    @classmethod
    def from_args(
        cls,
        run_id: str | None,
        output_format: OutputFormat | None = None,
        verbose: bool = False,
        quiet: bool = False,
        log_json: bool = False,
        config_path: str | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> RunContext:
        env = os.environ if environ is None else environ
        default_run = f"rock-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}"
        resolved_run_id = run_id or env.get("RUN_ID", default_run)
        resolved_format: OutputFormat = output_format or ("json" if "CI" in env else "text")
        raw_config = config_path or env.get("ROCKCTL_CONFIG")
        config = load_config(Path(raw_config) if raw_config else None)
        sysroot = env.get("ROCK_SYSROOT") or config.sysroot
        return cls(
            run_id=resolved_run_id,
            output_format=resolved_format,
            verbose=verbose,
            quiet=quiet,
            log_json=log_json,
            config=config,
            sysroot=sysroot or None,
            ld_library_path=env.get("LD_LIBRARY_PATH") or None,
        )
