"""Optional YAML configuration for the rockctl command surface.

The integration contract is deliberately absent from this file: nothing a
config document says can move a mandatory destination or relax the kernel
command line policy.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..contracts.validate import schema_errors
from ..errors import ConfigError

DEFAULT_EMULATOR = "qemu-system-x86_64"
DEFAULT_MEMORY = "256M"
DEFAULT_BOOT_TIMEOUT_SECONDS = 10.0
CONFIG_SCHEMA = "rockctl.config.v1"


@dataclass(frozen=True)
class RockConfig:
    library_search_paths: tuple[str, ...] = ()
    sysroot: str | None = None
    strict_device_nodes: bool = False
    emulator_binary: str = DEFAULT_EMULATOR
    emulator_memory: str = DEFAULT_MEMORY
    emulator_extra_args: tuple[str, ...] = ()
    boot_timeout_seconds: float = DEFAULT_BOOT_TIMEOUT_SECONDS
    boot_mode: str = "debug"
    source: str | None = None

    @classmethod
    def from_mapping(cls, data: dict[str, Any], source: str | None = None) -> RockConfig:
        errors = schema_errors(CONFIG_SCHEMA, data)
        if errors:
            where = source or "<config>"
            raise ConfigError(f"invalid config {where}: " + "; ".join(errors))
        emulator = data.get("emulator", {})
        boot = data.get("boot", {})
        return cls(
            library_search_paths=tuple(data.get("library_search_paths", ())),
            sysroot=data.get("sysroot"),
            strict_device_nodes=bool(data.get("strict_device_nodes", False)),
            emulator_binary=str(emulator.get("binary", DEFAULT_EMULATOR)),
            emulator_memory=str(emulator.get("memory", DEFAULT_MEMORY)),
            emulator_extra_args=tuple(emulator.get("extra_args", ())),
            boot_timeout_seconds=float(boot.get("timeout_seconds", DEFAULT_BOOT_TIMEOUT_SECONDS)),
            boot_mode=str(boot.get("mode", "debug")),
            source=source,
        )


def load_yaml(path: Path) -> Any:
    import yaml

    try:
        with path.open("r", encoding="utf-8") as handle:
            return yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigError(f"config {path} is not valid YAML: {exc}") from exc


def load_config(path: Path | None) -> RockConfig:
    if path is None:
        return RockConfig()
    if not path.is_file():
        raise ConfigError(f"config file not found: {path}")
    data = load_yaml(path)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"config {path}: root must be a mapping")
    return RockConfig.from_mapping(data, source=str(path))
