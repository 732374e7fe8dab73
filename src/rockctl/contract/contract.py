from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..errors import KernelCmdlineError
from .paths import (
    AGENT_PATH,
    BUSYBOX_APPLETS,
    BUSYBOX_PATH,
    CONFIG_KEY_PATH,
    CRITICAL_DIRECTORIES,
    IMAGE_LIBRARY_DIRS,
    INIT_PATH,
    MANAGER_PATH,
    OPTIONAL_DIRECTORIES,
    SHELL_PATH,
)

CONTRACT_VERSION = "1.0"
BOOT_MODES = ("debug", "production")


@dataclass(frozen=True)
class BinaryMapping:
    source: str
    destination: str
    permissions: int = 0o755

    @property
    def renamed(self) -> bool:
        return self.source != self.destination.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class DeviceNode:
    path: str
    mode: int
    major: int
    minor: int


@dataclass(frozen=True)
class KernelParams:
    init_token: str
    forbidden_token: str
    required_flags: tuple[str, ...]
    debug_flags: tuple[str, ...]
    production_flags: tuple[str, ...]

    def mode_flags(self, mode: str) -> tuple[str, ...]:
        if mode == "production":
            return self.production_flags
        return self.debug_flags


@dataclass(frozen=True)
class IntegrationContract:
    version: str
    binaries: tuple[BinaryMapping, ...]
    shell_path: str
    busybox_path: str
    config_key_path: str
    critical_directories: tuple[str, ...]
    optional_directories: tuple[str, ...]
    device_nodes: tuple[DeviceNode, ...]
    busybox_applets: tuple[str, ...]
    kernel: KernelParams
    image_library_dirs: tuple[str, ...]

    @property
    def required_directories(self) -> tuple[str, ...]:
        return self.critical_directories + self.optional_directories

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "binaries": [
                {"source": b.source, "destination": b.destination, "permissions": f"{b.permissions:04o}"}
                for b in self.binaries
            ],
            "shell": self.shell_path,
            "config_key": self.config_key_path,
            "directories": {
                "critical": list(self.critical_directories),
                "optional": list(self.optional_directories),
            },
            "device_nodes": [
                {"path": d.path, "mode": f"{d.mode:04o}", "major": d.major, "minor": d.minor}
                for d in self.device_nodes
            ],
            "busybox_symlinks": list(self.busybox_applets),
            "kernel": {
                "init_token": self.kernel.init_token,
                "forbidden_token": self.kernel.forbidden_token,
                "required_flags": list(self.kernel.required_flags),
                "debug_flags": list(self.kernel.debug_flags),
                "production_flags": list(self.kernel.production_flags),
            },
        }


CONTRACT = IntegrationContract(
    version=CONTRACT_VERSION,
    binaries=(
        BinaryMapping("rock-init", INIT_PATH),
        BinaryMapping("rock-manager", MANAGER_PATH),
        BinaryMapping("volcano-agent", AGENT_PATH),
        BinaryMapping("busybox", BUSYBOX_PATH),
    ),
    shell_path=SHELL_PATH,
    busybox_path=BUSYBOX_PATH,
    config_key_path=CONFIG_KEY_PATH,
    critical_directories=CRITICAL_DIRECTORIES,
    optional_directories=OPTIONAL_DIRECTORIES,
    device_nodes=(
        DeviceNode("/dev/null", 0o666, 1, 3),
        DeviceNode("/dev/zero", 0o666, 1, 5),
        DeviceNode("/dev/random", 0o666, 1, 8),
        DeviceNode("/dev/urandom", 0o666, 1, 9),
        DeviceNode("/dev/tty", 0o666, 5, 0),
        DeviceNode("/dev/console", 0o620, 5, 1),
        DeviceNode("/dev/ptmx", 0o666, 5, 2),
    ),
    busybox_applets=BUSYBOX_APPLETS,
    kernel=KernelParams(
        init_token=f"init={INIT_PATH}",
        forbidden_token="rdinit=",
        required_flags=("net.ifnames=0",),
        debug_flags=("console=ttyS0", "debug"),
        production_flags=("quiet", "security=selinux"),
    ),
    image_library_dirs=IMAGE_LIBRARY_DIRS,
)


def kernel_cmdline(mode: str = "debug", contract: IntegrationContract = CONTRACT) -> str:
    """Mandatory init token first, then required flags, then the mode flags.

    Unknown modes use the debug flags.
    """
    params = contract.kernel
    line = " ".join((params.init_token, *params.required_flags, *params.mode_flags(mode)))
    validate_kernel_cmdline(line, contract)
    return line


def validate_kernel_cmdline(cmdline: str, contract: IntegrationContract = CONTRACT) -> None:
    params = contract.kernel
    tokens = cmdline.split()
    forbidden = [t for t in tokens if t.startswith(params.forbidden_token)]
    if forbidden:
        raise KernelCmdlineError(
            f"kernel command line carries {forbidden[0]!r}; use {params.init_token!r} instead"
        )
    if params.init_token not in tokens:
        raise KernelCmdlineError(f"kernel command line is missing mandatory {params.init_token!r}")
    other_init = [t for t in tokens if t.startswith("init=") and t != params.init_token]
    if other_init:
        raise KernelCmdlineError(
            f"kernel command line selects a different init ({other_init[0]!r}); only {params.init_token!r} is allowed"
        )
