from __future__ import annotations

from dataclasses import dataclass

from .exit_codes import ERR_CONFIG, ERR_HOST, ERR_INTERNAL, ERR_PREREQ, ERR_WILL_NOT_BOOT


@dataclass
class ScriptError(Exception):
    message: str
    code: int = ERR_INTERNAL
    kind: str = "generic_error"

    def __str__(self) -> str:
        return self.message


class PreconditionError(ScriptError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ERR_PREREQ, "precondition")


class HostCapabilityError(ScriptError):
    """The host cannot run a boot trial; never means the image failed to boot."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ERR_HOST, "host_not_boot_capable")


class KernelCmdlineError(ScriptError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ERR_CONFIG, "kernel_cmdline")


class ConfigError(ScriptError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ERR_CONFIG, "config")


class ArchiveFormatError(ScriptError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ERR_WILL_NOT_BOOT, "archive_format")


class BinaryFormatError(ScriptError):
    """Neither an ELF object nor an interpreter script; dependencies cannot be determined."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ERR_PREREQ, "binary_format")
