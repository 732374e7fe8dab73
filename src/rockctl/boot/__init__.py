"""Emulator boot trials and console transcript classification."""

from .classify import BootOutcome, classify, final_outcome
from .validator import BootTrial, boot_cmdline, emulator_command, probe_emulator, run_boot_trial

__all__ = [
    "BootOutcome",
    "BootTrial",
    "boot_cmdline",
    "classify",
    "emulator_command",
    "final_outcome",
    "probe_emulator",
    "run_boot_trial",
]
