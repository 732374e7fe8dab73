from __future__ import annotations

from enum import Enum


class BootOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"
    INCONCLUSIVE = "inconclusive"


FAILURE_MARKERS: tuple[str, ...] = ("Kernel panic", "Failed to execute /sbin/init")
SUCCESS_MARKERS: tuple[str, ...] = ("rock-init", "ROCK-OS", "rock-manager")
# the kernel's own "Kernel command line: init=/sbin/init" echo is not evidence of a handoff
PARTIAL_MARKERS: tuple[str, ...] = ("Run /sbin/init",)


def _init_not_found(transcript: str) -> bool:
    return any("not found" in line and "/sbin/init" in line for line in transcript.splitlines())


def is_failure(transcript: str) -> bool:
    return any(m in transcript for m in FAILURE_MARKERS) or _init_not_found(transcript)


def classify(transcript: str) -> BootOutcome | None:
    """Strongest evidence in ``transcript``; ``None`` while there is none.

    Failure markers outrank success markers, which outrank the kernel's
    handoff line.
    """
    if is_failure(transcript):
        return BootOutcome.FAILED
    if any(m in transcript for m in SUCCESS_MARKERS):
        return BootOutcome.SUCCESS
    if any(m in transcript for m in PARTIAL_MARKERS):
        return BootOutcome.PARTIAL_SUCCESS
    return None


def final_outcome(transcript: str) -> BootOutcome:
    return classify(transcript) or BootOutcome.INCONCLUSIVE
