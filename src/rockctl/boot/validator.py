"""Single supervised emulator boot trial.

A reader thread drains the emulator's merged console output into a bounded
queue. The controller waits for the next chunk or the deadline, whichever
comes first, re-classifies the transcript after every chunk, and kills the
child on a failure marker or at the deadline. Nothing is read from the queue
after the kill.
"""

from __future__ import annotations

import codecs
import contextlib
import queue
import subprocess
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

from ..contract import CONTRACT, kernel_cmdline, validate_kernel_cmdline
from ..core.config import DEFAULT_BOOT_TIMEOUT_SECONDS, DEFAULT_EMULATOR, DEFAULT_MEMORY
from ..core.logging import log_event
from ..core.process import run_command, which
from ..errors import HostCapabilityError, PreconditionError
from .classify import BootOutcome, classify, final_outcome

if TYPE_CHECKING:
    from ..core.context import RunContext

CHUNK_SIZE = 4096
QUEUE_DEPTH = 256
_PUT_POLL_SECONDS = 0.1
_JOIN_SECONDS = 5.0
_EXIT_GRACE_SECONDS = 2.0


@dataclass
class BootTrial:
    archive: str
    kernel: str
    mode: str
    cmdline: str
    command: list[str]
    outcome: BootOutcome
    transcript: str
    timed_out: bool
    killed: bool
    exit_code: int | None
    duration_ms: int
    chunks: int = 0
    events: list[str] = field(default_factory=list)

    def to_payload(self, run_id: str) -> dict[str, Any]:
        if self.outcome in (BootOutcome.SUCCESS, BootOutcome.PARTIAL_SUCCESS):
            status = "ok"
        elif self.outcome is BootOutcome.FAILED:
            status = "fail"
        else:
            status = "inconclusive"
        return {
            "schema_name": "rockctl.boot.v1",
            "schema_version": 1,
            "tool": "rockctl",
            "run_id": run_id,
            "status": status,
            "archive": self.archive,
            "kernel": self.kernel,
            "mode": self.mode if self.mode in ("debug", "production") else "debug",
            "cmdline": self.cmdline,
            "outcome": self.outcome.value,
            "timed_out": self.timed_out,
            "killed": self.killed,
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
            "transcript": self.transcript,
        }


def boot_cmdline(mode: str = "debug") -> str:
    """Contract command line plus the serial console and panic reboot the trial relies on."""
    tokens = kernel_cmdline(mode).split()
    if not any(t.startswith("console=") for t in tokens):
        tokens.append("console=ttyS0")
    if not any(t.startswith("panic=") for t in tokens):
        tokens.append("panic=1")
    line = " ".join(tokens)
    validate_kernel_cmdline(line, CONTRACT)
    return line


def emulator_command(
    emulator: str,
    kernel: Path,
    archive: Path,
    cmdline: str,
    memory: str = DEFAULT_MEMORY,
    extra_args: Sequence[str] = (),
) -> list[str]:
    return [
        emulator,
        "-kernel",
        str(kernel),
        "-initrd",
        str(archive),
        "-m",
        memory,
        "-nographic",
        "-append",
        cmdline,
        "-no-reboot",
        *extra_args,
    ]


def probe_emulator(emulator: str, ctx: RunContext | None = None) -> str:
    """Resolve the emulator binary and make sure it runs at all on this host."""
    resolved = which(emulator)
    if resolved is None:
        raise HostCapabilityError(f"emulator `{emulator}` not found; this host cannot run boot trials")
    result = run_command([resolved, "--version"], timeout_seconds=10, ctx=ctx)
    if result.code != 0:
        raise HostCapabilityError(f"emulator `{resolved}` does not run: {result.combined_output or result.code}")
    log_event(ctx, "debug", "boot", "probe", emulator=resolved, version=(result.stdout.splitlines() or [""])[0])
    return resolved


def _offer(chunks: queue.Queue[bytes | None], item: bytes | None, stop: threading.Event) -> bool:
    while not stop.is_set():
        try:
            chunks.put(item, timeout=_PUT_POLL_SECONDS)
            return True
        except queue.Full:
            continue
    return False


def _drain(stream: IO[bytes], chunks: queue.Queue[bytes | None], stop: threading.Event) -> None:
    try:
        while not stop.is_set():
            data = stream.read1(CHUNK_SIZE)  # type: ignore[attr-defined]
            if not data or not _offer(chunks, data, stop):
                break
    finally:
        _offer(chunks, None, stop)


def run_boot_trial(
    archive: Path,
    kernel: Path,
    mode: str = "debug",
    timeout_seconds: float = DEFAULT_BOOT_TIMEOUT_SECONDS,
    memory: str = DEFAULT_MEMORY,
    emulator: str = DEFAULT_EMULATOR,
    extra_args: Sequence[str] = (),
    stop_on_success: bool = False,
    on_output: Callable[[str], None] | None = None,
    ctx: RunContext | None = None,
) -> BootTrial:
    """Boot ``archive`` with ``kernel`` once and classify the console transcript.

    Missing inputs raise ``PreconditionError``; a host that cannot start the
    emulator raises ``HostCapabilityError``. Reaching the deadline is not an
    error: the trial ends ``INCONCLUSIVE`` unless earlier output decided it.
    """
    if not archive.is_file():
        raise PreconditionError(f"archive not found: {archive}")
    if not kernel.is_file():
        raise PreconditionError(f"kernel image not found: {kernel}")
    if timeout_seconds <= 0:
        raise PreconditionError(f"boot timeout must be positive, got {timeout_seconds}")
    cmdline = boot_cmdline(mode)
    binary = probe_emulator(emulator, ctx)
    cmd = emulator_command(binary, kernel, archive, cmdline, memory, extra_args)
    log_event(ctx, "info", "boot", "spawn", command=" ".join(cmd), timeout_seconds=timeout_seconds)

    started = time.monotonic()
    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
    except OSError as exc:
        raise HostCapabilityError(f"cannot start emulator `{binary}`: {exc}") from exc
    assert proc.stdout is not None

    chunks: queue.Queue[bytes | None] = queue.Queue(maxsize=QUEUE_DEPTH)
    stop = threading.Event()
    reader = threading.Thread(target=_drain, args=(proc.stdout, chunks, stop), name="boot-console", daemon=True)
    reader.start()

    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    transcript = ""
    received = 0
    timed_out = False
    events: list[str] = []
    deadline = started + timeout_seconds
    try:
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                timed_out = True
                break
            try:
                chunk = chunks.get(timeout=remaining)
            except queue.Empty:
                timed_out = True
                break
            if chunk is None:
                events.append("emulator-exited")
                break
            text = decoder.decode(chunk)
            received += 1
            transcript += text
            if on_output is not None and text:
                on_output(text)
            verdict = classify(transcript)
            if verdict is BootOutcome.FAILED:
                events.append("failure-marker")
                break
            if verdict is BootOutcome.SUCCESS and stop_on_success:
                events.append("success-marker")
                break
    finally:
        stop.set()
        if events and events[-1] == "emulator-exited":
            # console EOF can land a moment before the child is reapable
            with contextlib.suppress(subprocess.TimeoutExpired):
                proc.wait(timeout=_EXIT_GRACE_SECONDS)
        killed = proc.poll() is None
        if killed:
            proc.kill()
        proc.wait()
        reader.join(timeout=_JOIN_SECONDS)
        proc.stdout.close()

    transcript += decoder.decode(b"", final=True)
    if timed_out:
        events.append("deadline")
    outcome = final_outcome(transcript)
    trial = BootTrial(
        archive=str(archive),
        kernel=str(kernel),
        mode=mode,
        cmdline=cmdline,
        command=cmd,
        outcome=outcome,
        transcript=transcript,
        timed_out=timed_out,
        killed=killed,
        exit_code=proc.returncode,
        duration_ms=int((time.monotonic() - started) * 1000),
        chunks=received,
        events=events,
    )
    log_event(
        ctx,
        "info" if outcome is not BootOutcome.FAILED else "error",
        "boot",
        "outcome",
        outcome=outcome.value,
        timed_out=timed_out,
        killed=killed,
        duration_ms=trial.duration_ms,
    )
    return trial
