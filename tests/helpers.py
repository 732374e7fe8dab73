from __future__ import annotations

import gzip
import io
import os
import stat
import struct
import sys
from collections.abc import Iterable, Sequence
from pathlib import Path

from rockctl.archive.cpio import CpioEntry, NewcWriter
from rockctl.contract import CONTRACT

EM_X86_64 = 62
EM_AARCH64 = 183
SHT_STRTAB = 3
SHT_DYNAMIC = 6
DT_NULL = 0
DT_NEEDED = 1

_SHDR = "<IIQQQQIIQQ"


def _section(name: int, sh_type: int, offset: int, size: int, link: int = 0, entsize: int = 0) -> bytes:
    return struct.pack(_SHDR, name, sh_type, 0, 0, offset, size, link, 0, 1, entsize)


def elf_bytes(needed: Sequence[str] | None = None, machine: int = EM_X86_64) -> bytes:
    """Minimal little-endian ELF64 object.

    ``needed=None`` gives a static object (no dynamic section at all); a list
    gives a ``.dynamic`` section with one ``DT_NEEDED`` per name.
    """
    body = b""
    sections = [_section(0, 0, 0, 0)]
    if needed is None:
        shstrtab = b"\x00.shstrtab\x00"
        shstr_off = 64
        body += shstrtab
        sections.append(_section(1, SHT_STRTAB, shstr_off, len(shstrtab)))
        shstrndx = 1
    else:
        dynstr = b"\x00"
        offsets = []
        for name in needed:
            offsets.append(len(dynstr))
            dynstr += name.encode() + b"\x00"
        dynamic = b"".join(struct.pack("<qQ", DT_NEEDED, off) for off in offsets)
        dynamic += struct.pack("<qQ", DT_NULL, 0)
        shstrtab = b"\x00.dynstr\x00.dynamic\x00.shstrtab\x00"
        dynstr_off = 64
        dynamic_off = dynstr_off + len(dynstr)
        dynamic_off += (-dynamic_off) % 8
        shstr_off = dynamic_off + len(dynamic)
        body = dynstr + b"\x00" * (dynamic_off - dynstr_off - len(dynstr)) + dynamic + shstrtab
        sections.append(_section(1, SHT_STRTAB, dynstr_off, len(dynstr)))
        sections.append(_section(9, SHT_DYNAMIC, dynamic_off, len(dynamic), link=1, entsize=16))
        sections.append(_section(18, SHT_STRTAB, shstr_off, len(shstrtab)))
        shstrndx = 3
    shoff = 64 + len(body)
    pad = (-shoff) % 8
    shoff += pad
    ident = b"\x7fELF" + bytes([2, 1, 1, 0, 0]) + b"\x00" * 7
    header = ident + struct.pack(
        "<HHIQQQIHHHHHH",
        2,
        machine,
        1,
        0x401000,
        0,
        shoff,
        0,
        64,
        56,
        0,
        64,
        len(sections),
        shstrndx,
    )
    return header + body + b"\x00" * pad + b"".join(sections)


def write_elf(path: Path, needed: Sequence[str] | None = None, machine: int = EM_X86_64, mode: int = 0o755) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(elf_bytes(needed, machine))
    os.chmod(path, mode)
    return path


def stage_tree(root: Path, needed: dict[str, Sequence[str]] | None = None, applets: bool = True) -> Path:
    """A staged tree that satisfies the contract apart from device nodes."""
    needed = needed or {}
    for directory in CONTRACT.required_directories:
        (root / directory.lstrip("/")).mkdir(parents=True, exist_ok=True)
    for mapping in CONTRACT.binaries:
        write_elf(root / mapping.destination.lstrip("/"), needed.get(mapping.source))
    (root / "bin/sh").symlink_to("busybox")
    if applets:
        for applet in CONTRACT.busybox_applets:
            link = root / "bin" / applet
            if not link.is_symlink():
                link.symlink_to("busybox")
    (root / "config/CONFIG_KEY").write_bytes(b"\x00" * 32)
    return root


def newc_bytes(entries: Iterable[CpioEntry]) -> bytes:
    buf = io.BytesIO()
    writer = NewcWriter(buf)
    for entry in entries:
        writer.add(entry)
    writer.close()
    return buf.getvalue()


def write_archive(path: Path, entries: Iterable[CpioEntry], compress: bool = True) -> Path:
    data = newc_bytes(entries)
    path.write_bytes(gzip.compress(data, mtime=0) if compress else data)
    return path


def tree_entries(root: Path, prefix: str = "") -> list[CpioEntry]:
    """Archive members for a staged tree with a forced name prefix, bypassing the builder."""
    out: list[CpioEntry] = []
    for path in sorted(root.rglob("*")):
        name = prefix + path.relative_to(root).as_posix()
        st = path.lstat()
        if stat.S_ISLNK(st.st_mode):
            out.append(CpioEntry.symlink(name, os.readlink(path)))
        elif stat.S_ISDIR(st.st_mode):
            out.append(CpioEntry.directory(name, stat.S_IMODE(st.st_mode)))
        else:
            out.append(CpioEntry.regular(name, path.read_bytes(), stat.S_IMODE(st.st_mode)))
    return out


FAKE_EMULATOR = """#!{python}
import os
import sys
import time

if len(sys.argv) > 1 and sys.argv[1] == "--version":
    print("QEMU emulator version 8.2.0 (fake)")
    sys.exit({version_code})

with open({pid_file!r}, "w") as handle:
    handle.write(str(os.getpid()))
with open({args_file!r}, "w") as handle:
    handle.write("\\n".join(sys.argv[1:]))

for line in {lines!r}:
    if line.startswith("@sleep "):
        time.sleep(float(line.split()[1]))
        continue
    sys.stdout.write(line + "\\n")
    sys.stdout.flush()
time.sleep({hang})
sys.exit({exit_code})
"""


def write_fake_emulator(
    directory: Path,
    lines: Sequence[str],
    hang: float = 0.0,
    exit_code: int = 0,
    version_code: int = 0,
) -> Path:
    """A stand-in for qemu that prints ``lines`` (``@sleep N`` pauses) and then hangs."""
    directory.mkdir(parents=True, exist_ok=True)
    script = directory / "fake-qemu"
    script.write_text(
        FAKE_EMULATOR.format(
            python=sys.executable,
            version_code=version_code,
            pid_file=str(directory / "pid"),
            args_file=str(directory / "args"),
            lines=list(lines),
            hang=hang,
            exit_code=exit_code,
        ),
        encoding="utf-8",
    )
    os.chmod(script, 0o755)
    return script


def process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
