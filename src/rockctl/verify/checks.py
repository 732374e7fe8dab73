from __future__ import annotations

from pathlib import PurePosixPath

from ..contract import CONTRACT
from ..deps.resolver import scan_binary
from ..errors import BinaryFormatError
from .base import LEVELS, CheckDef, FindingSink, FsView, VerifyOptions

BUSYBOX = "busybox"


def check_archive_stream(view: FsView, sink: FindingSink, _opts: VerifyOptions) -> None:
    if not view.is_archive:
        return
    where = str(view.source) if view.source else "<archive>"
    if view.format_error:
        sink.error(where, "archive stream is damaged", view.format_error)
    for name in view.rejected:
        sink.error(name, "archive member escapes the image root")
    for name, reason in view.failed.items():
        sink.error(name, "archive member could not be unpacked", reason)


def bad_entry_name(name: str) -> str | None:
    if name.startswith("./"):
        return "entry name has a './' prefix"
    if name.startswith("/"):
        return "entry name is absolute"
    if ".." in PurePosixPath(name).parts:
        return "entry name contains '..'"
    return None


def check_entry_names(view: FsView, sink: FindingSink, _opts: VerifyOptions) -> None:
    """The kernel's initramfs unpacker cannot resolve './'-prefixed or absolute names."""
    for name in view.entry_names or ():
        reason = bad_entry_name(name)
        if reason:
            sink.error(name, reason, "entry names must be relative paths such as 'sbin/init'")


def check_binaries(view: FsView, sink: FindingSink, _opts: VerifyOptions) -> None:
    for mapping in CONTRACT.binaries:
        dest = mapping.destination
        if not view.lexists(dest):
            sink.error(dest, f"required binary {mapping.source} is missing")
            continue
        resolved = view.resolve(dest)
        if resolved is None:
            detail = f"-> {view.readlink(dest)}" if view.is_symlink(dest) else ""
            sink.error(dest, "dangling symlink or special file", detail)
            continue
        if not resolved.is_file():
            sink.error(dest, "not a regular file")
            continue
        mode = resolved.stat().st_mode
        if not mode & 0o111:
            sink.error(dest, "not executable", f"mode {mode & 0o7777:04o}, expected {mapping.permissions:04o}")
        if mapping.renamed:
            sink.note(dest, f"{mapping.source} installed as {PurePosixPath(dest).name}")


def _points_at_busybox(target: str) -> bool:
    return PurePosixPath(target).name == BUSYBOX or target.endswith(BUSYBOX)


def check_shell(view: FsView, sink: FindingSink, _opts: VerifyOptions) -> None:
    shell = CONTRACT.shell_path
    if not view.lexists(shell):
        sink.error(shell, "shell is missing", "rock-init falls back to /bin/sh on failure")
        return
    if not view.is_symlink(shell):
        resolved = view.resolve(shell)
        if resolved is None or not resolved.is_file():
            sink.error(shell, "shell is not a regular file or symlink")
        elif not resolved.stat().st_mode & 0o111:
            sink.error(shell, "shell is not executable")
        else:
            sink.note(shell, "shell is a regular file, not a busybox symlink")
        return
    target = view.readlink(shell)
    resolved = view.resolve(shell)
    if not _points_at_busybox(target) and (resolved is None or resolved.name != BUSYBOX):
        sink.error(shell, "shell does not resolve to busybox", f"-> {target}")
    elif resolved is None:
        if _points_at_busybox(target) and not view.lexists(CONTRACT.busybox_path):
            return  # the missing busybox is reported by contract/binaries
        sink.error(shell, "shell symlink is dangling", f"-> {target}")


def check_directories(view: FsView, sink: FindingSink, _opts: VerifyOptions) -> None:
    for directory in CONTRACT.critical_directories:
        if not view.is_dir(directory):
            sink.error(directory, "critical directory is missing")
    for directory in CONTRACT.optional_directories:
        if not view.is_dir(directory):
            sink.warn(directory, "optional directory is missing", "rock-init creates it at runtime")


def check_device_nodes(view: FsView, sink: FindingSink, opts: VerifyOptions) -> None:
    strict = opts.strict_devices
    for node in CONTRACT.device_nodes:
        expected = f"char {node.major},{node.minor} mode {node.mode:04o}"
        info = view.device(node.path)
        if info is None:
            detail = f"devtmpfs recreates it at boot; expected {expected}"
            sink.flag(strict, node.path, "device node is missing", detail)
            continue
        if info.kind != "chardev" or (info.major, info.minor) != (node.major, node.minor):
            found = f"{info.kind} {info.major},{info.minor}"
            sink.flag(strict, node.path, "device node does not match", f"found {found}, expected {expected}")
            continue
        if info.permissions != node.mode:
            sink.warn(node.path, "device node mode differs", f"found {info.permissions:04o}, expected {node.mode:04o}")


def check_busybox_links(view: FsView, sink: FindingSink, _opts: VerifyOptions) -> None:
    for applet in CONTRACT.busybox_applets:
        link = f"/bin/{applet}"
        if link == CONTRACT.shell_path:
            continue
        if not view.lexists(link):
            sink.warn(link, "busybox applet symlink is missing")
        elif not view.is_symlink(link):
            sink.warn(link, "applet is not a symlink to busybox")
        elif not _points_at_busybox(view.readlink(link)):
            sink.warn(link, "applet symlink does not point at busybox", f"-> {view.readlink(link)}")


def check_dependencies(view: FsView, sink: FindingSink, _opts: VerifyOptions) -> None:
    search = [str(view.root / d) for d in CONTRACT.image_library_dirs]
    for mapping in CONTRACT.binaries:
        dest = mapping.destination
        resolved = view.resolve(dest)
        if resolved is None or not resolved.is_file():
            continue
        try:
            result = scan_binary(view.path(dest), search, root=view.root)
        except BinaryFormatError as exc:
            sink.warn(dest, "cannot determine dependencies", exc.message)
            continue
        except OSError as exc:
            sink.warn(dest, "cannot read binary", exc.strerror or str(exc))
            continue
        if result.kind == "script":
            sink.note(dest, "interpreter script, no library dependencies")
            continue
        for dep in result.dependencies:
            if dep.unresolved_non_system:
                sink.error(dest, f"unresolved non-system dependency {dep.name}", "binary will fail at process start")
            elif not dep.found:
                sink.note(dest, f"{dep.name} is a system library not present in the image")


def _libc_of(name: str) -> str | None:
    if name.startswith(("ld-musl-", "libc.musl-")):
        return "musl"
    if name.startswith("ld-linux") or name == "libc.so.6":
        return "glibc"
    return None


def image_libc(view: FsView) -> dict[str, str]:
    """C library families shipped in the image's library directories, with the first path seen for each."""
    found: dict[str, str] = {}
    for directory in CONTRACT.image_library_dirs:
        resolved = view.resolve(f"/{directory}")
        if resolved is None or not resolved.is_dir():
            continue
        for child in sorted(resolved.iterdir(), key=lambda p: p.name):
            family = _libc_of(child.name)
            if family is not None and family not in found:
                found[family] = f"/{directory}/{child.name}"
    return found


def check_image_libc(view: FsView, sink: FindingSink, _opts: VerifyOptions) -> None:
    families = image_libc(view)
    if not families:
        sink.note("/lib", "no C library in the image", "contract binaries must be statically linked")
        return
    if "musl" in families:
        sink.note(families["musl"], "image ships musl libc")
    if "glibc" in families:
        sink.note(families["glibc"], "image ships glibc", "larger than musl; musl binaries will not use it")


CHECKS: tuple[CheckDef, ...] = (
    CheckDef("archive/stream", LEVELS, check_archive_stream),
    CheckDef("archive/entry-names", ("integration", "structure"), check_entry_names),
    CheckDef("contract/binaries", ("integration", "structure"), check_binaries),
    CheckDef("contract/shell", ("integration", "structure"), check_shell),
    CheckDef("contract/directories", ("integration", "structure"), check_directories),
    CheckDef("contract/device-nodes", ("integration", "structure"), check_device_nodes),
    CheckDef("contract/busybox-links", ("integration", "structure"), check_busybox_links),
    CheckDef("contract/dependencies", ("integration", "dependencies"), check_dependencies),
    CheckDef("contract/libc", ("integration", "dependencies"), check_image_libc),
)
