from __future__ import annotations

INIT_PATH = "/sbin/init"
MANAGER_PATH = "/usr/bin/rock-manager"
AGENT_PATH = "/usr/bin/volcano-agent"
BUSYBOX_PATH = "/bin/busybox"
SHELL_PATH = "/bin/sh"
CONFIG_KEY_PATH = "/config/CONFIG_KEY"

CRITICAL_DIRECTORIES: tuple[str, ...] = ("/proc", "/sys", "/dev", "/sbin", "/bin", "/usr/bin")
OPTIONAL_DIRECTORIES: tuple[str, ...] = ("/tmp", "/run", "/var/log", "/config", "/etc/rock")

BUSYBOX_APPLETS: tuple[str, ...] = (
    "sh",
    "ls",
    "cat",
    "echo",
    "mount",
    "umount",
    "mkdir",
    "rm",
    "cp",
    "mv",
    "chmod",
    "chown",
    "sleep",
    "test",
    "[",
    "[[",
    "ps",
)

# in-image library directories searched for dependency completeness
IMAGE_LIBRARY_DIRS: tuple[str, ...] = ("lib", "lib64", "usr/lib", "usr/lib64", "lib/x86_64-linux-musl")
