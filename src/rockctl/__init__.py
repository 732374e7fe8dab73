__version__ = "0.1.0"

__all__ = [
    "__version__",
    "archive",
    "boot",
    "cli",
    "contract",
    "contracts",
    "core",
    "deps",
    "errors",
    "exit_codes",
    "verify",
]
