"""Shared-library dependency scanning for staged binaries."""

from .resolver import DependencyRecord, ScanResult, is_system_library, libc_family, scan_binary
from .search import STANDARD_LIBRARY_DIRS, assemble_search_paths

__all__ = [
    "STANDARD_LIBRARY_DIRS",
    "DependencyRecord",
    "ScanResult",
    "assemble_search_paths",
    "is_system_library",
    "libc_family",
    "scan_binary",
]
