"""Structural and integration-contract verification of staged trees and archives."""

from .base import LEVELS, Finding, FindingSink, FsView, VerificationResult, VerifyOptions
from .runner import run_checks, verify_path

__all__ = [
    "LEVELS",
    "Finding",
    "FindingSink",
    "FsView",
    "VerificationResult",
    "VerifyOptions",
    "run_checks",
    "verify_path",
]
