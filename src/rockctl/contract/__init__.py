"""Integration contract between staged images and the rock-init binary.

rock-init resolves every path it needs from string literals compiled into
the binary. The values here mirror those literals and are never read from
configuration.
"""

from .contract import (
    CONTRACT,
    CONTRACT_VERSION,
    BinaryMapping,
    DeviceNode,
    IntegrationContract,
    KernelParams,
    kernel_cmdline,
    validate_kernel_cmdline,
)

__all__ = [
    "CONTRACT",
    "CONTRACT_VERSION",
    "BinaryMapping",
    "DeviceNode",
    "IntegrationContract",
    "KernelParams",
    "kernel_cmdline",
    "validate_kernel_cmdline",
]
