"""
pyblockdev Plugin System.

Backend plugins (lvm, btrfs, crypto) and the registry that loads them and
resolves their capabilities.
"""

from blockdev.plugins.base import (
    UNSUPPORTED,
    CapabilityTable,
    PluginHandle,
    PluginRegistry,
)

__all__ = [
    "UNSUPPORTED",
    "CapabilityTable",
    "PluginHandle",
    "PluginRegistry",
]
