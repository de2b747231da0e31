"""
pyblockdev - backend-agnostic block device management.

Callers request operations on volume groups, logical volumes, btrfs
filesystems and encrypted devices without knowing which tool performs
the work. Each storage technology is an independently loadable plugin.
"""

__version__ = "1.0.0"
__author__ = "pyblockdev Team"

from blockdev.core.errors import (
    BlockDevError,
    CapabilityUnavailable,
    CommandFailed,
    ExecError,
    NoOutput,
    ParseFailed,
    PluginsFailed,
    SpawnFailed,
)
from blockdev.core.library import (
    Library,
    btrfs,
    crypto,
    get_library,
    init,
    is_initialized,
    is_supported,
    lvm,
    reinit,
    set_library,
    try_init,
)
from blockdev.core.models import PluginName, PluginSpec, PluginStatus

__all__ = [
    "BlockDevError",
    "CapabilityUnavailable",
    "CommandFailed",
    "ExecError",
    "Library",
    "NoOutput",
    "ParseFailed",
    "PluginName",
    "PluginSpec",
    "PluginStatus",
    "PluginsFailed",
    "SpawnFailed",
    "__version__",
    "btrfs",
    "crypto",
    "get_library",
    "init",
    "is_initialized",
    "is_supported",
    "lvm",
    "reinit",
    "set_library",
    "try_init",
]
