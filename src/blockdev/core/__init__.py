"""
pyblockdev Core - configuration, logging, errors and the library lifecycle.
"""

from blockdev.core.config import BlockDevConfig, load_config
from blockdev.core.logging import get_logger, setup_logging
from blockdev.core.models import PluginName, PluginSpec, PluginStatus

__all__ = [
    "BlockDevConfig",
    "PluginName",
    "PluginSpec",
    "PluginStatus",
    "get_logger",
    "load_config",
    "setup_logging",
]
