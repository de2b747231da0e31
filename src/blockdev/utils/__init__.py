"""
Utilities shared by every backend plugin: command execution, output
parsing and the global configuration store.
"""

from blockdev.utils.exec import (
    ExecOutcome,
    exec_and_capture_output,
    exec_and_report_error,
)
from blockdev.utils.global_config import GlobalConfigStore
from blockdev.utils.parsers import parse_key_value_line, size_from_spec

__all__ = [
    "ExecOutcome",
    "GlobalConfigStore",
    "exec_and_capture_output",
    "exec_and_report_error",
    "parse_key_value_line",
    "size_from_spec",
]
