"""
pyblockdev error types.

Every failure surfaced by the frontend, the plugin registry, the command
executor and the backends derives from BlockDevError.
"""

from __future__ import annotations

import shlex
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from blockdev.core.models import PluginName


class BlockDevError(Exception):
    """Base class for pyblockdev errors."""


class PluginsFailed(BlockDevError):
    """One or more required plugins could not be loaded."""

    def __init__(self, failures: Sequence[tuple[PluginName, str]]) -> None:
        self.failures = list(failures)
        details = "; ".join(f"{name.value}: {reason}" for name, reason in self.failures)
        super().__init__(f"Failed to load plugins: {details}")

    @property
    def failed_plugins(self) -> list[PluginName]:
        return [name for name, _ in self.failures]


class CapabilityUnavailable(BlockDevError):
    """A requested function is not provided by a loaded plugin."""

    def __init__(self, plugin: PluginName, function: str, reason: str = "") -> None:
        self.plugin = plugin
        self.function = function
        self.reason = reason or "function not supported by the loaded plugin"
        super().__init__(f"{plugin.value}.{function} is unavailable: {self.reason}")


class ExecError(BlockDevError):
    """Base class for external command failures."""

    def __init__(
        self,
        message: str,
        argv: Sequence[str] | None = None,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.argv = list(argv) if argv else []
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def diagnostic(self) -> str:
        """Tool output explaining the failure (stderr, or stdout if that is empty)."""
        return (self.stderr or self.stdout).strip()

    def __str__(self) -> str:
        details = []
        if self.argv:
            details.append(f"Command: {shlex.join(self.argv)}")
        if self.returncode is not None:
            details.append(f"Return Code: {self.returncode}")
        if self.diagnostic:
            details.append(f"Output: {self.diagnostic}")
        details_str = " (" + ", ".join(details) + ")" if details else ""
        return f"{super().__str__()}{details_str}"


class CommandFailed(ExecError):
    """The external tool exited with a non-zero status."""


class NoOutput(ExecError):
    """The external tool succeeded but printed nothing on stdout."""


class SpawnFailed(ExecError):
    """The external tool could not be started at all."""


class ParseFailed(BlockDevError):
    """Tool output was present but no line matched the expected record."""

    def __init__(self, message: str, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class LVMError(BlockDevError):
    """Invalid arguments for an LVM operation."""


class BtrfsError(BlockDevError):
    """Invalid arguments for a btrfs operation."""


class CryptoError(BlockDevError):
    """Invalid arguments for a device-mapper crypt operation."""
