"""
Mutex-guarded global configuration injected into external tool invocations.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from blockdev.core.logging import get_logger

logger = get_logger(__name__)


class GlobalConfigStore:
    """
    A single configuration string shared by every invocation of one tool.

    The lock is held across the whole external invocation when used through
    ``locked()``, so a tool never runs with a configuration that changes
    underneath it and config-using invocations never overlap each other.
    The lock is not reentrant: do not call ``set``/``get`` while holding it.
    """

    def __init__(self, option_template: str = "--config={}") -> None:
        self.option_template = option_template
        self._lock = threading.Lock()
        self._value: str | None = None

    def set(self, value: str | None) -> None:
        """Store a new configuration; ``None`` resets it to unset."""
        with self._lock:
            self._value = value
        logger.debug("Global config changed", is_set=bool(value))

    def get(self) -> str:
        """Return a copy of the current value ('' when unset)."""
        with self._lock:
            return self._value or ""

    @contextmanager
    def locked(self) -> Iterator[str]:
        """Hold the lock for the duration of the block and yield the value."""
        with self._lock:
            yield self._value or ""

    def format_argument(self, value: str) -> str | None:
        """The extra argument for ``value``, or None when nothing is set."""
        if not value:
            return None
        return self.option_template.format(value)
