"""
pyblockdev library lifecycle.

The initialization protocol (init / try_init / reinit / is_initialized)
that brings backend plugins into a loaded state, and the proxies the
frontend uses to call into them.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Iterable, Union

from blockdev.core.config import BlockDevConfig
from blockdev.core.errors import PluginsFailed
from blockdev.core.logging import OperationLogger, get_logger
from blockdev.core.models import PluginName, PluginSpec, PluginStatus
from blockdev.plugins.base import PluginRegistry
from blockdev.utils import exec as bd_exec

logger = get_logger(__name__)

PluginRequest = Union[PluginSpec, PluginName, str, tuple]
LogFunc = Callable[[int, str], None]


def _to_spec(request: PluginRequest) -> PluginSpec:
    if isinstance(request, PluginSpec):
        return request
    if isinstance(request, PluginName):
        return PluginSpec(request)
    if isinstance(request, str):
        return PluginSpec(PluginName.from_string(request))
    if isinstance(request, tuple) and len(request) == 2:
        name, so_name = request
        if not isinstance(name, PluginName):
            name = PluginName.from_string(name)
        return PluginSpec(name, so_name or "")
    raise TypeError(f"Invalid plugin request: {request!r}")


class Library:
    """
    Process-level state of pyblockdev: configuration plus the plugin registry.

    init/try_init/reinit must be serialized by the caller, both against
    each other and against calls into plugins that are being reloaded.
    """

    def __init__(
        self,
        config: BlockDevConfig | None = None,
        registry: PluginRegistry | None = None,
    ) -> None:
        self.config = config or BlockDevConfig()
        self.registry = registry or PluginRegistry()
        self._initialized = False
        bd_exec.configure(
            locale=self.config.exec.locale,
            diagnostic_limit=self.config.exec.diagnostic_limit,
        )

    def _requested_specs(
        self, require_plugins: Iterable[PluginRequest] | None
    ) -> tuple[list[PluginSpec], bool]:
        """Requested specs in discovery order, and whether they are required."""
        requests = list(require_plugins or [])
        if not requests:
            return self.config.plugins.default_specs(), False

        by_name: dict[PluginName, PluginSpec] = {}
        for request in requests:
            spec = _to_spec(request)
            if spec.name in by_name:
                logger.debug("Ignoring duplicate plugin request", plugin=spec.name.value)
                continue
            by_name[spec.name] = spec

        return [by_name[name] for name in PluginName if name in by_name], True

    def _load(self, specs: list[PluginSpec], fresh: bool) -> list[tuple[PluginName, str]]:
        failures = []
        for spec in specs:
            handle = self.registry.load(spec, fresh=fresh)
            if handle.status is PluginStatus.LOAD_FAILED:
                failures.append((spec.name, handle.failure_reason or "unknown error"))
        return failures

    def _finish(self, failures: list[tuple[PluginName, str]], required: bool) -> None:
        if failures and required:
            raise PluginsFailed(failures)

        for name, reason in failures:
            logger.warning("Optional plugin not loaded", plugin=name.value, reason=reason)

        self._initialized = bool(self.registry.loaded_plugins())

    def init(
        self,
        require_plugins: Iterable[PluginRequest] | None = None,
        log_func: LogFunc | None = None,
    ) -> None:
        """
        Load the requested plugins.

        With no request every known plugin is tried and failures are only
        logged. Otherwise any failure raises PluginsFailed listing all of
        them; plugins that did load stay loaded.
        """
        if log_func is not None:
            bd_exec.set_log_func(log_func)

        specs, required = self._requested_specs(require_plugins)
        with OperationLogger("init", logger, plugins=[s.name.value for s in specs]):
            self._finish(self._load(specs, fresh=False), required)

    def try_init(
        self,
        require_plugins: Iterable[PluginRequest] | None = None,
        log_func: LogFunc | None = None,
    ) -> dict[PluginName, PluginStatus]:
        """Like init(), but never fails; returns the status of each requested plugin."""
        if log_func is not None:
            bd_exec.set_log_func(log_func)

        specs, _ = self._requested_specs(require_plugins)
        with OperationLogger("try_init", logger, plugins=[s.name.value for s in specs]):
            self._finish(self._load(specs, fresh=False), required=False)

        statuses = {}
        for spec in specs:
            handle = self.registry.get_handle(spec.name)
            statuses[spec.name] = handle.status if handle else PluginStatus.UNLOADED
        return statuses

    def reinit(
        self,
        require_plugins: Iterable[PluginRequest] | None = None,
        reload: bool = False,
        log_func: LogFunc | None = None,
    ) -> None:
        """
        Re-run plugin discovery.

        With ``reload`` every loaded plugin is unloaded first and the
        requested ones are loaded again from disk. Without it, loaded
        plugins are kept and only missing ones are loaded.
        """
        if log_func is not None:
            bd_exec.set_log_func(log_func)

        specs, required = self._requested_specs(require_plugins)
        with OperationLogger(
            "reinit", logger, plugins=[s.name.value for s in specs], reload=reload
        ):
            if reload:
                for name in self.registry.loaded_plugins():
                    self.registry.unload(name)
            self._finish(self._load(specs, fresh=reload), required)

    def is_initialized(self) -> bool:
        return self._initialized and bool(self.registry.loaded_plugins())

    def is_supported(self, plugin: PluginName | str, function: str) -> bool:
        if isinstance(plugin, str):
            plugin = PluginName.from_string(plugin)
        return self.registry.is_supported(plugin, function)

    def status(self) -> dict[PluginName, PluginStatus]:
        return self.registry.status()


_library: Library | None = None
_library_lock = threading.Lock()


def get_library() -> Library:
    """The process-wide Library, created on first use."""
    global _library
    with _library_lock:
        if _library is None:
            _library = Library()
        return _library


def set_library(library: Library | None) -> None:
    """Replace the process-wide Library (None drops it)."""
    global _library
    with _library_lock:
        _library = library


def init(
    require_plugins: Iterable[PluginRequest] | None = None,
    log_func: LogFunc | None = None,
) -> None:
    get_library().init(require_plugins, log_func)


def try_init(
    require_plugins: Iterable[PluginRequest] | None = None,
    log_func: LogFunc | None = None,
) -> dict[PluginName, PluginStatus]:
    return get_library().try_init(require_plugins, log_func)


def reinit(
    require_plugins: Iterable[PluginRequest] | None = None,
    reload: bool = False,
    log_func: LogFunc | None = None,
) -> None:
    get_library().reinit(require_plugins, reload, log_func)


def is_initialized() -> bool:
    return get_library().is_initialized()


def is_supported(plugin: PluginName | str, function: str) -> bool:
    return get_library().is_supported(plugin, function)


class Backend:
    """
    Frontend proxy for one backend.

    Attribute access resolves through the current capability table, so
    ``lvm.pvs()`` raises CapabilityUnavailable instead of calling into a
    function the loaded module does not provide.
    """

    def __init__(
        self,
        plugin: PluginName,
        library: Callable[[], Library] = get_library,
    ) -> None:
        self._plugin = plugin
        self._library = library

    def __getattr__(self, function: str) -> Callable[..., Any]:
        if function.startswith("_"):
            raise AttributeError(function)
        return self._library().registry.resolve(self._plugin, function)

    def is_supported(self, function: str) -> bool:
        return self._library().registry.is_supported(self._plugin, function)

    def __dir__(self) -> list[str]:
        handle = self._library().registry.get_handle(self._plugin)
        if handle is None or handle.capabilities is None:
            return ["is_supported"]
        return ["is_supported", *handle.capabilities.supported]

    def __repr__(self) -> str:
        return f"<Backend {self._plugin.value}>"


lvm = Backend(PluginName.LVM)
btrfs = Backend(PluginName.BTRFS)
crypto = Backend(PluginName.CRYPTO)
