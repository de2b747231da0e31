"""
pyblockdev Plugin Registry.

Loads backend modules, resolves the functions each of them actually
provides and dispatches calls to them.
"""

from __future__ import annotations

import importlib
import importlib.util
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Iterator, Mapping

from blockdev.core.errors import CapabilityUnavailable
from blockdev.core.logging import get_logger
from blockdev.core.models import PluginName, PluginSpec, PluginStatus

logger = get_logger(__name__)

SUPPORTED_FUNCTIONS_ENTRY = "get_supported_functions"
SHUTDOWN_ENTRY = "shutdown"


class Unsupported:
    """Capability table entry for a function the loaded module does not provide."""

    _instance: Unsupported | None = None

    def __new__(cls) -> Unsupported:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSUPPORTED"

    def __bool__(self) -> bool:
        return False


UNSUPPORTED = Unsupported()


@dataclass(frozen=True)
class BackendInterface:
    """Full declared interface of one backend plus its mandatory baseline."""

    functions: tuple[str, ...]
    mandatory: tuple[str, ...] = (SUPPORTED_FUNCTIONS_ENTRY,)


INTERFACES: dict[PluginName, BackendInterface] = {
    PluginName.LVM: BackendInterface(
        functions=(
            "is_supported_pe_size",
            "get_supported_pe_sizes",
            "get_max_lv_size",
            "round_size_to_pe",
            "get_lv_physical_size",
            "get_thpool_padding",
            "is_valid_thpool_md_size",
            "is_valid_thpool_chunk_size",
            "pvcreate",
            "pvresize",
            "pvremove",
            "pvmove",
            "pvscan",
            "pvinfo",
            "pvs",
            "vgcreate",
            "vgremove",
            "vgactivate",
            "vgdeactivate",
            "vgextend",
            "vgreduce",
            "vginfo",
            "vgs",
            "lvorigin",
            "lvcreate",
            "lvremove",
            "lvresize",
            "lvactivate",
            "lvdeactivate",
            "lvsnapshotcreate",
            "lvsnapshotmerge",
            "lvinfo",
            "lvs",
            "thpoolcreate",
            "thlvcreate",
            "thlvpoolname",
            "thsnapshotcreate",
            "set_global_config",
            "get_global_config",
        ),
        mandatory=(SUPPORTED_FUNCTIONS_ENTRY, "set_global_config", "get_global_config"),
    ),
    PluginName.BTRFS: BackendInterface(
        functions=(
            "create_volume",
            "add_device",
            "remove_device",
            "create_subvolume",
            "delete_subvolume",
            "get_default_subvolume_id",
            "set_default_subvolume",
            "create_snapshot",
            "list_devices",
            "list_subvolumes",
            "filesystem_info",
            "mkfs",
            "resize",
            "check",
            "repair",
            "change_label",
        ),
    ),
    PluginName.CRYPTO: BackendInterface(
        functions=(
            "luks_format",
            "luks_open",
            "luks_close",
            "luks_add_key",
            "luks_remove_key",
            "luks_uuid",
            "luks_status",
            "is_luks",
        ),
    ),
}


def default_module_name(name: PluginName) -> str:
    """Importable location of the bundled implementation of ``name``."""
    return f"blockdev.plugins.{name.value}"


class PluginLoadError(Exception):
    """Raised internally when a module cannot become a usable plugin."""


class CapabilityTable(Mapping[str, Any]):
    """
    Function name -> callable, or UNSUPPORTED.

    Computed once when the module is loaded and never re-queried.
    """

    def __init__(self, plugin: PluginName, entries: dict[str, Callable[..., Any] | Unsupported]) -> None:
        self.plugin = plugin
        self._entries = dict(entries)

    def __getitem__(self, function: str) -> Callable[..., Any] | Unsupported:
        return self._entries[function]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def is_supported(self, function: str) -> bool:
        return self._entries.get(function, UNSUPPORTED) is not UNSUPPORTED

    def resolve(self, function: str) -> Callable[..., Any]:
        """Return the entry point for ``function`` or raise CapabilityUnavailable."""
        target = self._entries.get(function, UNSUPPORTED)
        if isinstance(target, Unsupported):
            raise CapabilityUnavailable(self.plugin, function)
        return target

    @property
    def supported(self) -> list[str]:
        return [name for name, target in self._entries.items() if target is not UNSUPPORTED]

    @property
    def unsupported(self) -> list[str]:
        return [name for name, target in self._entries.items() if target is UNSUPPORTED]


@dataclass
class PluginHandle:
    """Runtime record of one backend plugin."""

    spec: PluginSpec
    status: PluginStatus = PluginStatus.UNLOADED
    module: ModuleType | None = None
    capabilities: CapabilityTable | None = None
    failure_reason: str | None = None
    module_name: str = field(default="", repr=False)

    @property
    def name(self) -> PluginName:
        return self.spec.name

    @property
    def is_loaded(self) -> bool:
        return self.status is PluginStatus.LOADED


class PluginRegistry:
    """
    Table of backend plugins and their capabilities.

    Mutated only by load/unload/reload and read on every dispatched call.
    Loading is not serialized against in-flight calls into a module being
    reloaded; callers must not reload while such calls are running.
    """

    def __init__(self) -> None:
        self._handles: dict[PluginName, PluginHandle] = {}
        self._lock = threading.RLock()

    # ==================== Lifecycle ====================

    def load(self, spec: PluginSpec, fresh: bool = False) -> PluginHandle:
        """
        Load ``spec`` unless that plugin is already loaded.

        Never raises for load problems; the returned handle carries
        LOAD_FAILED and the reason instead. ``fresh`` re-executes a
        bundled module from disk instead of reusing the imported one.
        """
        with self._lock:
            current = self._handles.get(spec.name)
            if current is not None and current.is_loaded:
                if current.spec != spec:
                    logger.debug(
                        "Plugin already loaded from a different location",
                        plugin=spec.name.value,
                        loaded=current.spec.so_name or default_module_name(spec.name),
                    )
                return current

            handle = PluginHandle(spec=spec)
            try:
                module, module_name = self._import(spec, fresh)
                handle.capabilities = self._build_capabilities(spec.name, module)
            except PluginLoadError as e:
                handle.status = PluginStatus.LOAD_FAILED
                handle.failure_reason = str(e)
                logger.warning("Failed to load plugin", plugin=spec.name.value, error=str(e))
            else:
                handle.module = module
                handle.module_name = module_name
                handle.status = PluginStatus.LOADED
                logger.info(
                    "Plugin loaded",
                    plugin=spec.name.value,
                    module=module_name,
                    supported=len(handle.capabilities.supported),
                )

            self._handles[spec.name] = handle
            return handle

    def unload(self, name: PluginName) -> bool:
        """Unload a plugin. Returns False if it was not loaded."""
        with self._lock:
            handle = self._handles.pop(name, None)

        if handle is None or not handle.is_loaded:
            return False

        shutdown = getattr(handle.module, SHUTDOWN_ENTRY, None)
        if callable(shutdown):
            shutdown()

        # bundled modules stay importable; private copies loaded from a path go away
        if handle.module_name and not handle.spec.uses_default_location:
            sys.modules.pop(handle.module_name, None)

        logger.info("Plugin unloaded", plugin=name.value)
        return True

    def reload(self, spec: PluginSpec) -> PluginHandle:
        """Unload ``spec.name`` (if loaded) and load ``spec`` again from disk."""
        self.unload(spec.name)
        return self.load(spec, fresh=True)

    # ==================== Queries ====================

    def get_handle(self, name: PluginName) -> PluginHandle | None:
        with self._lock:
            return self._handles.get(name)

    def status(self) -> dict[PluginName, PluginStatus]:
        """Status of every known plugin, in discovery order."""
        with self._lock:
            return {
                name: self._handles[name].status if name in self._handles else PluginStatus.UNLOADED
                for name in PluginName
            }

    def loaded_plugins(self) -> list[PluginName]:
        with self._lock:
            return [name for name in PluginName if name in self._handles and self._handles[name].is_loaded]

    def is_supported(self, name: PluginName, function: str) -> bool:
        handle = self.get_handle(name)
        if handle is None or not handle.is_loaded or handle.capabilities is None:
            return False
        return handle.capabilities.is_supported(function)

    def resolve(self, name: PluginName, function: str) -> Callable[..., Any]:
        """Entry point for ``name.function``; raises CapabilityUnavailable."""
        handle = self.get_handle(name)
        if handle is None or not handle.is_loaded or handle.capabilities is None:
            reason = "plugin not loaded"
            if handle is not None and handle.failure_reason:
                reason = f"plugin failed to load: {handle.failure_reason}"
            raise CapabilityUnavailable(name, function, reason)
        return handle.capabilities.resolve(function)

    # ==================== Loading internals ====================

    def _import(self, spec: PluginSpec, fresh: bool) -> tuple[ModuleType, str]:
        if spec.uses_default_location:
            return self._import_by_name(default_module_name(spec.name), fresh)

        if _looks_like_path(spec.so_name):
            return self._import_from_path(spec.name, Path(spec.so_name).expanduser())

        return self._import_by_name(spec.so_name, fresh)

    def _import_by_name(self, module_name: str, fresh: bool) -> tuple[ModuleType, str]:
        try:
            if fresh and module_name in sys.modules:
                module = importlib.reload(sys.modules[module_name])
            else:
                module = importlib.import_module(module_name)
        except Exception as e:
            raise PluginLoadError(f"cannot import {module_name}: {e}") from e
        return module, module_name

    def _import_from_path(self, name: PluginName, path: Path) -> tuple[ModuleType, str]:
        if not path.is_file():
            raise PluginLoadError(f"module file not found: {path}")

        module_name = f"blockdev_plugin_{name.value}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise PluginLoadError(f"not a loadable module: {path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            raise PluginLoadError(f"cannot load {path}: {e}") from e
        return module, module_name

    def _build_capabilities(self, name: PluginName, module: ModuleType) -> CapabilityTable:
        interface = INTERFACES[name]

        for entry in interface.mandatory:
            if not callable(getattr(module, entry, None)):
                raise PluginLoadError(f"missing mandatory entry point '{entry}'")

        try:
            declared = set(getattr(module, SUPPORTED_FUNCTIONS_ENTRY)())
        except Exception as e:
            raise PluginLoadError(f"{SUPPORTED_FUNCTIONS_ENTRY}() failed: {e}") from e

        entries: dict[str, Callable[..., Any] | Unsupported] = {}
        for function in interface.functions:
            target = getattr(module, function, None)
            if function in declared and callable(target):
                entries[function] = target
                continue

            entries[function] = UNSUPPORTED
            logger.debug(
                "Capability unavailable",
                plugin=name.value,
                function=function,
                reason="not declared" if function not in declared else "entry point missing",
            )

        unknown = declared.difference(interface.functions)
        if unknown:
            logger.debug("Ignoring undeclared functions", plugin=name.value, functions=sorted(unknown))

        return CapabilityTable(name, entries)


def _looks_like_path(so_name: str) -> bool:
    return "/" in so_name or so_name.endswith(".py") or so_name.startswith("~")
