"""
pyblockdev data models.

Defines plugin identification types and the records reconstructed from
external tool output by the backends.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum, auto
from typing import Any


class PluginName(Enum):
    """Known backend plugins, in discovery order."""

    LVM = "lvm"
    BTRFS = "btrfs"
    CRYPTO = "crypto"

    @classmethod
    def from_string(cls, value: str) -> PluginName:
        """Create PluginName from string value."""
        value_lower = value.lower().strip()
        for name in cls:
            if name.value == value_lower or name.name.lower() == value_lower:
                return name
        raise ValueError(f"Unknown plugin: {value}")


class PluginStatus(Enum):
    """Load state of a backend plugin."""

    UNLOADED = auto()
    LOADED = auto()
    LOAD_FAILED = auto()


@dataclass(frozen=True)
class PluginSpec:
    """A requested backend: which one, and optionally where to load it from."""

    name: PluginName
    so_name: str = ""

    @property
    def uses_default_location(self) -> bool:
        return not self.so_name


# ==================== LVM records ====================


@dataclass
class LVMPVData:
    """Physical volume as reported by ``pvs``."""

    pv_name: str | None = None
    pv_uuid: str | None = None
    pe_start: int = 0
    vg_name: str | None = None
    vg_uuid: str | None = None
    vg_size: int = 0
    vg_free: int = 0
    vg_extent_size: int = 0
    vg_extent_count: int = 0
    vg_free_count: int = 0
    vg_pv_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class LVMVGData:
    """Volume group as reported by ``vgs``."""

    name: str | None = None
    uuid: str | None = None
    size: int = 0
    free: int = 0
    extent_size: int = 0
    extent_count: int = 0
    free_count: int = 0
    pv_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class LVMLVData:
    """Logical volume as reported by ``lvs``."""

    lv_name: str | None = None
    vg_name: str | None = None
    uuid: str | None = None
    size: int = 0
    attr: str | None = None
    segtype: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ==================== Btrfs records ====================


@dataclass
class BtrfsDeviceInfo:
    """A member device of a btrfs volume."""

    id: int
    path: str
    size: int = 0
    used: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BtrfsSubvolumeInfo:
    """A btrfs subvolume."""

    id: int
    parent_id: int
    path: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BtrfsFilesystemInfo:
    """Summary of a btrfs filesystem."""

    label: str
    uuid: str
    num_devices: int = 0
    used: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ==================== Crypto records ====================


@dataclass
class LUKSStatus:
    """State of a device-mapper crypt mapping."""

    name: str
    active: bool
    cipher: str | None = None
    key_size: int = 0
    device: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
