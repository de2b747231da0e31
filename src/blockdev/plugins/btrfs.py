"""
Btrfs plugin.

Operations on btrfs volumes, subvolumes and snapshots through the
``btrfs`` and ``mkfs.btrfs`` tools.
"""

from __future__ import annotations

import os
import re
from typing import Sequence

from blockdev.core.errors import BtrfsError, NoOutput, ParseFailed
from blockdev.core.logging import get_logger
from blockdev.core.models import BtrfsDeviceInfo, BtrfsFilesystemInfo, BtrfsSubvolumeInfo
from blockdev.utils.exec import exec_and_capture_output, exec_and_report_error
from blockdev.utils.parsers import size_from_spec

logger = get_logger(__name__)

_DEVICE_PATTERN = re.compile(
    r"devid[ \t]+(?P<id>\d+)[ \t]+"
    r"size[ \t]+(?P<size>\S+)[ \t]+"
    r"used[ \t]+(?P<used>\S+)[ \t]+"
    r"path[ \t]+(?P<path>\S+)"
)

_SUBVOLUME_PATTERN = re.compile(
    r"ID\s+(?P<id>\d+)\s+gen\s+\d+\s+(cgen\s+\d+\s+)?"
    r"parent\s+(?P<parent_id>\d+)\s+top\s+level\s+\d+\s+"
    r"(otime\s+\d{4}-\d{2}-\d{2}\s+\d\d:\d\d:\d\d\s+)?"
    r"path\s+(?P<path>\S+)"
)

_FILESYSTEM_PATTERN = re.compile(
    r"Label:\s+(?:'(?P<label>[^']*)'|none)\s+"
    r"uuid:\s+(?P<uuid>\S+)\s+"
    r"Total\sdevices\s+(?P<num_devices>\d+)\s+"
    r"FS\sbytes\sused\s+(?P<used>\S+)"
)

_DEFAULT_SUBVOLUME_PATTERN = re.compile(r"ID (\d+) .*")

_SUPPORTED_FUNCTIONS = (
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
)


def get_supported_functions() -> tuple[str, ...]:
    return _SUPPORTED_FUNCTIONS


def _size_or_zero(spec: str) -> int:
    try:
        return size_from_spec(spec)
    except ParseFailed as e:
        logger.warning("Cannot parse btrfs size", spec=spec, error=str(e))
        return 0


def _subvolume_path(mountpoint: str, name: str) -> str:
    if mountpoint.endswith("/"):
        return f"{mountpoint}{name}"
    return f"{mountpoint}/{name}"


def create_volume(
    devices: Sequence[str],
    label: str | None = None,
    data_level: str | None = None,
    md_level: str | None = None,
) -> bool:
    """
    Create a new btrfs volume from ``devices``.

    See mkfs.btrfs(8) for details about ``data_level`` and ``md_level``.
    """
    if not devices:
        raise BtrfsError("No devices given")

    for device in devices:
        if not os.path.exists(device):
            raise BtrfsError(f"Device {device} does not exist")

    argv = ["mkfs.btrfs"]
    if label:
        argv.extend(["--label", label])
    if data_level:
        argv.extend(["--data", data_level])
    if md_level:
        argv.extend(["--metadata", md_level])
    argv.extend(devices)

    return exec_and_report_error(argv)


def mkfs(
    devices: Sequence[str],
    label: str | None = None,
    data_level: str | None = None,
    md_level: str | None = None,
) -> bool:
    return create_volume(devices, label, data_level, md_level)


def add_device(mountpoint: str, device: str) -> bool:
    return exec_and_report_error(["btrfs", "device", "add", device, mountpoint])


def remove_device(mountpoint: str, device: str) -> bool:
    return exec_and_report_error(["btrfs", "device", "delete", device, mountpoint])


def create_subvolume(mountpoint: str, name: str) -> bool:
    return exec_and_report_error(["btrfs", "subvol", "create", _subvolume_path(mountpoint, name)])


def delete_subvolume(mountpoint: str, name: str) -> bool:
    return exec_and_report_error(["btrfs", "subvol", "delete", _subvolume_path(mountpoint, name)])


def get_default_subvolume_id(mountpoint: str) -> int:
    output = exec_and_capture_output(["btrfs", "subvol", "get-default", mountpoint])
    match = _DEFAULT_SUBVOLUME_PATTERN.search(output)
    if not match:
        raise ParseFailed("Failed to parse subvolume's ID", raw=output)
    return int(match.group(1))


def set_default_subvolume(mountpoint: str, subvol_id: int) -> bool:
    return exec_and_report_error(["btrfs", "subvol", "set-default", str(subvol_id), mountpoint])


def create_snapshot(source: str, dest: str, ro: bool = False) -> bool:
    argv = ["btrfs", "subvol", "snapshot"]
    if ro:
        argv.append("-r")
    argv.extend([source, dest])
    return exec_and_report_error(argv)


def list_devices(device: str) -> list[BtrfsDeviceInfo]:
    """Devices of the btrfs volume containing ``device``."""
    output = exec_and_capture_output(["btrfs", "filesystem", "show", device])

    devices = []
    for line in output.split("\n"):
        match = _DEVICE_PATTERN.search(line)
        if not match:
            continue
        devices.append(
            BtrfsDeviceInfo(
                id=int(match.group("id")),
                path=match.group("path"),
                size=_size_or_zero(match.group("size")),
                used=_size_or_zero(match.group("used")),
            )
        )

    if not devices:
        raise ParseFailed("Failed to parse information about devices", raw=output)
    return devices


def list_subvolumes(mountpoint: str, snapshots_only: bool = False) -> list[BtrfsSubvolumeInfo]:
    """Subvolumes of the btrfs volume mounted at ``mountpoint``."""
    argv = ["btrfs", "subvol", "list", "-p"]
    if snapshots_only:
        argv.append("-s")
    argv.append(mountpoint)

    try:
        output = exec_and_capture_output(argv)
    except NoOutput:
        return []

    subvolumes = []
    for line in output.split("\n"):
        match = _SUBVOLUME_PATTERN.search(line)
        if not match:
            continue
        subvolumes.append(
            BtrfsSubvolumeInfo(
                id=int(match.group("id")),
                parent_id=int(match.group("parent_id")),
                path=match.group("path"),
            )
        )

    if not subvolumes:
        raise ParseFailed("Failed to parse information about subvolumes", raw=output)
    return subvolumes


def filesystem_info(device: str) -> BtrfsFilesystemInfo:
    output = exec_and_capture_output(["btrfs", "filesystem", "show", device])

    match = _FILESYSTEM_PATTERN.search(output)
    if not match:
        raise ParseFailed("Failed to parse information about the filesystem", raw=output)

    return BtrfsFilesystemInfo(
        label=match.group("label") or "",
        uuid=match.group("uuid"),
        num_devices=int(match.group("num_devices")),
        used=_size_or_zero(match.group("used")),
    )


def resize(mountpoint: str, size: int) -> bool:
    return exec_and_report_error(["btrfs", "filesystem", "resize", str(size), mountpoint])


def check(device: str) -> bool:
    return exec_and_report_error(["btrfs", "check", device])


def repair(device: str) -> bool:
    return exec_and_report_error(["btrfs", "check", "--repair", device])


def change_label(mountpoint: str, label: str) -> bool:
    return exec_and_report_error(["btrfs", "filesystem", "label", mountpoint, label])
