"""
LVM plugin.

Operations on physical volumes, volume groups, logical volumes and thin
pools through the ``lvm`` tool. All sizes passed in and out are in bytes.
"""

from __future__ import annotations

import math
from typing import Sequence

from blockdev.core.errors import LVMError, NoOutput
from blockdev.core.logging import get_logger
from blockdev.core.models import LVMLVData, LVMPVData, LVMVGData
from blockdev.utils.exec import exec_and_capture_output, exec_and_report_error
from blockdev.utils.global_config import GlobalConfigStore
from blockdev.utils.parsers import collect_records, find_record, int_field

logger = get_logger(__name__)

KiB = 1024
MiB = 1024 * KiB
GiB = 1024 * MiB
TiB = 1024 * GiB
PiB = 1024 * TiB
EiB = 1024 * PiB

DEFAULT_PE_SIZE = 4 * MiB
MIN_PE_SIZE = 1 * KiB
MAX_PE_SIZE = 16 * GiB
MAX_LV_SIZE = 8 * EiB
MIN_THPOOL_MD_SIZE = 2 * MiB
MAX_THPOOL_MD_SIZE = 16 * GiB
MIN_THPOOL_CHUNK_SIZE = 64 * KiB
MAX_THPOOL_CHUNK_SIZE = 1 * GiB

THPOOL_MD_FACTOR_NEW = 0.2
THPOOL_MD_FACTOR_EXISTS = 1 / 6.0

INT_FLOAT_EPS = 1e-5

PV_FIELDS = (
    "pv_name,pv_uuid,pe_start,vg_name,vg_uuid,vg_size,vg_free,"
    "vg_extent_size,vg_extent_count,vg_free_count,pv_count"
)
PV_NUM_ITEMS = 11
VG_FIELDS = "name,uuid,size,free,extent_size,extent_count,free_count,pv_count"
VG_NUM_ITEMS = 8
LV_FIELDS = "vg_name,lv_name,lv_uuid,lv_size,lv_attr,segtype"
LV_NUM_ITEMS = 6

_global_config = GlobalConfigStore("--config={}")

_SUPPORTED_FUNCTIONS = (
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
)


def get_supported_functions() -> tuple[str, ...]:
    return _SUPPORTED_FUNCTIONS


def _call_lvm_and_report_error(args: Sequence[str]) -> bool:
    return exec_and_report_error(["lvm", *args], global_config=_global_config)


def _call_lvm_and_capture_output(args: Sequence[str]) -> str:
    return exec_and_capture_output(["lvm", *args], global_config=_global_config)


def _resolve_pe_size(pe_size: int) -> int:
    return pe_size or DEFAULT_PE_SIZE


def _pv_data_from_table(table: dict[str, str]) -> LVMPVData:
    return LVMPVData(
        pv_name=table.get("LVM2_PV_NAME"),
        pv_uuid=table.get("LVM2_PV_UUID"),
        pe_start=int_field(table, "LVM2_PE_START"),
        vg_name=table.get("LVM2_VG_NAME"),
        vg_uuid=table.get("LVM2_VG_UUID"),
        vg_size=int_field(table, "LVM2_VG_SIZE"),
        vg_free=int_field(table, "LVM2_VG_FREE"),
        vg_extent_size=int_field(table, "LVM2_VG_EXTENT_SIZE"),
        vg_extent_count=int_field(table, "LVM2_VG_EXTENT_COUNT"),
        vg_free_count=int_field(table, "LVM2_VG_FREE_COUNT"),
        vg_pv_count=int_field(table, "LVM2_PV_COUNT"),
    )


def _vg_data_from_table(table: dict[str, str]) -> LVMVGData:
    return LVMVGData(
        name=table.get("LVM2_VG_NAME"),
        uuid=table.get("LVM2_VG_UUID"),
        size=int_field(table, "LVM2_VG_SIZE"),
        free=int_field(table, "LVM2_VG_FREE"),
        extent_size=int_field(table, "LVM2_VG_EXTENT_SIZE"),
        extent_count=int_field(table, "LVM2_VG_EXTENT_COUNT"),
        free_count=int_field(table, "LVM2_VG_FREE_COUNT"),
        pv_count=int_field(table, "LVM2_PV_COUNT"),
    )


def _lv_data_from_table(table: dict[str, str]) -> LVMLVData:
    return LVMLVData(
        lv_name=table.get("LVM2_LV_NAME"),
        vg_name=table.get("LVM2_VG_NAME"),
        uuid=table.get("LVM2_LV_UUID"),
        size=int_field(table, "LVM2_LV_SIZE"),
        attr=table.get("LVM2_LV_ATTR"),
        segtype=table.get("LVM2_SEGTYPE"),
    )


# ==================== Size helpers ====================


def is_supported_pe_size(size: int) -> bool:
    """Whether ``size`` is a supported physical extent size."""
    return size % 2 == 0 and MIN_PE_SIZE <= size <= MAX_PE_SIZE


def get_supported_pe_sizes() -> list[int]:
    """All power-of-two PE sizes between the minimum and maximum."""
    sizes = []
    size = MIN_PE_SIZE
    while size <= MAX_PE_SIZE:
        sizes.append(size)
        size *= 2
    return sizes


def get_max_lv_size() -> int:
    return MAX_LV_SIZE


def round_size_to_pe(size: int, pe_size: int = 0, roundup: bool = True) -> int:
    """
    Round ``size`` up or down to a multiple of ``pe_size``.

    A ``pe_size`` of 0 means the default PE size.
    """
    pe_size = _resolve_pe_size(pe_size)
    delta = size % pe_size
    if delta == 0:
        return size
    if roundup:
        return size + (pe_size - delta)
    return size - delta


def get_lv_physical_size(lv_size: int, pe_size: int = 0) -> int:
    """Space taken on disk by an LV of ``lv_size`` (one extra PE for metadata)."""
    pe_size = _resolve_pe_size(pe_size)
    return round_size_to_pe(lv_size, pe_size, True) + pe_size


def get_thpool_padding(size: int, pe_size: int = 0, included: bool = False) -> int:
    """Metadata padding needed for a thin pool of ``size``."""
    pe_size = _resolve_pe_size(pe_size)
    factor = THPOOL_MD_FACTOR_EXISTS if included else THPOOL_MD_FACTOR_NEW
    raw_md_size = math.ceil(size * factor)
    return min(
        round_size_to_pe(raw_md_size, pe_size, True),
        round_size_to_pe(MAX_THPOOL_MD_SIZE, pe_size, True),
    )


def is_valid_thpool_md_size(size: int) -> bool:
    return MIN_THPOOL_MD_SIZE <= size <= MAX_THPOOL_MD_SIZE


def is_valid_thpool_chunk_size(size: int, discard: bool = False) -> bool:
    """
    Whether ``size`` is a valid thin pool chunk size.

    With discard support the chunk size must be a power of two, otherwise a
    multiple of 64 KiB.
    """
    if size < MIN_THPOOL_CHUNK_SIZE or size > MAX_THPOOL_CHUNK_SIZE:
        return False

    if discard:
        size_log2 = math.log2(size)
        return abs(round(size_log2) - size_log2) <= INT_FLOAT_EPS
    return size % (64 * KiB) == 0


# ==================== Physical volumes ====================


def pvcreate(device: str, data_alignment: int = 0, metadata_size: int = 0) -> bool:
    args = ["pvcreate", device]
    if data_alignment:
        args.append(f"--dataalignment={data_alignment}b")
    if metadata_size:
        args.append(f"--metadatasize={metadata_size}b")
    return _call_lvm_and_report_error(args)


def pvresize(device: str, size: int = 0) -> bool:
    """
    Resize a PV to ``size``, or to the size of the underlying device if 0.
    """
    args = ["pvresize"]
    if size:
        args.extend(["--setphysicalvolumesize", f"{size}b"])
    args.append(device)
    return _call_lvm_and_report_error(args)


def pvremove(device: str) -> bool:
    # the double --force is required to remove a PV that is still in use
    return _call_lvm_and_report_error(["pvremove", "--force", "--force", "--yes", device])


def pvmove(src: str, dest: str | None = None) -> bool:
    """Move extents off ``src``; VG allocation rules apply when ``dest`` is None."""
    args = ["pvmove", src]
    if dest:
        args.append(dest)
    return _call_lvm_and_report_error(args)


def pvscan(device: str | None = None, update_cache: bool = False) -> bool:
    """
    Scan for PVs. ``device`` is only used together with ``update_cache``.
    """
    args = ["pvscan"]
    if update_cache:
        args.append("--cache")
        if device:
            args.append(device)
    elif device:
        logger.warning("Ignoring the device argument in pvscan (cache update not requested)")
    return _call_lvm_and_report_error(args)


def pvinfo(device: str) -> LVMPVData:
    args = [
        "pvs", "--unit=b", "--nosuffix", "--nameprefixes", "--unquoted",
        "--noheadings", "-o", PV_FIELDS, device,
    ]
    output = _call_lvm_and_capture_output(args)
    return find_record(output, PV_NUM_ITEMS, _pv_data_from_table, what="PV")


def pvs() -> list[LVMPVData]:
    """Information about all PVs found in the system."""
    args = [
        "pvs", "--unit=b", "--nosuffix", "--nameprefixes", "--unquoted",
        "--noheadings", "-o", PV_FIELDS,
    ]
    try:
        output = _call_lvm_and_capture_output(args)
    except NoOutput:
        return []
    return collect_records(output, PV_NUM_ITEMS, _pv_data_from_table, what="PVs")


# ==================== Volume groups ====================


def vgcreate(name: str, pv_list: Sequence[str], pe_size: int = 0) -> bool:
    pe_size = _resolve_pe_size(pe_size)
    return _call_lvm_and_report_error(["vgcreate", "-s", f"{pe_size}b", name, *pv_list])


def vgremove(vg_name: str) -> bool:
    return _call_lvm_and_report_error(["vgremove", "--force", vg_name])


def vgactivate(vg_name: str) -> bool:
    return _call_lvm_and_report_error(["vgchange", "-ay", vg_name])


def vgdeactivate(vg_name: str) -> bool:
    return _call_lvm_and_report_error(["vgchange", "-an", vg_name])


def vgextend(vg_name: str, device: str) -> bool:
    return _call_lvm_and_report_error(["vgextend", vg_name, device])


def vgreduce(vg_name: str, device: str | None = None) -> bool:
    """
    Remove ``device`` from the VG, or all missing PVs when ``device`` is None.

    Extents are not moved off the PV first; use pvmove() for that.
    """
    if device is None:
        args = ["vgreduce", "--removemissing", "--force", vg_name]
    else:
        args = ["vgreduce", vg_name, device]
    return _call_lvm_and_report_error(args)


def vginfo(vg_name: str) -> LVMVGData:
    args = [
        "vgs", "--noheadings", "--nosuffix", "--nameprefixes", "--unquoted",
        "--units=b", "-o", VG_FIELDS, vg_name,
    ]
    output = _call_lvm_and_capture_output(args)
    return find_record(output, VG_NUM_ITEMS, _vg_data_from_table, what="VG")


def vgs() -> list[LVMVGData]:
    args = [
        "vgs", "--noheadings", "--nosuffix", "--nameprefixes", "--unquoted",
        "--units=b", "-o", VG_FIELDS,
    ]
    try:
        output = _call_lvm_and_capture_output(args)
    except NoOutput:
        return []
    return collect_records(output, VG_NUM_ITEMS, _vg_data_from_table, what="VGs")


# ==================== Logical volumes ====================


def lvorigin(vg_name: str, lv_name: str) -> str:
    """Name of the origin volume of the ``vg_name/lv_name`` snapshot."""
    output = _call_lvm_and_capture_output(["lvs", "--noheadings", "-o", "origin", f"{vg_name}/{lv_name}"])
    return output.strip()


def lvcreate(vg_name: str, lv_name: str, size: int, pv_list: Sequence[str] | None = None) -> bool:
    if size < 0 or size > MAX_LV_SIZE:
        raise LVMError(f"Invalid LV size: {size}")
    args = ["lvcreate", "-n", lv_name, "-L", f"{size // KiB}K", "-y", vg_name]
    args.extend(pv_list or [])
    return _call_lvm_and_report_error(args)


def lvremove(vg_name: str, lv_name: str, force: bool = False) -> bool:
    args = ["lvremove"]
    if force:
        args.extend(["--force", "--yes"])
    args.append(f"{vg_name}/{lv_name}")
    return _call_lvm_and_report_error(args)


def lvresize(vg_name: str, lv_name: str, size: int) -> bool:
    return _call_lvm_and_report_error(["lvresize", "--force", "-L", f"{size}b", f"{vg_name}/{lv_name}"])


def lvactivate(vg_name: str, lv_name: str, ignore_skip: bool = False) -> bool:
    args = ["lvchange", "-ay"]
    if ignore_skip:
        args.append("-K")
    args.append(f"{vg_name}/{lv_name}")
    return _call_lvm_and_report_error(args)


def lvdeactivate(vg_name: str, lv_name: str) -> bool:
    return _call_lvm_and_report_error(["lvchange", "-an", f"{vg_name}/{lv_name}"])


def lvsnapshotcreate(vg_name: str, origin_name: str, snapshot_name: str, size: int) -> bool:
    return _call_lvm_and_report_error(
        ["lvcreate", "-s", "-L", f"{size}b", "-n", snapshot_name, f"{vg_name}/{origin_name}"]
    )


def lvsnapshotmerge(vg_name: str, snapshot_name: str) -> bool:
    return _call_lvm_and_report_error(["lvconvert", "--merge", f"{vg_name}/{snapshot_name}"])


def lvinfo(vg_name: str, lv_name: str) -> LVMLVData:
    args = [
        "lvs", "--noheadings", "--nosuffix", "--nameprefixes", "--unquoted",
        "--units=b", "-o", LV_FIELDS, f"{vg_name}/{lv_name}",
    ]
    output = _call_lvm_and_capture_output(args)
    return find_record(output, LV_NUM_ITEMS, _lv_data_from_table, what="LV")


def lvs(vg_name: str | None = None) -> list[LVMLVData]:
    """Information about LVs in ``vg_name``, or in the whole system."""
    args = [
        "lvs", "--noheadings", "--nosuffix", "--nameprefixes", "--unquoted",
        "--units=b", "-o", LV_FIELDS,
    ]
    if vg_name:
        args.append(vg_name)
    try:
        output = _call_lvm_and_capture_output(args)
    except NoOutput:
        return []
    return collect_records(output, LV_NUM_ITEMS, _lv_data_from_table, what="LVs")


# ==================== Thin provisioning ====================


def thpoolcreate(
    vg_name: str,
    lv_name: str,
    size: int,
    md_size: int = 0,
    chunk_size: int = 0,
    profile: str | None = None,
) -> bool:
    args = ["lvcreate", "-T", "-L", f"{size}b"]
    if md_size:
        args.append(f"--poolmetadatasize={md_size}b")
    if chunk_size:
        args.append(f"--chunksize={chunk_size}b")
    if profile:
        args.append(f"--profile={profile}")
    args.append(f"{vg_name}/{lv_name}")
    return _call_lvm_and_report_error(args)


def thlvcreate(vg_name: str, pool_name: str, lv_name: str, size: int) -> bool:
    return _call_lvm_and_report_error(
        ["lvcreate", "-T", f"{vg_name}/{pool_name}", "-V", f"{size}b", "-n", lv_name]
    )


def thlvpoolname(vg_name: str, lv_name: str) -> str:
    output = _call_lvm_and_capture_output(["lvs", "--noheadings", "-o", "pool_lv", f"{vg_name}/{lv_name}"])
    return output.strip()


def thsnapshotcreate(
    vg_name: str,
    origin_name: str,
    snapshot_name: str,
    pool_name: str | None = None,
) -> bool:
    args = ["lvcreate", "-s", "-n", snapshot_name]
    if pool_name:
        args.extend(["--thinpool", pool_name])
    args.append(f"{vg_name}/{origin_name}")
    return _call_lvm_and_report_error(args)


# ==================== Global configuration ====================


def set_global_config(new_config: str | None) -> bool:
    """
    Set the configuration passed as ``--config`` to every lvm call.

    ``None`` or an empty string resets it to the default.
    """
    _global_config.set(new_config)
    return True


def get_global_config() -> str:
    return _global_config.get()
