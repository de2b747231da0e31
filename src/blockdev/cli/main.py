"""
pyblockdev CLI Main Entry Point.

Small operator interface over the frontend: plugin status and read-only
LVM and btrfs queries.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click
import humanize
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from blockdev import __version__
from blockdev.core.config import BlockDevConfig, load_config
from blockdev.core.errors import BlockDevError
from blockdev.core.library import Library, set_library
from blockdev.core.logging import setup_logging
from blockdev.core.models import PluginName, PluginSpec, PluginStatus

console = Console()

_STATUS_STYLES = {
    PluginStatus.LOADED: "green",
    PluginStatus.LOAD_FAILED: "red",
    PluginStatus.UNLOADED: "dim",
}


def _size(value: int) -> str:
    return humanize.naturalsize(value, binary=True)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def get_initialized_library(ctx: click.Context) -> Library:
    """Initialize plugins once per invocation and return the library."""
    if "library" not in ctx.obj:
        config: BlockDevConfig = ctx.obj["config"]
        library = Library(config=config)
        set_library(library)

        requested = ctx.obj.get("require") or config.plugins.required_specs()
        library.init(requested or None)
        ctx.obj["library"] = library

        lvm_config = ctx.obj.get("lvm_config")
        if lvm_config:
            from blockdev import lvm

            lvm.set_global_config(lvm_config)

    return ctx.obj["library"]


@click.group()
@click.version_option(version=__version__, prog_name="pyblockdev")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--require",
    "-r",
    "require",
    multiple=True,
    type=click.Choice([name.value for name in PluginName]),
    help="Plugin that must load (repeatable); default is best-effort for all",
)
@click.option("--lvm-config", default=None, help="LVM configuration passed to every lvm call")
@click.option("--json", "json_output", is_flag=True, help="Output in JSON format")
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    require: tuple[str, ...],
    lvm_config: str | None,
    json_output: bool,
) -> None:
    """
    pyblockdev - block device management through loadable backends.
    """
    ctx.ensure_object(dict)

    if config:
        ctx.obj["config"] = BlockDevConfig.load(config)
    else:
        ctx.obj["config"] = load_config()

    setup_logging(ctx.obj["config"].logging)

    overrides = ctx.obj["config"].plugins.overrides
    ctx.obj["require"] = [
        PluginSpec(name, overrides.get(name, "")) for name in map(PluginName.from_string, require)
    ]
    ctx.obj["lvm_config"] = lvm_config
    ctx.obj["json_output"] = json_output


@cli.command("plugins")
@click.pass_context
def plugins_status(ctx: click.Context) -> None:
    """Show which backend plugins are loaded and what they support."""
    library = get_initialized_library(ctx)
    json_output = ctx.obj.get("json_output", False)

    rows = []
    for name, status in library.status().items():
        handle = library.registry.get_handle(name)
        capabilities = handle.capabilities if handle else None
        rows.append(
            {
                "plugin": name.value,
                "status": status.name,
                "supported": len(capabilities.supported) if capabilities else 0,
                "unsupported": capabilities.unsupported if capabilities else [],
                "reason": handle.failure_reason if handle else None,
            }
        )

    if json_output:
        _echo_json(rows)
        return

    table = Table(title="Backend Plugins")
    table.add_column("Plugin", style="cyan", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Functions", style="green")
    table.add_column("Details", style="white")

    for row, status in zip(rows, library.status().values()):
        style = _STATUS_STYLES[status]
        details = row["reason"] or ", ".join(row["unsupported"])
        table.add_row(
            row["plugin"],
            f"[{style}]{row['status']}[/{style}]",
            str(row["supported"]),
            details[:60],
        )

    console.print(table)


# ==================== LVM ====================


@cli.group("lvm")
def lvm_group() -> None:
    """LVM queries."""


@lvm_group.command("pvs")
@click.pass_context
def lvm_pvs(ctx: click.Context) -> None:
    """List physical volumes."""
    get_initialized_library(ctx)
    from blockdev import lvm

    pvs = lvm.pvs()
    if ctx.obj.get("json_output", False):
        _echo_json([pv.to_dict() for pv in pvs])
        return

    table = Table(title="Physical Volumes")
    table.add_column("PV", style="cyan")
    table.add_column("VG", style="yellow")
    table.add_column("VG Size", style="green")
    table.add_column("VG Free", style="green")
    table.add_column("UUID", style="dim")

    for pv in pvs:
        table.add_row(pv.pv_name or "", pv.vg_name or "", _size(pv.vg_size), _size(pv.vg_free), pv.pv_uuid or "")

    console.print(table)


@lvm_group.command("vgs")
@click.pass_context
def lvm_vgs(ctx: click.Context) -> None:
    """List volume groups."""
    get_initialized_library(ctx)
    from blockdev import lvm

    vgs = lvm.vgs()
    if ctx.obj.get("json_output", False):
        _echo_json([vg.to_dict() for vg in vgs])
        return

    table = Table(title="Volume Groups")
    table.add_column("VG", style="cyan")
    table.add_column("Size", style="green")
    table.add_column("Free", style="green")
    table.add_column("Extent", style="yellow")
    table.add_column("PVs", style="magenta")

    for vg in vgs:
        table.add_row(vg.name or "", _size(vg.size), _size(vg.free), _size(vg.extent_size), str(vg.pv_count))

    console.print(table)


@lvm_group.command("lvs")
@click.argument("vg_name", required=False)
@click.pass_context
def lvm_lvs(ctx: click.Context, vg_name: str | None) -> None:
    """List logical volumes, optionally only those in VG_NAME."""
    get_initialized_library(ctx)
    from blockdev import lvm

    lvs = lvm.lvs(vg_name)
    if ctx.obj.get("json_output", False):
        _echo_json([lv.to_dict() for lv in lvs])
        return

    table = Table(title=f"Logical Volumes{f' in {vg_name}' if vg_name else ''}")
    table.add_column("LV", style="cyan")
    table.add_column("VG", style="yellow")
    table.add_column("Size", style="green")
    table.add_column("Attr", style="white")
    table.add_column("Type", style="magenta")

    for lv in lvs:
        table.add_row(lv.lv_name or "", lv.vg_name or "", _size(lv.size), lv.attr or "", lv.segtype or "")

    console.print(table)


# ==================== Btrfs ====================


@cli.group("btrfs")
def btrfs_group() -> None:
    """Btrfs queries."""


@btrfs_group.command("subvolumes")
@click.argument("mountpoint")
@click.option("--snapshots", is_flag=True, help="Only list snapshots")
@click.pass_context
def btrfs_subvolumes(ctx: click.Context, mountpoint: str, snapshots: bool) -> None:
    """List subvolumes of the btrfs volume mounted at MOUNTPOINT."""
    get_initialized_library(ctx)
    from blockdev import btrfs

    subvolumes = btrfs.list_subvolumes(mountpoint, snapshots)
    if ctx.obj.get("json_output", False):
        _echo_json([subvol.to_dict() for subvol in subvolumes])
        return

    table = Table(title=f"Subvolumes of {mountpoint}")
    table.add_column("ID", style="cyan")
    table.add_column("Parent", style="dim")
    table.add_column("Path", style="white")

    for subvol in subvolumes:
        table.add_row(str(subvol.id), str(subvol.parent_id), subvol.path)

    console.print(table)


@btrfs_group.command("info")
@click.argument("device")
@click.pass_context
def btrfs_info(ctx: click.Context, device: str) -> None:
    """Show the btrfs filesystem DEVICE belongs to."""
    get_initialized_library(ctx)
    from blockdev import btrfs

    info = btrfs.filesystem_info(device)
    devices = btrfs.list_devices(device)

    if ctx.obj.get("json_output", False):
        _echo_json({**info.to_dict(), "devices": [dev.to_dict() for dev in devices]})
        return

    device_lines = "\n".join(
        f"  {dev.id}: {dev.path} ({_size(dev.used)} of {_size(dev.size)} used)" for dev in devices
    )
    panel = Panel(
        f"""[cyan]Label:[/cyan] {info.label}
[cyan]UUID:[/cyan] {info.uuid}
[cyan]Devices:[/cyan] {info.num_devices}
[cyan]Used:[/cyan] {_size(info.used)}
{device_lines}""",
        title="Btrfs Filesystem",
    )
    console.print(panel)


def main() -> None:
    """Main entry point."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled[/yellow]")
        sys.exit(130)
    except BlockDevError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    finally:
        set_library(None)


if __name__ == "__main__":
    main()
