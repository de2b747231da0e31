"""
Tests for blockdev.plugins.lvm module.

The lvm tool is never run; the executor entry points are patched and the
argument vectors checked instead.
"""

import pytest

from blockdev.core.errors import LVMError, NoOutput, ParseFailed
from blockdev.plugins import lvm as lvm_plugin
from blockdev.utils.exec import ExecOutcome

KiB = 1024
MiB = 1024 * KiB
GiB = 1024 * MiB

PVS_OUTPUT = (
    "  LVM2_PV_NAME=/dev/sda1 LVM2_PV_UUID=pv-uuid-1 LVM2_PE_START=1048576 LVM2_VG_NAME=vg0"
    " LVM2_VG_UUID=vg-uuid LVM2_VG_SIZE=10733223936 LVM2_VG_FREE=2143289344"
    " LVM2_VG_EXTENT_SIZE=4194304 LVM2_VG_EXTENT_COUNT=2559 LVM2_VG_FREE_COUNT=511 LVM2_PV_COUNT=1\n"
    "  WARNING: Device /dev/sdx has no label.\n"
    "  LVM2_PV_NAME=/dev/sdb LVM2_PV_UUID=pv-uuid-2 LVM2_PE_START=1048576 LVM2_VG_NAME="
    " LVM2_VG_UUID= LVM2_VG_SIZE=0 LVM2_VG_FREE=0"
    " LVM2_VG_EXTENT_SIZE=0 LVM2_VG_EXTENT_COUNT=0 LVM2_VG_FREE_COUNT=0 LVM2_PV_COUNT=0\n"
)

VGS_OUTPUT = (
    "  LVM2_VG_NAME=vg0 LVM2_VG_UUID=vg-uuid LVM2_VG_SIZE=10733223936 LVM2_VG_FREE=2143289344"
    " LVM2_VG_EXTENT_SIZE=4194304 LVM2_VG_EXTENT_COUNT=2559 LVM2_VG_FREE_COUNT=511 LVM2_PV_COUNT=1\n"
)

LVS_OUTPUT = (
    "  LVM2_VG_NAME=vg0 LVM2_LV_NAME=root LVM2_LV_UUID=lv-uuid-1 LVM2_LV_SIZE=8589934592"
    " LVM2_LV_ATTR=-wi-ao---- LVM2_SEGTYPE=linear\n"
    "  LVM2_VG_NAME=vg0 LVM2_LV_NAME=pool LVM2_LV_UUID=lv-uuid-2 LVM2_LV_SIZE=1073741824"
    " LVM2_LV_ATTR=twi-a-tz-- LVM2_SEGTYPE=thin-pool\n"
)


@pytest.fixture
def capture(mocker):
    return mocker.patch("blockdev.plugins.lvm.exec_and_capture_output")


@pytest.fixture
def report(mocker):
    return mocker.patch("blockdev.plugins.lvm.exec_and_report_error", return_value=True)


class TestSizeHelpers:
    """Tests for the PE and thin pool size helpers."""

    def test_round_size_to_pe(self) -> None:
        assert lvm_plugin.round_size_to_pe(5 * MiB, 4 * MiB, True) == 8 * MiB
        assert lvm_plugin.round_size_to_pe(5 * MiB, 4 * MiB, False) == 4 * MiB
        assert lvm_plugin.round_size_to_pe(8 * MiB, 4 * MiB, True) == 8 * MiB

    def test_round_size_to_default_pe(self) -> None:
        assert lvm_plugin.round_size_to_pe(1, 0, True) == 4 * MiB

    def test_get_lv_physical_size(self) -> None:
        assert lvm_plugin.get_lv_physical_size(5 * MiB, 4 * MiB) == 12 * MiB

    def test_supported_pe_sizes(self) -> None:
        sizes = lvm_plugin.get_supported_pe_sizes()
        assert sizes[0] == 1 * KiB
        assert sizes[-1] == 16 * GiB
        assert len(sizes) == 25

    def test_is_supported_pe_size(self) -> None:
        assert lvm_plugin.is_supported_pe_size(4 * MiB)
        assert not lvm_plugin.is_supported_pe_size(512)
        assert not lvm_plugin.is_supported_pe_size(32 * GiB)

    def test_get_max_lv_size(self) -> None:
        assert lvm_plugin.get_max_lv_size() == 8 * 1024**6

    def test_get_thpool_padding(self) -> None:
        assert lvm_plugin.get_thpool_padding(1 * GiB, 4 * MiB) == 52 * 4 * MiB
        assert lvm_plugin.get_thpool_padding(1 * GiB, 4 * MiB, included=True) == 43 * 4 * MiB

    def test_thpool_padding_is_capped(self) -> None:
        assert lvm_plugin.get_thpool_padding(1024 * GiB, 4 * MiB) == 16 * GiB

    def test_thpool_md_size(self) -> None:
        assert lvm_plugin.is_valid_thpool_md_size(2 * MiB)
        assert not lvm_plugin.is_valid_thpool_md_size(1 * MiB)
        assert not lvm_plugin.is_valid_thpool_md_size(17 * GiB)

    def test_thpool_chunk_size(self) -> None:
        assert lvm_plugin.is_valid_thpool_chunk_size(64 * KiB)
        assert lvm_plugin.is_valid_thpool_chunk_size(192 * KiB)
        assert not lvm_plugin.is_valid_thpool_chunk_size(96 * KiB)
        assert not lvm_plugin.is_valid_thpool_chunk_size(32 * KiB)

    def test_thpool_chunk_size_with_discard(self) -> None:
        assert lvm_plugin.is_valid_thpool_chunk_size(128 * KiB, discard=True)
        assert not lvm_plugin.is_valid_thpool_chunk_size(192 * KiB, discard=True)


class TestQueries:
    """Tests for pvs/vgs/lvs and the *info functions."""

    def test_pvs(self, capture) -> None:
        capture.return_value = PVS_OUTPUT

        pvs = lvm_plugin.pvs()

        assert [pv.pv_name for pv in pvs] == ["/dev/sda1", "/dev/sdb"]
        assert pvs[0].vg_name == "vg0"
        assert pvs[0].vg_extent_size == 4 * MiB
        assert pvs[0].vg_pv_count == 1
        assert pvs[1].vg_name == ""

        argv = capture.call_args.args[0]
        assert argv[:2] == ["lvm", "pvs"]
        assert "--nameprefixes" in argv
        assert argv[-1] == lvm_plugin.PV_FIELDS
        assert capture.call_args.kwargs["global_config"] is lvm_plugin._global_config

    def test_pvs_no_output_means_no_pvs(self, capture) -> None:
        capture.side_effect = NoOutput("lvm produced no output", argv=["lvm", "pvs"], returncode=0)
        assert lvm_plugin.pvs() == []

    def test_pvs_unparsable(self, capture) -> None:
        capture.return_value = "  LVM2_PV_NAME=/dev/sda1 LVM2_PV_UUID=x\n"
        with pytest.raises(ParseFailed):
            lvm_plugin.pvs()

    def test_pvinfo(self, capture) -> None:
        capture.return_value = PVS_OUTPUT

        pv = lvm_plugin.pvinfo("/dev/sda1")

        assert pv.pv_uuid == "pv-uuid-1"
        assert pv.pe_start == 1 * MiB
        assert capture.call_args.args[0][-1] == "/dev/sda1"

    def test_vgs(self, capture) -> None:
        capture.return_value = VGS_OUTPUT

        (vg,) = lvm_plugin.vgs()

        assert vg.name == "vg0"
        assert vg.free == 2143289344
        assert vg.free_count == 511

    def test_vginfo_missing(self, capture) -> None:
        capture.side_effect = NoOutput("lvm produced no output")
        with pytest.raises(NoOutput):
            lvm_plugin.vginfo("vg0")

    def test_lvs(self, capture) -> None:
        capture.return_value = LVS_OUTPUT

        lvs = lvm_plugin.lvs("vg0")

        assert [(lv.lv_name, lv.segtype) for lv in lvs] == [("root", "linear"), ("pool", "thin-pool")]
        assert lvs[0].size == 8 * GiB
        assert lvs[0].attr == "-wi-ao----"
        assert capture.call_args.args[0][-1] == "vg0"

    def test_lvs_all(self, capture) -> None:
        capture.return_value = LVS_OUTPUT
        lvm_plugin.lvs()
        assert capture.call_args.args[0][-1] == lvm_plugin.LV_FIELDS

    def test_lvinfo(self, capture) -> None:
        capture.return_value = LVS_OUTPUT

        lv = lvm_plugin.lvinfo("vg0", "root")

        assert lv.uuid == "lv-uuid-1"
        assert capture.call_args.args[0][-1] == "vg0/root"

    def test_lvorigin(self, capture) -> None:
        capture.return_value = "  root\n"
        assert lvm_plugin.lvorigin("vg0", "snap") == "root"

    def test_thlvpoolname(self, capture) -> None:
        capture.return_value = "  pool\n"
        assert lvm_plugin.thlvpoolname("vg0", "thin") == "pool"
        assert capture.call_args.args[0] == ["lvm", "lvs", "--noheadings", "-o", "pool_lv", "vg0/thin"]


class TestActions:
    """Argument vectors of state changing operations."""

    def test_pvcreate(self, report) -> None:
        assert lvm_plugin.pvcreate("/dev/sda1", data_alignment=1 * MiB)
        assert report.call_args.args[0] == ["lvm", "pvcreate", "/dev/sda1", f"--dataalignment={MiB}b"]

    def test_pvremove(self, report) -> None:
        lvm_plugin.pvremove("/dev/sda1")
        assert report.call_args.args[0] == ["lvm", "pvremove", "--force", "--force", "--yes", "/dev/sda1"]

    def test_pvscan_ignores_device_without_cache(self, report) -> None:
        lvm_plugin.pvscan("/dev/sda1")
        assert report.call_args.args[0] == ["lvm", "pvscan"]

        lvm_plugin.pvscan("/dev/sda1", update_cache=True)
        assert report.call_args.args[0] == ["lvm", "pvscan", "--cache", "/dev/sda1"]

    def test_vgcreate_uses_default_pe_size(self, report) -> None:
        lvm_plugin.vgcreate("vg0", ["/dev/sda1", "/dev/sdb1"])
        assert report.call_args.args[0] == [
            "lvm", "vgcreate", "-s", f"{4 * MiB}b", "vg0", "/dev/sda1", "/dev/sdb1",
        ]

    def test_vgreduce_remove_missing(self, report) -> None:
        lvm_plugin.vgreduce("vg0")
        assert report.call_args.args[0] == ["lvm", "vgreduce", "--removemissing", "--force", "vg0"]

    def test_lvcreate(self, report) -> None:
        lvm_plugin.lvcreate("vg0", "data", 1 * GiB, ["/dev/sda1"])
        assert report.call_args.args[0] == [
            "lvm", "lvcreate", "-n", "data", "-L", "1048576K", "-y", "vg0", "/dev/sda1",
        ]

    def test_lvcreate_invalid_size(self, report) -> None:
        with pytest.raises(LVMError):
            lvm_plugin.lvcreate("vg0", "data", -1)
        report.assert_not_called()

    def test_lvremove_force(self, report) -> None:
        lvm_plugin.lvremove("vg0", "data", force=True)
        assert report.call_args.args[0] == ["lvm", "lvremove", "--force", "--yes", "vg0/data"]

    def test_thpoolcreate(self, report) -> None:
        lvm_plugin.thpoolcreate("vg0", "pool", 1 * GiB, md_size=4 * MiB, profile="thin-performance")
        assert report.call_args.args[0] == [
            "lvm", "lvcreate", "-T", "-L", f"{GiB}b",
            f"--poolmetadatasize={4 * MiB}b", "--profile=thin-performance", "vg0/pool",
        ]

    def test_thsnapshotcreate(self, report) -> None:
        lvm_plugin.thsnapshotcreate("vg0", "thin", "snap", pool_name="pool")
        assert report.call_args.args[0] == [
            "lvm", "lvcreate", "-s", "-n", "snap", "--thinpool", "pool", "vg0/thin",
        ]


class TestGlobalConfig:
    """Tests for set_global_config/get_global_config."""

    def test_default_is_empty(self) -> None:
        assert lvm_plugin.get_global_config() == ""

    def test_set_and_reset(self) -> None:
        assert lvm_plugin.set_global_config("devices{}")
        assert lvm_plugin.get_global_config() == "devices{}"

        lvm_plugin.set_global_config(None)
        assert lvm_plugin.get_global_config() == ""

    def test_passed_to_every_call(self, mocker) -> None:
        run = mocker.patch(
            "blockdev.utils.exec.run_command",
            side_effect=lambda argv, input=None: ExecOutcome(command=list(argv), returncode=0),
        )

        lvm_plugin.set_global_config('devices{filter=["a|/dev/sda|","r|.*|"]}')
        lvm_plugin.vgactivate("vg0")

        assert run.call_args.args[0] == [
            "lvm", "vgchange", "-ay", "vg0", '--config=devices{filter=["a|/dev/sda|","r|.*|"]}',
        ]

    def test_not_passed_when_unset(self, mocker) -> None:
        run = mocker.patch(
            "blockdev.utils.exec.run_command",
            side_effect=lambda argv, input=None: ExecOutcome(command=list(argv), returncode=0),
        )

        lvm_plugin.vgdeactivate("vg0")

        assert run.call_args.args[0] == ["lvm", "vgchange", "-an", "vg0"]
