"""
Tests for blockdev.plugins.btrfs module.
"""

import pytest

from blockdev.core.errors import BtrfsError, NoOutput, ParseFailed
from blockdev.plugins import btrfs as btrfs_plugin

GiB = 1024**3

SHOW_OUTPUT = """Label: 'data'  uuid: 3c4a9b52-6f0e-4d57-9b1c-2f1a6e0c8d11
\tTotal devices 2 FS bytes used 1.50GiB
\tdevid    1 size 10.00GiB used 2.03GiB path /dev/sdb
\tdevid    2 size 10.00GiB used 2.03GiB path /dev/sdc

"""

SUBVOL_OUTPUT = """ID 256 gen 8 parent 5 top level 5 path home
ID 257 gen 9 parent 256 top level 256 path home/snap
ID 258 gen 12 cgen 12 parent 5 top level 5 otime 2024-01-02 10:11:12 path snaps/one
"""


@pytest.fixture
def capture(mocker):
    return mocker.patch("blockdev.plugins.btrfs.exec_and_capture_output")


@pytest.fixture
def report(mocker):
    return mocker.patch("blockdev.plugins.btrfs.exec_and_report_error", return_value=True)


class TestCreateVolume:
    """Tests for create_volume/mkfs."""

    def test_no_devices(self, report) -> None:
        with pytest.raises(BtrfsError, match="No devices given"):
            btrfs_plugin.create_volume([])
        report.assert_not_called()

    def test_missing_device(self, report, tmp_path) -> None:
        missing = str(tmp_path / "nope")
        with pytest.raises(BtrfsError, match="does not exist"):
            btrfs_plugin.create_volume([missing])
        report.assert_not_called()

    def test_argv(self, report, tmp_path) -> None:
        devices = []
        for name in ("disk1", "disk2"):
            path = tmp_path / name
            path.touch()
            devices.append(str(path))

        assert btrfs_plugin.create_volume(devices, label="data", data_level="raid1", md_level="raid1")
        assert report.call_args.args[0] == [
            "mkfs.btrfs", "--label", "data", "--data", "raid1", "--metadata", "raid1", *devices,
        ]

    def test_mkfs_is_create_volume(self, report, tmp_path) -> None:
        device = tmp_path / "disk"
        device.touch()

        btrfs_plugin.mkfs([str(device)])
        assert report.call_args.args[0] == ["mkfs.btrfs", str(device)]


class TestSubvolumes:
    """Tests for subvolume operations."""

    def test_list_subvolumes(self, capture) -> None:
        capture.return_value = SUBVOL_OUTPUT

        subvolumes = btrfs_plugin.list_subvolumes("/mnt/data")

        assert [(s.id, s.parent_id, s.path) for s in subvolumes] == [
            (256, 5, "home"),
            (257, 256, "home/snap"),
            (258, 5, "snaps/one"),
        ]
        assert capture.call_args.args[0] == ["btrfs", "subvol", "list", "-p", "/mnt/data"]

    def test_list_snapshots_only(self, capture) -> None:
        capture.return_value = SUBVOL_OUTPUT
        btrfs_plugin.list_subvolumes("/mnt/data", snapshots_only=True)
        assert capture.call_args.args[0] == ["btrfs", "subvol", "list", "-p", "-s", "/mnt/data"]

    def test_no_subvolumes(self, capture) -> None:
        capture.side_effect = NoOutput("btrfs produced no output")
        assert btrfs_plugin.list_subvolumes("/mnt/data") == []

    def test_unparsable_subvolumes(self, capture) -> None:
        capture.return_value = "something unexpected\n"
        with pytest.raises(ParseFailed):
            btrfs_plugin.list_subvolumes("/mnt/data")

    @pytest.mark.parametrize("mountpoint", ["/mnt/data", "/mnt/data/"])
    def test_create_subvolume_path(self, report, mountpoint: str) -> None:
        btrfs_plugin.create_subvolume(mountpoint, "home")
        assert report.call_args.args[0] == ["btrfs", "subvol", "create", "/mnt/data/home"]

    def test_delete_subvolume(self, report) -> None:
        btrfs_plugin.delete_subvolume("/mnt/data", "home")
        assert report.call_args.args[0] == ["btrfs", "subvol", "delete", "/mnt/data/home"]

    def test_get_default_subvolume_id(self, capture) -> None:
        capture.return_value = "ID 5 (FS_TREE)\n"
        assert btrfs_plugin.get_default_subvolume_id("/mnt/data") == 5

    def test_get_default_subvolume_id_unparsable(self, capture) -> None:
        capture.return_value = "nothing here\n"
        with pytest.raises(ParseFailed):
            btrfs_plugin.get_default_subvolume_id("/mnt/data")

    def test_set_default_subvolume(self, report) -> None:
        btrfs_plugin.set_default_subvolume("/mnt/data", 256)
        assert report.call_args.args[0] == ["btrfs", "subvol", "set-default", "256", "/mnt/data"]

    def test_read_only_snapshot(self, report) -> None:
        btrfs_plugin.create_snapshot("/mnt/data/home", "/mnt/data/snap", ro=True)
        assert report.call_args.args[0] == [
            "btrfs", "subvol", "snapshot", "-r", "/mnt/data/home", "/mnt/data/snap",
        ]


class TestFilesystem:
    """Tests for device and filesystem queries."""

    def test_list_devices(self, capture) -> None:
        capture.return_value = SHOW_OUTPUT

        devices = btrfs_plugin.list_devices("/dev/sdb")

        assert [(d.id, d.path) for d in devices] == [(1, "/dev/sdb"), (2, "/dev/sdc")]
        assert devices[0].size == 10 * GiB
        assert devices[0].used == int(2.03 * GiB)

    def test_list_devices_unparsable(self, capture) -> None:
        capture.return_value = "ERROR: not a btrfs device\n"
        with pytest.raises(ParseFailed):
            btrfs_plugin.list_devices("/dev/sdb")

    def test_filesystem_info(self, capture) -> None:
        capture.return_value = SHOW_OUTPUT

        info = btrfs_plugin.filesystem_info("/dev/sdb")

        assert info.label == "data"
        assert info.uuid == "3c4a9b52-6f0e-4d57-9b1c-2f1a6e0c8d11"
        assert info.num_devices == 2
        assert info.used == 1610612736
        assert capture.call_args.args[0] == ["btrfs", "filesystem", "show", "/dev/sdb"]

    def test_filesystem_info_without_label(self, capture) -> None:
        capture.return_value = SHOW_OUTPUT.replace("'data'", "none")
        assert btrfs_plugin.filesystem_info("/dev/sdb").label == ""

    def test_filesystem_info_unparsable(self, capture) -> None:
        capture.return_value = "Label: none\n"
        with pytest.raises(ParseFailed):
            btrfs_plugin.filesystem_info("/dev/sdb")

    def test_device_management(self, report) -> None:
        btrfs_plugin.add_device("/mnt/data", "/dev/sdd")
        assert report.call_args.args[0] == ["btrfs", "device", "add", "/dev/sdd", "/mnt/data"]

        btrfs_plugin.remove_device("/mnt/data", "/dev/sdd")
        assert report.call_args.args[0] == ["btrfs", "device", "delete", "/dev/sdd", "/mnt/data"]

    def test_maintenance(self, report) -> None:
        btrfs_plugin.resize("/mnt/data", 20 * GiB)
        assert report.call_args.args[0] == ["btrfs", "filesystem", "resize", str(20 * GiB), "/mnt/data"]

        btrfs_plugin.repair("/dev/sdb")
        assert report.call_args.args[0] == ["btrfs", "check", "--repair", "/dev/sdb"]

        btrfs_plugin.change_label("/mnt/data", "backup")
        assert report.call_args.args[0] == ["btrfs", "filesystem", "label", "/mnt/data", "backup"]
