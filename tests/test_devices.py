"""
Tests for dd_backup.storage.devices.

This test suite covers:
- Serial number resolution (absent, unique, ambiguous)
- Mount table checks
- Device construction defaults
"""

import pytest

from dd_backup.config.settings import BackupDevice
from dd_backup.domain import BlockDevice
from dd_backup.storage import devices
from dd_backup.storage.exceptions import DeviceError, NonUniqueIdentifierError


def _device(name, serial, model="Flash Disk", size="7.5G"):
    return BlockDevice(name=name, size=size, model=model, serial=serial)


class TestSanitizeName:
    def test_spaces_become_hyphens(self):
        assert devices.sanitize_name("Pi Zero W") == "Pi-Zero-W"

    def test_none_is_empty(self):
        assert devices.sanitize_name(None) == ""


class TestValidateSerial:
    def test_single_match(self):
        sdb = _device("sdb", "AAA")

        assert devices.validate_serial("AAA", [sdb, _device("sdc", "BBB")]) is sdb

    def test_no_match(self):
        assert devices.validate_serial("ZZZ", [_device("sdb", "AAA")]) is None

    def test_duplicate_serial_raises(self):
        with pytest.raises(NonUniqueIdentifierError) as exc_info:
            devices.validate_serial("AAA", [_device("sdb", "AAA"), _device("sdc", "AAA")])

        assert exc_info.value.identifier == "AAA"
        assert str(exc_info.value) == "Not a unique serial: AAA"


class TestIsDeviceMounted:
    def test_not_mounted(self, mounts_file):
        assert devices.is_device_mounted("/dev/sdb", mounts_file) is False

    def test_whole_device_mounted(self, tmp_path):
        mounts = tmp_path / "mounts"
        mounts.write_text("/dev/sdb /media/usb vfat rw 0 0\n")

        assert devices.is_device_mounted("/dev/sdb", mounts) is True

    def test_mounted_partition_marks_disk(self, tmp_path):
        mounts = tmp_path / "mounts"
        mounts.write_text("/dev/sdb1 /media/usb vfat rw 0 0\n")

        assert devices.is_device_mounted("/dev/sdb", mounts) is True

    def test_similar_device_name_does_not_match(self, tmp_path):
        mounts = tmp_path / "mounts"
        mounts.write_text("/dev/sdaa1 /media/usb vfat rw 0 0\n")

        assert devices.is_device_mounted("/dev/sda", mounts) is False

    def test_mmc_partition_marks_card(self, tmp_path):
        mounts = tmp_path / "mounts"
        mounts.write_text("/dev/mmcblk1p1 /boot vfat rw 0 0\n")

        assert devices.is_device_mounted("/dev/mmcblk1", mounts) is True
        assert devices.is_device_mounted("/dev/mmcblk", mounts) is False

    @pytest.mark.parametrize(
        "source,expected",
        [
            ("/dev/sda", True),
            ("/dev/sda1", True),
            ("/dev/sda12", True),
            ("/dev/sdaa", False),
            ("/dev/sdb1", False),
            ("/dev/mapper/sda", False),
        ],
    )
    def test_is_same_device_or_partition(self, source, expected):
        assert devices.is_same_device_or_partition(source, "/dev/sda") is expected

    def test_mount_point_field_is_ignored(self, tmp_path):
        mounts = tmp_path / "mounts"
        mounts.write_text("tmpfs /run/dev/sdb tmpfs rw 0 0\n")

        assert devices.is_device_mounted("/dev/sdb", mounts) is False

    def test_unreadable_mount_table(self, tmp_path):
        with pytest.raises(DeviceError, match="Failed to open"):
            devices.is_device_mounted("/dev/sdb", tmp_path / "missing")

    def test_defaults_to_proc_mounts(self, mocker, mounts_file):
        mocker.patch.object(devices, "PROC_MOUNTS", mounts_file)

        assert devices.is_device_mounted("/dev/mmcblk0") is True


class TestResolveDevice:
    def test_resolves_unmounted_device(self, source_blockdevice, source_serial, mounts_file):
        device = devices.resolve_device(
            BackupDevice(source_serial, name="pi zero", copies=3),
            [source_blockdevice],
            "images",
            mounts_path=mounts_file,
        )

        assert device.device_path == "/dev/sdb"
        assert device.name == "pi-zero"
        assert device.destination_path == "images"
        assert device.copies == 3

    def test_defaults(self, source_blockdevice, source_serial, mounts_file):
        device = devices.resolve_device(
            BackupDevice(source_serial), [source_blockdevice], mounts_path=mounts_file
        )

        assert device.name == ""
        assert device.destination_path == devices.DEFAULT_DESTINATION_PATH
        assert device.copies == 1

    def test_absent_device(self, source_blockdevice, mounts_file, log_messages):
        device = devices.resolve_device(
            BackupDevice("unknown"), [source_blockdevice], mounts_path=mounts_file
        )

        assert device is None
        assert "Device not found: unknown, skipping it" in log_messages

    def test_mounted_device_is_absent(self, source_blockdevice, source_serial, tmp_path):
        mounts = tmp_path / "mounts"
        mounts.write_text("/dev/sdb1 /media/usb vfat rw 0 0\n")

        device = devices.resolve_device(
            BackupDevice(source_serial), [source_blockdevice], mounts_path=mounts
        )

        assert device is None

    def test_ambiguous_serial(self, mounts_file):
        with pytest.raises(NonUniqueIdentifierError):
            devices.resolve_device(
                BackupDevice("AAA"),
                [_device("sdb", "AAA"), _device("sdc", "AAA")],
                mounts_path=mounts_file,
            )
