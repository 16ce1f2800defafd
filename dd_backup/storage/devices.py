"""Resolution of configured backup sources against the block device inventory.

A configured source is identified by its serial number. Resolution gives
one of three outcomes:

    - exactly one unmounted match: a Device bound to that block device
    - no match, or the match is currently mounted: None (the source is skipped)
    - more than one match: NonUniqueIdentifierError

Mount state is read from /proc/mounts at resolution time rather than from
the lsblk snapshot. A device counts as mounted when the source field of a
mount entry is its node path or one of its partitions (/dev/sda1,
/dev/mmcblk0p2), so a mounted partition also excludes its whole disk.
/dev/sdaa1 is not a partition of /dev/sda. Copying a device that is in use
would produce an inconsistent image.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional, Sequence

from dd_backup.config.settings import BackupDevice
from dd_backup.domain import BlockDevice, Device
from dd_backup.logging import LoggerFactory

from .exceptions import DeviceError, NonUniqueIdentifierError


PROC_MOUNTS = Path("/proc/mounts")
DEFAULT_DESTINATION_PATH = ""
PARTITION_SUFFIX = re.compile(r"p?\d+")

log = LoggerFactory.for_inventory()


def sanitize_name(name: Optional[str]) -> str:
    return (name or "").replace(" ", "-")


def validate_serial(
    serial: str, available_devices: Sequence[BlockDevice]
) -> Optional[BlockDevice]:
    """Return the single device with this serial, or None when absent.

    Raises:
        NonUniqueIdentifierError: If more than one device has the serial
    """
    matches = [device for device in available_devices if device.serial == serial]
    if len(matches) > 1:
        raise NonUniqueIdentifierError("serial", serial)
    if not matches:
        return None
    return matches[0]


def is_same_device_or_partition(source: str, device_path: str) -> bool:
    if not source.startswith(device_path):
        return False
    rest = source[len(device_path):]
    return not rest or PARTITION_SUFFIX.fullmatch(rest) is not None


def is_device_mounted(device_path: str, mounts_path: Optional[Path] = None) -> bool:
    """Check /proc/mounts for a mount of device_path or one of its partitions.

    Raises:
        DeviceError: If the mount table cannot be read
    """
    mounts_path = mounts_path or PROC_MOUNTS
    try:
        with open(mounts_path, "r", encoding="utf-8") as mounts_file:
            for line in mounts_file:
                fields = line.split()
                if len(fields) >= 2 and is_same_device_or_partition(
                    fields[0], device_path
                ):
                    return True
    except OSError as error:
        raise DeviceError(f"Failed to open {mounts_path}: {error}") from error
    return False


def resolve_device(
    backup_device: BackupDevice,
    available_devices: Sequence[BlockDevice],
    destination_path: Optional[str] = None,
    mounts_path: Optional[Path] = None,
) -> Optional[Device]:
    """Bind a configured backup source to a block device.

    Args:
        backup_device: Configured source (serial, optional name and copies)
        available_devices: Inventory rows that carry a serial
        destination_path: Subdirectory on the destination filesystem
        mounts_path: Mount table to check (defaults to /proc/mounts)

    Returns:
        The resolved Device, or None if it is absent or mounted

    Raises:
        NonUniqueIdentifierError: If the serial matches several devices
        DeviceError: If the mount table cannot be read
    """
    blockdevice = validate_serial(backup_device.serial, available_devices)
    if blockdevice is None:
        log.warning(f"Device not found: {backup_device.serial}, skipping it")
        return None

    if is_device_mounted(blockdevice.device_path, mounts_path):
        log.error(f"Device {blockdevice.device_path} is mounted, skipping it")
        return None

    device = Device(
        blockdevice=blockdevice,
        name=sanitize_name(backup_device.name),
        destination_path=(
            destination_path
            if destination_path is not None
            else DEFAULT_DESTINATION_PATH
        ),
        copies=backup_device.copies if backup_device.copies is not None else 1,
    )
    log.debug(
        f"Resolved serial {backup_device.serial} to {device.device_path} "
        f"({blockdevice.model or 'unknown model'}, {blockdevice.size})"
    )
    return device
