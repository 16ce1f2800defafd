"""Block device inventory using lsblk.

A snapshot is taken once per run with lsblk's flat JSON output:

    lsblk -lJ -o NAME,MODEL,SERIAL,SIZE,MOUNTPOINT,UUID,FSAVAIL

and split into two candidate lists:

    - available_devices: rows with a serial number (possible backup sources)
    - available_filesystems: rows with a filesystem uuid (possible destinations)

Sizes are kept as lsblk prints them ("14.9G"); they are parsed to bytes
only where a decision needs them. FSAVAIL is only reported for mounted
filesystems, so free space is read from a fresh snapshot after mounting.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Optional

from dd_backup.domain import BlockDevice
from dd_backup.logging import LoggerFactory

from .command import CommandRunner
from .exceptions import CommandExecutionError, InventoryError


LSBLK_COLUMNS = "NAME,MODEL,SERIAL,SIZE,MOUNTPOINT,UUID,FSAVAIL"

log = LoggerFactory.for_inventory()


def capture_lsblk(runner: CommandRunner) -> list[dict]:
    """Run lsblk and return its blockdevices rows.

    Raises:
        InventoryError: If lsblk cannot be run or its output is not valid JSON
    """
    try:
        output = runner.check(["lsblk", "-lJ", "-o", LSBLK_COLUMNS], "execute lsblk")
        data = json.loads(output)
    except (CommandExecutionError, json.JSONDecodeError) as error:
        raise InventoryError(f"Failed to read JSON from lsblk: {error}") from error
    if not isinstance(data, dict):
        raise InventoryError("Failed to read JSON from lsblk: unexpected document")
    return data.get("blockdevices", []) or []


@dataclass(frozen=True)
class Inventory:
    """Point-in-time view of the system block devices."""

    blockdevices: tuple[BlockDevice, ...] = field(default_factory=tuple)

    @property
    def available_devices(self) -> list[BlockDevice]:
        return [device for device in self.blockdevices if device.serial]

    @property
    def available_filesystems(self) -> list[BlockDevice]:
        return [device for device in self.blockdevices if device.uuid]

    def find_filesystem(self, uuid: str) -> Optional[BlockDevice]:
        for device in self.available_filesystems:
            if device.uuid == uuid:
                return device
        return None

    @classmethod
    def from_rows(cls, rows: list[dict]) -> Inventory:
        return cls(tuple(BlockDevice.from_lsblk_dict(row) for row in rows))

    @classmethod
    def capture(cls, runner: CommandRunner) -> Inventory:
        inventory = cls.from_rows(capture_lsblk(runner))
        names = [device.name for device in inventory.blockdevices]
        if names:
            log.debug(f"lsblk found {len(names)} block devices: {', '.join(names)}")
        else:
            log.debug("lsblk found no block devices")
        return inventory
