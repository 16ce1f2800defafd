"""Domain model for block device backups.

Every object here is built fresh from one inventory snapshot and lives for
a single run. Nothing is cached between runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from dd_backup.storage.sizes import size_or_none

if TYPE_CHECKING:
    from dd_backup.storage.filesystem import Filesystem


# ==============================================================================
# Inventory Domain
# ==============================================================================


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class BlockDevice:
    """One block device row reported by lsblk."""

    name: str  # e.g., "sda"
    size: str  # human readable, e.g., "14.9G"
    model: str | None = None
    serial: str | None = None
    uuid: str | None = None  # filesystem uuid
    mountpoint: str | None = None
    fsavail: str | None = None  # only reported when mounted

    @property
    def device_path(self) -> str:
        """Device node path (e.g., /dev/sda)."""
        return f"/dev/{self.name}"

    @classmethod
    def from_lsblk_dict(cls, device: dict[str, Any]) -> BlockDevice:
        """Convert an lsblk JSON row to a BlockDevice.

        Raises:
            KeyError: If the name column is missing
        """
        return cls(
            name=device["name"],
            size=_clean(device.get("size")) or "",
            model=_clean(device.get("model")),
            serial=_clean(device.get("serial")),
            uuid=_clean(device.get("uuid")),
            mountpoint=_clean(device.get("mountpoint")),
            fsavail=_clean(device.get("fsavail")),
        )


# ==============================================================================
# Backup Source Domain
# ==============================================================================


@dataclass(frozen=True)
class Device:
    """A configured backup source bound to exactly one unmounted block device."""

    blockdevice: BlockDevice
    name: str  # display name, spaces replaced by hyphens
    destination_path: str  # subdirectory below the mounted destination
    copies: int = 1

    @property
    def device_path(self) -> str:
        return self.blockdevice.device_path

    @property
    def serial(self) -> str | None:
        return self.blockdevice.serial

    def total_size(self) -> Optional[int]:
        """Size of the whole device in bytes, None when it cannot be parsed."""
        return size_or_none(self.blockdevice.size)


# ==============================================================================
# Backup Job Domain
# ==============================================================================


@dataclass(frozen=True)
class RunOptions:
    dry_run: bool = False


@dataclass(frozen=True)
class BackupTarget:
    """One destination filesystem, one source device, and the run options."""

    filesystem: Filesystem
    device: Device
    options: RunOptions


class BackupState(Enum):
    """Lifecycle of a single device backup."""

    INIT = "init"
    VALIDATED = "validated"
    COPIED = "copied"
    OWNED = "owned"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"
