"""Destination filesystem resolution and mount lifecycle.

A destination is identified by its filesystem uuid. ``resolve_filesystem``
returns None when no inventory row has the uuid, and raises
NonUniqueIdentifierError when several do.

The resolved Filesystem holds the only mutable state of a run: its current
mountpoint. It starts from what lsblk reported and changes only through
``mount()`` and ``unmount()``, both called by the run orchestrator. Backup
operations read it but never change it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

from dd_backup.domain import BlockDevice
from dd_backup.logging import LoggerFactory

from .command import CommandRunner
from .exceptions import (
    CommandExecutionError,
    InventoryError,
    MountFailedError,
    NonUniqueIdentifierError,
    UnmountFailedError,
)
from .lsblk import Inventory
from .sizes import size_or_none


DEFAULT_MOUNTPATH = "/mnt"

log = LoggerFactory.for_filesystem()


class Filesystem:
    def __init__(
        self,
        blockdevice: BlockDevice,
        mountpath: Optional[str] = None,
        runner: Optional[CommandRunner] = None,
    ):
        self.blockdevice = blockdevice
        self.device_path = blockdevice.device_path
        self.mountpath = mountpath or DEFAULT_MOUNTPATH
        self.runner = runner or CommandRunner()
        self._mountpoint = blockdevice.mountpoint

    def __repr__(self) -> str:
        return (
            f"Filesystem(device_path={self.device_path!r}, "
            f"mountpath={self.mountpath!r}, mountpoint={self._mountpoint!r})"
        )

    @property
    def uuid(self) -> Optional[str]:
        return self.blockdevice.uuid

    @property
    def mountpoint(self) -> Optional[str]:
        return self._mountpoint

    def is_mounted(self) -> bool:
        return self._mountpoint is not None

    def mount(self) -> None:
        """Mount the filesystem at the configured mount path.

        Raises:
            MountFailedError: If the mount command fails or cannot be launched
        """
        description = f"mount filesystem {self.device_path} at {self.mountpath}"
        try:
            self.runner.run(
                ["mkdir", "-p", self.mountpath],
                f"create mount path {self.mountpath}",
                privileged=True,
            )
            result = self.runner.run(
                ["mount", self.device_path, self.mountpath],
                description,
                privileged=True,
            )
        except CommandExecutionError as error:
            raise MountFailedError(self.device_path, self.mountpath, str(error)) from error

        if result.returncode != 0:
            raise MountFailedError(
                self.device_path, self.mountpath, (result.stderr or "").strip()
            )
        self._mountpoint = self.mountpath
        log.success(f"Filesystem {self.device_path} mounted at {self.mountpath}")

    def unmount(self) -> None:
        """Flush pending writes and unmount the filesystem.

        Raises:
            UnmountFailedError: If the filesystem is not mounted, or sync or
                umount fail
        """
        if self._mountpoint is None:
            raise UnmountFailedError(
                self.device_path, self.mountpath, "filesystem is not mounted"
            )
        mountpoint = self._mountpoint

        try:
            self.runner.run(["sync"], "execute sync")
            result = self.runner.run(
                ["umount", mountpoint],
                f"unmount filesystem {self.device_path} at {mountpoint}",
                privileged=True,
            )
        except CommandExecutionError as error:
            raise UnmountFailedError(self.device_path, mountpoint, str(error)) from error

        if result.returncode != 0:
            raise UnmountFailedError(
                self.device_path, mountpoint, (result.stderr or "").strip()
            )
        self._mountpoint = None
        log.success(f"Filesystem {self.device_path} unmounted from {mountpoint}")

    def available_space(self) -> Optional[int]:
        """Free space in bytes from a fresh lsblk snapshot.

        lsblk only reports FSAVAIL for mounted filesystems, so the snapshot
        taken at run start cannot be used after mounting. Returns None when
        the value is missing or cannot be parsed.
        """
        try:
            inventory = Inventory.capture(self.runner)
        except InventoryError as error:
            log.warning(f"Could not re-read free space of {self.device_path}: {error}")
            return None
        current = inventory.find_filesystem(self.uuid) if self.uuid else None
        if current is None:
            return None
        return size_or_none(current.fsavail)

    def backup_dir(self, destination_path: str) -> Path:
        """Directory that receives backups for one device."""
        base = Path(self._mountpoint or self.mountpath)
        if not destination_path:
            return base
        return base / destination_path.lstrip("/")


def resolve_filesystem(
    uuid: str,
    available_filesystems: Sequence[BlockDevice],
    mountpath: Optional[str] = None,
    runner: Optional[CommandRunner] = None,
) -> Optional[Filesystem]:
    """Bind a configured destination uuid to a block device.

    Raises:
        NonUniqueIdentifierError: If the uuid matches several devices
    """
    matches = [fs for fs in available_filesystems if fs.uuid == uuid]
    if len(matches) > 1:
        raise NonUniqueIdentifierError("UUID", uuid)
    if not matches:
        log.debug(f"Destination filesystem {uuid} not present, skipping it")
        return None
    return Filesystem(matches[0], mountpath=mountpath, runner=runner)
