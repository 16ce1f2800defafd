"""Backup file naming and rotation of old backup images.

File names have the form::

    <YYYY-MM-DD>_<display name>_<model>_<serial>.img

The ``<model>_<serial>.img`` part is the stable suffix. It does not change
between runs for the same physical device, so it is used to find, count
and evict earlier backups of that device. Absent model or serial fields are
left out and spaces become hyphens.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dd_backup.domain import Device
from dd_backup.logging import LoggerFactory

from .exceptions import RetentionDeletionError
from .sizes import current_date


log = LoggerFactory.for_backup(job_id="-")


def stable_suffix(model: Optional[str], serial: Optional[str]) -> str:
    fields = [field for field in (model, serial) if field]
    return f"{'_'.join(fields)}.img".replace(" ", "-")


def backup_file_name(
    display_name: str,
    model: Optional[str],
    serial: Optional[str],
    date: Optional[str] = None,
) -> str:
    date = date or current_date()
    return f"{date}_{display_name}_{stable_suffix(model, serial)}".replace(" ", "-")


def device_suffix(device: Device) -> str:
    return stable_suffix(device.blockdevice.model, device.blockdevice.serial)


def device_file_name(device: Device, date: Optional[str] = None) -> str:
    return backup_file_name(
        device.name, device.blockdevice.model, device.blockdevice.serial, date
    )


def present_number_of_copies(suffix: str, directory: Path) -> int:
    """Count entries in directory whose name contains suffix.

    An unreadable or missing directory counts as zero backups.
    """
    try:
        return sum(1 for entry in os.listdir(directory) if suffix in entry)
    except OSError:
        return 0


def needs_deletion(present_copies: int, copies: int) -> bool:
    return present_copies >= copies


def _creation_time(path: Path) -> float:
    """Creation time of path, or 0.0 (epoch) when it cannot be read.

    Falls back to the modification time on platforms whose stat result has
    no birth time.
    """
    try:
        stat_result = os.stat(path)
    except OSError:
        return 0.0
    birthtime = getattr(stat_result, "st_birthtime", None)
    if birthtime is None:
        return stat_result.st_mtime
    return birthtime


def present_backup_files(suffix: str, directory: Path) -> list[str]:
    """Names of backups in directory that contain suffix.

    Raises:
        RetentionDeletionError: If the directory cannot be read
    """
    try:
        return sorted(entry for entry in os.listdir(directory) if suffix in entry)
    except OSError as error:
        raise RetentionDeletionError(
            str(directory), f"Failed to read backup directory: {error}"
        ) from error


def oldest_backup(suffix: str, directory: Path) -> Optional[Path]:
    """The matching backup with the earliest creation time, if any."""
    files = present_backup_files(suffix, directory)
    if not files:
        return None
    oldest = min(files, key=lambda name: (_creation_time(directory / name), name))
    return directory / oldest


def delete_oldest_backup(suffix: str, directory: Path) -> Optional[Path]:
    """Delete the oldest matching backup.

    Returns:
        The deleted path, or None when there was nothing to delete

    Raises:
        RetentionDeletionError: If the directory cannot be read or the file
            cannot be removed
    """
    oldest = oldest_backup(suffix, directory)
    if oldest is None:
        return None
    log.info(f"Removing old backup file: {oldest}")
    try:
        os.remove(oldest)
    except OSError as error:
        raise RetentionDeletionError(str(oldest), str(error)) from error
    return oldest
