"""Domain models for block device backups."""

from __future__ import annotations

from .models import (
    BackupState,
    BackupTarget,
    BlockDevice,
    Device,
    RunOptions,
)


__all__ = [
    "BackupState",
    "BackupTarget",
    "BlockDevice",
    "Device",
    "RunOptions",
]
