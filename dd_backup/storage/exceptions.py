"""Custom exceptions for backup operations.

This module defines a hierarchy of exceptions for backup runs to provide
more specific error handling and better error messages.

Exception Hierarchy:
    StorageError (base)
        ├── InventoryError
        ├── DeviceError
        │   └── NonUniqueIdentifierError
        ├── MountError
        │   ├── MountFailedError
        │   └── UnmountFailedError
        ├── BackupError
        │   ├── AlreadyPresentError
        │   ├── InsufficientSpaceError
        │   ├── RetentionDeletionError
        │   └── BackupPathError
        └── CommandExecutionError

    ConfigurationError (raised by the config layer, before any device work)

Usage:
    from dd_backup.storage.exceptions import AlreadyPresentError

    if destination_file.exists():
        raise AlreadyPresentError(str(destination_file))
"""

from typing import Optional


class StorageError(Exception):
    """Base exception for all storage operations."""


class InventoryError(StorageError):
    """The block device inventory could not be read."""


class DeviceError(StorageError):
    """Base exception for device-related errors."""


class NonUniqueIdentifierError(DeviceError):
    """A serial or uuid matched more than one block device."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"Not a unique {kind}: {identifier}")


class MountError(StorageError):
    """Base exception for mount-related errors."""


class MountFailedError(MountError):
    """Failed to mount the destination filesystem."""

    def __init__(self, device_path: str, mountpath: str, output: str = ""):
        self.device_path = device_path
        self.mountpath = mountpath
        self.output = output
        msg = f"Error mounting filesystem {device_path} at {mountpath}"
        if output:
            msg += f": {output}"
        super().__init__(msg)


class UnmountFailedError(MountError):
    """Failed to unmount the destination filesystem."""

    def __init__(self, device_path: str, mountpoint: str, output: str = ""):
        self.device_path = device_path
        self.mountpoint = mountpoint
        self.output = output
        msg = f"Error unmounting filesystem {device_path} at {mountpoint}"
        if output:
            msg += f": {output}"
        super().__init__(msg)


class BackupError(StorageError):
    """Base exception for a single device backup."""


class AlreadyPresentError(BackupError):
    """The backup file for today already exists."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(
            f"Backup file {path} already exists, skipping it. "
            "Rename it manually if more than one backup per day is needed"
        )


class InsufficientSpaceError(BackupError):
    """Destination filesystem has less free space than the source device size."""

    def __init__(
        self,
        source_path: str,
        source_size: int,
        destination_path: str,
        available_size: int,
    ):
        self.source_path = source_path
        self.source_size = source_size
        self.destination_path = destination_path
        self.available_size = available_size
        super().__init__(
            f"Not enough space on {destination_path} ({available_size} bytes available) "
            f"to back up {source_path} ({source_size} bytes)"
        )


class RetentionDeletionError(BackupError):
    """Failed to list or delete old backup files."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to delete oldest backup file '{path}': {reason}")


class BackupPathError(BackupError):
    """The backup file or directory path could not be checked or created."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot use backup path '{path}': {reason}")


class CommandExecutionError(StorageError):
    """An external command could not be launched or returned nonzero."""

    def __init__(
        self, description: str, output: str = "", returncode: Optional[int] = None
    ):
        self.description = description
        self.output = output
        self.returncode = returncode
        msg = f"Failed to {description}"
        if output:
            msg += f": {output}"
        super().__init__(msg)


class ConfigurationError(Exception):
    """The backup configuration is missing or invalid."""
