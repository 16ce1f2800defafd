"""Backup of one source device onto one mounted destination filesystem.

State machine::

    INIT -> VALIDATED -> COPIED -> OWNED -> DONE
      \\          \\
       +-> SKIPPED (backup for today already present)
       +-> FAILED  (unusable path, eviction, space check, copy or chown failed)

Validation runs in this order and stops at the first failure:

    1. The destination file must not exist. Backups are never overwritten.
    2. If the device already has ``copies`` backups, the oldest is evicted.
    3. Free space is checked, unless a backup was just evicted.

A dry run performs every check but never deletes, creates directories,
copies or changes ownership. Since nothing is evicted, the space check
always runs in a dry run.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dd_backup.domain import BackupState, BackupTarget
from dd_backup.logging import LoggerFactory
from dd_backup.storage.exceptions import (
    AlreadyPresentError,
    BackupPathError,
    StorageError,
)
from dd_backup.storage.retention import (
    delete_oldest_backup,
    device_file_name,
    device_suffix,
    needs_deletion,
    oldest_backup,
    present_number_of_copies,
)
from dd_backup.storage.validation import (
    check_if_target_filesystem_has_enough_space,
    validate_destination_absent,
)

from .progress import ProgressReporter


def invoking_user_ids() -> tuple[int, int]:
    """uid and gid of the user who started the run, even under sudo."""
    sudo_uid = os.environ.get("SUDO_UID")
    sudo_gid = os.environ.get("SUDO_GID")
    if sudo_uid and sudo_gid and sudo_uid.isdigit() and sudo_gid.isdigit():
        return int(sudo_uid), int(sudo_gid)
    return os.getuid(), os.getgid()


class Backup:
    def __init__(self, target: BackupTarget, date: Optional[str] = None):
        self.filesystem = target.filesystem
        self.device = target.device
        self.dry_run = target.options.dry_run
        self.runner = self.filesystem.runner

        self.backup_dir = self.filesystem.backup_dir(self.device.destination_path)
        self.suffix = device_suffix(self.device)
        self.file_name = device_file_name(self.device, date)
        self.destination_file = self.backup_dir / self.file_name

        self.state = BackupState.INIT
        self.evicted: Optional[Path] = None
        self.log = LoggerFactory.for_backup(serial=self.device.serial)

    def dd_command(self) -> list[str]:
        return [
            "dd",
            f"if={self.device.device_path}",
            f"of={self.destination_file}",
            "bs=4M",
            "status=progress",
            "conv=fsync",
        ]

    def validate_state(self) -> None:
        """Run the pre-copy checks.

        Raises:
            AlreadyPresentError: If today's backup file already exists
            BackupPathError: If the backup file path cannot be checked
            RetentionDeletionError: If the oldest backup cannot be removed
            InsufficientSpaceError: If the destination is too small
        """
        try:
            validate_destination_absent(self.destination_file)
        except AlreadyPresentError:
            self.state = BackupState.SKIPPED
            raise
        except StorageError:
            self.state = BackupState.FAILED
            raise

        try:
            evicted = self._apply_retention()
            if not evicted:
                check_if_target_filesystem_has_enough_space(
                    self.filesystem.available_space(),
                    self.device.total_size(),
                    self.device.device_path,
                    self.filesystem.device_path,
                )
        except StorageError:
            self.state = BackupState.FAILED
            raise
        self.state = BackupState.VALIDATED

    def _apply_retention(self) -> bool:
        present = present_number_of_copies(self.suffix, self.backup_dir)
        if not needs_deletion(present, self.device.copies):
            return False
        self.log.info(
            f"{present} backup(s) of {self.device.device_path} present in "
            f"{self.backup_dir}, keeping at most {self.device.copies}"
        )
        if self.dry_run:
            oldest = oldest_backup(self.suffix, self.backup_dir)
            if oldest is not None:
                self.log.info(f"Dry run: would remove old backup file: {oldest}")
            return False
        self.evicted = delete_oldest_backup(self.suffix, self.backup_dir)
        return self.evicted is not None

    def run(self) -> None:
        """Validate, copy the device and hand the image to the invoking user.

        Raises:
            StorageError: The named condition that stopped the backup
        """
        self.validate_state()
        command = self.dd_command()

        if self.dry_run:
            self.log.info(f"Dry run: {' '.join(command)}")
            self.state = BackupState.DONE
            return

        try:
            self._ensure_backup_dir()
            self.log.info(
                f"Backing up {self.device.device_path} to {self.destination_file}"
            )
            self.runner.stream(
                command,
                f"back up {self.device.device_path} to {self.destination_file}",
                privileged=True,
                on_line=ProgressReporter(
                    self.device.device_path, self.device.total_size()
                ),
            )
            self.state = BackupState.COPIED
            self._set_ownership()
            self.state = BackupState.OWNED
        except StorageError:
            self.state = BackupState.FAILED
            raise
        except OSError as error:
            self.state = BackupState.FAILED
            raise BackupPathError(
                str(self.destination_file), error.strerror or str(error)
            ) from error

        self.state = BackupState.DONE
        self.log.success(
            f"Backup of {self.device.device_path} written to {self.destination_file}"
        )

    def _ensure_backup_dir(self) -> None:
        try:
            if self.backup_dir.is_dir():
                return
        except OSError as error:
            raise BackupPathError(
                str(self.backup_dir), error.strerror or str(error)
            ) from error
        self.runner.check(
            ["mkdir", "-p", str(self.backup_dir)],
            f"create backup directory {self.backup_dir}",
            privileged=True,
        )

    def _set_ownership(self) -> None:
        uid, gid = invoking_user_ids()
        self.runner.check(
            ["chown", f"{uid}:{gid}", str(self.destination_file)],
            f"set owner of {self.destination_file}",
            privileged=True,
        )
