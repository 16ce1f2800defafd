"""Run orchestration: every configured destination group, one after another.

For each group in the configuration:

    1. Resolve the destination filesystem by uuid. An absent filesystem skips
       the group. An ambiguous uuid or a failed mount aborts only this group.
    2. Mount the filesystem unless it is already mounted.
    3. Resolve and back up each configured device in order. A failure of one
       device is logged and recorded, then the next device is attempted.
    4. Unmount the filesystem, also when a device raised an unexpected
       error. A failed unmount leaves the system in an unknown state and
       stops the whole run.

Everything runs sequentially. The inventory snapshot is captured once at
the start of the run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dd_backup.config.settings import BackupConfig, Config
from dd_backup.domain import BackupState, BackupTarget, Device, RunOptions
from dd_backup.logging import LoggerFactory, operation_context
from dd_backup.storage.command import CommandRunner
from dd_backup.storage.devices import resolve_device
from dd_backup.storage.exceptions import (
    AlreadyPresentError,
    DeviceError,
    MountFailedError,
    NonUniqueIdentifierError,
    StorageError,
)
from dd_backup.storage.filesystem import Filesystem, resolve_filesystem
from dd_backup.storage.lsblk import Inventory

from .operation import Backup


log = LoggerFactory.for_system()


@dataclass
class DeviceOutcome:
    uuid: str
    serial: str
    state: BackupState
    destination_file: Optional[Path] = None
    error: Optional[str] = None


@dataclass
class RunReport:
    """What happened to every configured device during one run."""

    outcomes: list[DeviceOutcome] = field(default_factory=list)
    # uuids of destination groups that were not attempted
    skipped_groups: list[str] = field(default_factory=list)
    failed_groups: list[str] = field(default_factory=list)

    def record(self, outcome: DeviceOutcome) -> None:
        self.outcomes.append(outcome)

    def _with_state(self, *states: BackupState) -> list[DeviceOutcome]:
        return [outcome for outcome in self.outcomes if outcome.state in states]

    @property
    def completed(self) -> list[DeviceOutcome]:
        return self._with_state(BackupState.DONE)

    @property
    def skipped(self) -> list[DeviceOutcome]:
        return self._with_state(BackupState.SKIPPED)

    @property
    def failed(self) -> list[DeviceOutcome]:
        return [
            outcome
            for outcome in self.outcomes
            if outcome.state not in (BackupState.DONE, BackupState.SKIPPED)
        ]

    def summary(self) -> str:
        return (
            f"{len(self.completed)} completed, {len(self.skipped)} skipped, "
            f"{len(self.failed)} failed"
        )


class Backups:
    """All device backups that share one destination filesystem."""

    def __init__(
        self,
        uuid: str,
        filesystem: Filesystem,
        devices: list[Device],
        options: RunOptions,
        report: RunReport,
    ):
        self.uuid = uuid
        self.filesystem = filesystem
        self.devices = devices
        self.options = options
        self.report = report

    @classmethod
    def new(
        cls,
        backup_config: BackupConfig,
        inventory: Inventory,
        options: RunOptions,
        report: RunReport,
        mountpath: Optional[str] = None,
        runner: Optional[CommandRunner] = None,
        mounts_path: Optional[Path] = None,
    ) -> Optional[Backups]:
        """Resolve one destination group.

        Returns:
            The group, or None when its filesystem is absent

        Raises:
            NonUniqueIdentifierError: If the uuid matches several filesystems
        """
        filesystem = resolve_filesystem(
            backup_config.uuid,
            inventory.available_filesystems,
            mountpath=mountpath,
            runner=runner,
        )
        if filesystem is None:
            return None

        devices = []
        for backup_device in backup_config.backup_devices:
            try:
                device = resolve_device(
                    backup_device,
                    inventory.available_devices,
                    backup_config.destination_path,
                    mounts_path=mounts_path,
                )
            except DeviceError as error:
                log.error(f"Skipping device {backup_device.serial}: {error}")
                report.record(
                    DeviceOutcome(
                        backup_config.uuid,
                        backup_device.serial,
                        BackupState.FAILED,
                        error=str(error),
                    )
                )
                continue
            if device is None:
                report.record(
                    DeviceOutcome(
                        backup_config.uuid, backup_device.serial, BackupState.SKIPPED
                    )
                )
                continue
            devices.append(device)

        return cls(backup_config.uuid, filesystem, devices, options, report)

    def run(self, date: Optional[str] = None) -> None:
        """Mount, back up every device, unmount.

        Raises:
            MountFailedError: If the filesystem cannot be mounted
            UnmountFailedError: If the filesystem cannot be unmounted
        """
        if not self.filesystem.is_mounted():
            self.filesystem.mount()
        else:
            log.debug(
                f"Filesystem {self.filesystem.device_path} already mounted at "
                f"{self.filesystem.mountpoint}"
            )

        try:
            for device in self.devices:
                self._run_device(device, date)
        finally:
            self.filesystem.unmount()

    def _run_device(self, device: Device, date: Optional[str]) -> None:
        target = BackupTarget(self.filesystem, device, self.options)
        backup = Backup(target, date)
        error = None
        try:
            backup.run()
        except AlreadyPresentError as exc:
            log.warning(f"Skipping backup of {device.device_path}: {exc}")
            error = str(exc)
        except StorageError as exc:
            log.error(f"Error performing backup: {exc}")
            error = str(exc)
        except OSError as exc:
            log.error(f"Error performing backup of {device.device_path}: {exc}")
            backup.state = BackupState.FAILED
            error = str(exc)
        self.report.record(
            DeviceOutcome(
                self.uuid,
                device.serial or "",
                backup.state,
                destination_file=backup.destination_file,
                error=error,
            )
        )


def run_backups(
    config: Config,
    options: Optional[RunOptions] = None,
    runner: Optional[CommandRunner] = None,
    inventory: Optional[Inventory] = None,
    mounts_path: Optional[Path] = None,
    mountpath: Optional[str] = None,
    date: Optional[str] = None,
) -> RunReport:
    """Run every configured backup group.

    Args:
        config: Validated configuration
        options: Run options (dry run)
        runner: Command runner shared by every external command
        inventory: Block device snapshot, captured with lsblk when omitted
        mounts_path: Mount table to check devices against
        mountpath: Mount path override, takes precedence over the config
        date: Date used in backup file names, today when omitted

    Returns:
        RunReport with the outcome of every configured device

    Raises:
        InventoryError: If the block devices cannot be listed
        UnmountFailedError: If a destination filesystem cannot be unmounted
    """
    options = options or RunOptions()
    runner = runner or CommandRunner()
    report = RunReport()

    with operation_context("run", dry_run=options.dry_run):
        if inventory is None:
            inventory = Inventory.capture(runner)
        if options.dry_run:
            log.info("Dry run: no files will be copied or deleted")

        for backup_config in config.backups:
            try:
                backups = Backups.new(
                    backup_config,
                    inventory,
                    options,
                    report,
                    mountpath=mountpath or config.mountpath,
                    runner=runner,
                    mounts_path=mounts_path,
                )
            except NonUniqueIdentifierError as error:
                log.error(f"Skipping backups to {backup_config.uuid}: {error}")
                report.failed_groups.append(backup_config.uuid)
                continue

            if backups is None:
                report.skipped_groups.append(backup_config.uuid)
                continue

            try:
                backups.run(date)
            except MountFailedError as error:
                log.error(f"Skipping backups to {backup_config.uuid}: {error}")
                report.failed_groups.append(backup_config.uuid)

    log.info(f"Backup run finished: {report.summary()}")
    return report
