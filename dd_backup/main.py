import argparse
import sys
from pathlib import Path

from dd_backup import __version__
from dd_backup.backup import run_backups
from dd_backup.config.settings import Config, load_config
from dd_backup.domain import RunOptions
from dd_backup.logging import LoggerFactory, setup_logging
from dd_backup.storage.command import CommandRunner
from dd_backup.storage.exceptions import (
    ConfigurationError,
    InventoryError,
    UnmountFailedError,
)
from dd_backup.storage.lsblk import Inventory

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130

log = LoggerFactory.for_system()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dd-backup",
        description="Back up whole block devices with dd and rotate old images",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Also log raw command output")
    parser.add_argument("--log-dir", type=Path, help="Directory for log files")
    parser.add_argument(
        "--no-log-files", action="store_true", help="Only log to the console"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the configured backups")
    run_parser.add_argument(
        "--dry",
        action="store_true",
        help="Check everything and show the dd commands without copying or deleting",
    )
    run_parser.add_argument(
        "-c", "--config-file-path", type=Path, help="Path of the JSON config file"
    )
    run_parser.add_argument(
        "-m", "--mountpath", help="Where destination filesystems are mounted"
    )
    adhoc = run_parser.add_argument_group(
        "single device", "Back up one device without a config file"
    )
    adhoc.add_argument("--uuid", help="UUID of the destination filesystem")
    adhoc.add_argument("--serial", help="Serial number of the device to back up")
    adhoc.add_argument("--name", help="Name used in the backup file name")
    adhoc.add_argument("--copies", type=int, help="Number of backups to keep")
    adhoc.add_argument(
        "--destination-path", help="Directory below the mounted filesystem"
    )

    subparsers.add_parser("list", help="List candidate devices and filesystems")
    return parser


def config_from_args(args) -> Config:
    """Config for this run, from the ad-hoc options or the config file.

    Raises:
        ConfigurationError: If the options or the config file are invalid
    """
    if args.uuid or args.serial:
        if not (args.uuid and args.serial):
            raise ConfigurationError("--uuid and --serial must be given together")
        return Config.single_device(
            args.uuid,
            args.serial,
            name=args.name,
            copies=args.copies,
            destination_path=args.destination_path,
            mountpath=args.mountpath,
        )
    return load_config(args.config_file_path)


def run_command(args, runner: CommandRunner) -> int:
    config = config_from_args(args)
    report = run_backups(
        config,
        RunOptions(dry_run=args.dry),
        runner=runner,
        mountpath=args.mountpath,
    )
    for outcome in report.failed:
        log.warning(f"Backup of {outcome.serial} to {outcome.uuid} failed: {outcome.error}")
    return EXIT_OK


def list_command(runner: CommandRunner) -> int:
    inventory = Inventory.capture(runner)
    print("Devices (serial):")
    for device in inventory.available_devices:
        print(
            f"  {device.device_path:<14} {device.serial:<24} "
            f"{device.model or '-':<24} {device.size}"
        )
    print("Filesystems (uuid):")
    for filesystem in inventory.available_filesystems:
        print(
            f"  {filesystem.device_path:<14} {filesystem.uuid:<38} "
            f"{filesystem.mountpoint or '-':<20} {filesystem.fsavail or '-'}"
        )
    return EXIT_OK


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(
        debug=args.debug,
        trace=args.trace,
        log_dir=args.log_dir,
        log_files=not args.no_log_files,
    )
    log.debug(f"dd-backup {__version__} starting: {args.command}")

    runner = CommandRunner()
    try:
        if args.command == "list":
            return list_command(runner)
        return run_command(args, runner)
    except ConfigurationError as error:
        log.error(f"Invalid configuration: {error}")
        return EXIT_ERROR
    except InventoryError as error:
        log.error(str(error))
        return EXIT_ERROR
    except UnmountFailedError as error:
        log.critical(f"{error}; the filesystem may still be mounted")
        return EXIT_ERROR
    except KeyboardInterrupt:
        log.warning("Interrupted, the destination filesystem may still be mounted")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
