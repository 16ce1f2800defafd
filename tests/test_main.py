"""Tests for the dd-backup command line."""

import json

import pytest

from dd_backup import main as main_module
from dd_backup.backup.runner import RunReport
from dd_backup.domain import RunOptions
from dd_backup.storage.exceptions import InventoryError, UnmountFailedError
from dd_backup.storage.lsblk import Inventory


@pytest.fixture(autouse=True)
def quiet_logging(mocker):
    return mocker.patch.object(main_module, "setup_logging")


@pytest.fixture
def mock_run_backups(mocker):
    return mocker.patch.object(main_module, "run_backups", return_value=RunReport())


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"backups": [{"uuid": "U", "backup_devices": [{"serial": "S"}]}]})
    )
    return path


def test_run_with_config_file(mock_run_backups, config_file):
    assert main_module.main(["run", "-c", str(config_file)]) == 0

    config, options = mock_run_backups.call_args.args
    assert config.backups[0].uuid == "U"
    assert options == RunOptions(dry_run=False)
    assert mock_run_backups.call_args.kwargs["mountpath"] is None


def test_run_dry_with_mountpath(mock_run_backups, config_file):
    main_module.main(["run", "--dry", "-c", str(config_file), "-m", "/media/backup"])

    _, options = mock_run_backups.call_args.args
    assert options.dry_run is True
    assert mock_run_backups.call_args.kwargs["mountpath"] == "/media/backup"


def test_single_device_mode(mock_run_backups):
    exit_code = main_module.main(
        ["run", "--uuid", "U", "--serial", "S", "--name", "pi zero", "--copies", "2"]
    )

    assert exit_code == 0
    config, _ = mock_run_backups.call_args.args
    device = config.backups[0].backup_devices[0]
    assert (device.serial, device.name, device.copies) == ("S", "pi zero", 2)


def test_single_device_needs_both_identifiers(mock_run_backups):
    assert main_module.main(["run", "--uuid", "U"]) == 1
    mock_run_backups.assert_not_called()


def test_invalid_copies(mock_run_backups):
    assert main_module.main(["run", "--uuid", "U", "--serial", "S", "--copies", "0"]) == 1


def test_missing_config_file(mock_run_backups, tmp_path):
    assert main_module.main(["run", "-c", str(tmp_path / "missing.json")]) == 1
    mock_run_backups.assert_not_called()


def test_device_failures_do_not_change_exit_code(mocker, config_file):
    report = RunReport()
    mocker.patch.object(main_module, "run_backups", return_value=report)

    assert main_module.main(["run", "-c", str(config_file)]) == 0


@pytest.mark.parametrize(
    "error",
    [InventoryError("Failed to read JSON from lsblk"), UnmountFailedError("/dev/sda1", "/mnt")],
)
def test_fatal_errors(mocker, config_file, error):
    mocker.patch.object(main_module, "run_backups", side_effect=error)

    assert main_module.main(["run", "-c", str(config_file)]) == 1


def test_keyboard_interrupt(mocker, config_file):
    mocker.patch.object(main_module, "run_backups", side_effect=KeyboardInterrupt)

    assert main_module.main(["run", "-c", str(config_file)]) == 130


def test_logging_flags(quiet_logging, mock_run_backups, config_file, tmp_path):
    main_module.main(
        ["--debug", "--log-dir", str(tmp_path), "--no-log-files", "run", "-c", str(config_file)]
    )

    quiet_logging.assert_called_once_with(
        debug=True, trace=False, log_dir=tmp_path, log_files=False
    )


def test_list_command(mocker, lsblk_rows, capsys):
    mocker.patch.object(
        main_module.Inventory, "capture", return_value=Inventory.from_rows(lsblk_rows)
    )

    assert main_module.main(["list"]) == 0

    output = capsys.readouterr().out
    assert "/dev/sdb" in output
    assert "4C530001230512105264" in output
    assert "0b5a1e7c-3f2d-4c8e-9a61-2d7f0c4b9e11" in output


def test_command_required():
    with pytest.raises(SystemExit):
        main_module.main([])
