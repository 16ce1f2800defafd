"""
Pytest configuration and shared fixtures for dd-backup tests.

No test runs a real external command: ``FakeRunner`` stands in for the
CommandRunner and answers lsblk from fixture rows, creates directories for
``mkdir -p`` and writes a small image file for ``dd``.
"""

import json
import subprocess
from pathlib import Path
from typing import Any, Dict, List

import pytest
from loguru import logger

from dd_backup.config.settings import BackupConfig, BackupDevice, Config
from dd_backup.domain import BlockDevice
from dd_backup.storage.command import CommandRunner
from dd_backup.storage.exceptions import CommandExecutionError


DEST_UUID = "0b5a1e7c-3f2d-4c8e-9a61-2d7f0c4b9e11"
SOURCE_SERIAL = "4C530001230512105264"
TEST_DATE = "2024-05-01"


class FakeRunner(CommandRunner):
    """CommandRunner that records commands instead of executing them.

    Args:
        rows: lsblk rows returned for every lsblk call
        failures: program name -> (returncode, stderr) for commands that fail
    """

    def __init__(self, rows=None, failures=None):
        super().__init__(use_sudo=False)
        self.rows = rows or []
        self.failures = failures or {}
        self.calls: List[List[str]] = []

    def run(self, command, description, privileged=False):
        parts = list(command)
        self.calls.append(parts)
        program = parts[0]
        if program in self.failures:
            returncode, stderr = self.failures[program]
            return subprocess.CompletedProcess(parts, returncode, "", stderr)
        stdout = ""
        if program == "lsblk":
            stdout = json.dumps({"blockdevices": self.rows})
        elif program == "mkdir":
            Path(parts[-1]).mkdir(parents=True, exist_ok=True)
        return subprocess.CompletedProcess(parts, 0, stdout, "")

    def stream(self, command, description, privileged=False, on_line=None):
        parts = list(command)
        self.calls.append(parts)
        if "dd" in self.failures:
            returncode, stderr = self.failures["dd"]
            raise CommandExecutionError(description, stderr, returncode=returncode)
        for argument in parts:
            if argument.startswith("of="):
                Path(argument[len("of="):]).write_bytes(b"image")
        if on_line:
            on_line("1048576 bytes (1.0 MB, 1.0 MiB) copied, 1 s, 1.0 MB/s")
        return ""

    def programs(self) -> List[str]:
        return [call[0] for call in self.calls]


# ==============================================================================
# lsblk Fixtures
# ==============================================================================


@pytest.fixture
def destination_row() -> Dict[str, Any]:
    """Unmounted ext4 partition used as backup destination."""
    return {
        "name": "sda1",
        "model": None,
        "serial": None,
        "size": "931.5G",
        "mountpoint": None,
        "uuid": DEST_UUID,
        "fsavail": "500G",
    }


@pytest.fixture
def source_row() -> Dict[str, Any]:
    """Unmounted USB stick to back up."""
    return {
        "name": "sdb",
        "model": "Cruzer Blade",
        "serial": SOURCE_SERIAL,
        "size": "14.9G",
        "mountpoint": None,
        "uuid": None,
        "fsavail": None,
    }


@pytest.fixture
def system_disk_row() -> Dict[str, Any]:
    """SD card holding the running system."""
    return {
        "name": "mmcblk0",
        "model": None,
        "serial": "0x12345678",
        "size": "29.7G",
        "mountpoint": None,
        "uuid": None,
        "fsavail": None,
    }


@pytest.fixture
def lsblk_rows(destination_row, source_row, system_disk_row) -> List[Dict[str, Any]]:
    return [
        destination_row,
        source_row,
        system_disk_row,
        {
            "name": "mmcblk0p2",
            "model": None,
            "serial": None,
            "size": "29.5G",
            "mountpoint": "/",
            "uuid": "e3a1a0b4-4d7d-4d6b-9c1e-1f8a2b3c4d5e",
            "fsavail": "20.1G",
        },
    ]


@pytest.fixture
def fake_runner(lsblk_rows) -> FakeRunner:
    return FakeRunner(lsblk_rows)


@pytest.fixture
def source_blockdevice(source_row) -> BlockDevice:
    return BlockDevice.from_lsblk_dict(source_row)


# ==============================================================================
# Filesystem Fixtures
# ==============================================================================


@pytest.fixture
def mounts_file(tmp_path) -> Path:
    """Mount table with only the root filesystem mounted."""
    path = tmp_path / "mounts"
    path.write_text("/dev/mmcblk0p2 / ext4 rw,noatime 0 0\n")
    return path


@pytest.fixture
def mountpath(tmp_path) -> Path:
    return tmp_path / "mnt"


@pytest.fixture
def single_device_config() -> Config:
    return Config(
        backups=[
            BackupConfig(
                uuid=DEST_UUID,
                backup_devices=[BackupDevice(SOURCE_SERIAL, name="pi zero", copies=1)],
            )
        ]
    )


# ==============================================================================
# Logging Fixtures
# ==============================================================================


@pytest.fixture
def log_messages():
    """Collect loguru messages emitted during a test."""
    messages: List[str] = []
    handler_id = logger.add(
        lambda message: messages.append(message.record["message"]), level="TRACE"
    )
    yield messages
    logger.remove(handler_id)


# ==============================================================================
# Shared Values
# ==============================================================================


@pytest.fixture
def dest_uuid() -> str:
    return DEST_UUID


@pytest.fixture
def source_serial() -> str:
    return SOURCE_SERIAL


@pytest.fixture
def backup_date() -> str:
    return TEST_DATE


@pytest.fixture
def runner_factory():
    """The FakeRunner class, for tests that need their own rows or failures."""
    return FakeRunner
