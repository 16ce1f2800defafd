"""Backup configuration loading and validation.

The configuration file is JSON::

    {
      "backups": [
        {
          "uuid": "<destination filesystem uuid>",
          "destination_path": "images/sd-cards",
          "backup_devices": [
            {"serial": "<device serial>", "name": "Pi Zero", "copies": 3}
          ]
        }
      ],
      "mountpath": "/mnt"
    }

``destination_path``, ``name``, ``copies`` and ``mountpath`` are optional.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from dd_backup.storage.exceptions import ConfigurationError


CONFIG_PATH = Path(
    os.environ.get(
        "DD_BACKUP_CONFIG_PATH",
        Path.home() / ".config" / "dd_backup" / "config.json",
    )
)


@dataclass(frozen=True)
class BackupDevice:
    serial: str
    name: Optional[str] = None
    # None keeps a single copy
    copies: Optional[int] = None


@dataclass(frozen=True)
class BackupConfig:
    uuid: str
    backup_devices: list[BackupDevice] = field(default_factory=list)
    destination_path: Optional[str] = None


@dataclass(frozen=True)
class Config:
    backups: list[BackupConfig] = field(default_factory=list)
    mountpath: Optional[str] = None

    @classmethod
    def single_device(
        cls,
        uuid: str,
        serial: str,
        name: Optional[str] = None,
        copies: Optional[int] = None,
        destination_path: Optional[str] = None,
        mountpath: Optional[str] = None,
    ) -> Config:
        """Build a validated config for one device without a config file."""
        config = cls(
            backups=[
                BackupConfig(
                    uuid=uuid,
                    backup_devices=[BackupDevice(serial, name, copies)],
                    destination_path=destination_path,
                )
            ],
            mountpath=mountpath,
        )
        return validate_config(config)


def _require_str(value: Any, what: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"Missing or invalid {what}")
    return value


def _optional_str(value: Any, what: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigurationError(f"Invalid {what}: expected a string")
    return value


def _parse_device(data: Any) -> BackupDevice:
    if not isinstance(data, dict):
        raise ConfigurationError("Invalid backup device entry: expected an object")
    serial = _require_str(data.get("serial"), "serial in backup device entry")
    copies = data.get("copies")
    if copies is not None and (isinstance(copies, bool) or not isinstance(copies, int)):
        raise ConfigurationError(
            f"Invalid number of copies for device with serial '{serial}'. "
            "Must be an integer."
        )
    return BackupDevice(
        serial=serial,
        name=_optional_str(data.get("name"), f"name for device '{serial}'"),
        copies=copies,
    )


def _parse_backup(data: Any) -> BackupConfig:
    if not isinstance(data, dict):
        raise ConfigurationError("Invalid backup entry: expected an object")
    uuid = _require_str(data.get("uuid"), "uuid in backup entry")
    devices = data.get("backup_devices", [])
    if not isinstance(devices, list):
        raise ConfigurationError(f"backup_devices of '{uuid}' must be a list")
    return BackupConfig(
        uuid=uuid,
        backup_devices=[_parse_device(device) for device in devices],
        destination_path=_optional_str(
            data.get("destination_path"), f"destination_path of '{uuid}'"
        ),
    )


def parse_config(data: Any) -> Config:
    """Build a Config from decoded JSON and validate it.

    Raises:
        ConfigurationError: If the document does not describe a valid config
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Config file must contain a JSON object")
    backups = data.get("backups", [])
    if not isinstance(backups, list):
        raise ConfigurationError("backups must be a list")
    config = Config(
        backups=[_parse_backup(backup) for backup in backups],
        mountpath=_optional_str(data.get("mountpath"), "mountpath"),
    )
    return validate_config(config)


def validate_config(config: Config) -> Config:
    """Check unique uuids, unique serials per backup and copies >= 1.

    Raises:
        ConfigurationError: On the first violation found
    """
    uuids = [backup.uuid for backup in config.backups]
    if len(set(uuids)) != len(uuids):
        raise ConfigurationError("Duplicate UUID found in backups")

    for backup in config.backups:
        serials = [device.serial for device in backup.backup_devices]
        if len(set(serials)) != len(serials):
            raise ConfigurationError(
                f"Duplicate serial number found in backup with UUID '{backup.uuid}'"
            )
        for device in backup.backup_devices:
            if device.copies is not None and device.copies < 1:
                raise ConfigurationError(
                    f"Invalid number of copies for device with serial "
                    f"'{device.serial}'. Must be greater than 0."
                )
    return config


def load_config(path: Optional[Path] = None) -> Config:
    """Read and validate the configuration file.

    Raises:
        ConfigurationError: If the file cannot be read, parsed or validated
    """
    path = Path(path) if path else CONFIG_PATH
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as error:
        raise ConfigurationError(f"Cannot read config file {path}: {error}") from error
    try:
        data = json.loads(text)
    except json.JSONDecodeError as error:
        raise ConfigurationError(f"Cannot parse config file {path} -> {error}") from error
    return parse_config(data)
