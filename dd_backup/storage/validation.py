"""Safety checks performed before a block copy is started.

- The destination file must not exist yet (backups are never overwritten),
  and its path must be usable
- The destination filesystem must have room for the whole source device

Validation functions raise specific exceptions from the exceptions module
rather than returning booleans.

Space admission fails open: when either size is unknown the copy is
allowed and a warning is logged. Missing size metadata (an unmounted
filesystem, an unusual unit from lsblk) must not block every backup.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from dd_backup.logging import LoggerFactory

from .exceptions import AlreadyPresentError, BackupPathError, InsufficientSpaceError
from .sizes import human_size


log = LoggerFactory.for_backup(job_id="-")


def validate_destination_absent(destination_file: Path) -> None:
    """Raise AlreadyPresentError if destination_file already exists.

    Raises:
        AlreadyPresentError: If the file exists
        BackupPathError: If the path cannot be checked (name too long,
            permission denied)
    """
    try:
        destination_file.stat()
    except (FileNotFoundError, NotADirectoryError):
        return
    except OSError as error:
        raise BackupPathError(
            str(destination_file), error.strerror or str(error)
        ) from error
    raise AlreadyPresentError(str(destination_file))


def check_if_target_filesystem_has_enough_space(
    available: Optional[int],
    needed: Optional[int],
    source_path: str,
    destination_path: str,
) -> None:
    """Admit a copy only if available space exceeds the source size.

    Args:
        available: Free bytes on the destination filesystem, None if unknown
        needed: Size of the source device in bytes, None if unknown
        source_path: Source device node, for messages
        destination_path: Destination device node, for messages

    Raises:
        InsufficientSpaceError: If both sizes are known and there is no room
    """
    if available is None or needed is None:
        log.warning(
            f"Could not verify that {destination_path} has enough space for "
            f"{source_path} (available: {human_size(available)}, "
            f"needed: {human_size(needed)}), continuing"
        )
        return

    remaining = available - needed
    if remaining > 0:
        log.debug(
            f"{destination_path} has {human_size(remaining)} left after "
            f"backing up {source_path}"
        )
        return
    raise InsufficientSpaceError(source_path, needed, destination_path, available)
