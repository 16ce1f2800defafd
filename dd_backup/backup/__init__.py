"""Whole-device backups with rotation of old images.

Main Functions:
    - run_backups(): Back up every configured device, group by group
    - Backups: Devices sharing one destination filesystem
    - Backup: State machine for one device onto one filesystem

Helper Functions:
    - invoking_user_ids(): Owner given to finished backup images
    - ProgressReporter: Throttled logging of dd progress lines
"""

from .operation import Backup, invoking_user_ids
from .progress import ProgressReporter, format_progress_line, parse_bytes_copied
from .runner import Backups, DeviceOutcome, RunReport, run_backups

__all__ = [
    "Backup",
    "Backups",
    "DeviceOutcome",
    "ProgressReporter",
    "RunReport",
    "format_progress_line",
    "invoking_user_ids",
    "parse_bytes_copied",
    "run_backups",
]
