"""Progress reporting for the block copy.

dd with ``status=progress`` prints lines such as::

    1073741824 bytes (1.1 GB, 1.0 GiB) copied, 12 s, 89.5 MB/s

The core does not depend on them. They are only turned into throttled log
lines for the operator.
"""

import re
from typing import Optional

from dd_backup.logging import LoggerFactory, ThrottledLogger
from dd_backup.storage.sizes import human_size


BYTES_PATTERN = re.compile(r"^(\d+)\s+bytes")
RATE_PATTERN = re.compile(r"(\d+(?:[.,]\d+)?\s*[kKMGT]?i?B/s)")


def parse_bytes_copied(line: str) -> Optional[int]:
    match = BYTES_PATTERN.search(line.strip())
    if not match:
        return None
    return int(match.group(1))


def format_progress_line(bytes_copied, total_bytes, rate=None):
    """Format one progress update, e.g. "Copied 1.0GB of 14.9GB (6.7%) 89.5 MB/s"."""
    line = f"Copied {human_size(bytes_copied)}"
    if total_bytes:
        percent = (bytes_copied / total_bytes) * 100
        line = f"{line} of {human_size(total_bytes)} ({percent:.1f}%)"
    if rate:
        line = f"{line} {rate}"
    return line


class ProgressReporter:
    """Callable fed with dd stderr lines; logs progress every few seconds."""

    def __init__(
        self,
        device_path: str,
        total_bytes: Optional[int] = None,
        job_id: Optional[str] = None,
        interval_seconds: float = 5.0,
    ):
        self.device_path = device_path
        self.total_bytes = total_bytes
        self.last_bytes: Optional[int] = None
        self.log = LoggerFactory.for_progress(job_id)
        self._throttled = ThrottledLogger(self.log, interval_seconds)

    def __call__(self, line: str) -> None:
        bytes_copied = parse_bytes_copied(line)
        if bytes_copied is None:
            self.log.trace(f"dd: {line}")
            return
        self.last_bytes = bytes_copied
        rate_match = RATE_PATTERN.search(line)
        self._throttled.info(
            self.device_path,
            f"{self.device_path}: "
            + format_progress_line(
                bytes_copied,
                self.total_bytes,
                rate_match.group(1) if rate_match else None,
            ),
        )
