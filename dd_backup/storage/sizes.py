"""Size and date helpers shared by the inventory and the backup steps."""

from __future__ import annotations

from datetime import date
from typing import Optional


UNIT_MULTIPLIERS = {
    "B": 1,
    "K": 1024,
    "M": 1024**2,
    "G": 1024**3,
    "T": 1024**4,
}


def current_date() -> str:
    """Return the local date as YYYY-MM-DD."""
    return date.today().strftime("%Y-%m-%d")


def convert_to_byte_size(size_str: str) -> Optional[int]:
    """Convert an lsblk size string such as "100M" or "14.9G" to bytes.

    Returns None when the unit suffix is not one of B/K/M/G/T.

    Raises:
        ValueError: If the numeric part cannot be parsed
    """
    size_str = size_str.strip()
    if not size_str:
        raise ValueError("Error parsing unit size: empty string")
    unit = size_str[-1]
    try:
        size_of_unit = float(size_str[:-1])
    except ValueError as error:
        raise ValueError(f"Error parsing unit size: {error}") from error
    multiplier = UNIT_MULTIPLIERS.get(unit)
    if multiplier is None:
        return None
    return round(size_of_unit * multiplier)


def size_or_none(size_str: Optional[str]) -> Optional[int]:
    if size_str is None:
        return None
    try:
        return convert_to_byte_size(size_str)
    except ValueError:
        return None


def human_size(size_bytes):
    if size_bytes is None:
        return "unknown"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"
