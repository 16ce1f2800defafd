"""dd-backup: full-device block-level backups with rotation."""

from .__version__ import __version__


__all__ = ["__version__"]
