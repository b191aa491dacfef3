"""covship - discover coverage reports and upload them to a coverage service."""

from covship._meta import __version__, logger

__all__ = ["__version__", "logger"]
