from __future__ import annotations

import logging
from importlib.metadata import version

__version__ = version("covship")

logger = logging.getLogger("covship")

__all__ = ["__version__", "logger"]
