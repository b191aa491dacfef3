"""Centralised exception hierarchy for covship."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from covship.core.upload import UploadOutcome


class CovshipError(Exception):
    """Base class for all custom covship exceptions."""


class ConfigError(CovshipError):
    """A config file was found but could not be understood."""


class DiscoveryError(CovshipError):
    """Base class for errors raised while collecting coverage reports."""


class NoReportsError(DiscoveryError):
    """No non-empty coverage report was found, so there is nothing to upload."""


class UploadError(CovshipError):
    """The upload ended in a terminal failure."""

    def __init__(self, message: str, outcome: UploadOutcome) -> None:
        super().__init__(message)
        self.outcome = outcome


__all__ = [
    "ConfigError",
    "CovshipError",
    "DiscoveryError",
    "NoReportsError",
    "UploadError",
]
