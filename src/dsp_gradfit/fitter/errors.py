"""Exceptions raised by the fitter."""

from __future__ import annotations


class FitError(Exception):
    """Base class for all fitter failures."""


class ConfigurationError(FitError):
    """Raised when a run is set up with inconsistent settings."""


class ChannelLayoutError(ConfigurationError):
    """Raised when the composed graph's channels do not match the registry."""


class BackendError(FitError):
    """Raised when the signal-processing backend cannot be loaded or used."""


__all__ = [
    "BackendError",
    "ChannelLayoutError",
    "ConfigurationError",
    "FitError",
]
