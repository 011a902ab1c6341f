"""Error taxonomy shared by the capabilities and the core.

Each class also derives from the closest builtin so callers that only know
about ``ConnectionError`` or ``PermissionError`` still catch them.
"""

from __future__ import annotations


class UnitdeckError(Exception):
    """Base class for every error raised by unitdeck."""


class BusConnectionError(UnitdeckError, ConnectionError):
    """The service manager (or the log source) could not be reached."""


class AccessDeniedError(UnitdeckError, PermissionError):
    """The service manager refused a privileged request."""


class ControlTimeoutError(UnitdeckError, TimeoutError):
    """A control request did not complete within its bound."""


class UnitNotFoundError(UnitdeckError, LookupError):
    """The named unit is not known to the service manager."""

    def __init__(self, unit: str, detail: str | None = None) -> None:
        self.unit = unit
        super().__init__(detail or f"Unit not found: {unit}")


class LogFeedError(UnitdeckError):
    """The continuous log feed terminated abnormally."""


class UnconfirmedActionError(UnitdeckError):
    """A control action was submitted without a matching confirmation."""


class StartupError(UnitdeckError):
    """No usable service-query capability; fatal."""


class ConfigError(UnitdeckError, ValueError):
    """A configuration value is missing or malformed."""
