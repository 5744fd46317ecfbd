"""Error kinds and exception hierarchy for the build engine."""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    CONFIGURATION_MISSING = "configuration_missing"
    CONFIGURATION_INVALID = "configuration_invalid"
    SPAWN_FAILED = "spawn_failed"
    TOOLCHAIN_FAILURE = "toolchain_failure"
    NATIVE_CRASH = "native_crash"
    CANCELLED = "cancelled"
    BUSY = "busy"
    DECODE_AMBIGUOUS = "decode_ambiguous"


class TiebuildError(Exception):
    """Base error carrying an :class:`ErrorKind`."""

    kind: ErrorKind = ErrorKind.CONFIGURATION_INVALID

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class ConfigurationMissingError(TiebuildError):
    """A required toolchain path or project document could not be found."""

    kind = ErrorKind.CONFIGURATION_MISSING


class ConfigurationInvalidError(TiebuildError):
    """A configuration value exists but cannot be used."""

    kind = ErrorKind.CONFIGURATION_INVALID


class SupervisorBusyError(TiebuildError):
    """Raised when a run is requested while another one is active."""

    kind = ErrorKind.BUSY

    def __init__(self, message: str = "A build is already running") -> None:
        super().__init__(message)


__all__ = [
    "ConfigurationInvalidError",
    "ConfigurationMissingError",
    "ErrorKind",
    "SupervisorBusyError",
    "TiebuildError",
]
