"""Typed request and event messages exchanged with the presentation layer."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Union

from .output import OutputLine
from .settings import CompileRequest
from .status import BuildStatus


@dataclass(frozen=True, slots=True)
class CompileRequested:
    request: CompileRequest = field(default_factory=CompileRequest)


@dataclass(frozen=True, slots=True)
class BuildRequested:
    request: CompileRequest = field(default_factory=CompileRequest)


@dataclass(frozen=True, slots=True)
class CleanRequested:
    pass


@dataclass(frozen=True, slots=True)
class PrecompileRequested:
    pass


@dataclass(frozen=True, slots=True)
class CreateProjectRequested:
    name: str


@dataclass(frozen=True, slots=True)
class CreatePluginRequested:
    name: str


@dataclass(frozen=True, slots=True)
class VersionRequested:
    pass


@dataclass(frozen=True, slots=True)
class HelpRequested:
    pass


@dataclass(frozen=True, slots=True)
class StopRequested:
    pass


Request = Union[
    CompileRequested,
    BuildRequested,
    CleanRequested,
    PrecompileRequested,
    CreateProjectRequested,
    CreatePluginRequested,
    VersionRequested,
    HelpRequested,
    StopRequested,
]


@dataclass(frozen=True, slots=True)
class StatusChanged:
    status: BuildStatus


@dataclass(frozen=True, slots=True)
class OutputEmitted:
    line: OutputLine


@dataclass(frozen=True, slots=True)
class ConfigurationMissing:
    message: str


Event = Union[StatusChanged, OutputEmitted, ConfigurationMissing]


class EventReporter:
    """Build reporter that forwards every notification as an :data:`Event`."""

    def __init__(self, sink: Callable[[Event], None]) -> None:
        self.sink = sink

    def report_status(self, status: BuildStatus) -> None:
        self.sink(StatusChanged(status))

    def stream_output_line(self, line: OutputLine) -> None:
        self.sink(OutputEmitted(line))

    def notify_configuration_missing(self, message: str) -> None:
        self.sink(ConfigurationMissing(message))


__all__ = [
    "BuildRequested",
    "CleanRequested",
    "CompileRequested",
    "ConfigurationMissing",
    "CreatePluginRequested",
    "CreateProjectRequested",
    "Event",
    "EventReporter",
    "HelpRequested",
    "OutputEmitted",
    "PrecompileRequested",
    "Request",
    "StatusChanged",
    "StopRequested",
    "VersionRequested",
]
