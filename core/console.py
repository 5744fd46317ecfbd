"""Leveled console output shared by the command line and the build engine."""
from __future__ import annotations

from typing import Protocol, runtime_checkable
import sys


@runtime_checkable
class ConsoleLike(Protocol):
    """Minimal console interface accepted by engine components."""

    def error(self, message: str) -> None:
        ...

    def warning(self, message: str) -> None:
        ...

    def info(self, message: str) -> None:
        ...

    def debug(self, message: str) -> None:
        ...


class Console:
    """Simple console output handler with configurable log level.

    Levels: none < error < warning < info < debug
    Default: 'none' (no output)
    """

    LEVELS = {
        "none": 0,
        "error": 1,
        "warning": 2,
        "info": 3,
        "debug": 4,
    }

    def __init__(self, level: str = "none"):
        self.level_name = level
        self.level = self.LEVELS.get(level, 0)

    def enabled(self, level: str) -> bool:
        return self.level >= self.LEVELS.get(level, len(self.LEVELS))

    def error(self, message: str) -> None:
        if self.enabled("error"):
            print(f"[ERROR] {message}", file=sys.stderr)

    def warning(self, message: str) -> None:
        if self.enabled("warning"):
            print(f"[WARNING] {message}", file=sys.stderr)

    def info(self, message: str) -> None:
        if self.enabled("info"):
            print(f"[INFO] {message}")

    def debug(self, message: str) -> None:
        if self.enabled("debug"):
            print(f"[DEBUG] {message}")


class RecordingConsole(Console):
    """Console that keeps ``(level, message)`` pairs instead of printing them."""

    def __init__(self, level: str = "debug"):
        super().__init__(level)
        self.records: list[tuple[str, str]] = []

    def _record(self, level: str, message: str) -> None:
        if self.enabled(level):
            self.records.append((level, message))

    def error(self, message: str) -> None:
        self._record("error", message)

    def warning(self, message: str) -> None:
        self._record("warning", message)

    def info(self, message: str) -> None:
        self._record("info", message)

    def debug(self, message: str) -> None:
        self._record("debug", message)

    def messages(self, level: str | None = None) -> list[str]:
        return [message for name, message in self.records if level is None or name == level]


__all__ = ["Console", "ConsoleLike", "RecordingConsole"]
