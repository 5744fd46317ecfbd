"""Build status reporting to presentation collaborators."""
from __future__ import annotations

from enum import Enum
from typing import Callable, Protocol, runtime_checkable
import threading

from core.console import ConsoleLike

from .output import OutputLine


class BuildStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@runtime_checkable
class BuildReporter(Protocol):
    """Interface implemented by whatever shows build progress to the user."""

    def report_status(self, status: BuildStatus) -> None:
        ...

    def stream_output_line(self, line: OutputLine) -> None:
        ...

    def notify_configuration_missing(self, message: str) -> None:
        ...


class Cancellable(Protocol):
    def cancel(self) -> None:
        ...


Scheduler = Callable[[float, Callable[[], None]], Cancellable]


def timer_scheduler(delay: float, callback: Callable[[], None]) -> Cancellable:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class StatusTracker:
    """Drives ``idle -> running -> succeeded|failed -> idle`` for one reporter.

    The terminal status is shown for ``reset_seconds`` before reverting to
    idle. Starting a new run cancels a pending revert.
    """

    def __init__(
        self,
        reporter: BuildReporter | None,
        *,
        reset_seconds: float = 3.0,
        scheduler: Scheduler = timer_scheduler,
    ) -> None:
        self.reporter = reporter
        self.reset_seconds = reset_seconds
        self.scheduler = scheduler
        self._lock = threading.Lock()
        self._status = BuildStatus.IDLE
        self._pending: Cancellable | None = None
        self._generation = 0

    @property
    def status(self) -> BuildStatus:
        with self._lock:
            return self._status

    def begin(self) -> None:
        with self._lock:
            self._cancel_pending()
            self._generation += 1
        self._set(BuildStatus.RUNNING)

    def finish(self, succeeded: bool) -> None:
        self._set(BuildStatus.SUCCEEDED if succeeded else BuildStatus.FAILED)
        with self._lock:
            self._cancel_pending()
            self._generation += 1
            generation = self._generation

        def revert() -> None:
            with self._lock:
                if self._generation != generation:
                    return
                self._pending = None
            self._set(BuildStatus.IDLE)

        handle = self.scheduler(self.reset_seconds, revert)
        with self._lock:
            if self._generation == generation and self._status is not BuildStatus.IDLE:
                self._pending = handle

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _set(self, status: BuildStatus) -> None:
        with self._lock:
            self._status = status
        if self.reporter is not None:
            self.reporter.report_status(status)


class ConsoleReporter:
    """Reporter for terminal use: rendered output on stdout, status through the console."""

    def __init__(self, console: ConsoleLike, *, show_status: bool = True) -> None:
        self.console = console
        self.show_status = show_status

    def report_status(self, status: BuildStatus) -> None:
        if self.show_status:
            self.console.debug(f"Status: {status.value}")

    def stream_output_line(self, line: OutputLine) -> None:
        print(line.rendered, flush=True)

    def notify_configuration_missing(self, message: str) -> None:
        self.console.error(message)


__all__ = [
    "BuildReporter",
    "BuildStatus",
    "ConsoleReporter",
    "Scheduler",
    "StatusTracker",
    "timer_scheduler",
]
