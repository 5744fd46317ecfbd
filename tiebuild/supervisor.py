"""Supervision of a single toolchain child process."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Callable, Dict, List, Mapping, Sequence, Tuple
import os
import shutil
import threading

from core.command_runner import CommandLine, CommandRunner, ProcessHandle, SubprocessCommandRunner
from core.console import ConsoleLike

from .environment import toolchain_environment
from .errors import ErrorKind, SupervisorBusyError
from .output import OutputClassifier, OutputLine, decode_text


CHUNK_SIZE = 4096

# Windows NTSTATUS values reported by crashed native processes.
CRASH_STATUSES: Dict[int, str] = {
    0xC0000005: "access violation",
    0xC0000135: "a required DLL could not be found",
    0xC00000FD: "stack overflow",
}


class RunState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ERRORED = "errored"


LineCallback = Callable[[OutputLine], None]
StateCallback = Callable[[RunState], None]


@dataclass(frozen=True, slots=True)
class ResolvedInvocation:
    executable: Path
    args: Tuple[str, ...]
    cwd: Path
    env: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        executable: Path,
        args: Sequence[str],
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> "ResolvedInvocation":
        return cls(executable=executable, args=tuple(args), cwd=cwd, env=dict(env or {}))

    def command_line(self) -> CommandLine:
        return CommandLine(str(self.executable), list(self.args))


@dataclass(slots=True)
class RunResult:
    succeeded: bool
    exit_code: int | None
    stdout: str
    stderr: str
    state: RunState
    error_kind: ErrorKind | None = None
    message: str | None = None
    lines: List[OutputLine] = field(default_factory=list)


def crash_hint(exit_code: int) -> str | None:
    """Describe a Windows crash status, accepting signed or unsigned values."""

    description = CRASH_STATUSES.get(exit_code & 0xFFFFFFFF)
    if description is None:
        return None
    return f"The toolchain crashed (0x{exit_code & 0xFFFFFFFF:08X}: {description}); check that its runtime libraries are installed"


class RunHandle:
    """Completion handle for one run started by :meth:`ProcessSupervisor.start`."""

    def __init__(self) -> None:
        self._done = threading.Event()
        self._result: RunResult | None = None

    def _complete(self, result: RunResult) -> None:
        self._result = result
        self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> RunResult | None:
        self._done.wait(timeout)
        return self._result


class ProcessSupervisor:
    """Runs at most one toolchain process at a time and classifies its output.

    ``start`` returns immediately; output lines are delivered to the callback
    from reader threads as they arrive, and the :class:`RunResult` becomes
    available once both streams reach end of file and the exit status is
    known.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        console: ConsoleLike | None = None,
        legacy_encoding: str = "gbk",
        verify_executable: bool = True,
        on_state: StateCallback | None = None,
    ) -> None:
        self.runner = runner or SubprocessCommandRunner()
        self.console = console
        self.legacy_encoding = legacy_encoding
        self.verify_executable = verify_executable
        self.on_state = on_state
        self._lock = threading.Lock()
        self._emit_lock = threading.Lock()
        self._state = RunState.IDLE
        self._process: ProcessHandle | None = None
        self._cancelled = False
        self.last_result: RunResult | None = None

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def is_active(self) -> bool:
        return self.state is not RunState.IDLE

    def run(self, invocation: ResolvedInvocation, on_line: LineCallback | None = None) -> RunResult:
        result = self.start(invocation, on_line).wait()
        if result is None:
            raise RuntimeError("Run finished without a result")
        return result

    def start(self, invocation: ResolvedInvocation, on_line: LineCallback | None = None) -> RunHandle:
        with self._lock:
            if self._state is not RunState.IDLE:
                raise SupervisorBusyError()
            self._state = RunState.STARTING
            self._cancelled = False
        self._notify(RunState.STARTING)

        handle = RunHandle()
        try:
            process = self._spawn(invocation)
        except (OSError, ValueError) as exc:
            self._finish(handle, self._spawn_failed(str(exc) or type(exc).__name__))
            return handle

        with self._lock:
            self._process = process
            self._state = RunState.RUNNING
            cancelled = self._cancelled
        self._notify(RunState.RUNNING)
        if cancelled:
            process.terminate()

        monitor = threading.Thread(
            target=self._monitor,
            args=(process, handle, on_line),
            name="tiebuild-supervisor",
            daemon=True,
        )
        monitor.start()
        return handle

    def _spawn(self, invocation: ResolvedInvocation) -> ProcessHandle:
        command = invocation.command_line()
        if self.console:
            self.console.info(f"Running: {self.runner.format_command(command)}")
            self.console.debug(f"Working directory: {invocation.cwd}")

        if self.verify_executable:
            problem = _executable_problem(invocation.executable)
            if problem is not None:
                raise OSError(problem)

        base_env = dict(os.environ)
        base_env.update(invocation.env)
        env = toolchain_environment(invocation.executable, base=base_env)
        return self.runner.spawn(command, cwd=invocation.cwd, env=env)

    def stop(self) -> bool:
        """Terminate the active child; returns ``False`` when nothing is running."""

        with self._lock:
            if self._state is RunState.IDLE:
                return False
            self._cancelled = True
            process = self._process
        if process is not None:
            process.terminate()
        return True

    def _spawn_failed(self, message: str) -> RunResult:
        if self.console:
            self.console.error(f"Failed to start toolchain: {message}")
        return RunResult(
            succeeded=False,
            exit_code=None,
            stdout="",
            stderr="",
            state=RunState.ERRORED,
            error_kind=ErrorKind.SPAWN_FAILED,
            message=message,
        )

    def _monitor(self, process: ProcessHandle, handle: RunHandle, on_line: LineCallback | None) -> None:
        lines: List[OutputLine] = []
        captured: Dict[str, bytearray] = {"stdout": bytearray(), "stderr": bytearray()}
        readers = [
            threading.Thread(
                target=self._pump,
                args=(
                    stream,
                    OutputClassifier(name, legacy_encoding=self.legacy_encoding, console=self.console),
                    captured[name],
                    lines,
                    on_line,
                ),
                name=f"tiebuild-{name}",
                daemon=True,
            )
            for name, stream in (("stdout", process.stdout), ("stderr", process.stderr))
            if stream is not None
        ]
        for reader in readers:
            reader.start()
        for reader in readers:
            reader.join()
        exit_code = process.wait()

        with self._lock:
            cancelled = self._cancelled
        stdout = decode_text(bytes(captured["stdout"]), legacy_encoding=self.legacy_encoding)
        stderr = decode_text(bytes(captured["stderr"]), legacy_encoding=self.legacy_encoding)
        self._finish(handle, self._result_for(exit_code, lines, stdout, stderr, cancelled=cancelled))

    def _pump(
        self,
        stream: IO[bytes],
        classifier: OutputClassifier,
        captured: bytearray,
        lines: List[OutputLine],
        on_line: LineCallback | None,
    ) -> None:
        read = getattr(stream, "read1", None) or stream.read
        try:
            while True:
                chunk = read(CHUNK_SIZE)
                if not chunk:
                    break
                captured.extend(chunk)
                self._emit(classifier.feed(chunk), lines, on_line)
        finally:
            self._emit(classifier.flush(), lines, on_line)
            stream.close()

    def _emit(self, batch: List[OutputLine], lines: List[OutputLine], on_line: LineCallback | None) -> None:
        if not batch:
            return
        with self._emit_lock:
            for line in batch:
                lines.append(line)
                if on_line is None:
                    continue
                try:
                    on_line(line)
                except Exception as exc:
                    if self.console:
                        self.console.error(f"Output callback failed: {exc}")

    def _result_for(
        self,
        exit_code: int,
        lines: List[OutputLine],
        stdout: str,
        stderr: str,
        *,
        cancelled: bool,
    ) -> RunResult:
        result = RunResult(
            succeeded=False,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            state=RunState.FAILED,
            lines=lines,
        )
        if cancelled:
            result.error_kind = ErrorKind.CANCELLED
            result.message = "Build was stopped"
        elif exit_code == 0:
            result.succeeded = True
            result.state = RunState.SUCCEEDED
        else:
            hint = crash_hint(exit_code)
            if hint is not None:
                result.error_kind = ErrorKind.NATIVE_CRASH
                result.message = hint
                if self.console:
                    self.console.error(hint)
            else:
                result.error_kind = ErrorKind.TOOLCHAIN_FAILURE
                result.message = f"Toolchain exited with code {exit_code}"
        if self.console:
            self.console.info(f"Finished with state {result.state.value} (exit code {exit_code})")
        return result

    def _finish(self, handle: RunHandle, result: RunResult) -> None:
        with self._lock:
            self._state = RunState.IDLE
            self._process = None
            self.last_result = result
        self._notify(result.state)
        self._notify(RunState.IDLE)
        handle._complete(result)

    def _notify(self, state: RunState) -> None:
        if self.on_state is not None:
            self.on_state(state)


def _executable_problem(executable: Path) -> str | None:
    """Describe why ``executable`` cannot be launched, or return ``None``."""

    text = str(executable).strip('"')
    path = Path(text)
    if not path.is_absolute() and len(path.parts) <= 1:
        if shutil.which(text) is not None or path.is_file():
            return None
        return f"Executable not found: {executable}"
    if not path.is_file():
        return f"Executable not found: {executable}"
    if os.name == "posix" and not os.access(path, os.X_OK):
        return f"Permission denied: {executable} is not executable"
    return None


__all__ = [
    "CRASH_STATUSES",
    "ProcessSupervisor",
    "ResolvedInvocation",
    "RunHandle",
    "RunResult",
    "RunState",
    "crash_hint",
]
