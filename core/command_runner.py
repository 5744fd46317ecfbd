"""Utilities for launching toolchain processes with optional dry-run support."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import IO, Dict, Iterable, List, Mapping, Sequence
import io
import os
import signal
import subprocess


@dataclass(slots=True)
class CommandLine:
    """An executable plus its raw argument tokens.

    Tokens are passed to the process unchanged; quoting only applies to the
    rendered text shown to the user.
    """

    executable: str
    args: Sequence[str]

    def tokens(self) -> List[str]:
        return [self.executable, *self.args]

    def render(self) -> str:
        return " ".join(quote_token(token) for token in self.tokens())


def quote_token(value: str) -> str:
    """Wrap ``value`` in double quotes when it contains a space."""

    if " " in value and not (value.startswith('"') and value.endswith('"')):
        return f'"{value}"'
    return value


class ProcessHandle:
    """Minimal view of a spawned process used by the supervisor."""

    stdout: IO[bytes] | None
    stderr: IO[bytes] | None
    pid: int | None

    def wait(self, timeout: float | None = None) -> int:
        raise NotImplementedError

    def poll(self) -> int | None:
        raise NotImplementedError

    def terminate(self) -> None:
        raise NotImplementedError


class CommandRunner:
    """Abstract process launcher interface."""

    def spawn(
        self,
        command: CommandLine,
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessHandle:
        raise NotImplementedError

    def format_command(self, command: CommandLine) -> str:
        return command.render()


class _PopenHandle(ProcessHandle):
    def __init__(self, process: subprocess.Popen[bytes]) -> None:
        self._process = process
        self.stdout = process.stdout
        self.stderr = process.stderr
        self.pid = process.pid

    def wait(self, timeout: float | None = None) -> int:
        return self._process.wait(timeout=timeout)

    def poll(self) -> int | None:
        return self._process.poll()

    def terminate(self) -> None:
        if self._process.poll() is not None:
            return
        if os.name == "posix":
            try:
                os.killpg(self._process.pid, signal.SIGKILL)
            except ProcessLookupError:
                return
        else:
            self._process.kill()


class SubprocessCommandRunner(CommandRunner):
    """Command runner that launches commands via :mod:`subprocess`."""

    @staticmethod
    def _merge_environment(env: Mapping[str, str] | None) -> Dict[str, str] | None:
        if env is None:
            return None
        merged = os.environ.copy()
        merged.update(env)
        return merged

    def spawn(
        self,
        command: CommandLine,
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessHandle:
        kwargs: Dict[str, object] = {}
        if os.name == "posix":
            kwargs["start_new_session"] = True
        process = subprocess.Popen(
            command.tokens(),
            cwd=str(cwd) if cwd else None,
            env=self._merge_environment(env),
            shell=False,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            **kwargs,
        )
        return _PopenHandle(process)


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    env: Dict[str, str]


class _RecordedProcess(ProcessHandle):
    def __init__(self) -> None:
        self.stdout = io.BytesIO()
        self.stderr = io.BytesIO()
        self.pid = None

    def wait(self, timeout: float | None = None) -> int:
        return 0

    def poll(self) -> int | None:
        return 0

    def terminate(self) -> None:
        return None


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them."""

    def __init__(self) -> None:
        self.commands: List[RecordedCommand] = []

    def spawn(
        self,
        command: CommandLine,
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessHandle:
        self.commands.append(
            RecordedCommand(
                command=command.tokens(),
                cwd=str(cwd) if cwd else None,
                env=dict(env) if env else {},
            )
        )
        return _RecordedProcess()

    def iter_commands(self) -> Iterable[RecordedCommand]:
        return iter(self.commands)

    def iter_formatted(self, *, workspace: Path | None = None) -> Iterable[str]:
        default_cwd = str(workspace) if workspace else None
        for record in self.commands:
            cwd = record.cwd or default_cwd
            parts: List[str] = ["[dry-run]"]
            if cwd:
                parts.append(f"(cwd={cwd})")
            parts.append(" ".join(quote_token(token) for token in record.command))
            yield " ".join(parts)


__all__ = [
    "CommandLine",
    "CommandRunner",
    "ProcessHandle",
    "RecordedCommand",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "quote_token",
]
