"""Build facade: one entry point per toolchain lifecycle action."""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Sequence

from core.console import ConsoleLike

from .arguments import build_tool_arguments, compiler_arguments, compiler_executable, merge_compile_request
from .config_loader import GlobalConfig, read_settings, resolve_build_tool, resolve_toolchain_dir
from .errors import ConfigurationInvalidError, ConfigurationMissingError, ErrorKind, SupervisorBusyError, TiebuildError
from .messages import (
    BuildRequested,
    CleanRequested,
    CompileRequested,
    CreatePluginRequested,
    CreateProjectRequested,
    HelpRequested,
    PrecompileRequested,
    Request,
    StopRequested,
    VersionRequested,
)
from .output import OutputLine
from .settings import CompileRequest, EffectiveConfig, ProjectBuildSettings
from .sources import find_project_sources, find_stdlib_sources
from .status import BuildReporter, Scheduler, StatusTracker, timer_scheduler
from .supervisor import ProcessSupervisor, ResolvedInvocation, RunResult


class BuildCommand(str, Enum):
    COMPILE = "compile"
    BUILD = "build"
    CLEAN = "clean"
    PRECOMPILE = "precompile"
    CREATE = "create"
    PLUGIN = "plugin"
    VERSION = "version"
    HELP = "help"
    COMPILE_DIRECT = "compile-direct"


@dataclass(slots=True)
class BuildOutcome:
    command: BuildCommand
    succeeded: bool
    error_kind: ErrorKind | None = None
    message: str | None = None
    result: RunResult | None = None
    invocation: ResolvedInvocation | None = None
    config: EffectiveConfig | None = None


@dataclass(slots=True)
class _Prepared:
    invocation: ResolvedInvocation
    config: EffectiveConfig | None = None


class BuildFacade:
    """Resolves configuration, runs the toolchain and reports status.

    Every public operation returns a :class:`BuildOutcome`; errors are turned
    into failed outcomes and never propagate to the caller.
    """

    def __init__(
        self,
        project_dir: Path,
        *,
        supervisor: ProcessSupervisor | None = None,
        reporter: BuildReporter | None = None,
        global_config: GlobalConfig | None = None,
        console: ConsoleLike | None = None,
        scheduler: Scheduler = timer_scheduler,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.project_dir = project_dir
        self.global_config = global_config or GlobalConfig()
        self.console = console
        self.reporter = reporter
        self.env = env
        self.supervisor = supervisor or ProcessSupervisor(
            console=console,
            legacy_encoding=self.global_config.legacy_encoding,
        )
        self.status = StatusTracker(
            reporter,
            reset_seconds=self.global_config.status_reset_seconds,
            scheduler=scheduler,
        )
        self.last_outcome: BuildOutcome | None = None

    def compile(self, request: CompileRequest | None = None) -> BuildOutcome:
        request = request or CompileRequest()
        return self._execute(
            BuildCommand.COMPILE,
            lambda: self._prepare_delegated([BuildCommand.COMPILE.value], request, with_options=True),
        )

    def full_build(self, request: CompileRequest | None = None) -> BuildOutcome:
        request = request or CompileRequest()
        return self._execute(
            BuildCommand.BUILD,
            lambda: self._prepare_delegated([BuildCommand.BUILD.value], request, with_options=True),
        )

    def clean(self) -> BuildOutcome:
        return self._simple(BuildCommand.CLEAN)

    def precompile(self) -> BuildOutcome:
        return self._simple(BuildCommand.PRECOMPILE)

    def version(self) -> BuildOutcome:
        return self._simple(BuildCommand.VERSION)

    def help(self) -> BuildOutcome:
        return self._simple(BuildCommand.HELP)

    def create_project(self, name: str) -> BuildOutcome:
        return self._simple(BuildCommand.CREATE, name)

    def create_plugin(self, name: str) -> BuildOutcome:
        return self._simple(BuildCommand.PLUGIN, name)

    def compile_direct(self, request: CompileRequest | None = None) -> BuildOutcome:
        request = request or CompileRequest()
        return self._execute(BuildCommand.COMPILE_DIRECT, lambda: self._prepare_direct(request))

    def stop(self) -> bool:
        stopped = self.supervisor.stop()
        if self.console:
            self.console.info("Stop requested" if stopped else "No build is running")
        return stopped

    def handle(self, message: Request) -> BuildOutcome | None:
        """Dispatch a typed request message; :class:`StopRequested` returns ``None``."""

        if isinstance(message, StopRequested):
            self.stop()
            return None
        handler = self._handlers().get(type(message))
        if handler is None:
            raise TypeError(f"Unsupported message type: {type(message).__name__}")
        return handler(message)

    def _handlers(self) -> Dict[type, Callable[[Request], BuildOutcome]]:
        return {
            CompileRequested: lambda message: self.compile(message.request),
            BuildRequested: lambda message: self.full_build(message.request),
            CleanRequested: lambda message: self.clean(),
            PrecompileRequested: lambda message: self.precompile(),
            CreateProjectRequested: lambda message: self.create_project(message.name),
            CreatePluginRequested: lambda message: self.create_plugin(message.name),
            VersionRequested: lambda message: self.version(),
            HelpRequested: lambda message: self.help(),
        }

    def _simple(self, command: BuildCommand, *names: str) -> BuildOutcome:
        return self._execute(
            command,
            lambda: self._prepare_delegated([command.value, *names], None, with_options=False),
        )

    def _working_dir(self, request: CompileRequest | None) -> Path:
        if request is not None and request.working_dir:
            path = Path(request.working_dir).expanduser()
            return path if path.is_absolute() else self.project_dir / path
        return self.project_dir

    def _read_settings(self, project_dir: Path) -> ProjectBuildSettings | None:
        return read_settings(project_dir, console=self.console)

    def _toolchain_dir(
        self,
        project_dir: Path,
        settings: ProjectBuildSettings | None,
        request: CompileRequest,
    ) -> str:
        toolchain_dir = request.toolchain_dir or resolve_toolchain_dir(
            project_dir,
            settings=settings,
            global_config=self.global_config,
            env=self.env,
        )
        if toolchain_dir is None:
            raise ConfigurationMissingError(
                "Compiler directory not found. Add a .Tiecode directory to the project, "
                "set compilerPath in .tiecode.json or set TIECC_DIR."
            )
        return toolchain_dir

    def _prepare_delegated(
        self,
        args: Sequence[str],
        request: CompileRequest | None,
        *,
        with_options: bool,
    ) -> _Prepared:
        project_dir = self._working_dir(request)
        settings = self._read_settings(project_dir)
        tool = resolve_build_tool(project_dir, settings=settings)
        if tool is None:
            raise ConfigurationMissingError(
                "Build tool not found. Set tmakePath in .tiecode.json or place tmake in the project root."
            )

        command_args: List[str] = list(args)
        config: EffectiveConfig | None = None
        if with_options and request is not None:
            toolchain_dir = self._toolchain_dir(project_dir, settings, request)
            config = merge_compile_request(settings, replace(request, toolchain_dir=toolchain_dir))
            command_args.extend(build_tool_arguments(config, project_dir))
        return _Prepared(ResolvedInvocation.create(tool, command_args, project_dir), config)

    def _prepare_direct(self, request: CompileRequest) -> _Prepared:
        project_dir = self._working_dir(request)
        settings = self._read_settings(project_dir)
        toolchain_dir = self._toolchain_dir(project_dir, settings, request)
        compiler_dir = Path(toolchain_dir)
        if not compiler_dir.is_absolute():
            compiler_dir = project_dir / compiler_dir

        sources = find_project_sources(project_dir)
        if not sources:
            raise ConfigurationInvalidError(f"No .t source files found in {project_dir}")
        stdlib = find_stdlib_sources(compiler_dir)
        if not stdlib and self.console:
            self.console.warning(f"No standard library sources found under {compiler_dir / 'stdlib'}")

        config = merge_compile_request(settings, replace(request, toolchain_dir=toolchain_dir))
        args = compiler_arguments(config, project_dir, stdlib_sources=stdlib, project_sources=sources)
        return _Prepared(ResolvedInvocation.create(compiler_executable(compiler_dir), args, project_dir), config)

    def _execute(self, command: BuildCommand, prepare: Callable[[], _Prepared]) -> BuildOutcome:
        if self.supervisor.is_active:
            return self._record(BuildOutcome(command, False, ErrorKind.BUSY, "A build is already running"))

        try:
            prepared = prepare()
        except ConfigurationMissingError as exc:
            if self.console:
                self.console.error(exc.message)
            if self.reporter is not None:
                self.reporter.notify_configuration_missing(exc.message)
            self.status.finish(False)
            return self._record(BuildOutcome(command, False, exc.kind, exc.message))
        except TiebuildError as exc:
            if self.console:
                self.console.error(exc.message)
            self.status.finish(False)
            return self._record(BuildOutcome(command, False, exc.kind, exc.message))
        except OSError as exc:
            if self.console:
                self.console.error(str(exc))
            self.status.finish(False)
            return self._record(BuildOutcome(command, False, ErrorKind.CONFIGURATION_INVALID, str(exc)))

        self.status.begin()
        try:
            result = self.supervisor.run(prepared.invocation, on_line=self._forward_line)
        except SupervisorBusyError as exc:
            self.status.finish(False)
            return self._record(BuildOutcome(command, False, exc.kind, exc.message, invocation=prepared.invocation))
        except (OSError, ValueError, RuntimeError) as exc:
            message = str(exc) or type(exc).__name__
            if self.console:
                self.console.error(f"Failed to run {prepared.invocation.executable}: {message}")
            self.status.finish(False)
            return self._record(
                BuildOutcome(command, False, ErrorKind.SPAWN_FAILED, message, invocation=prepared.invocation)
            )

        self.status.finish(result.succeeded)
        return self._record(
            BuildOutcome(
                command,
                result.succeeded,
                result.error_kind,
                result.message,
                result=result,
                invocation=prepared.invocation,
                config=prepared.config,
            )
        )

    def _forward_line(self, line: OutputLine) -> None:
        if self.reporter is not None:
            self.reporter.stream_output_line(line)

    def _record(self, outcome: BuildOutcome) -> BuildOutcome:
        self.last_outcome = outcome
        return outcome


__all__ = ["BuildCommand", "BuildFacade", "BuildOutcome"]
