"""Command line interface for the tiebuild tool."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable, List
import sys

from core.command_runner import RecordingCommandRunner, SubprocessCommandRunner
from core.console import Console

from .build import BuildFacade, BuildOutcome
from .config_loader import (
    GlobalConfig,
    dump_settings,
    global_config_directories,
    load_global_config,
    read_settings,
    resolve_build_tool,
    resolve_toolchain_dir,
    write_settings,
)
from .errors import ConfigurationInvalidError, ErrorKind
from .settings import LOG_LEVELS, CompileRequest, Platform, ProjectBuildSettings, ToolchainLocation
from .status import ConsoleReporter
from .supervisor import ProcessSupervisor
from .validation import collect_errors, validate_settings, validate_toolchain_location


CONFIGURATION_KINDS = {ErrorKind.CONFIGURATION_MISSING, ErrorKind.CONFIGURATION_INVALID}


def _make_runner(dry_run: bool) -> SubprocessCommandRunner | RecordingCommandRunner:
    return RecordingCommandRunner() if dry_run else SubprocessCommandRunner()


def _flatten_arg_groups(groups: Iterable[str]) -> List[str]:
    flattened: List[str] = []
    for value in groups:
        if value and value.strip():
            flattened.append(value.strip())
    return flattened


def _emit_dry_run_output(runner: RecordingCommandRunner, *, workspace: Path) -> None:
    for line in runner.iter_formatted(workspace=workspace):
        print(line)


def _compile_request(args: Namespace) -> CompileRequest:
    return CompileRequest(
        platform=Platform.parse(args.platform),
        output_path=args.output,
        package_name=args.package,
        release=args.release,
        hard_output_mode=getattr(args, "hard_mode", False) or None,
        optimize=args.optimize,
        disabled_lints=_flatten_arg_groups(getattr(args, "disable_lint", [])) or None,
        log_level=args.log_level,
        line_map_path=getattr(args, "line_map", None),
        toolchain_dir=args.tiecc_dir,
        config_file_path=args.config,
        watch=args.watch or None,
        extra_args=_flatten_arg_groups(args.extra_args) or None,
    )


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="tiebuild", description="Build orchestrator front-end for the tiecc/tmake toolchain")
    parser.add_argument(
        "-C",
        "--config-dir",
        dest="config_dirs",
        action="append",
        default=[],
        metavar="PATH",
        help="Additional configuration directory (repeat or separate with PATH separator)",
    )

    common = ArgumentParser(add_help=False)
    common.add_argument("--project-dir", help="Project directory (defaults to the current directory)")
    common.add_argument("-n", "--dry-run", action="store_true", help="Print commands without executing them")
    common.add_argument("--verbose", action="store_true", help="Enable verbose output")

    options = ArgumentParser(add_help=False)
    options.add_argument(
        "-P",
        "--platform",
        choices=[platform.value for platform in Platform],
        default=Platform.DESKTOP_A.value,
        help="Target platform",
    )
    options.add_argument("-o", "--output", help="Output directory")
    options.add_argument("--package", help="Package name")
    mode = options.add_mutually_exclusive_group()
    mode.add_argument("--release", dest="release", action="store_const", const=True, default=None, help="Release build")
    mode.add_argument("--debug", dest="release", action="store_const", const=False, help="Debug build")
    options.add_argument("--optimize", type=int, choices=range(0, 4), help="Optimization level (0-3)")
    options.add_argument("--log-level", choices=LOG_LEVELS, help="Compiler log level")
    options.add_argument("--tiecc-dir", help="Compiler directory (overrides project and environment)")
    options.add_argument("--config", help="Configuration file passed to the build tool")
    options.add_argument("--watch", action="store_true", help="Rebuild when sources change")
    options.add_argument(
        "-X",
        dest="extra_args",
        action="append",
        default=[],
        metavar="ARG",
        help="Extra argument appended to the command line (repeatable)",
    )
    options.add_argument(
        "--save-defaults",
        action="store_true",
        help="Write the resolved output directory, optimization, log level and build mode back to the project",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("compile", parents=[common, options], help="Compile the project with tmake")
    subparsers.add_parser("build", parents=[common, options], help="Clean and compile the project with tmake")
    subparsers.add_parser("clean", parents=[common], help="Remove build artifacts")
    subparsers.add_parser("precompile", parents=[common], help="Run the precompile step")
    create_parser = subparsers.add_parser("create", parents=[common], help="Create a project with tmake")
    create_parser.add_argument("name", help="Project name")
    plugin_parser = subparsers.add_parser("plugin", parents=[common], help="Create a plugin with tmake")
    plugin_parser.add_argument("name", help="Plugin name")
    subparsers.add_parser("version", parents=[common], help="Show the build tool version")
    subparsers.add_parser("help", parents=[common], help="Show the build tool help")

    direct_parser = subparsers.add_parser(
        "compile-direct",
        parents=[common, options],
        help="Invoke the tiecc compiler directly without tmake",
    )
    direct_parser.add_argument("--hard-mode", action="store_true", help="Enable hard output mode")
    direct_parser.add_argument(
        "--disable-lint",
        action="append",
        default=[],
        metavar="ID",
        help="Disable a lint check (repeatable)",
    )
    direct_parser.add_argument("--line-map", help="Write a line map to PATH")

    config_parser = subparsers.add_parser("config", help="Inspect or edit project configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_command", required=True)
    config_subparsers.add_parser("show", parents=[common], help="Show the merged project configuration")
    config_subparsers.add_parser("validate", parents=[common], help="Validate the project configuration")
    toolchain_parser = config_subparsers.add_parser(
        "set-toolchain",
        parents=[common],
        help="Store toolchain paths in the project side-file",
    )
    toolchain_parser.add_argument("--compiler-path", help="Directory containing tiecc")
    toolchain_parser.add_argument("--tmake-path", help="Path to the tmake executable")
    toolchain_parser.add_argument("--linker-path", help="Path to the linker executable")

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(argv or sys.argv[1:])
    try:
        global_config = load_global_config(global_config_directories(args.config_dirs))
    except ConfigurationInvalidError as exc:
        print(f"Error: {exc}")
        return 2

    console = Console("debug" if args.verbose else global_config.console_level)
    project_dir = Path(args.project_dir).expanduser().resolve() if args.project_dir else Path.cwd()

    if args.command == "config":
        return _handle_config(args, project_dir, global_config, console)
    return _handle_toolchain(args, project_dir, global_config, console)


def _handle_toolchain(args: Namespace, project_dir: Path, global_config: GlobalConfig, console: Console) -> int:
    runner = _make_runner(args.dry_run)
    supervisor = ProcessSupervisor(
        runner,
        console=console,
        legacy_encoding=global_config.legacy_encoding,
        verify_executable=not args.dry_run,
    )
    facade = BuildFacade(
        project_dir,
        supervisor=supervisor,
        reporter=ConsoleReporter(console),
        global_config=global_config,
        console=console,
    )

    try:
        if args.command in {"compile", "build", "compile-direct"}:
            try:
                request = _compile_request(args)
            except ConfigurationInvalidError as exc:
                print(f"Error: {exc}")
                return 2
            if args.command == "compile":
                outcome = facade.compile(request)
            elif args.command == "build":
                outcome = facade.full_build(request)
            else:
                outcome = facade.compile_direct(request)
        elif args.command == "clean":
            outcome = facade.clean()
        elif args.command == "precompile":
            outcome = facade.precompile()
        elif args.command == "create":
            outcome = facade.create_project(args.name)
        elif args.command == "plugin":
            outcome = facade.create_plugin(args.name)
        elif args.command == "version":
            outcome = facade.version()
        elif args.command == "help":
            outcome = facade.help()
        else:
            raise ValueError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:
        facade.stop()
        print("Interrupted")
        return 130

    if isinstance(runner, RecordingCommandRunner):
        _emit_dry_run_output(runner, workspace=project_dir)

    if getattr(args, "save_defaults", False) and outcome.succeeded and outcome.config is not None:
        if args.dry_run:
            print(f"[dry-run] would save build defaults to {project_dir}")
        else:
            _save_defaults(project_dir, outcome, console)

    return _exit_code(outcome)


def _save_defaults(project_dir: Path, outcome: BuildOutcome, console: Console) -> None:
    if outcome.config is None:
        return
    settings = read_settings(project_dir, console=console) or ProjectBuildSettings()
    settings.adopt_defaults(outcome.config)
    result = write_settings(project_dir, settings, console=console)
    if result.ok:
        console.info("Saved build defaults to the project configuration")


def _exit_code(outcome: BuildOutcome) -> int:
    if outcome.succeeded:
        return 0
    if outcome.message:
        print(f"Error: {outcome.message}")
    if outcome.error_kind in CONFIGURATION_KINDS:
        return 2
    return 1


def _handle_config(args: Namespace, project_dir: Path, global_config: GlobalConfig, console: Console) -> int:
    if args.config_command == "show":
        settings = read_settings(project_dir, console=console)
        print(dump_settings(settings))
        toolchain_dir = resolve_toolchain_dir(project_dir, settings=settings, global_config=global_config)
        build_tool = resolve_build_tool(project_dir, settings=settings)
        print(f"Resolved compiler directory: {toolchain_dir or '<not found>'}")
        print(f"Resolved build tool: {build_tool or '<not found>'}")
        for source in global_config.sources:
            print(f"Global configuration: {source}")
        return 0

    if args.config_command == "validate":
        settings = read_settings(project_dir, console=console)
        if settings is None:
            print(f"Error: No build configuration found in {project_dir}")
            return 2
        errors = collect_errors(validate_settings(settings, project_dir=project_dir))
        if errors:
            for error in errors:
                print(f"Error: {error}")
            return 2
        print("Configuration OK")
        return 0

    if args.config_command == "set-toolchain":
        location = ToolchainLocation(
            compiler_dir=args.compiler_path,
            build_tool_path=args.tmake_path,
            linker_path=args.linker_path,
        )
        if location.is_empty():
            print("Error: Provide at least one of --compiler-path, --tmake-path or --linker-path")
            return 2
        errors = collect_errors(validate_toolchain_location(location, project_dir=project_dir))
        if errors:
            for error in errors:
                print(f"Error: {error}")
            return 2
        existing = read_settings(project_dir, console=console)
        current = (existing.toolchain if existing is not None else None) or ToolchainLocation()
        settings = ProjectBuildSettings()
        settings.toolchain = ToolchainLocation(
            compiler_dir=location.compiler_dir or current.compiler_dir,
            build_tool_path=location.build_tool_path or current.build_tool_path,
            linker_path=location.linker_path or current.linker_path,
        )
        if args.dry_run:
            print(f"[dry-run] would write {settings.toolchain.to_mapping()}")
            return 0
        result = write_settings(project_dir, settings, console=console)
        if not result.ok:
            print(f"Error: {result.side_file_error or result.script_error}")
            return 1
        print("Toolchain paths saved")
        return 0

    raise ValueError(f"Unknown config command: {args.config_command}")


__all__ = ["main"]
