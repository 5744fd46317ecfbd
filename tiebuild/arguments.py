"""Merge run-time requests with project settings and build toolchain command lines."""
from __future__ import annotations

from pathlib import Path
from typing import List, Sequence
import os
import sys

from .config_loader import project_relative
from .settings import (
    BASELINE_LOG_LEVEL,
    BASELINE_OPTIMIZE,
    BASELINE_RELEASE,
    CompileRequest,
    EffectiveConfig,
    ProjectBuildSettings,
)


COMPILER_NAMES = ("tiecc.exe", "tiecc") if sys.platform == "win32" else ("tiecc", "tiecc.exe")


def merge_compile_request(settings: ProjectBuildSettings | None, request: CompileRequest) -> EffectiveConfig:
    """Resolve every field: explicit request value, then settings, then baseline."""

    basic = settings.basic_info if settings is not None else None
    compiler = settings.compiler if settings is not None else None

    output_path = request.output_path or (basic.output_dir if basic is not None else None)

    if request.optimize is not None:
        optimize = request.optimize
    elif compiler is not None and compiler.optimize_level is not None:
        optimize = compiler.optimize_level
    else:
        optimize = BASELINE_OPTIMIZE

    if request.log_level is not None:
        log_level = request.log_level
    elif compiler is not None and compiler.log_level is not None:
        log_level = compiler.log_level
    else:
        log_level = BASELINE_LOG_LEVEL

    if request.release is not None:
        release = request.release
    elif compiler is not None:
        release = compiler.release_mode
    else:
        release = BASELINE_RELEASE

    return EffectiveConfig(
        platform=request.platform,
        output_path=output_path or None,
        package_name=request.package_name or None,
        release=bool(release),
        hard_output_mode=bool(request.hard_output_mode),
        optimize=optimize,
        disabled_lints=list(request.disabled_lints or []),
        log_level=log_level,
        line_map_path=request.line_map_path or None,
        toolchain_dir=request.toolchain_dir or None,
        config_file_path=request.config_file_path or None,
        watch=bool(request.watch),
        extra_args=list(request.extra_args or []),
        working_dir=request.working_dir or None,
    )


def portable_path(value: str, project_dir: Path) -> str:
    """Format a path argument for the toolchain command line.

    Absolute paths inside the project become project-relative with forward
    slashes and relative paths get forward slashes. The result is unquoted.
    """

    text = value.strip()
    path = Path(text)
    if path.is_absolute():
        relative = project_relative(path, project_dir)
        text = relative if not Path(relative).is_absolute() else os.path.normpath(text)
    else:
        text = text.replace("\\", "/")
    return text


def build_tool_arguments(config: EffectiveConfig, project_dir: Path) -> List[str]:
    """Options passed to the build orchestrator after the ``compile``/``build`` subcommand.

    Optimization, log level, platform and build mode are read by the
    orchestrator from the build script and are never passed here.
    """

    args: List[str] = []
    if config.output_path:
        args.extend(["--output", portable_path(config.output_path, project_dir)])
    if config.package_name:
        args.extend(["--package", config.package_name])
    if config.toolchain_dir:
        args.extend(["--tiecc-dir", portable_path(config.toolchain_dir, project_dir)])
    if config.config_file_path:
        args.extend(["--config", portable_path(config.config_file_path, project_dir)])
    if config.watch:
        args.append("--watch")
    args.extend(config.extra_args)
    return args


def default_output_path(config: EffectiveConfig) -> str:
    return f"dist/{config.platform.compiler_token}"


def compiler_arguments(
    config: EffectiveConfig,
    project_dir: Path,
    *,
    stdlib_sources: Sequence[Path] = (),
    project_sources: Sequence[str] = (),
) -> List[str]:
    """Full argument list for invoking the compiler directly."""

    args: List[str] = ["-o", portable_path(config.output_path or default_output_path(config), project_dir)]
    if config.package_name:
        args.extend(["-p", config.package_name])
    args.append("--release" if config.release else "--debug")
    if config.hard_output_mode:
        args.append("--hard-mode")
    args.extend(["--optimize", str(config.optimize)])
    for lint in config.disabled_lints:
        args.extend(["--disable-lint", lint])
    args.extend(["--log-level", config.log_level])
    args.extend(["--platform", config.platform.compiler_token])
    if config.line_map_path:
        args.extend(["--line-map", portable_path(config.line_map_path, project_dir)])
    args.extend(str(path) for path in stdlib_sources)
    args.extend(project_sources)
    return args


def compiler_executable(compiler_dir: Path) -> Path:
    """Return the compiler binary inside ``compiler_dir``, preferring the host's naming."""

    for name in COMPILER_NAMES:
        candidate = compiler_dir / name
        if candidate.is_file():
            return candidate
    return compiler_dir / COMPILER_NAMES[0]


__all__ = [
    "build_tool_arguments",
    "compiler_arguments",
    "compiler_executable",
    "default_output_path",
    "merge_compile_request",
    "portable_path",
]
