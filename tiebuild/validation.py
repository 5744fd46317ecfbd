"""Path and settings validation helpers.

Every check returns a :class:`ValidationResult` instead of raising, so a
caller validating several fields gets a result for each of them.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable
import sys

from .errors import ConfigurationInvalidError
from .settings import ProjectBuildSettings, ToolchainLocation, check_log_level, check_optimize_level


@dataclass(frozen=True, slots=True)
class ValidationResult:
    valid: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(True)

    @classmethod
    def failure(cls, message: str) -> "ValidationResult":
        return cls(False, message)


def _as_path(value: str | Path | None, base: Path | None) -> Path | None:
    if value is None or not str(value).strip():
        return None
    path = Path(str(value).strip().strip('"')).expanduser()
    if base is not None and not path.is_absolute():
        path = base / path
    return path


def validate_directory(value: str | Path | None, *, base: Path | None = None) -> ValidationResult:
    path = _as_path(value, base)
    if path is None:
        return ValidationResult.failure("No path provided")
    try:
        if not path.exists():
            return ValidationResult.failure(f"Directory does not exist: {path}")
        if not path.is_dir():
            return ValidationResult.failure(f"Not a directory: {path}")
    except OSError as exc:
        return ValidationResult.failure(f"Cannot access '{path}': {exc}")
    return ValidationResult.ok()


def validate_file(
    value: str | Path | None,
    *,
    extensions: Iterable[str] | None = None,
    base: Path | None = None,
) -> ValidationResult:
    path = _as_path(value, base)
    if path is None:
        return ValidationResult.failure("No path provided")
    try:
        if not path.exists():
            return ValidationResult.failure(f"File does not exist: {path}")
        if not path.is_file():
            return ValidationResult.failure(f"Not a file: {path}")
    except OSError as exc:
        return ValidationResult.failure(f"Cannot access '{path}': {exc}")
    if extensions is not None:
        allowed = [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in extensions]
        if path.suffix.lower() not in allowed:
            return ValidationResult.failure(f"File '{path.name}' must have one of the extensions: {', '.join(allowed)}")
    return ValidationResult.ok()


EXECUTABLE_EXTENSIONS = (".exe",)


def executable_extensions(platform: str | None = None) -> tuple[str, ...] | None:
    """Extensions a toolchain binary must carry on ``platform``, or ``None`` for any."""

    name = platform if platform is not None else sys.platform
    return EXECUTABLE_EXTENSIONS if name == "win32" else None


def validate_toolchain_location(
    location: ToolchainLocation,
    *,
    project_dir: Path,
    platform: str | None = None,
) -> Dict[str, ValidationResult]:
    """Check every configured toolchain path; unset paths are skipped."""

    extensions = executable_extensions(platform)
    results: Dict[str, ValidationResult] = {}
    if location.compiler_dir:
        results["compilerPath"] = validate_directory(location.compiler_dir, base=project_dir)
    if location.build_tool_path:
        results["tmakePath"] = validate_file(location.build_tool_path, extensions=extensions, base=project_dir)
    if location.linker_path:
        results["linkerPath"] = validate_file(location.linker_path, extensions=extensions, base=project_dir)
    return results


def validate_settings(settings: ProjectBuildSettings, *, project_dir: Path) -> Dict[str, ValidationResult]:
    """Validate the editable fields of ``settings`` as a batch."""

    results: Dict[str, ValidationResult] = {}
    compiler = settings.compiler
    if compiler is not None:
        if compiler.optimize_level is not None:
            results["optimize_level"] = _check(check_optimize_level, compiler.optimize_level)
        if compiler.log_level is not None:
            results["log_level"] = _check(check_log_level, compiler.log_level)
    linker = settings.linker
    if linker is not None:
        for index, entry in enumerate(linker.library_paths):
            results[f"library_paths[{index}]"] = validate_directory(entry, base=project_dir)
    if settings.toolchain is not None:
        results.update(validate_toolchain_location(settings.toolchain, project_dir=project_dir))
    return results


def _check(checker, value) -> ValidationResult:
    try:
        checker(value)
    except ConfigurationInvalidError as exc:
        return ValidationResult.failure(str(exc))
    return ValidationResult.ok()


def collect_errors(results: Dict[str, ValidationResult]) -> list[str]:
    return [f"{field}: {result.error}" for field, result in results.items() if not result.valid]


__all__ = [
    "ValidationResult",
    "collect_errors",
    "executable_extensions",
    "validate_directory",
    "validate_file",
    "validate_settings",
    "validate_toolchain_location",
]
