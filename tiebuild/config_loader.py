"""Loading and saving of project build settings and global tool configuration."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence
import codecs
import json
import os

from core.config_loader import collect_config_files, load_config_file, merge_mappings, save_json_file
from core.console import ConsoleLike

from .errors import ConfigurationInvalidError
from .script import SCRIPT_FILENAME, generate_script, parse_script
from .settings import ProjectBuildSettings, ToolchainLocation, check_log_level


SIDE_FILENAME = ".tiecode.json"
LOCAL_TOOLCHAIN_DIR = ".Tiecode"
TOOLCHAIN_ENV = "TIECC_DIR"
CONFIG_DIR_ENV = "TIEBUILD_CONFIG_DIR"
BUILD_TOOL_NAMES = ("tmake.exe", "tmake")


def project_relative(path: Path, project_dir: Path) -> str:
    """Return ``path`` relative to ``project_dir`` with forward slashes, if it lies inside it."""

    resolved = path.resolve()
    try:
        relative = resolved.relative_to(project_dir.resolve())
    except ValueError:
        return str(resolved)
    text = relative.as_posix()
    return text if text != "" else "."


@dataclass(slots=True)
class SettingsWriteResult:
    script_error: str | None = None
    side_file_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.script_error is None and self.side_file_error is None


def _read_script(project_dir: Path, console: ConsoleLike | None) -> ProjectBuildSettings | None:
    path = project_dir / SCRIPT_FILENAME
    if not path.is_file():
        return None
    try:
        text = path.read_text(encoding="utf-8-sig")
        return parse_script(text, console=console)
    except (OSError, UnicodeDecodeError) as exc:
        if console:
            console.warning(f"Ignoring malformed build script '{path}': {exc}")
        return None


def _read_side_file(project_dir: Path, console: ConsoleLike | None) -> ToolchainLocation | None:
    path = project_dir / SIDE_FILENAME
    if not path.is_file():
        return None
    try:
        data = load_config_file(path)
        return ToolchainLocation.from_mapping(data)
    except (OSError, ValueError, TypeError, ConfigurationInvalidError) as exc:
        if console:
            console.warning(f"Ignoring malformed side-file '{path}': {exc}")
        return None


def read_settings(project_dir: Path, *, console: ConsoleLike | None = None) -> ProjectBuildSettings | None:
    """Merge the build script and the side-file of ``project_dir``.

    Returns ``None`` when neither document is usable. When only the side-file
    is present only the toolchain section is populated; when only the script
    is present the toolchain section is ``None``.
    """

    settings = _read_script(project_dir, console)
    toolchain = _read_side_file(project_dir, console)
    if settings is None and toolchain is None:
        return None
    if settings is None:
        settings = ProjectBuildSettings()
    settings.toolchain = toolchain
    return settings


def write_settings(
    project_dir: Path,
    settings: ProjectBuildSettings,
    *,
    console: ConsoleLike | None = None,
) -> SettingsWriteResult:
    """Regenerate the script and update the side-file; never raises."""

    result = SettingsWriteResult()

    if settings.has_script_sections():
        script_path = project_dir / SCRIPT_FILENAME
        try:
            script_path.write_text(generate_script(settings), encoding="utf-8")
        except OSError as exc:
            result.script_error = str(exc)
            if console:
                console.error(f"Failed to write build script '{script_path}': {exc}")

    if settings.toolchain is not None:
        side_path = project_dir / SIDE_FILENAME
        try:
            existing: Dict[str, Any] = {}
            if side_path.is_file():
                try:
                    existing = dict(load_config_file(side_path))
                except (ValueError, TypeError) as exc:
                    if console:
                        console.warning(f"Replacing malformed side-file '{side_path}': {exc}")
            for key, value in settings.toolchain.to_mapping().items():
                if value is None:
                    existing.pop(key, None)
                else:
                    existing[key] = value
            save_json_file(side_path, existing)
        except OSError as exc:
            result.side_file_error = str(exc)
            if console:
                console.error(f"Failed to write side-file '{side_path}': {exc}")

    return result


@dataclass(slots=True)
class GlobalConfig:
    """Tool-wide settings shared by every project."""

    toolchain_dir: str | None = None
    status_reset_seconds: float = 3.0
    legacy_encoding: str = "gbk"
    console_level: str = "info"
    sources: List[Path] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, sources: Sequence[Path] = ()) -> "GlobalConfig":
        allowed_keys = {"toolchain_dir", "status_reset_seconds", "legacy_encoding", "console_level"}
        unknown = {str(key) for key in data.keys() if str(key) not in allowed_keys}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigurationInvalidError(f"Global configuration contains unknown keys: {joined}")

        config = cls(sources=list(sources))

        toolchain_dir = data.get("toolchain_dir")
        if toolchain_dir is not None:
            if not isinstance(toolchain_dir, str):
                raise ConfigurationInvalidError("toolchain_dir must be a string")
            config.toolchain_dir = toolchain_dir.strip() or None

        reset = data.get("status_reset_seconds")
        if reset is not None:
            if isinstance(reset, bool) or not isinstance(reset, (int, float)) or reset < 0:
                raise ConfigurationInvalidError("status_reset_seconds must be a non-negative number")
            config.status_reset_seconds = float(reset)

        encoding = data.get("legacy_encoding")
        if encoding is not None:
            if not isinstance(encoding, str):
                raise ConfigurationInvalidError("legacy_encoding must be a string")
            try:
                config.legacy_encoding = codecs.lookup(encoding).name
            except LookupError as exc:
                raise ConfigurationInvalidError(f"Unknown legacy_encoding '{encoding}'") from exc

        level = data.get("console_level")
        if level is not None:
            if level == "none":
                config.console_level = "none"
            else:
                config.console_level = check_log_level(level, field_name="console_level")

        return config


def _split_directories(value: str) -> List[str]:
    return [segment.strip() for segment in value.split(os.pathsep) if segment.strip()]


def global_config_directories(
    extra: Iterable[str] = (),
    *,
    env: Mapping[str, str] | None = None,
    home: Path | None = None,
) -> List[Path]:
    """Return configuration directories in increasing precedence."""

    environ = env if env is not None else os.environ
    base = home if home is not None else Path.home()
    directories: List[Path] = [base / ".config" / "tiebuild"]

    env_value = environ.get(CONFIG_DIR_ENV)
    if env_value:
        directories.extend(Path(entry).expanduser() for entry in _split_directories(env_value))

    for value in extra:
        if value:
            directories.extend(Path(entry).expanduser() for entry in _split_directories(value))

    ordered: List[Path] = []
    for path in directories:
        if path in ordered:
            ordered.remove(path)
        ordered.append(path)
    return ordered


def load_global_config(directories: Sequence[Path]) -> GlobalConfig:
    """Deep-merge ``config.{toml,json,yaml}`` from ``directories``; later ones win."""

    merged: Dict[str, Any] = {}
    sources: List[Path] = []
    for directory in directories:
        if not directory.is_dir():
            continue
        try:
            files = collect_config_files(directory)
        except ValueError as exc:
            raise ConfigurationInvalidError(str(exc)) from exc
        path = files.get("config")
        if path is None:
            continue
        try:
            data = load_config_file(path)
        except (OSError, ValueError, TypeError) as exc:
            raise ConfigurationInvalidError(f"Failed to load '{path}': {exc}") from exc
        merged = merge_mappings(merged, data)
        sources.append(path)
    return GlobalConfig.from_mapping(merged, sources=sources)


def _existing_directory(value: str | None, project_dir: Path) -> Path | None:
    if not value:
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = project_dir / path
    return path if path.is_dir() else None


def resolve_toolchain_dir(
    project_dir: Path,
    *,
    settings: ProjectBuildSettings | None = None,
    global_config: GlobalConfig | None = None,
    env: Mapping[str, str] | None = None,
) -> str | None:
    """Locate the compiler directory for ``project_dir``.

    Order: the project-local ``.Tiecode`` directory, ``compilerPath`` from the
    side-file, ``TIECC_DIR`` and finally the global ``toolchain_dir``.
    """

    if (project_dir / LOCAL_TOOLCHAIN_DIR).is_dir():
        return LOCAL_TOOLCHAIN_DIR

    toolchain = settings.toolchain if settings is not None else _read_side_file(project_dir, None)
    if toolchain is not None:
        candidate = _existing_directory(toolchain.compiler_dir, project_dir)
        if candidate is not None:
            return project_relative(candidate, project_dir)

    environ = env if env is not None else os.environ
    for value in (environ.get(TOOLCHAIN_ENV), global_config.toolchain_dir if global_config else None):
        if not value:
            continue
        path = Path(value).expanduser()
        if path.is_dir():
            return str(path.resolve())
    return None


def resolve_build_tool(project_dir: Path, *, settings: ProjectBuildSettings | None = None) -> Path | None:
    """Locate the build orchestrator: ``tmakePath`` first, then the project root."""

    toolchain = settings.toolchain if settings is not None else _read_side_file(project_dir, None)
    if toolchain is not None and toolchain.build_tool_path:
        path = Path(toolchain.build_tool_path).expanduser()
        if not path.is_absolute():
            path = project_dir / path
        if path.is_file():
            return path

    for name in BUILD_TOOL_NAMES:
        candidate = project_dir / name
        if candidate.is_file():
            return candidate
    return None


def dump_settings(settings: ProjectBuildSettings | None) -> str:
    """Render ``settings`` as JSON for display."""

    if settings is None:
        return "null"

    def section(value: Any) -> Any:
        if value is None:
            return None
        return {name: getattr(value, name) for name in value.__dataclass_fields__}

    data = {
        "basic_info": section(settings.basic_info),
        "compiler": section(settings.compiler),
        "linker": section(settings.linker),
        "toolchain": settings.toolchain.to_mapping() if settings.toolchain else None,
        "build": section(settings.build),
        "preserved_lines": list(settings.preserved_lines),
        "trailing_lines": list(settings.trailing_lines),
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


__all__ = [
    "BUILD_TOOL_NAMES",
    "GlobalConfig",
    "LOCAL_TOOLCHAIN_DIR",
    "SIDE_FILENAME",
    "SettingsWriteResult",
    "TOOLCHAIN_ENV",
    "dump_settings",
    "global_config_directories",
    "load_global_config",
    "project_relative",
    "read_settings",
    "resolve_build_tool",
    "resolve_toolchain_dir",
    "write_settings",
]
