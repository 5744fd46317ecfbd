"""Data model for project build settings and run-time compile requests."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping

from .errors import ConfigurationInvalidError


LOG_LEVELS = ("debug", "info", "warning", "error")
OPTIMIZE_LEVELS = range(0, 4)

BASELINE_OPTIMIZE = 1
BASELINE_LOG_LEVEL = "info"
BASELINE_RELEASE = False


class Platform(str, Enum):
    DESKTOP_A = "desktop-a"
    DESKTOP_B = "desktop-b"
    DESKTOP_C = "desktop-c"
    MOBILE = "mobile"
    OS_VARIANT_X = "os-variant-x"
    OS_VARIANT_Y = "os-variant-y"
    WEB = "web"

    @property
    def compiler_token(self) -> str:
        return _COMPILER_TOKENS[self]

    @classmethod
    def parse(cls, value: "str | Platform") -> "Platform":
        """Accept a platform value or its compiler token, case-insensitively."""

        if isinstance(value, Platform):
            return value
        text = str(value).strip().lower()
        for platform in cls:
            if text == platform.value or text == platform.compiler_token:
                return platform
        choices = ", ".join(platform.value for platform in cls)
        raise ConfigurationInvalidError(f"Unknown platform '{value}'. Expected one of: {choices}")


_COMPILER_TOKENS: Dict[Platform, str] = {
    Platform.DESKTOP_A: "windows",
    Platform.DESKTOP_B: "linux",
    Platform.DESKTOP_C: "apple",
    Platform.MOBILE: "android",
    Platform.OS_VARIANT_X: "harmony",
    Platform.OS_VARIANT_Y: "ios",
    Platform.WEB: "html",
}


def check_optimize_level(value: Any, *, field_name: str = "optimize level") -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value not in OPTIMIZE_LEVELS:
        raise ConfigurationInvalidError(f"{field_name} must be an integer between 0 and 3, got {value!r}")
    return value


def check_log_level(value: Any, *, field_name: str = "log level") -> str:
    text = str(value).strip().lower() if isinstance(value, str) else None
    if text not in LOG_LEVELS:
        choices = ", ".join(LOG_LEVELS)
        raise ConfigurationInvalidError(f"{field_name} must be one of {choices}, got {value!r}")
    return text


@dataclass(slots=True)
class ToolchainLocation:
    """Toolchain paths stored in the project side-file."""

    compiler_dir: str | None = None
    build_tool_path: str | None = None
    linker_path: str | None = None

    KEYS = {
        "compiler_dir": "compilerPath",
        "build_tool_path": "tmakePath",
        "linker_path": "linkerPath",
    }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ToolchainLocation":
        values: Dict[str, str | None] = {}
        for attribute, key in cls.KEYS.items():
            value = data.get(key)
            if value is None:
                values[attribute] = None
                continue
            if not isinstance(value, str):
                raise ConfigurationInvalidError(f"Side-file key '{key}' must be a string")
            values[attribute] = value.strip() or None
        return cls(**values)

    def to_mapping(self) -> Dict[str, str | None]:
        return {key: getattr(self, attribute) for attribute, key in self.KEYS.items()}

    def is_empty(self) -> bool:
        return not (self.compiler_dir or self.build_tool_path or self.linker_path)


@dataclass(slots=True)
class BasicInfo:
    name: str | None = None
    version: str | None = None
    output_dir: str | None = None
    output_file: str | None = None


@dataclass(slots=True)
class CompilerSettings:
    compiler: str | None = None
    optimize_level: int | None = None
    log_level: str | None = None
    release_mode: bool = False
    extra_args: List[str] = field(default_factory=list)


@dataclass(slots=True)
class LinkerSettings:
    libraries: List[str] = field(default_factory=list)
    library_paths: List[str] = field(default_factory=list)
    linker_args: List[str] = field(default_factory=list)


@dataclass(slots=True)
class BuildDirective:
    """The ``Build(ReadSourceFileList(dir), output)`` line of a script.

    ``output`` is ``None`` when the line refers to the output-file variable
    rather than a literal name.
    """

    source_dir: str = "./"
    output: str | None = None


@dataclass(slots=True)
class ProjectBuildSettings:
    """Merged view of the build script and the side-file.

    A section is ``None`` when the document that carries it is absent.
    ``preserved_lines`` holds comments and unrecognised directives of the
    script in their original order; ``trailing_lines`` holds those that
    follow the build directive.
    """

    basic_info: BasicInfo | None = None
    compiler: CompilerSettings | None = None
    linker: LinkerSettings | None = None
    toolchain: ToolchainLocation | None = None
    build: BuildDirective | None = None
    preserved_lines: List[str] = field(default_factory=list)
    trailing_lines: List[str] = field(default_factory=list)

    def has_script_sections(self) -> bool:
        return any(section is not None for section in (self.basic_info, self.compiler, self.linker, self.build))

    def ensure_script_sections(self) -> None:
        if self.basic_info is None:
            self.basic_info = BasicInfo()
        if self.compiler is None:
            self.compiler = CompilerSettings()
        if self.linker is None:
            self.linker = LinkerSettings()

    def adopt_defaults(self, config: "EffectiveConfig") -> None:
        """Copy the defaulted fields of a resolved run back into the settings."""

        self.ensure_script_sections()
        basic, compiler = self.basic_info, self.compiler
        if basic is None or compiler is None:
            raise RuntimeError("Script sections are missing after initialisation")
        if config.output_path:
            basic.output_dir = config.output_path
        compiler.optimize_level = config.optimize
        compiler.log_level = config.log_level
        compiler.release_mode = config.release


@dataclass(slots=True)
class CompileRequest:
    """Per-invocation options; never persisted as-is."""

    platform: Platform = Platform.DESKTOP_A
    output_path: str | None = None
    package_name: str | None = None
    release: bool | None = None
    hard_output_mode: bool | None = None
    optimize: int | None = None
    disabled_lints: List[str] | None = None
    log_level: str | None = None
    line_map_path: str | None = None
    toolchain_dir: str | None = None
    config_file_path: str | None = None
    watch: bool | None = None
    extra_args: List[str] | None = None
    working_dir: str | None = None

    def __post_init__(self) -> None:
        self.platform = Platform.parse(self.platform)
        if self.optimize is not None:
            self.optimize = check_optimize_level(self.optimize)
        if self.log_level is not None:
            self.log_level = check_log_level(self.log_level)


@dataclass(slots=True)
class EffectiveConfig:
    platform: Platform
    output_path: str | None
    package_name: str | None
    release: bool
    hard_output_mode: bool
    optimize: int
    disabled_lints: List[str]
    log_level: str
    line_map_path: str | None
    toolchain_dir: str | None
    config_file_path: str | None
    watch: bool
    extra_args: List[str]
    working_dir: str | None


__all__ = [
    "BASELINE_LOG_LEVEL",
    "BASELINE_OPTIMIZE",
    "BASELINE_RELEASE",
    "BasicInfo",
    "BuildDirective",
    "CompileRequest",
    "CompilerSettings",
    "EffectiveConfig",
    "LOG_LEVELS",
    "LinkerSettings",
    "Platform",
    "ProjectBuildSettings",
    "ToolchainLocation",
    "check_log_level",
    "check_optimize_level",
]
