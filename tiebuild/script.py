"""Parser and generator for the line-oriented ``编译配置.tmake`` build script.

The script holds one directive per line, written as a call such as
``设置优化级别(2)``. Each directive has a native spelling, which the toolchain
reads and which generation always uses, and an English spelling that is
accepted when parsing. Comments and directives this module does not know are
kept verbatim so that regenerating a script never loses them.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

import re

from core.console import ConsoleLike

from .errors import ConfigurationInvalidError
from .settings import (
    BasicInfo,
    BuildDirective,
    CompilerSettings,
    LinkerSettings,
    ProjectBuildSettings,
    check_log_level,
    check_optimize_level,
)


SCRIPT_FILENAME = "编译配置.tmake"

SET_VARIABLE = "SetVariable"
SET_OUTPUT_FILE = "SetOutputFile"
SET_OPTIMIZE_LEVEL = "SetOptimizeLevel"
SET_LOG_LEVEL = "SetLogLevel"
SET_COMPILER = "SetCompiler"
RELEASE_MODE = "ReleaseMode"
BUILD = "Build"
READ_SOURCE_FILE_LIST = "ReadSourceFileList"
ADD_COMPILER_ARG = "AddCompilerArg"
ADD_LIBRARY = "AddLibrary"
ADD_LIBRARY_PATH = "AddLibraryPath"
ADD_LINKER_ARG = "AddLinkerArg"

NATIVE_NAMES: Dict[str, str] = {
    SET_VARIABLE: "设置变量",
    SET_OUTPUT_FILE: "设置输出文件",
    SET_OPTIMIZE_LEVEL: "设置优化级别",
    SET_LOG_LEVEL: "设置日志级别",
    SET_COMPILER: "设置编译器",
    RELEASE_MODE: "发布模式",
    BUILD: "编译程序",
    READ_SOURCE_FILE_LIST: "读取源文件列表",
    ADD_COMPILER_ARG: "添加编译参数",
    ADD_LIBRARY: "添加链接库",
    ADD_LIBRARY_PATH: "添加库目录",
    ADD_LINKER_ARG: "添加链接参数",
}

_CANONICAL: Dict[str, str] = {}
for _english, _native in NATIVE_NAMES.items():
    _CANONICAL[_english] = _english
    _CANONICAL[_native] = _english

OUTPUT_FILE_VARIABLE = "输出文件"
_OUTPUT_FILE_ALIASES = {OUTPUT_FILE_VARIABLE, "outputFile", "OutputFile"}

VARIABLE_NAME = "项目名称"
VARIABLE_VERSION = "版本号"
VARIABLE_OUTPUT_DIR = "输出目录"

DEFAULT_HEADER = ('TMake版本("1.0.0")', '结绳编译器版本("4.6")')

_DIRECTIVE_PATTERN = re.compile(r"^(?P<name>[^\s(),\"]+)\s*\((?P<args>.*)\)\s*;?\s*$")
_INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")


class ScriptSyntaxError(ConfigurationInvalidError):
    """Raised when a known directive carries unusable arguments."""

    def __init__(self, line_number: int, message: str) -> None:
        super().__init__(f"line {line_number}: {message}")
        self.line_number = line_number


@dataclass(frozen=True, slots=True)
class Call:
    name: str
    args: Tuple[object, ...]


@dataclass(frozen=True, slots=True)
class Name:
    text: str


def is_comment(line: str) -> bool:
    stripped = line.strip()
    return stripped.startswith("//") or stripped.startswith("#")


def split_arguments(text: str) -> List[str]:
    """Split ``text`` on top-level commas, honouring quotes and parentheses."""

    parts: List[str] = []
    current: List[str] = []
    depth = 0
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            current.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise ValueError("unbalanced parenthesis")
        elif char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    if in_string:
        raise ValueError("unterminated string literal")
    if depth != 0:
        raise ValueError("unbalanced parenthesis")
    tail = "".join(current).strip()
    if tail or parts:
        parts.append(tail)
    return parts


def unquote(token: str) -> str:
    body = token[1:-1]
    result: List[str] = []
    escaped = False
    for char in body:
        if escaped:
            result.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        else:
            result.append(char)
    return "".join(result)


def quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def parse_value(token: str) -> object:
    """Turn one argument token into ``str``, ``int``, :class:`Call` or :class:`Name`."""

    if not token:
        raise ValueError("empty argument")
    if len(token) >= 2 and token[0] == '"' and token[-1] == '"':
        return unquote(token)
    if _INTEGER_PATTERN.match(token):
        return int(token)
    match = _DIRECTIVE_PATTERN.match(token)
    if match:
        return Call(match.group("name"), tuple(parse_value(part) for part in split_arguments(match.group("args"))))
    if any(char in token for char in ' "(),'):
        raise ValueError(f"cannot parse argument {token!r}")
    return Name(token)


def parse_call(line: str) -> Call | None:
    """Parse ``line`` as a directive call, or return ``None`` when it is not one."""

    match = _DIRECTIVE_PATTERN.match(line.strip())
    if not match:
        return None
    try:
        args = tuple(parse_value(part) for part in split_arguments(match.group("args")))
    except ValueError:
        return None
    return Call(match.group("name"), args)


def _expect_string(call: Call, line_number: int, *, count: int = 1) -> List[str]:
    if len(call.args) != count or not all(isinstance(arg, str) for arg in call.args):
        noun = "string argument" if count == 1 else "string arguments"
        raise ScriptSyntaxError(line_number, f"{call.name} expects {count} {noun}")
    return [str(arg) for arg in call.args]


def _parse_build(call: Call, line_number: int) -> BuildDirective:
    if len(call.args) != 2:
        raise ScriptSyntaxError(line_number, f"{call.name} expects a source list and an output file")
    source, output = call.args
    if not isinstance(source, Call) or _CANONICAL.get(source.name) != READ_SOURCE_FILE_LIST:
        raise ScriptSyntaxError(line_number, f"{call.name} expects {NATIVE_NAMES[READ_SOURCE_FILE_LIST]}(...) as first argument")
    if len(source.args) != 1 or not isinstance(source.args[0], str):
        raise ScriptSyntaxError(line_number, f"{source.name} expects one string argument")
    if isinstance(output, Name) and output.text in _OUTPUT_FILE_ALIASES:
        target: str | None = None
    elif isinstance(output, str):
        target = output
    else:
        raise ScriptSyntaxError(line_number, f"{call.name} expects {OUTPUT_FILE_VARIABLE} or a string as output")
    return BuildDirective(source_dir=source.args[0], output=target)


def _apply_directive(
    canonical: str,
    call: Call,
    line_number: int,
    basic: BasicInfo,
    compiler: CompilerSettings,
    linker: LinkerSettings,
) -> bool:
    """Store one known directive; returns ``False`` when the line must be kept verbatim."""

    if canonical == SET_VARIABLE:
        if len(call.args) != 2 or not isinstance(call.args[0], str):
            raise ScriptSyntaxError(line_number, f"{call.name} expects a key and a value")
        key, value = call.args
        if not isinstance(value, (str, int)) or isinstance(value, bool):
            return False
        if key == VARIABLE_NAME:
            basic.name = str(value)
        elif key == VARIABLE_VERSION:
            basic.version = str(value)
        elif key == VARIABLE_OUTPUT_DIR:
            basic.output_dir = str(value)
        else:
            return False
    elif canonical == SET_OUTPUT_FILE:
        basic.output_file = _expect_string(call, line_number)[0]
    elif canonical == SET_OPTIMIZE_LEVEL:
        if len(call.args) != 1:
            raise ScriptSyntaxError(line_number, f"{call.name} expects one argument")
        try:
            compiler.optimize_level = check_optimize_level(call.args[0])
        except ConfigurationInvalidError as exc:
            raise ScriptSyntaxError(line_number, str(exc)) from exc
    elif canonical == SET_LOG_LEVEL:
        value = _expect_string(call, line_number)[0]
        try:
            compiler.log_level = check_log_level(value)
        except ConfigurationInvalidError as exc:
            raise ScriptSyntaxError(line_number, str(exc)) from exc
    elif canonical == SET_COMPILER:
        compiler.compiler = _expect_string(call, line_number)[0]
    elif canonical == RELEASE_MODE:
        if call.args:
            raise ScriptSyntaxError(line_number, f"{call.name} takes no arguments")
        compiler.release_mode = True
    elif canonical == ADD_COMPILER_ARG:
        compiler.extra_args.append(_expect_string(call, line_number)[0])
    elif canonical == ADD_LIBRARY:
        linker.libraries.append(_expect_string(call, line_number)[0])
    elif canonical == ADD_LIBRARY_PATH:
        linker.library_paths.append(_expect_string(call, line_number)[0])
    elif canonical == ADD_LINKER_ARG:
        linker.linker_args.append(_expect_string(call, line_number)[0])
    else:
        return False
    return True


def parse_script_with_errors(text: str) -> Tuple[ProjectBuildSettings, List[ScriptSyntaxError]]:
    """Parse script ``text`` and collect the known directives that could not be used.

    An unusable directive never discards the rest of the document: the line is
    kept verbatim like an unknown directive and its error is returned.
    Lines after the build directive are kept in ``trailing_lines``.
    """

    basic = BasicInfo()
    compiler = CompilerSettings()
    linker = LinkerSettings()
    build: BuildDirective | None = None
    preserved: List[str] = []
    trailing: List[str] = []
    errors: List[ScriptSyntaxError] = []
    target = preserved

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue
        if is_comment(line):
            target.append(line)
            continue
        call = parse_call(line)
        canonical = _CANONICAL.get(call.name) if call else None
        if call is None or canonical is None:
            target.append(line)
            continue

        try:
            if canonical == BUILD:
                build = _parse_build(call, line_number)
                target = trailing
                continue
            consumed = _apply_directive(canonical, call, line_number, basic, compiler, linker)
        except ScriptSyntaxError as exc:
            errors.append(exc)
            consumed = False
        if not consumed:
            target.append(line)

    settings = ProjectBuildSettings(
        basic_info=basic,
        compiler=compiler,
        linker=linker,
        build=build,
        preserved_lines=preserved,
        trailing_lines=trailing,
    )
    return settings, errors


def parse_script(text: str, *, console: ConsoleLike | None = None) -> ProjectBuildSettings:
    """Parse script ``text`` into settings with all script sections populated."""

    settings, errors = parse_script_with_errors(text)
    if console:
        for error in errors:
            console.warning(f"Keeping unusable build script directive verbatim: {error}")
    return settings


def _directive(name: str, *args: str) -> str:
    return f"{NATIVE_NAMES[name]}({', '.join(args)})"


def _repeat(name: str, values: Iterable[str]) -> List[str]:
    return [_directive(name, quote(value)) for value in values]


def generate_script(settings: ProjectBuildSettings) -> str:
    """Render the script sections of ``settings`` using native spellings."""

    basic = settings.basic_info or BasicInfo()
    compiler = settings.compiler or CompilerSettings()
    linker = settings.linker or LinkerSettings()
    build = settings.build or BuildDirective()

    lines: List[str] = list(settings.preserved_lines) or list(DEFAULT_HEADER)
    variables: Sequence[Tuple[str, str | None]] = (
        (VARIABLE_NAME, basic.name),
        (VARIABLE_VERSION, basic.version),
        (VARIABLE_OUTPUT_DIR, basic.output_dir),
    )
    for key, value in variables:
        if value is not None:
            lines.append(_directive(SET_VARIABLE, quote(key), quote(value)))
    if basic.output_file is not None:
        lines.append(_directive(SET_OUTPUT_FILE, quote(basic.output_file)))
    if compiler.optimize_level is not None:
        lines.append(_directive(SET_OPTIMIZE_LEVEL, str(compiler.optimize_level)))
    if compiler.log_level is not None:
        lines.append(_directive(SET_LOG_LEVEL, quote(compiler.log_level)))
    if compiler.compiler is not None:
        lines.append(_directive(SET_COMPILER, quote(compiler.compiler)))
    lines.extend(_repeat(ADD_COMPILER_ARG, compiler.extra_args))
    lines.extend(_repeat(ADD_LIBRARY, linker.libraries))
    lines.extend(_repeat(ADD_LIBRARY_PATH, linker.library_paths))
    lines.extend(_repeat(ADD_LINKER_ARG, linker.linker_args))

    lines.append("")
    output = OUTPUT_FILE_VARIABLE if build.output is None else quote(build.output)
    source = _directive(READ_SOURCE_FILE_LIST, quote(build.source_dir))
    lines.append(_directive(BUILD, source, output))
    if compiler.release_mode:
        lines.append(_directive(RELEASE_MODE))
    lines.extend(settings.trailing_lines)
    return "\n".join(lines) + "\n"


__all__ = [
    "DEFAULT_HEADER",
    "NATIVE_NAMES",
    "SCRIPT_FILENAME",
    "ScriptSyntaxError",
    "generate_script",
    "parse_script",
    "parse_script_with_errors",
]
