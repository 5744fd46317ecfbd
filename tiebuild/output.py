"""Decoding and classification of toolchain output lines.

Output arrives as raw byte chunks on stdout and stderr. :class:`LineBuffer`
splits them into complete lines, :func:`decode_line` turns each line into
text, and :func:`classify` tags the text with the sub-tool that produced it
and its severity. :class:`OutputClassifier` adds the per-stream sticky stage.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Pattern, Tuple
import re

from core.console import ConsoleLike

from .errors import ErrorKind


class Stage(str, Enum):
    COMPILER = "compiler"
    NATIVE_BACKEND = "native_backend"
    ORCHESTRATOR = "orchestrator"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


STAGE_TAGS: Dict[Stage, str] = {
    Stage.COMPILER: "[Tiecc]",
    Stage.NATIVE_BACKEND: "[G++]",
    Stage.ORCHESTRATOR: "[TMake]",
}

SEVERITY_GLYPHS: Dict[Severity, str] = {
    Severity.ERROR: "❌ ",
    Severity.WARNING: "⚠️  ",
    Severity.SUCCESS: "✅ ",
    Severity.INFO: "",
}

# Checked in order; the first match wins.
STAGE_RULES: Tuple[Tuple[Stage, Pattern[str]], ...] = (
    (
        Stage.COMPILER,
        re.compile(
            r"\.Tiecode[\\/]tiecc(?:\.exe)?|\btiecc(?:\.exe)?\b|执行结绳编译命令|结绳编译|添加源文件|开始编译|目标平台|输出目录|\.(?:t|tie)\b",
            re.IGNORECASE,
        ),
    ),
    (
        Stage.NATIVE_BACKEND,
        re.compile(
            r"g\+\+|\bgcc\b|\bclang\b|使用编译器|编译参数|\.(?:cpp|cc|cxx|hpp|h):|In function|note:|warning:|error:",
            re.IGNORECASE,
        ),
    ),
    (
        Stage.ORCHESTRATOR,
        re.compile(r"\[TMake\]|\btmake(?:\.exe)?\b", re.IGNORECASE),
    ),
)

# Checked in order of precedence.
SEVERITY_RULES: Tuple[Tuple[Severity, Pattern[str]], ...] = (
    (Severity.ERROR, re.compile(r"\[ERROR\]|\berror:|错误|失败|\bfatal\b|致命", re.IGNORECASE)),
    (Severity.WARNING, re.compile(r"\[WARNING\]|\bwarning:|警告", re.IGNORECASE)),
    (Severity.SUCCESS, re.compile(r"成功|完成|\bsuccess(?:ful(?:ly)?)?\b|\bsucceeded\b", re.IGNORECASE)),
)

_CJK_PATTERN = re.compile("[\\u4e00-\\u9fff]")


@dataclass(frozen=True, slots=True)
class Classification:
    stage: Stage | None
    severity: Severity


@dataclass(frozen=True, slots=True)
class OutputLine:
    raw: str
    stage: Stage
    severity: Severity
    rendered: str
    stream: str = "stdout"
    issue: ErrorKind | None = None


@dataclass(frozen=True, slots=True)
class DecodedLine:
    text: str
    encoding: str
    ambiguous: bool = False


def decode_line(data: bytes, *, legacy_encoding: str = "gbk") -> DecodedLine:
    """Decode one complete output line without raising or dropping bytes."""

    try:
        return DecodedLine(data.decode("utf-8"), "utf-8")
    except UnicodeDecodeError:
        pass
    try:
        text = data.decode(legacy_encoding)
    except UnicodeDecodeError:
        text = None
    if text is not None and _CJK_PATTERN.search(text):
        return DecodedLine(text, legacy_encoding)
    return DecodedLine(data.decode("utf-8", errors="replace"), "utf-8", ambiguous=True)


def decode_text(data: bytes, *, legacy_encoding: str = "gbk") -> str:
    """Decode a whole captured stream line by line, keeping its terminators."""

    return "\n".join(decode_line(part, legacy_encoding=legacy_encoding).text for part in data.split(b"\n"))


class LineBuffer:
    """Accumulates byte chunks and yields complete lines."""

    def __init__(self) -> None:
        self._pending = bytearray()

    @property
    def pending(self) -> bytes:
        return bytes(self._pending)

    def feed(self, chunk: bytes) -> List[bytes]:
        self._pending.extend(chunk)
        lines: List[bytes] = []
        while True:
            index = self._pending.find(b"\n")
            if index < 0:
                break
            lines.append(_strip_cr(bytes(self._pending[:index])))
            del self._pending[: index + 1]
        return lines

    def flush(self) -> List[bytes]:
        if not self._pending:
            return []
        line = _strip_cr(bytes(self._pending))
        self._pending.clear()
        return [line]


def _strip_cr(line: bytes) -> bytes:
    return line[:-1] if line.endswith(b"\r") else line


def classify(line: str) -> Classification:
    """Return the explicit stage (if any) and severity of ``line``."""

    stage: Stage | None = None
    for candidate, pattern in STAGE_RULES:
        if pattern.search(line):
            stage = candidate
            break

    severity = Severity.INFO
    for candidate, pattern in SEVERITY_RULES:
        if pattern.search(line):
            severity = candidate
            break

    return Classification(stage=stage, severity=severity)


def render(line: str, stage: Stage, severity: Severity) -> str:
    if not line.strip():
        return ""
    return f"{SEVERITY_GLYPHS[severity]}{STAGE_TAGS[stage]} {line}"


class OutputClassifier:
    """Turns the raw bytes of one stream into :class:`OutputLine` values.

    Lines without a stage marker take the last compiler or native-backend
    stage seen on this stream, or the orchestrator stage when there is none.
    """

    def __init__(
        self,
        stream: str = "stdout",
        *,
        legacy_encoding: str = "gbk",
        console: ConsoleLike | None = None,
    ) -> None:
        self.stream = stream
        self.legacy_encoding = legacy_encoding
        self.console = console
        self.sticky: Stage | None = None
        self._buffer = LineBuffer()

    def feed(self, chunk: bytes) -> List[OutputLine]:
        return [self._line(data) for data in self._buffer.feed(chunk)]

    def flush(self) -> List[OutputLine]:
        return [self._line(data) for data in self._buffer.flush()]

    def _line(self, data: bytes) -> OutputLine:
        decoded = decode_line(data, legacy_encoding=self.legacy_encoding)
        issue = ErrorKind.DECODE_AMBIGUOUS if decoded.ambiguous else None
        if issue is not None and self.console:
            self.console.debug(f"{issue.value}: undecodable bytes on {self.stream}; replaced invalid sequences")
        text = decoded.text
        if not text.strip():
            return OutputLine(
                raw=text,
                stage=self.sticky or Stage.ORCHESTRATOR,
                severity=Severity.INFO,
                rendered="",
                stream=self.stream,
                issue=issue,
            )

        result = classify(text)
        stage = result.stage
        if stage is None:
            stage = self.sticky or Stage.ORCHESTRATOR
        elif stage is Stage.ORCHESTRATOR:
            self.sticky = None
        else:
            self.sticky = stage
        return OutputLine(
            raw=text,
            stage=stage,
            severity=result.severity,
            rendered=render(text, stage, result.severity),
            stream=self.stream,
            issue=issue,
        )


__all__ = [
    "Classification",
    "DecodedLine",
    "LineBuffer",
    "OutputClassifier",
    "OutputLine",
    "STAGE_TAGS",
    "SEVERITY_GLYPHS",
    "Severity",
    "Stage",
    "classify",
    "decode_line",
    "decode_text",
    "render",
]
