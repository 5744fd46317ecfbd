"""Build orchestration engine for the tiecc/tmake toolchain."""
from __future__ import annotations

from .build import BuildCommand, BuildFacade, BuildOutcome
from .cli import main
from .errors import ErrorKind, TiebuildError
from .settings import CompileRequest, Platform, ProjectBuildSettings
from .supervisor import ProcessSupervisor, ResolvedInvocation, RunResult, RunState

__version__ = "0.1.0"

__all__ = [
    "BuildCommand",
    "BuildFacade",
    "BuildOutcome",
    "CompileRequest",
    "ErrorKind",
    "Platform",
    "ProcessSupervisor",
    "ProjectBuildSettings",
    "ResolvedInvocation",
    "RunResult",
    "RunState",
    "TiebuildError",
    "main",
]
