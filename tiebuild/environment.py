"""Environment construction for toolchain child processes."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Mapping
import os
import sys


def library_search_variable(platform: str | None = None) -> str:
    """Name of the variable the dynamic loader searches for shared libraries."""

    name = platform if platform is not None else sys.platform
    if name == "win32":
        return "PATH"
    if name == "darwin":
        return "DYLD_LIBRARY_PATH"
    return "LD_LIBRARY_PATH"


def prepend_search_path(env: Mapping[str, str], variable: str, directory: Path) -> Dict[str, str]:
    result = dict(env)
    entry = str(directory)
    current = result.get(variable)
    if current:
        if current.split(os.pathsep)[0] == entry:
            return result
        result[variable] = f"{entry}{os.pathsep}{current}"
    else:
        result[variable] = entry
    return result


def toolchain_environment(
    executable: Path,
    *,
    base: Mapping[str, str] | None = None,
    platform: str | None = None,
) -> Dict[str, str]:
    """Environment for running ``executable``.

    The executable's directory is prepended to the library search variable so
    that the toolchain finds its bundled shared libraries. On Windows the
    console code page is switched to UTF-8.
    """

    name = platform if platform is not None else sys.platform
    env = dict(base) if base is not None else dict(os.environ)
    env = prepend_search_path(env, library_search_variable(name), executable.parent)
    if name == "win32":
        env["CHCP"] = "65001"
        env["PYTHONIOENCODING"] = "utf-8"
    return env


__all__ = ["library_search_variable", "prepend_search_path", "toolchain_environment"]
