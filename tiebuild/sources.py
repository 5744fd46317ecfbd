"""Discovery of ``.t`` source files for direct compiler invocations."""
from __future__ import annotations

from pathlib import Path
from typing import List
import os


SOURCE_SUFFIX = ".t"
STDLIB_DIRNAME = "stdlib"
SKIPPED_DIRECTORIES = frozenset({"node_modules", "dist", STDLIB_DIRNAME})


def find_stdlib_sources(compiler_dir: Path) -> List[Path]:
    """Return the absolute ``.t`` files of the bundled standard library, sorted."""

    stdlib = compiler_dir / STDLIB_DIRNAME
    if not stdlib.is_dir():
        return []
    files = [
        entry.resolve()
        for entry in stdlib.iterdir()
        if entry.is_file() and entry.suffix == SOURCE_SUFFIX
    ]
    return sorted(files)


def find_project_sources(project_dir: Path) -> List[str]:
    """Return project ``.t`` files relative to ``project_dir`` with forward slashes."""

    sources: List[str] = []
    for root, dirnames, filenames in os.walk(project_dir):
        dirnames[:] = sorted(
            name for name in dirnames if not name.startswith(".") and name not in SKIPPED_DIRECTORIES
        )
        for filename in sorted(filenames):
            if not filename.endswith(SOURCE_SUFFIX):
                continue
            relative = Path(root, filename).relative_to(project_dir)
            sources.append(relative.as_posix())
    return sources


__all__ = ["find_project_sources", "find_stdlib_sources"]
