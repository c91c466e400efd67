"""Filesystem helper utilities for CLI discovery commands."""

from __future__ import annotations

import fnmatch
from pathlib import Path
from typing import Iterable, Sequence, Set

WORKFLOW_SUFFIXES = (".yaml", ".yml")


def _load_gitignore_patterns(search_path: Path) -> Set[str]:
    """Load gitignore patterns from .gitignore files in the search path and its parents."""
    patterns: Set[str] = {
        "__pycache__/",
        "build/",
        "dist/",
        ".eggs/",
        "*.egg-info/",
        ".git/",
        ".github/",
        ".venv/",
        "venv/",
        "node_modules/",
    }

    current_path = search_path
    while current_path != current_path.parent:
        gitignore_file = current_path / ".gitignore"
        if gitignore_file.exists():
            try:
                with open(gitignore_file, "r", encoding="utf-8") as f:
                    for line in f:
                        line = line.strip()
                        if line and not line.startswith("#"):
                            patterns.add(line)
            except (OSError, UnicodeDecodeError):
                pass
        current_path = current_path.parent

    return patterns


def _should_ignore_path(path: Path, patterns: Set[str], base_path: Path) -> bool:
    """Check if a path should be ignored based on gitignore patterns."""
    try:
        relative_path = path.relative_to(base_path)
    except ValueError:
        return False

    path_str = str(relative_path)
    path_parts = relative_path.parts

    for pattern in patterns:
        if pattern.endswith("/"):
            directory = pattern[:-1]
            # directory patterns never match the file name itself
            if any(fnmatch.fnmatch(part, directory) for part in path_parts[:-1]):
                return True
        elif fnmatch.fnmatch(path.name, pattern) or fnmatch.fnmatch(path_str, pattern):
            return True
        elif any(fnmatch.fnmatch(part, pattern) for part in path_parts[:-1]):
            return True

    return False


def _iter_files(
    search_path: Path, suffixes: Sequence[str], respect_gitignore: bool = True
) -> Iterable[Path]:
    """Yield files with one of ``suffixes`` under ``search_path``."""

    if search_path.is_file():
        if search_path.suffix in suffixes:
            yield search_path
        return

    gitignore_patterns: Set[str] = set()
    if respect_gitignore:
        gitignore_patterns = _load_gitignore_patterns(search_path)

    candidates = sorted(
        path for suffix in suffixes for path in search_path.rglob(f"*{suffix}")
    )
    for candidate in candidates:
        if respect_gitignore and _should_ignore_path(
            candidate, gitignore_patterns, search_path
        ):
            continue
        if candidate.is_file():
            yield candidate


def _iter_workflow_files(
    search_path: Path, respect_gitignore: bool = True
) -> Iterable[Path]:
    """Yield YAML workflow candidates contained within ``search_path``."""
    return _iter_files(search_path, WORKFLOW_SUFFIXES, respect_gitignore)


def _format_path(path: Path, search_path: Path) -> str:
    """Render ``path`` relative to the search root or the working directory."""
    resolved_path = path.resolve()
    bases = [search_path.resolve() if search_path.is_dir() else search_path.parent.resolve()]
    bases.append(Path.cwd())

    for base in bases:
        try:
            return f"./{resolved_path.relative_to(base)}"
        except ValueError:
            continue
    return str(resolved_path)
