"""Ignore-pattern handling for LexMap's file discovery."""

from __future__ import annotations

import fnmatch
from pathlib import Path

import pathspec

DEFAULT_IGNORE_PATTERNS: frozenset[str] = frozenset(
    {
        # Directories
        "node_modules",
        "vendor",
        "__pycache__",
        ".git",
        ".lexmap",
        ".venv",
        "venv",
        "dist",
        "build",
        ".idea",
        ".vscode",
        ".mypy_cache",
        ".pytest_cache",
        ".ruff_cache",
        ".tox",
        "coverage",
        "htmlcov",
        # File globs
        "*.min.js",
        "*.bundle.js",
        "*.d.ts",
    }
)

_GLOB_PATTERNS: frozenset[str] = frozenset(p for p in DEFAULT_IGNORE_PATTERNS if "*" in p or "?" in p)
_LITERAL_PATTERNS: frozenset[str] = DEFAULT_IGNORE_PATTERNS - _GLOB_PATTERNS

_pathspec_cache: dict[tuple[str, ...], pathspec.PathSpec] = {}


def _matches_default_patterns(path: Path) -> bool:
    for part in path.parts:
        if part in _LITERAL_PATTERNS:
            return True
        if any(fnmatch.fnmatch(part, pattern) for pattern in _GLOB_PATTERNS):
            return True
    return False


def _matches_gitignore(path: Path, gitignore_patterns: list[str]) -> bool:
    """Match *path* with full gitignore semantics; compiled specs are cached."""
    cache_key = tuple(gitignore_patterns)
    spec = _pathspec_cache.get(cache_key)
    if spec is None:
        spec = pathspec.PathSpec.from_lines("gitwildmatch", gitignore_patterns)
        _pathspec_cache[cache_key] = spec
    return spec.match_file(path.as_posix())


def should_ignore(
    path: str | Path,
    gitignore_patterns: list[str] | None = None,
) -> bool:
    """Return ``True`` if *path* (relative to the repo root) should be skipped."""
    p = Path(path)
    if _matches_default_patterns(p):
        return True
    return bool(gitignore_patterns) and _matches_gitignore(p, gitignore_patterns)


def load_gitignore(repo_path: Path) -> list[str]:
    """Read ``.gitignore`` from *repo_path* and return its patterns.

    Blank lines and comments are stripped.  Returns an empty list when the
    file does not exist.
    """
    gitignore = repo_path / ".gitignore"
    if not gitignore.is_file():
        return []

    lines: list[str] = []
    for raw_line in gitignore.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if line and not line.startswith("#"):
            lines.append(line)
    return lines
