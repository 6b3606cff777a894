"""File system walker for discovering and reading source files in a repository."""

from __future__ import annotations

import hashlib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from lexmap.config.ignore import should_ignore
from lexmap.config.languages import get_language, is_supported
from lexmap.core.extractors.base import SourceFile


@dataclass
class FileEntry:
    """A source file discovered during walking."""

    path: str  # POSIX path relative to the repo root (e.g. "src/billing/invoice.py")
    content: str
    language: str  # "python", "typescript", "javascript", "php"
    sha256: str

    def to_source(self) -> SourceFile:
        return SourceFile(path=self.path, content=self.content, language=self.language)


def discover_files(
    repo_path: Path,
    gitignore_patterns: list[str] | None = None,
) -> list[Path]:
    """Discover supported source file paths without reading their content.

    Parameters
    ----------
    repo_path:
        Root directory of the repository to walk.
    gitignore_patterns:
        Optional gitignore-style patterns (e.g. from
        :func:`lexmap.config.ignore.load_gitignore`).

    Returns
    -------
    list[Path]
        Absolute paths of every supported, non-ignored file.
    """
    repo_path = repo_path.resolve()
    discovered: list[Path] = []

    for file_path in repo_path.rglob("*"):
        if not file_path.is_file():
            continue

        relative = file_path.relative_to(repo_path)
        if should_ignore(relative.as_posix(), gitignore_patterns):
            continue
        if not is_supported(file_path):
            continue

        discovered.append(file_path)

    return discovered


def read_file(repo_path: Path, file_path: Path) -> FileEntry | None:
    """Read a single file and return a :class:`FileEntry`, or ``None`` on failure.

    Returns ``None`` when the file cannot be decoded as UTF-8, when it is
    empty, or when an OS-level error occurs.
    """
    relative = file_path.relative_to(repo_path)

    try:
        raw = file_path.read_bytes()
        content = raw.decode("utf-8")
    except (UnicodeDecodeError, OSError):
        return None

    if not content:
        return None

    language = get_language(file_path)
    if language is None:
        return None

    return FileEntry(
        path=relative.as_posix(),
        content=content,
        language=language,
        sha256=hashlib.sha256(raw).hexdigest(),
    )


def walk_repo(
    repo_path: Path,
    gitignore_patterns: list[str] | None = None,
    max_workers: int = 8,
) -> list[FileEntry]:
    """Walk a repository and return all supported source files with their content.

    Files are read in parallel on a :class:`ThreadPoolExecutor` and returned
    sorted by path, so the result is independent of filesystem order.
    """
    repo_path = repo_path.resolve()
    file_paths = discover_files(repo_path, gitignore_patterns)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        results = executor.map(lambda fp: read_file(repo_path, fp), file_paths)

    entries = [entry for entry in results if entry is not None]
    entries.sort(key=lambda e: e.path)
    return entries
