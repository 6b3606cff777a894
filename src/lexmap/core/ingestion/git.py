"""Repository identity from git: the head commit and a repository name."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

UNKNOWN_COMMIT = "unknown"


def _git(repo_path: Path, *args: str) -> str | None:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=repo_path,
            capture_output=True,
            text=True,
            check=True,
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        logger.debug("git %s failed for %s, not a git repo?", " ".join(args), repo_path)
        return None
    return result.stdout.strip()


def head_commit(repo_path: Path) -> str:
    """Return the ``HEAD`` commit hash, or ``"unknown"`` outside a git repo."""
    return _git(repo_path, "rev-parse", "HEAD") or UNKNOWN_COMMIT


def repo_name(repo_path: Path) -> str:
    """Return a stable name for the repository.

    Uses the basename of the ``origin`` remote when one is configured, else
    the name of the working-tree root directory.
    """
    remote = _git(repo_path, "config", "--get", "remote.origin.url")
    if remote:
        name = remote.rstrip("/").rsplit("/", 1)[-1].rsplit(":", 1)[-1]
        name = name.removesuffix(".git")
        if name:
            return name
    return repo_path.resolve().name
