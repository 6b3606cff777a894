"""Mapping of file paths to module ids."""

from __future__ import annotations

from pathlib import PurePosixPath

from lexmap.core.policy.model import Policy


class ModuleResolver:
    """Assigns every file to a module.

    Resolution order:

    1. the first policy pattern whose glob matches the path;
    2. the directory directly under a ``src/`` segment
       (``src/billing/api.py`` -> ``billing``);
    3. the first path segment (``billing/api.py`` -> ``billing``), or the
       file stem for files at the repository root.
    """

    def __init__(self, policy: Policy | None = None) -> None:
        self._policy = policy
        self._cache: dict[str, str] = {}

    def module_for(self, path: str) -> str:
        cached = self._cache.get(path)
        if cached is not None:
            return cached

        module = self._policy.module_for_path(path) if self._policy is not None else None
        if module is None:
            module = self._from_layout(path)
        self._cache[path] = module
        return module

    @staticmethod
    def _from_layout(path: str) -> str:
        parts = PurePosixPath(path.replace("\\", "/")).parts
        directories = parts[:-1]
        if "src" in directories:
            index = directories.index("src")
            if index + 1 < len(directories):
                return directories[index + 1]
        if directories:
            return directories[0]
        return PurePosixPath(path).stem
