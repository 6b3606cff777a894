"""Language detection based on file extensions."""

from __future__ import annotations

from pathlib import Path

SUPPORTED_EXTENSIONS: dict[str, str] = {
    ".py": "python",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".php": "php",
}

# JavaScript dialects are handled by the TypeScript extractor.
EXTRACTOR_FOR_LANGUAGE: dict[str, str] = {
    "python": "python",
    "typescript": "typescript",
    "javascript": "typescript",
    "php": "php",
}


def get_language(file_path: str | Path) -> str | None:
    """Return the language name for *file_path* based on its extension.

    Returns ``None`` when the extension is not in :data:`SUPPORTED_EXTENSIONS`.
    """
    return SUPPORTED_EXTENSIONS.get(Path(file_path).suffix.lower())


def is_supported(file_path: str | Path) -> bool:
    return Path(file_path).suffix.lower() in SUPPORTED_EXTENSIONS
