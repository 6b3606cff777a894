"""Run settings for indexing and the frame store."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from pathlib import Path

from lexmap.core.frames.builder import DEFAULT_MAX_PAYLOAD_KB
from lexmap.core.policy.model import DEFAULT_DETERMINISM_TARGET, DEFAULT_POLICY_FILE
from lexmap.core.storage.http_backend import DEFAULT_URL

LEXMAP_DIR = ".lexmap"
META_FILE = "meta.json"
KUZU_DIR = "kuzu"
LEXBRAIN_ENV = "LEXBRAIN_URL"
DEFAULT_LEXBRAIN_URL = DEFAULT_URL
STORE_KINDS = ("memory", "kuzu", "http")
HEURISTICS_MODES = ("off", "hard", "auto")


@dataclass
class IndexSettings:
    """Knobs for one indexing run.

    ``determinism_target`` of ``None`` defers to the policy file's value.
    ``commands`` maps a language to an external extractor command line
    that replaces the built-in extractor for that language.
    """

    max_payload_kb: int = DEFAULT_MAX_PAYLOAD_KB
    determinism_target: float | None = None
    heuristics: str = "auto"
    workers: int = 4
    cold: bool = False
    policy_file: str = DEFAULT_POLICY_FILE
    commands: dict[str, list[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_payload_kb <= 0:
            raise ValueError(f"max_payload_kb must be positive, got {self.max_payload_kb}")
        if self.heuristics not in HEURISTICS_MODES:
            raise ValueError(f"heuristics must be one of {', '.join(HEURISTICS_MODES)}, got {self.heuristics!r}")
        if self.determinism_target is not None and not 0.0 <= self.determinism_target <= 1.0:
            raise ValueError(f"determinism_target must be in [0, 1], got {self.determinism_target}")
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")

    @property
    def max_bytes(self) -> int:
        return self.max_payload_kb * 1024

    def target_or(self, policy_target: float) -> float:
        return self.determinism_target if self.determinism_target is not None else policy_target

    def fingerprint(self) -> dict[str, object]:
        """Settings that change what gets extracted, for the inputs hash."""
        return {
            "max_payload_kb": self.max_payload_kb,
            "heuristics": self.heuristics,
            "determinism_target": self.determinism_target,
            "commands": {k: list(v) for k, v in sorted(self.commands.items())},
        }


def parse_command_option(value: str) -> tuple[str, list[str]]:
    """Parse ``LANG=COMMAND LINE`` into ``(lang, argv)``.

    Raises:
        ValueError: If the value has no ``=`` or an empty side.
    """
    language, sep, command = value.partition("=")
    argv = shlex.split(command)
    if not sep or not language.strip() or not argv:
        raise ValueError(f"expected LANG=COMMAND, got {value!r}")
    return language.strip(), argv


def lexmap_dir(repo_path: Path) -> Path:
    return repo_path / LEXMAP_DIR


def default_store_path(repo_path: Path) -> Path:
    return lexmap_dir(repo_path) / KUZU_DIR
