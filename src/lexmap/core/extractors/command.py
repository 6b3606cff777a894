"""Out-of-process extractors.

Runs an external indexer (for example a PHP or Go program built on that
language's own parser) and reads its facts as JSON Lines.  The command
receives the repository root as its working directory and the relative
file paths on stdin, one per line; every stdout line must be an object with
optional ``symbols``, ``calls``, ``modules`` and ``patterns`` lists.
"""

from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path

from lexmap.core.extractors.base import SourceFile
from lexmap.core.graph.determinism import merge
from lexmap.core.graph.model import CodeGraph, parse_code_graph
from lexmap.errors import ExtractorError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600.0


class CommandExtractor:
    """Extractor backed by an external command.

    Args:
        command: Argument vector, e.g. ``["php", "bin/index.php", "--jsonl"]``.
        language: Language whose files this command handles.
        cwd: Working directory for the command (normally the repo root).
        timeout: Seconds before the command is killed.

    Malformed lines and entries are dropped and recorded in
    :attr:`warnings`; only a failing command aborts the batch.
    """

    def __init__(
        self,
        command: Sequence[str],
        language: str,
        cwd: Path | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if not command:
            raise ValueError("command must not be empty")
        self.command = list(command)
        self.language = language
        self.cwd = cwd
        self.timeout = timeout
        self.warnings: list[str] = []

    def extract(self, files: Sequence[SourceFile]) -> CodeGraph:
        self.warnings = []
        if not files:
            return CodeGraph()

        try:
            completed = subprocess.run(
                self.command,
                input="\n".join(f.path for f in files) + "\n",
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=True,
            )
        except FileNotFoundError as exc:
            raise ExtractorError(f"extractor command not found: {self.command[0]}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ExtractorError(f"extractor {self.command[0]} timed out after {self.timeout}s") from exc
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            raise ExtractorError(
                f"extractor {self.command[0]} exited with {exc.returncode}: {stderr[-500:]}"
            ) from exc

        return self.parse_output(completed.stdout)

    def parse_output(self, stdout: str) -> CodeGraph:
        """Parse JSONL output into one graph, skipping malformed lines."""
        graphs: list[CodeGraph] = []
        origin = self.command[0]
        for number, line in enumerate(stdout.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                message = f"{origin}: line {number} is not JSON ({exc.msg}), skipping it"
                logger.warning(message)
                self.warnings.append(message)
                continue
            graph, warnings = parse_code_graph(record, origin=f"{origin}:{number}")
            graphs.append(graph)
            self.warnings.extend(warnings)
        return merge(graphs)
