"""Indexing pipeline for LexMap.

Walks a repository, runs one extractor per language concurrently, merges
their graphs, accounts for determinism, and persists the result as
content-addressed frames.

Phases executed:
    1. File walking (default ignores + ``.gitignore``, content hashes)
    2. Change detection against ``.lexmap/meta.json``
    3. Extraction, fanned out per language on a thread pool
    4. Merge + determinism accounting (heuristics ladder)
    5. Frame building and storage (symbols, calls, modules, patterns)
    6. Metrics frame

Extraction always covers the whole file set: call resolution is
cross-file, so a changed file can alter edges that start in an unchanged
one.  Change detection decides *whether* a run is needed; when nothing
changed since the previous run the pipeline stops after phase 2.
"""

from __future__ import annotations

import json
import logging
import math
import sys
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from lexmap import __version__
from lexmap.config.ignore import load_gitignore
from lexmap.config.languages import EXTRACTOR_FOR_LANGUAGE
from lexmap.config.settings import META_FILE, IndexSettings, lexmap_dir
from lexmap.core.extractors.base import Extractor, SourceFile
from lexmap.core.extractors.command import CommandExtractor
from lexmap.core.extractors.modules import ModuleResolver
from lexmap.core.extractors.php_lang import PhpExtractor
from lexmap.core.extractors.python_lang import PythonExtractor
from lexmap.core.extractors.typescript import TypeScriptExtractor
from lexmap.core.frames.builder import FrameKind, Scope, build_frames
from lexmap.core.frames.codec import Codec
from lexmap.core.frames.hashing import sha256_hex
from lexmap.core.graph.determinism import (
    DeterminismReport,
    HeuristicsMode,
    apply_rung,
    assess,
    ceiling_rung,
    merge,
)
from lexmap.core.graph.model import CodeGraph
from lexmap.core.ingestion.git import head_commit, repo_name
from lexmap.core.ingestion.walker import FileEntry, walk_repo
from lexmap.core.policy.model import Policy, load_policy
from lexmap.core.storage.base import FrameStore

logger = logging.getLogger(__name__)

_BUILTIN_EXTRACTORS: dict[str, type] = {
    "python": PythonExtractor,
    "typescript": TypeScriptExtractor,
    "php": PhpExtractor,
}

_GRAPH_KINDS: tuple[tuple[FrameKind, str], ...] = (
    (FrameKind.SYMBOLS, "symbols"),
    (FrameKind.CALLS, "calls"),
    (FrameKind.MODULES, "modules"),
    (FrameKind.PATTERNS, "patterns"),
)


@dataclass
class IndexResult:
    """Summary of an indexing run."""

    repo: str = ""
    commit: str = ""
    inputs_hash: str = ""
    files: int = 0
    changed_files: int = 0
    incremental: bool = False
    up_to_date: bool = False
    symbols: int = 0
    calls: int = 0
    modules: int = 0
    patterns: int = 0
    frames_written: int = 0
    frames_total: int = 0
    report: DeterminismReport | None = None
    metrics: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    graph: CodeGraph = field(default_factory=CodeGraph, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "repo": self.repo,
            "commit": self.commit,
            "inputs_hash": self.inputs_hash,
            "files": self.files,
            "changed_files": self.changed_files,
            "incremental": self.incremental,
            "up_to_date": self.up_to_date,
            "symbols": self.symbols,
            "calls": self.calls,
            "modules": self.modules,
            "patterns": self.patterns,
            "frames_written": self.frames_written,
            "frames_total": self.frames_total,
            "determinism": self.report.to_dict() if self.report else None,
            "metrics": dict(self.metrics),
            "warnings": list(self.warnings),
        }


def read_meta(repo_path: Path) -> dict[str, Any]:
    """Return the previous run's metadata, or ``{}`` when absent or unreadable."""
    meta_path = lexmap_dir(repo_path) / META_FILE
    if not meta_path.is_file():
        return {}
    try:
        data = json.loads(meta_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        logger.warning("Ignoring unreadable %s", meta_path, exc_info=True)
        return {}
    return data if isinstance(data, dict) else {}


def write_meta(repo_path: Path, meta: dict[str, Any]) -> None:
    directory = lexmap_dir(repo_path)
    directory.mkdir(parents=True, exist_ok=True)
    (directory / META_FILE).write_text(json.dumps(meta, indent=2, sort_keys=True), encoding="utf-8")


def changed_paths(files: list[FileEntry], previous: dict[str, str]) -> list[str]:
    """Return paths added, modified or removed since *previous* (path -> sha256)."""
    current = {f.path: f.sha256 for f in files}
    changed = {path for path, digest in current.items() if previous.get(path) != digest}
    changed.update(path for path in previous if path not in current)
    return sorted(changed)


def compute_inputs_hash(
    files: list[FileEntry],
    policy: Policy,
    settings: IndexSettings,
) -> str:
    """Hash every input that determines the extracted facts."""
    inputs = {
        "versions": {
            "lexmap": __version__,
            "python": f"{sys.version_info.major}.{sys.version_info.minor}",
        },
        "config": settings.fingerprint(),
        "files": [[f.path, f.sha256] for f in files],
        "policy": policy.content_hash,
    }
    return sha256_hex(inputs)


def p95(values: list[float]) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    return ordered[min(len(ordered) - 1, math.floor(len(ordered) * 0.95))]


def build_extractors(
    repo_path: Path,
    policy: Policy,
    settings: IndexSettings,
) -> dict[str, Extractor]:
    """Return one extractor per extractor language.

    A command configured for a language replaces the built-in extractor.
    """
    resolver = ModuleResolver(policy)
    extractors: dict[str, Extractor] = {}
    for language, extractor_cls in _BUILTIN_EXTRACTORS.items():
        command = settings.commands.get(language)
        if command:
            extractors[language] = CommandExtractor(command, language, cwd=repo_path)
        else:
            extractors[language] = extractor_cls(resolver, policy.kill_patterns)
    for language, command in settings.commands.items():
        if language not in extractors:
            extractors[language] = CommandExtractor(command, language, cwd=repo_path)
    return extractors


def group_files(files: list[FileEntry], extractors: dict[str, Extractor]) -> dict[str, list[SourceFile]]:
    groups: dict[str, list[SourceFile]] = {}
    for entry in files:
        language = entry.language if entry.language in extractors else EXTRACTOR_FOR_LANGUAGE.get(entry.language)
        if language is None or language not in extractors:
            continue
        groups.setdefault(language, []).append(entry.to_source())
    return groups


def extract_all(
    groups: dict[str, list[SourceFile]],
    extractors: dict[str, Extractor],
    workers: int,
    warnings: list[str],
) -> CodeGraph:
    """Run each extractor on its files concurrently and merge the results.

    Graphs are merged in language order once every extractor finished, so
    the merged graph does not depend on completion order.  A failing
    extractor contributes an empty graph and a warning.
    """
    languages = sorted(groups)
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {lang: executor.submit(extractors[lang].extract, groups[lang]) for lang in languages}

    graphs: list[CodeGraph] = []
    for language in languages:
        extractor = extractors[language]
        try:
            graphs.append(futures[language].result())
        except Exception as exc:
            message = f"{language} extractor failed on {len(groups[language])} file(s): {exc}"
            logger.warning(message, exc_info=True)
            warnings.append(message)
            graphs.append(CodeGraph())
        warnings.extend(getattr(extractor, "warnings", []))
    return merge(graphs)


def settle_rung(graph: CodeGraph, policy: Policy, settings: IndexSettings) -> tuple[CodeGraph, DeterminismReport]:
    """Return the graph to persist and the rung the run settles on.

    In ``auto`` mode the merged graph is kept whole.  ``off`` and ``hard``
    restrict it to the edges their ceiling rung admits.  The ratio is
    measured once on that graph; climbing the ladder only moves the
    reported rung and never drops or re-extracts edges.
    """
    mode = HeuristicsMode(settings.heuristics) if policy.heuristics.enabled else HeuristicsMode.OFF
    target = settings.target_or(policy.determinism_target)

    admitted = graph
    if mode is not HeuristicsMode.AUTO:
        admitted = apply_rung(graph, ceiling_rung(mode), policy.heuristics.hard, policy.heuristics.soft)

    report = assess(admitted, target, mode)
    while report.escalate and report.next_rung is not None:
        logger.info("Escalating heuristics from %s to %s", report.rung.value, report.next_rung.value)
        report = assess(admitted, target, mode, report.next_rung)
    return admitted, report


def run_index(
    repo_path: Path,
    store: FrameStore,
    policy: Policy | None = None,
    settings: IndexSettings | None = None,
    *,
    scope: Scope | None = None,
    codec: Codec | None = None,
    ts: str | None = None,
    store_key: str | None = "",
    progress_callback: Callable[[str, float], None] | None = None,
) -> IndexResult:
    """Index *repo_path* and persist its facts into *store*.

    Parameters
    ----------
    repo_path:
        Root directory of the repository to index.
    store:
        An already-initialised frame store.
    policy:
        Loaded policy; read from ``settings.policy_file`` when ``None``.
    settings:
        Run settings; defaults to :class:`IndexSettings`.
    scope:
        Frame scope; defaults to the repository name and ``HEAD`` commit.
    codec:
        Payload codec for the frames (gzip by default).
    ts:
        Timestamp stamped on every frame, for reproducible output.
    store_key:
        Identifies *store* in ``.lexmap/meta.json`` so that a run is only
        skipped as unchanged against the same store.  ``None`` leaves the
        metadata untouched (for throwaway stores such as the in-memory one).
    progress_callback:
        Optional ``(phase_name, progress)`` callback.

    Returns
    -------
    IndexResult
        Counts, determinism report, metrics and warnings for the run.
    """
    start = time.monotonic()
    ts = ts or datetime.now(tz=timezone.utc).isoformat()
    repo_path = repo_path.resolve()
    settings = settings or IndexSettings()
    if policy is None:
        policy = load_policy(repo_path / settings.policy_file)

    def report(phase: str, pct: float) -> None:
        if progress_callback is not None:
            progress_callback(phase, pct)

    result = IndexResult(warnings=list(policy.warnings))
    scope = scope or Scope(repo=repo_name(repo_path), commit=head_commit(repo_path))
    result.repo, result.commit = scope.repo, scope.commit

    report("Walking files", 0.0)
    files = walk_repo(repo_path, load_gitignore(repo_path), max_workers=settings.workers)
    result.files = len(files)
    report("Walking files", 1.0)

    previous = {} if settings.cold or store_key is None else read_meta(repo_path)
    previous_files = previous.get("files") if isinstance(previous.get("files"), dict) else {}
    result.incremental = bool(previous)
    changed = changed_paths(files, previous_files)
    result.changed_files = len(changed)
    result.inputs_hash = compute_inputs_hash(files, policy, settings)

    if (
        previous
        and previous.get("inputs_hash") == result.inputs_hash
        and previous.get("scope") == scope.to_dict()
        and previous.get("store", "") == store_key
    ):
        logger.info("No changes since last run (%s), skipping extraction", result.inputs_hash[:12])
        result.up_to_date = True
        result.duration_seconds = time.monotonic() - start
        return result

    report("Extracting facts", 0.0)
    extractors = build_extractors(repo_path, policy, settings)
    groups = group_files(files, extractors)
    merged = extract_all(groups, extractors, settings.workers, result.warnings)
    report("Extracting facts", 1.0)

    graph, determinism = settle_rung(merged, policy, settings)
    result.graph = graph
    result.report = determinism
    result.symbols, result.calls = len(graph.symbols), len(graph.calls)
    result.modules, result.patterns = len(graph.modules), len(graph.patterns)

    report("Storing frames", 0.0)
    put_ms: list[float] = []
    stats = {key: float(value) for key, value in graph.stats().items()}
    for kind, section in _GRAPH_KINDS:
        payload = [record.to_dict() for record in getattr(graph, section)]
        frames = build_frames(
            kind,
            scope,
            result.inputs_hash,
            payload,
            max_bytes=settings.max_bytes,
            codec=codec,
            stats=stats,
            ts=ts,
        )
        for frame in frames:
            put_start = time.perf_counter()
            outcome = store.put(frame)
            put_ms.append((time.perf_counter() - put_start) * 1000)
            result.frames_total += 1
            if outcome.inserted:
                result.frames_written += 1
    report("Storing frames", 1.0)

    # The metrics frame is the run record: its inputs_hash names the facts
    # that are current, even when they were stored by an earlier run.
    result.metrics = {
        "inputs_hash": result.inputs_hash,
        "indexed_at": ts,
        "det_ratio": determinism.ratio,
        "edges_static": determinism.static_edges,
        "edges_total": determinism.total_edges,
        "rung": determinism.rung.value,
        "files": result.files,
        "changed_files": result.changed_files,
        "frames_written": result.frames_written,
        "wall_ms": round((time.monotonic() - start) * 1000, 3),
        "put_p95_ms": round(p95(put_ms), 3),
    }
    for frame in build_frames(FrameKind.METRICS, scope, result.inputs_hash, result.metrics, codec=codec, ts=ts):
        store.put(frame)

    if store_key is not None:
        write_meta(
            repo_path,
            {
                "inputs_hash": result.inputs_hash,
                "scope": scope.to_dict(),
                "store": store_key,
                "files": {f.path: f.sha256 for f in files},
                "version": __version__,
            },
        )

    result.duration_seconds = time.monotonic() - start
    logger.info(
        "Indexed %d file(s): %d symbol(s), %d call(s), %d frame(s) written",
        result.files,
        result.symbols,
        result.calls,
        result.frames_written,
    )
    return result
