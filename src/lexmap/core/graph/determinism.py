"""Determinism accounting for merged code graphs.

Merges per-extractor graphs and reports how much of the call graph was
resolved with certainty.  When the static share falls below the policy's
target the caller is told to climb the heuristics ladder::

    static-only  ->  hard (confidence >= 0.95)  ->  soft (confidence >= 0.6)

The accountant never re-runs extraction; it reports the ratio and the rung
in effect, and can filter a graph's heuristic edges down to a rung.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from lexmap.core.graph.model import CallEdge, CodeGraph

logger = logging.getLogger(__name__)

DEFAULT_HARD_THRESHOLD = 0.95
DEFAULT_SOFT_THRESHOLD = 0.6


class HeuristicsMode(Enum):
    """How far the ladder may be climbed."""

    OFF = "off"
    HARD = "hard"
    AUTO = "auto"


class HeuristicsRung(Enum):
    """Rungs of the heuristics ladder, in escalation order."""

    STATIC_ONLY = "static"
    HARD = "hard"
    SOFT = "soft"


_LADDER: tuple[HeuristicsRung, ...] = (
    HeuristicsRung.STATIC_ONLY,
    HeuristicsRung.HARD,
    HeuristicsRung.SOFT,
)

_CEILING: dict[HeuristicsMode, HeuristicsRung] = {
    HeuristicsMode.OFF: HeuristicsRung.STATIC_ONLY,
    HeuristicsMode.HARD: HeuristicsRung.HARD,
    HeuristicsMode.AUTO: HeuristicsRung.SOFT,
}


def heuristics_ladder() -> list[str]:
    """Return the ladder as plain labels, lowest rung first."""
    return [rung.value for rung in _LADDER]


def initial_rung(mode: HeuristicsMode) -> HeuristicsRung:
    """Return the rung a run starts on for *mode*."""
    if mode is HeuristicsMode.OFF:
        return HeuristicsRung.STATIC_ONLY
    return HeuristicsRung.HARD


def ceiling_rung(mode: HeuristicsMode) -> HeuristicsRung:
    """Return the highest rung *mode* may reach."""
    return _CEILING[mode]


def rung_threshold(
    rung: HeuristicsRung,
    hard: float = DEFAULT_HARD_THRESHOLD,
    soft: float = DEFAULT_SOFT_THRESHOLD,
) -> float | None:
    """Return the minimum confidence a heuristic edge needs on *rung*.

    ``None`` means no heuristic edge is admitted.
    """
    if rung is HeuristicsRung.STATIC_ONLY:
        return None
    if rung is HeuristicsRung.HARD:
        return hard
    return soft


def merge(graphs: Iterable[CodeGraph]) -> CodeGraph:
    """Concatenate several graphs into one, preserving order.

    No identity merge or conflict resolution is performed.
    """
    merged = CodeGraph()
    for graph in graphs:
        merged.symbols.extend(graph.symbols)
        merged.calls.extend(graph.calls)
        merged.modules.extend(graph.modules)
        merged.patterns.extend(graph.patterns)
    return merged


def count_static(calls: Iterable[CallEdge]) -> int:
    return sum(1 for call in calls if call.is_static)


def determinism_ratio(graph: CodeGraph) -> float:
    """Return the fraction of call edges that are static.

    A graph with no calls is vacuously deterministic (``1.0``).
    """
    total = len(graph.calls)
    if total == 0:
        return 1.0
    return count_static(graph.calls) / total


@dataclass(frozen=True)
class DeterminismReport:
    """Outcome of comparing a graph's determinism ratio to its target."""

    ratio: float
    static_edges: int
    total_edges: int
    target: float
    mode: HeuristicsMode
    rung: HeuristicsRung
    below_target: bool
    escalate: bool
    next_rung: HeuristicsRung | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "det_ratio": self.ratio,
            "edges_static": self.static_edges,
            "edges_total": self.total_edges,
            "target": self.target,
            "mode": self.mode.value,
            "rung": self.rung.value,
            "below_target": self.below_target,
            "escalate": self.escalate,
            "next_rung": self.next_rung.value if self.next_rung else None,
        }


def assess(
    graph: CodeGraph,
    target: float,
    mode: HeuristicsMode = HeuristicsMode.AUTO,
    rung: HeuristicsRung | None = None,
) -> DeterminismReport:
    """Compare *graph*'s determinism ratio against *target*.

    The target is an inclusive floor: a ratio equal to it is not below
    target.  Escalation is only signalled when heuristics are enabled and
    the mode's ceiling leaves a higher rung to climb to.

    Args:
        graph: The merged graph to assess.
        target: Minimum acceptable ratio in ``[0, 1]``.
        mode: Heuristics mode bounding the ladder.
        rung: Rung currently in effect; defaults to the mode's starting rung.
    """
    current = rung if rung is not None else initial_rung(mode)
    ceiling = _CEILING[mode]
    if _LADDER.index(current) > _LADDER.index(ceiling):
        current = ceiling

    static_edges = count_static(graph.calls)
    total_edges = len(graph.calls)
    ratio = static_edges / total_edges if total_edges else 1.0
    below = ratio < target

    next_rung: HeuristicsRung | None = None
    if below and mode is not HeuristicsMode.OFF and current is not ceiling:
        next_rung = _LADDER[_LADDER.index(current) + 1]

    if below:
        logger.info(
            "Determinism %.3f below target %.3f on rung %s (next: %s)",
            ratio,
            target,
            current.value,
            next_rung.value if next_rung else "none",
        )

    return DeterminismReport(
        ratio=ratio,
        static_edges=static_edges,
        total_edges=total_edges,
        target=target,
        mode=mode,
        rung=current,
        below_target=below,
        escalate=next_rung is not None,
        next_rung=next_rung,
    )


def apply_rung(
    graph: CodeGraph,
    rung: HeuristicsRung,
    hard: float = DEFAULT_HARD_THRESHOLD,
    soft: float = DEFAULT_SOFT_THRESHOLD,
) -> CodeGraph:
    """Return a copy of *graph* keeping only the call edges *rung* admits.

    Static edges are always kept.  Symbols, module edges and pattern hits
    pass through untouched.
    """
    threshold = rung_threshold(rung, hard, soft)
    calls = [
        call
        for call in graph.calls
        if call.is_static or (threshold is not None and call.confidence >= threshold)
    ]
    return CodeGraph(
        symbols=list(graph.symbols),
        calls=calls,
        modules=list(graph.modules),
        patterns=list(graph.patterns),
    )
