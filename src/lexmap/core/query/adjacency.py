"""O(1)-lookup neighbour sets over module edges."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from lexmap.core.graph.model import ModuleEdge


def edge_key(source: str, target: str) -> str:
    return f"{source}->{target}"


@dataclass
class AdjacencyGraph:
    """Outgoing and incoming neighbour sets plus summed edge weights.

    Every module referenced by any edge is a key of both ``outgoing`` and
    ``incoming``, possibly with an empty set.
    """

    outgoing: dict[str, set[str]] = field(default_factory=dict)
    incoming: dict[str, set[str]] = field(default_factory=dict)
    weights: dict[str, int] = field(default_factory=dict)

    @property
    def modules(self) -> list[str]:
        return sorted(self.outgoing)

    def neighbours(self, module: str) -> set[str]:
        """Modules connected to *module* in either direction."""
        return self.outgoing.get(module, set()) | self.incoming.get(module, set())

    def weight(self, source: str, target: str) -> int:
        return self.weights.get(edge_key(source, target), 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "outgoing": {m: sorted(n) for m, n in sorted(self.outgoing.items())},
            "incoming": {m: sorted(n) for m, n in sorted(self.incoming.items())},
            "weights": dict(sorted(self.weights.items())),
        }


def build_adjacency(edges: Iterable[ModuleEdge]) -> AdjacencyGraph:
    """Index *edges*; duplicate ``(from, to)`` pairs have their weights summed."""
    graph = AdjacencyGraph()
    for edge in edges:
        for module in (edge.source, edge.target):
            graph.outgoing.setdefault(module, set())
            graph.incoming.setdefault(module, set())
        graph.outgoing[edge.source].add(edge.target)
        graph.incoming[edge.target].add(edge.source)
        key = edge_key(edge.source, edge.target)
        graph.weights[key] = graph.weights.get(key, 0) + edge.weight
    return graph
