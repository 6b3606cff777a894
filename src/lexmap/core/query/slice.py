"""Bounded-radius slices of the symbol call graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from lexmap.core.graph.model import CallEdge, CodeGraph, Symbol
from lexmap.core.query.traversal import bounded_bfs
from lexmap.errors import SymbolNotFoundError


@dataclass(frozen=True)
class GraphSlice:
    """The target symbol plus everything within ``fold_radius`` call hops.

    ``external`` lists reached call endpoints that no symbol declares, such
    as callees in files another extractor did not index.
    """

    target: Symbol
    fold_radius: int
    symbols: list[Symbol] = field(default_factory=list)
    calls: list[CallEdge] = field(default_factory=list)
    external: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target.to_dict(),
            "fold_radius": self.fold_radius,
            "symbols": [s.to_dict() for s in self.symbols],
            "calls": [c.to_dict() for c in self.calls],
            "external": list(self.external),
        }


def find_symbol(graph: CodeGraph, ref: str) -> Symbol:
    """Look *ref* up as a symbol id first, then as a fully-qualified name.

    Raises:
        SymbolNotFoundError: If neither matches.
    """
    for symbol in graph.symbols:
        if symbol.id == ref:
            return symbol
    for symbol in graph.symbols:
        if symbol.fqname == ref:
            return symbol
    raise SymbolNotFoundError(f"symbol not found: {ref}")


def build_slice(ref: str, graph: CodeGraph, radius: int = 2) -> GraphSlice:
    """Return the slice of *graph* around the symbol named by *ref*.

    Calls are treated as undirected for discovery.  Returned calls have both
    endpoints inside the slice and are deduplicated by ``(from, to)``,
    keeping the first occurrence; symbols and calls are sorted by id.  Every
    endpoint of a returned call is either in ``symbols`` or in ``external``.

    Raises:
        SymbolNotFoundError: If *ref* names no symbol.
        ValueError: If *radius* is negative.
    """
    target = find_symbol(graph, ref)

    neighbours: dict[str, set[str]] = {}
    for call in graph.calls:
        neighbours.setdefault(call.source, set()).add(call.target)
        neighbours.setdefault(call.target, set()).add(call.source)

    reached = bounded_bfs([target.id], lambda node: neighbours.get(node, ()), radius)

    symbols: dict[str, Symbol] = {}
    for symbol in graph.symbols:
        if symbol.id in reached and symbol.id not in symbols:
            symbols[symbol.id] = symbol

    calls: dict[tuple[str, str], CallEdge] = {}
    for call in graph.calls:
        pair = (call.source, call.target)
        if call.source in reached and call.target in reached and pair not in calls:
            calls[pair] = call

    return GraphSlice(
        target=target,
        fold_radius=radius,
        symbols=[symbols[key] for key in sorted(symbols)],
        calls=[calls[key] for key in sorted(calls)],
        external=sorted(reached.keys() - symbols.keys()),
    )
