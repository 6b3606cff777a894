"""Named fact queries over a loaded graph.

Each query returns plain JSON-serialisable data so the CLI and the MCP
server can print it directly.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from lexmap.core.graph.model import CodeGraph
from lexmap.core.policy.checker import check_policy
from lexmap.core.policy.model import Policy
from lexmap.core.query.slice import find_symbol
from lexmap.errors import SymbolNotFoundError

QUERY_TYPES = ("callers", "callees", "module_deps", "recent_patterns", "violations")


def _symbol_id(graph: CodeGraph, args: dict[str, Any]) -> str:
    ref = args.get("symbol")
    if not isinstance(ref, str) or not ref:
        raise ValueError("query needs a 'symbol' argument")
    # Call edges may name symbols no extractor declared; fall back to the raw id.
    try:
        return find_symbol(graph, ref).id
    except SymbolNotFoundError:
        return ref


def _callers(graph: CodeGraph, args: dict[str, Any], policy: Policy) -> Any:
    symbol_id = _symbol_id(graph, args)
    return [c.to_dict() for c in graph.calls if c.target == symbol_id]


def _callees(graph: CodeGraph, args: dict[str, Any], policy: Policy) -> Any:
    symbol_id = _symbol_id(graph, args)
    return [c.to_dict() for c in graph.calls if c.source == symbol_id]


def _module_deps(graph: CodeGraph, args: dict[str, Any], policy: Policy) -> Any:
    module = args.get("module")
    if not isinstance(module, str) or not module:
        raise ValueError("module_deps needs a 'module' argument")

    totals: dict[tuple[str, str], int] = {}
    for edge in graph.modules:
        if module in (edge.source, edge.target):
            key = (edge.source, edge.target)
            totals[key] = totals.get(key, 0) + edge.weight
    return [
        {"from": source, "to": target, "weight": weight}
        for (source, target), weight in sorted(totals.items())
    ]


def _recent_patterns(graph: CodeGraph, args: dict[str, Any], policy: Policy) -> Any:
    limit = args.get("limit")
    hits = [p.to_dict() for p in graph.patterns]
    return hits if not isinstance(limit, int) else hits[:limit]


def _violations(graph: CodeGraph, args: dict[str, Any], policy: Policy) -> Any:
    return {"violations": [v.to_dict() for v in check_policy(graph, policy)]}


_HANDLERS: dict[str, Callable[[CodeGraph, dict[str, Any], Policy], Any]] = {
    "callers": _callers,
    "callees": _callees,
    "module_deps": _module_deps,
    "recent_patterns": _recent_patterns,
    "violations": _violations,
}


def query_facts(
    graph: CodeGraph,
    query_type: str,
    args: dict[str, Any] | None = None,
    policy: Policy | None = None,
) -> Any:
    """Run the query named *query_type* against *graph*.

    Raises:
        ValueError: For an unknown query type or missing arguments.
    """
    handler = _HANDLERS.get(query_type)
    if handler is None:
        raise ValueError(f"unknown query type {query_type!r}; expected one of {', '.join(QUERY_TYPES)}")
    return handler(graph, args or {}, policy or Policy())
