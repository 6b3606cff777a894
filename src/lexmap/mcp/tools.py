"""MCP tool handler implementations for LexMap.

Each function accepts a frame store (and the policy where rules matter),
loads the latest indexed graph for the requested scope, runs one query and
returns a JSON string suitable for an MCP ``TextContent`` response.
Failures come back as an ``Error: ...`` string rather than an exception so
the agent sees the reason.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from lexmap.config.settings import IndexSettings
from lexmap.core.ingestion.persist import load_graph, load_metrics
from lexmap.core.ingestion.pipeline import run_index
from lexmap.core.policy.adjacency import PolicyGraphCache, generate_policy_adjacency
from lexmap.core.policy.checker import check_policy
from lexmap.core.policy.model import Policy
from lexmap.core.query.adjacency import build_adjacency
from lexmap.core.query.facts import query_facts
from lexmap.core.query.neighborhood import build_atlas_frame
from lexmap.core.query.slice import build_slice
from lexmap.core.storage.base import FrameStore
from lexmap.errors import LexMapError


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2, sort_keys=True)


def _error(exc: Exception) -> str:
    return f"Error: {exc}"


def _seed_list(modules: str | list[str]) -> list[str]:
    if isinstance(modules, str):
        return [m.strip() for m in modules.split(",") if m.strip()]
    return [str(m) for m in modules]


def handle_index(
    store: FrameStore,
    policy: Policy,
    repo_path: Path,
    cold: bool = False,
    store_key: str | None = None,
) -> str:
    """Index *repo_path* into *store* and summarise the run."""
    try:
        result = run_index(repo_path, store, policy, IndexSettings(cold=cold), store_key=store_key)
    except LexMapError as exc:
        return _error(exc)
    return _dump(result.to_dict())


def handle_slice(
    store: FrameStore,
    symbol: str,
    radius: int = 2,
    scope: dict[str, Any] | None = None,
) -> str:
    """Return the call-graph slice around *symbol* (id or fqname)."""
    if not symbol:
        return "Error: 'symbol' is required."
    try:
        graph = load_graph(store, scope)
        return _dump(build_slice(symbol, graph, radius).to_dict())
    except (LexMapError, ValueError) as exc:
        return _error(exc)


def handle_query(
    store: FrameStore,
    policy: Policy,
    query_type: str,
    args: dict[str, Any] | None = None,
    scope: dict[str, Any] | None = None,
) -> str:
    """Run a named fact query (callers, callees, module_deps, ...)."""
    try:
        graph = load_graph(store, scope)
        return _dump(query_facts(graph, query_type, args, policy))
    except (LexMapError, ValueError) as exc:
        return _error(exc)


def handle_atlas_frame(
    store: FrameStore,
    policy: Policy,
    modules: str | list[str],
    fold_radius: int = 1,
    scope: dict[str, Any] | None = None,
) -> str:
    """Return the module neighbourhood of *modules* with policy metadata."""
    seeds = _seed_list(modules)
    if not seeds:
        return "Error: at least one seed module is required."
    try:
        graph = load_graph(store, scope)
        return _dump(build_atlas_frame(seeds, build_adjacency(graph.modules), policy, fold_radius))
    except (LexMapError, ValueError) as exc:
        return _error(exc)


def handle_policy_check(
    store: FrameStore,
    policy: Policy,
    scope: dict[str, Any] | None = None,
) -> str:
    """Check the indexed graph against *policy* and list violations."""
    try:
        graph = load_graph(store, scope)
    except LexMapError as exc:
        return _error(exc)
    violations = check_policy(graph, policy)
    return _dump(
        {
            "ok": not violations,
            "count": len(violations),
            "violations": [v.to_dict() for v in violations],
        }
    )


def handle_adjacency(
    store: FrameStore,
    policy: Policy,
    scope: dict[str, Any] | None = None,
    cache: PolicyGraphCache | None = None,
) -> str:
    """Return both the observed module adjacency and the policy's.

    The policy side is memoised in *cache* when one is given.
    """
    try:
        graph = load_graph(store, scope)
    except LexMapError as exc:
        return _error(exc)
    return _dump(
        {
            "observed": build_adjacency(graph.modules).to_dict(),
            "policy": generate_policy_adjacency(policy, cache).to_dict(),
        }
    )


def handle_status(store: FrameStore, scope: dict[str, Any] | None = None) -> str:
    """Return the metrics of the latest indexing run."""
    try:
        metrics = load_metrics(store, scope)
    except LexMapError as exc:
        return _error(exc)
    if metrics is None:
        return "No index found. Run `lexmap index` on the project first."
    return _dump(metrics)
