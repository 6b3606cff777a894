"""MCP server for LexMap: exposes slice, query, atlas-frame and policy tools over stdio.

The server lazily opens the KuzuDB frame store found in ``.lexmap/kuzu``
under the current working directory (or its parents) and the policy file
next to it.  ``lexmap serve`` injects a store and policy of its own choosing.

Usage::

    lexmap serve
    lexmap serve --store http --lexbrain http://localhost:8123
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Resource, TextContent, Tool

from lexmap.config.settings import KUZU_DIR, LEXMAP_DIR
from lexmap.core.policy.adjacency import PolicyGraphCache
from lexmap.core.policy.model import DEFAULT_POLICY_FILE, Policy, load_policy
from lexmap.core.query.facts import QUERY_TYPES
from lexmap.core.storage.base import FrameStore
from lexmap.core.storage.kuzu_backend import KuzuFrameStore
from lexmap.core.storage.memory import InMemoryFrameStore
from lexmap.mcp.tools import (
    handle_adjacency,
    handle_atlas_frame,
    handle_index,
    handle_policy_check,
    handle_query,
    handle_slice,
    handle_status,
)

logger = logging.getLogger(__name__)

server = Server("lexmap")

_store: FrameStore | None = None
_policy: Policy | None = None
_repo_path: Path | None = None
_store_key: str | None = None
_cache: PolicyGraphCache | None = None
_read_only = False
_lock = asyncio.Lock()

_SCOPE_SCHEMA = {
    "type": "object",
    "description": "Optional scope filter, e.g. {\"repo\": \"shop\", \"commit\": \"abc123\"}.",
}


def configure(
    store: FrameStore,
    policy: Policy,
    repo_path: Path,
    store_key: str | None = None,
    cache: PolicyGraphCache | None = None,
    *,
    read_only: bool = False,
) -> None:
    """Inject the store, policy and repository root (e.g. from ``lexmap serve``).

    The policy adjacency cache lives as long as this configuration; a fresh
    one is created when *cache* is not given.
    """
    global _store, _policy, _repo_path, _store_key, _cache, _read_only  # noqa: PLW0603
    _store, _policy, _repo_path, _store_key = store, policy, repo_path, store_key
    _cache = cache if cache is not None else PolicyGraphCache()
    _read_only = read_only


def _find_root() -> Path:
    current = Path.cwd().resolve()
    for parent in [current, *current.parents]:
        if (parent / LEXMAP_DIR / KUZU_DIR).exists():
            return parent
    return current


def _get_store() -> FrameStore:
    """Lazily open the frame store of the nearest indexed repository."""
    global _store, _repo_path, _read_only  # noqa: PLW0603
    if _store is None:
        _repo_path = _repo_path or _find_root()
        db_path = _repo_path / LEXMAP_DIR / KUZU_DIR
        if db_path.exists():
            kuzu_store = KuzuFrameStore()
            kuzu_store.initialize(db_path, read_only=True)
            _store = kuzu_store
            _read_only = True
            logger.info("Initialised frame store (read-only) from %s", db_path)
        else:
            logger.warning("No %s/%s directory found in %s or its parents", LEXMAP_DIR, KUZU_DIR, Path.cwd())
            _store = InMemoryFrameStore()
    return _store


def _get_cache() -> PolicyGraphCache:
    global _cache  # noqa: PLW0603
    if _cache is None:
        _cache = PolicyGraphCache()
    return _cache


def _get_policy() -> Policy:
    global _policy  # noqa: PLW0603
    if _policy is None:
        _policy = load_policy((_repo_path or _find_root()) / DEFAULT_POLICY_FILE)
    return _policy


TOOLS: list[Tool] = [
    Tool(
        name="lexmap_index",
        description="Index the repository and store its symbols, calls and module edges as frames.",
        inputSchema={
            "type": "object",
            "properties": {
                "cold": {
                    "type": "boolean",
                    "description": "Reindex every file even if nothing changed (default false).",
                    "default": False,
                },
            },
        },
    ),
    Tool(
        name="lexmap_slice",
        description=(
            "Return the call-graph slice around a symbol: the symbols within a "
            "number of call hops and the calls between them."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "symbol": {
                    "type": "string",
                    "description": "Symbol id or fully-qualified name.",
                },
                "radius": {
                    "type": "integer",
                    "description": "Hop distance (default 2).",
                    "default": 2,
                },
                "scope": _SCOPE_SCHEMA,
            },
            "required": ["symbol"],
        },
    ),
    Tool(
        name="lexmap_query",
        description="Run a fact query: " + ", ".join(QUERY_TYPES) + ".",
        inputSchema={
            "type": "object",
            "properties": {
                "type": {
                    "type": "string",
                    "enum": list(QUERY_TYPES),
                    "description": "Query type.",
                },
                "args": {
                    "type": "object",
                    "description": "Query arguments, e.g. {\"symbol\": \"app.auth.login\"} or {\"module\": \"billing\"}.",
                },
                "scope": _SCOPE_SCHEMA,
            },
            "required": ["type"],
        },
    ),
    Tool(
        name="lexmap_atlas_frame",
        description=(
            "Return the module neighbourhood around seed modules with each "
            "module's policy metadata and grid coordinates."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "modules": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Seed module ids as declared in the policy.",
                },
                "fold_radius": {
                    "type": "integer",
                    "description": "How many dependency hops to expand (default 1).",
                    "default": 1,
                },
                "scope": _SCOPE_SCHEMA,
            },
            "required": ["modules"],
        },
    ),
    Tool(
        name="lexmap_policy_check",
        description="Check the indexed module graph against the architecture policy and list violations.",
        inputSchema={
            "type": "object",
            "properties": {"scope": _SCOPE_SCHEMA},
        },
    ),
    Tool(
        name="lexmap_adjacency",
        description="Return the observed module adjacency and the adjacency the policy allows.",
        inputSchema={
            "type": "object",
            "properties": {"scope": _SCOPE_SCHEMA},
        },
    ),
]


def available_tools(read_only: bool) -> list[Tool]:
    """Return the tools a store opened with *read_only* can serve."""
    if read_only:
        return [tool for tool in TOOLS if tool.name != "lexmap_index"]
    return list(TOOLS)


@server.list_tools()
async def list_tools() -> list[Tool]:
    """Return the list of available LexMap tools."""
    async with _lock:
        _get_store()
    return available_tools(_read_only)


def _dispatch_tool(
    name: str,
    arguments: dict[str, Any],
    store: FrameStore,
    policy: Policy,
    cache: PolicyGraphCache | None = None,
    *,
    read_only: bool = False,
) -> str:
    """Synchronous tool dispatch, run on a worker thread."""
    scope = arguments.get("scope") or None
    if name == "lexmap_index":
        if read_only:
            return (
                "Error: the index is open read-only. "
                "Run `lexmap index`, or start the server with `lexmap serve`."
            )
        return handle_index(
            store,
            policy,
            _repo_path or _find_root(),
            cold=bool(arguments.get("cold", False)),
            store_key=_store_key,
        )
    elif name == "lexmap_slice":
        return handle_slice(store, arguments.get("symbol", ""), radius=int(arguments.get("radius", 2)), scope=scope)
    elif name == "lexmap_query":
        return handle_query(store, policy, arguments.get("type", ""), arguments.get("args") or {}, scope=scope)
    elif name == "lexmap_atlas_frame":
        return handle_atlas_frame(
            store,
            policy,
            arguments.get("modules") or [],
            fold_radius=int(arguments.get("fold_radius", 1)),
            scope=scope,
        )
    elif name == "lexmap_policy_check":
        return handle_policy_check(store, policy, scope=scope)
    elif name == "lexmap_adjacency":
        return handle_adjacency(store, policy, scope=scope, cache=cache)
    else:
        return f"Unknown tool: {name}"


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Dispatch a tool call to the appropriate handler."""
    async with _lock:
        store = _get_store()
        policy = _get_policy()
        result = await asyncio.to_thread(
            _dispatch_tool, name, arguments or {}, store, policy, _get_cache(), read_only=_read_only
        )
    return [TextContent(type="text", text=result)]


@server.list_resources()
async def list_resources() -> list[Resource]:
    """Return the list of available LexMap resources."""
    return [
        Resource(
            uri="lexmap://policy",
            name="Architecture Policy",
            description="The policy document the index is checked against.",
            mimeType="application/json",
        ),
        Resource(
            uri="lexmap://metrics",
            name="Index Metrics",
            description="Determinism ratio, edge counts and timings of the latest indexing run.",
            mimeType="application/json",
        ),
    ]


@server.read_resource()
async def read_resource(uri: Any) -> str:
    """Read a specific LexMap resource."""
    uri_str = str(uri)
    async with _lock:
        if uri_str == "lexmap://policy":
            return json.dumps(_get_policy().raw, indent=2, sort_keys=True)
        if uri_str == "lexmap://metrics":
            return await asyncio.to_thread(handle_status, _get_store())
    return f"Unknown resource: {uri_str}"


async def main() -> None:
    """Run the LexMap MCP server over stdio transport."""
    async with stdio_server() as (read, write):
        await server.run(read, write, server.create_initialization_options())


if __name__ == "__main__":
    asyncio.run(main())
