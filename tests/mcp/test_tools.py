"""Tests for LexMap MCP tool handlers.

The handlers run against an in-memory frame store filled by a real
indexing run over a small temporary repository.
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from lexmap.core.frames.builder import Scope
from lexmap.core.ingestion.pipeline import run_index
from lexmap.core.policy.adjacency import PolicyGraphCache
from lexmap.core.policy.model import parse_policy
from lexmap.core.storage.factory import open_store
from lexmap.core.storage.memory import InMemoryFrameStore
from lexmap.errors import FrameStoreError
from lexmap.mcp import server
from lexmap.mcp.server import TOOLS, _dispatch_tool, available_tools, configure
from lexmap.mcp.tools import (
    handle_adjacency,
    handle_atlas_frame,
    handle_index,
    handle_policy_check,
    handle_query,
    handle_slice,
    handle_status,
)

POLICY = parse_policy({"modules": {"billing": {"allowed_callers": ["checkout"], "feature_flags": ["invoices"]}}})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    auth = tmp_path / "src" / "auth"
    billing = tmp_path / "src" / "billing"
    auth.mkdir(parents=True)
    billing.mkdir(parents=True)
    (auth / "service.py").write_text(
        "from billing.invoice import make_invoice\n\n\ndef login(user):\n    return make_invoice(user)\n",
        encoding="utf-8",
    )
    (billing / "invoice.py").write_text("def make_invoice(amount):\n    return amount\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def store(repo: Path) -> InMemoryFrameStore:
    memory = InMemoryFrameStore()
    run_index(repo, memory, POLICY, scope=Scope("shop", "abc123"), store_key=None)
    return memory


@pytest.fixture
def failing_store() -> MagicMock:
    broken = MagicMock()
    broken.get.side_effect = FrameStoreError("fact store unreachable")
    return broken


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class TestHandleIndex:
    def test_summary(self, repo: Path) -> None:
        result = json.loads(handle_index(InMemoryFrameStore(), POLICY, repo))
        assert result["symbols"] == 2
        assert result["calls"] == 1
        assert result["determinism"]["det_ratio"] == 1.0


class TestHandleSlice:
    def test_slice(self, store: InMemoryFrameStore) -> None:
        result = json.loads(handle_slice(store, "auth.service.login", radius=1))
        assert result["target"]["fqname"] == "auth.service.login"
        assert len(result["symbols"]) == 2

    def test_missing_symbol(self, store: InMemoryFrameStore) -> None:
        assert handle_slice(store, "").startswith("Error:")
        assert handle_slice(store, "nope.nothing").startswith("Error:")

    def test_scope_filter(self, store: InMemoryFrameStore) -> None:
        assert handle_slice(store, "auth.service.login", scope={"repo": "other"}).startswith("Error:")

    def test_store_failure(self, failing_store: MagicMock) -> None:
        assert handle_slice(failing_store, "x") == "Error: fact store unreachable"


class TestHandleQuery:
    def test_callers(self, store: InMemoryFrameStore) -> None:
        rows = json.loads(handle_query(store, POLICY, "callers", {"symbol": "billing.invoice.make_invoice"}))
        assert [row["from"] for row in rows] == ["function:src/auth/service.py:login"]

    def test_violations(self, store: InMemoryFrameStore) -> None:
        result = json.loads(handle_query(store, POLICY, "violations"))
        assert [v["kind"] for v in result["violations"]] == ["disallowed_edge"]

    def test_unknown_type(self, store: InMemoryFrameStore) -> None:
        assert "unknown query type" in handle_query(store, POLICY, "dead_code")


class TestHandleAtlasFrame:
    def test_comma_separated_seeds(self, store: InMemoryFrameStore) -> None:
        frame = json.loads(handle_atlas_frame(store, POLICY, "auth, billing", fold_radius=0))
        assert frame["seed_modules"] == ["auth", "billing"]
        billing = next(m for m in frame["modules"] if m["id"] == "billing")
        assert billing["feature_flags"] == ["invoices"]

    def test_no_seeds(self, store: InMemoryFrameStore) -> None:
        assert handle_atlas_frame(store, POLICY, []).startswith("Error:")


class TestHandlePolicyCheck:
    def test_reports_violation(self, store: InMemoryFrameStore) -> None:
        result = json.loads(handle_policy_check(store, POLICY))
        assert result["ok"] is False
        assert result["count"] == 1

    def test_store_failure(self, failing_store: MagicMock) -> None:
        assert handle_policy_check(failing_store, POLICY).startswith("Error:")


class TestHandleAdjacency:
    def test_observed_and_policy(self, store: InMemoryFrameStore) -> None:
        result = json.loads(handle_adjacency(store, POLICY))
        assert result["observed"]["outgoing"]["auth"] == ["billing"]
        assert result["policy"]["adjacency"]["billing"] == ["checkout"]

    def test_policy_side_uses_the_given_cache(self, store: InMemoryFrameStore) -> None:
        cache = PolicyGraphCache()
        first = json.loads(handle_adjacency(store, POLICY, cache=cache))
        second = json.loads(handle_adjacency(store, POLICY, cache=cache))
        assert first == second
        assert len(cache) == 1
        assert cache.get(POLICY.content_hash) is not None


class TestHandleStatus:
    def test_metrics(self, store: InMemoryFrameStore) -> None:
        metrics = json.loads(handle_status(store))
        assert metrics["edges_total"] == 1

    def test_no_index(self) -> None:
        assert handle_status(InMemoryFrameStore()).startswith("No index found")


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    def test_every_tool_dispatches(self) -> None:
        names = {tool.name for tool in TOOLS}
        assert names == {
            "lexmap_index",
            "lexmap_slice",
            "lexmap_query",
            "lexmap_atlas_frame",
            "lexmap_policy_check",
            "lexmap_adjacency",
        }

    def test_query(self, store: InMemoryFrameStore) -> None:
        text = _dispatch_tool(
            "lexmap_query",
            {"type": "module_deps", "args": {"module": "billing"}},
            store,
            POLICY,
        )
        assert json.loads(text) == [{"from": "auth", "to": "billing", "weight": 1}]

    def test_slice_with_scope(self, store: InMemoryFrameStore) -> None:
        text = _dispatch_tool(
            "lexmap_slice",
            {"symbol": "auth.service.login", "radius": 0, "scope": {"repo": "shop"}},
            store,
            POLICY,
        )
        assert json.loads(text)["symbols"][0]["fqname"] == "auth.service.login"

    def test_unknown_tool(self, store: InMemoryFrameStore) -> None:
        assert _dispatch_tool("lexmap_nope", {}, store, POLICY) == "Unknown tool: lexmap_nope"


# ---------------------------------------------------------------------------
# Server configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def server_state(monkeypatch: pytest.MonkeyPatch) -> None:
    """Restore the server's injected state after each test."""
    for name in ("_store", "_policy", "_repo_path", "_store_key", "_cache", "_read_only"):
        monkeypatch.setattr(server, name, getattr(server, name))


class TestServerConfiguration:
    def test_configure_owns_a_fresh_cache(self, server_state: None, store: InMemoryFrameStore, repo: Path) -> None:
        configure(store, POLICY, repo)
        first = server._get_cache()
        configure(store, POLICY, repo)
        assert server._get_cache() is not first

    def test_configure_keeps_an_injected_cache(
        self, server_state: None, store: InMemoryFrameStore, repo: Path
    ) -> None:
        cache = PolicyGraphCache()
        configure(store, POLICY, repo, cache=cache)
        _dispatch_tool("lexmap_adjacency", {}, store, POLICY, server._get_cache())
        assert len(cache) == 1

    def test_read_only_store_hides_index_tool(self) -> None:
        names = {tool.name for tool in available_tools(read_only=True)}
        assert "lexmap_index" not in names
        assert "lexmap_slice" in names
        assert available_tools(read_only=False) == TOOLS

    def test_index_refused_on_read_only_store(self, store: InMemoryFrameStore) -> None:
        text = _dispatch_tool("lexmap_index", {}, store, POLICY, read_only=True)
        assert text.startswith("Error: the index is open read-only")

    def test_lazily_opened_index_is_read_only(self, server_state: None, repo: Path) -> None:
        open_store("kuzu", repo).close()
        server._store = None
        server._repo_path = repo
        server._read_only = False
        opened = server._get_store()
        try:
            assert server._read_only
            assert "lexmap_index" not in {tool.name for tool in available_tools(server._read_only)}
        finally:
            opened.close()
