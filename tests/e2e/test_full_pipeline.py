"""End-to-end tests for the full LexMap pipeline.

Creates a mixed Python / TypeScript / PHP repository in a temp directory,
indexes it into a KuzuDB frame store, and verifies that every layer, from
extraction through storage to policy checks and MCP tool queries, agrees.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from lexmap.core.frames.builder import FrameKind, Scope
from lexmap.core.ingestion.persist import load_graph, load_metrics
from lexmap.core.ingestion.pipeline import IndexResult, run_index
from lexmap.core.policy.checker import ViolationKind, check_policy
from lexmap.core.policy.model import load_policy
from lexmap.core.query.adjacency import build_adjacency
from lexmap.core.query.neighborhood import build_atlas_frame
from lexmap.core.query.slice import build_slice
from lexmap.core.storage.factory import open_store
from lexmap.core.storage.kuzu_backend import KuzuFrameStore
from lexmap.mcp.tools import handle_policy_check, handle_query

SCOPE = Scope(repo="shop", commit="c0ffee")

POLICY = {
    "modules": {
        "payments": {"allowed_callers": ["orders"], "requires_permissions": ["payments:charge"]},
        "legacy": {},
    },
    "kill_patterns": [{"kind": "raw-sql", "match": r"mysql_query\("}],
}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_repo(tmp_path: Path) -> Path:
    """Create a multi-language sample repository.

    Layout::

        sample_repo/
        +-- lexmap.policy.json
        +-- src/
        |   +-- checkout/cart.py       checkout() -> payments.gateway.charge()
        |   +-- payments/gateway.py    charge()
        +-- web/ui/
        |   +-- button.ts              click() -> format()
        |   +-- format.ts              format()
        +-- legacy/Billing/
            +-- Invoice.php            total() -> $this->sum(), sum() uses mysql_query
    """
    (tmp_path / "src" / "checkout").mkdir(parents=True)
    (tmp_path / "src" / "payments").mkdir(parents=True)
    (tmp_path / "web" / "ui").mkdir(parents=True)
    (tmp_path / "legacy" / "Billing").mkdir(parents=True)

    (tmp_path / "src" / "checkout" / "cart.py").write_text(
        "from payments.gateway import charge\n"
        "\n"
        "\n"
        "def checkout(total):\n"
        "    return charge(total)\n",
        encoding="utf-8",
    )
    (tmp_path / "src" / "payments" / "gateway.py").write_text(
        "def charge(amount):\n"
        "    return amount\n",
        encoding="utf-8",
    )
    (tmp_path / "web" / "ui" / "button.ts").write_text(
        'import { format } from "./format";\n'
        "\n"
        "export function click(): string {\n"
        "  return format(1);\n"
        "}\n",
        encoding="utf-8",
    )
    (tmp_path / "web" / "ui" / "format.ts").write_text(
        "export function format(value: number): string {\n"
        "  return String(value);\n"
        "}\n",
        encoding="utf-8",
    )
    (tmp_path / "legacy" / "Billing" / "Invoice.php").write_text(
        "<?php\n"
        "\n"
        "namespace Legacy\\Billing;\n"
        "\n"
        "class Invoice\n"
        "{\n"
        "    public function total(): int\n"
        "    {\n"
        "        return $this->sum();\n"
        "    }\n"
        "\n"
        "    private function sum(): int\n"
        "    {\n"
        '        mysql_query("SELECT 1");\n'
        "        return 1;\n"
        "    }\n"
        "}\n",
        encoding="utf-8",
    )
    (tmp_path / "lexmap.policy.json").write_text(json.dumps(POLICY), encoding="utf-8")
    return tmp_path


@pytest.fixture()
def indexed(sample_repo: Path) -> tuple[KuzuFrameStore, IndexResult]:
    store = open_store("kuzu", sample_repo)
    result = run_index(sample_repo, store, scope=SCOPE, ts="2024-05-01T00:00:00+00:00", store_key="kuzu")
    yield store, result
    store.close()


# ---------------------------------------------------------------------------
# Indexing
# ---------------------------------------------------------------------------


class TestIndexing:
    def test_every_language_contributes(self, indexed: tuple[KuzuFrameStore, IndexResult]) -> None:
        _, result = indexed
        files = {s.file for s in result.graph.symbols}
        assert files == {
            "src/checkout/cart.py",
            "src/payments/gateway.py",
            "web/ui/button.ts",
            "web/ui/format.ts",
            "legacy/Billing/Invoice.php",
        }
        assert result.symbols == 7

    def test_call_edges(self, indexed: tuple[KuzuFrameStore, IndexResult]) -> None:
        _, result = indexed
        pairs = {(c.source.rsplit(":", 1)[-1], c.target.rsplit(":", 1)[-1]) for c in result.graph.calls}
        assert pairs == {("checkout", "charge"), ("click", "format"), ("Invoice.total", "Invoice.sum")}

    def test_determinism(self, indexed: tuple[KuzuFrameStore, IndexResult]) -> None:
        _, result = indexed
        assert result.report.static_edges == 2
        assert result.report.total_edges == 3
        assert result.report.rung.value == "soft"

    def test_module_edges_and_patterns(self, indexed: tuple[KuzuFrameStore, IndexResult]) -> None:
        _, result = indexed
        assert [(m.source, m.target, m.weight) for m in result.graph.modules] == [("checkout", "payments", 1)]
        [hit] = result.graph.patterns
        assert (hit.label, hit.module, hit.file, hit.line) == ("raw-sql", "legacy", "legacy/Billing/Invoice.php", 14)

    def test_rerun_is_up_to_date(self, sample_repo: Path, indexed: tuple[KuzuFrameStore, IndexResult]) -> None:
        store, _ = indexed
        again = run_index(sample_repo, store, scope=SCOPE, store_key="kuzu")
        assert again.up_to_date
        assert again.frames_written == 0


# ---------------------------------------------------------------------------
# Reading back
# ---------------------------------------------------------------------------


class TestStoredGraph:
    def test_round_trip(self, indexed: tuple[KuzuFrameStore, IndexResult]) -> None:
        store, result = indexed
        graph = load_graph(store, {"repo": "shop"})
        assert graph.stats() == result.graph.stats()
        assert {s.id for s in graph.symbols} == {s.id for s in result.graph.symbols}

    def test_survives_reopen(self, sample_repo: Path, indexed: tuple[KuzuFrameStore, IndexResult]) -> None:
        store, result = indexed
        store.close()
        reopened = open_store("kuzu", sample_repo, read_only=True)
        try:
            assert len(load_graph(reopened).calls) == 3
            assert load_metrics(reopened)["edges_total"] == 3
            assert len(reopened.get(FrameKind.SYMBOLS, {"commit": "c0ffee"})) == 1
        finally:
            reopened.close()

    def test_slice(self, indexed: tuple[KuzuFrameStore, IndexResult]) -> None:
        store, _ = indexed
        result = build_slice("checkout.cart.checkout", load_graph(store), radius=1)
        assert sorted(s.fqname for s in result.symbols) == ["checkout.cart.checkout", "payments.gateway.charge"]


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class TestPolicy:
    def test_violations(self, sample_repo: Path, indexed: tuple[KuzuFrameStore, IndexResult]) -> None:
        store, _ = indexed
        policy = load_policy(sample_repo / "lexmap.policy.json")
        violations = check_policy(load_graph(store), policy)
        assert [(v.kind, v.from_module) for v in violations] == [
            (ViolationKind.DISALLOWED_EDGE, "checkout"),
            (ViolationKind.KILL_PATTERN_DETECTED, "legacy"),
        ]

    def test_atlas_frame(self, sample_repo: Path, indexed: tuple[KuzuFrameStore, IndexResult]) -> None:
        store, _ = indexed
        policy = load_policy(sample_repo / "lexmap.policy.json")
        adjacency = build_adjacency(load_graph(store).modules)
        frame = build_atlas_frame(["checkout"], adjacency, policy, 1, timestamp="t")
        payments = next(m for m in frame["modules"] if m["id"] == "payments")
        assert payments["allowed_callers"] == ["orders"]
        assert payments["requires_permissions"] == ["payments:charge"]

    def test_mcp_tools(self, sample_repo: Path, indexed: tuple[KuzuFrameStore, IndexResult]) -> None:
        store, _ = indexed
        policy = load_policy(sample_repo / "lexmap.policy.json")
        check = json.loads(handle_policy_check(store, policy))
        assert check["count"] == 2
        patterns = json.loads(handle_query(store, policy, "recent_patterns", {"limit": 5}))
        assert [p["label"] for p in patterns] == ["raw-sql"]
