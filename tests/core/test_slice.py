"""Tests for symbol slices and named fact queries."""

from __future__ import annotations

import pytest

from lexmap.core.graph.model import (
    ByteSpan,
    CallEdge,
    CallSite,
    CodeGraph,
    ModuleEdge,
    PatternHit,
    ResolutionKind,
    Symbol,
    SymbolKind,
)
from lexmap.core.policy.model import parse_policy
from lexmap.core.query.facts import QUERY_TYPES, query_facts
from lexmap.core.query.slice import build_slice, find_symbol
from lexmap.errors import SymbolNotFoundError


def _sym(name: str) -> Symbol:
    return Symbol(
        id=f"function:src/{name}.py:{name}",
        fqname=f"app.{name}",
        kind=SymbolKind.FUNCTION,
        file=f"src/{name}.py",
        span=ByteSpan(0, 10),
    )


def _call(source: str, target: str, line: int = 1) -> CallEdge:
    return CallEdge(_sym(source).id, _sym(target).id, CallSite(f"src/{source}.py", line))


@pytest.fixture()
def graph() -> CodeGraph:
    """``main -> login -> check -> verify`` plus ``audit -> login``."""
    return CodeGraph(
        symbols=[_sym(n) for n in ("main", "login", "check", "verify", "audit")],
        calls=[
            _call("main", "login"),
            _call("login", "check"),
            _call("check", "verify"),
            _call("audit", "login"),
            _call("main", "login", line=9),
        ],
        modules=[ModuleEdge("api", "auth", 2), ModuleEdge("auth", "db"), ModuleEdge("api", "auth", 1)],
        patterns=[PatternHit("raw-sql", "db", "src/db.py", 3), PatternHit("raw-sql", "auth", "src/a.py", 1)],
    )


# ---------------------------------------------------------------------------
# find_symbol / build_slice
# ---------------------------------------------------------------------------


class TestFindSymbol:
    def test_by_id(self, graph: CodeGraph) -> None:
        assert find_symbol(graph, "function:src/login.py:login").fqname == "app.login"

    def test_by_fqname(self, graph: CodeGraph) -> None:
        assert find_symbol(graph, "app.check").id == "function:src/check.py:check"

    def test_missing(self, graph: CodeGraph) -> None:
        with pytest.raises(SymbolNotFoundError):
            find_symbol(graph, "app.nope")


class TestBuildSlice:
    def test_radius_one(self, graph: CodeGraph) -> None:
        result = build_slice("app.login", graph, radius=1)
        names = sorted(s.fqname for s in result.symbols)
        assert names == ["app.audit", "app.check", "app.login", "app.main"]

    def test_radius_zero_is_only_the_target(self, graph: CodeGraph) -> None:
        result = build_slice("app.login", graph, radius=0)
        assert [s.fqname for s in result.symbols] == ["app.login"]
        assert result.calls == []

    def test_calls_stay_inside_the_slice(self, graph: CodeGraph) -> None:
        result = build_slice("app.login", graph, radius=1)
        inside = {s.id for s in result.symbols}
        assert all(c.source in inside and c.target in inside for c in result.calls)
        assert _sym("verify").id not in inside

    def test_duplicate_calls_keep_first(self, graph: CodeGraph) -> None:
        result = build_slice("app.main", graph, radius=1)
        [edge] = result.calls
        assert edge.site.line == 1

    def test_symbols_sorted_by_id(self, graph: CodeGraph) -> None:
        ids = [s.id for s in build_slice("app.login", graph, radius=3).symbols]
        assert ids == sorted(ids)
        assert len(ids) == 5

    def test_to_dict(self, graph: CodeGraph) -> None:
        data = build_slice("app.verify", graph, radius=1).to_dict()
        assert data["target"]["fqname"] == "app.verify"
        assert data["fold_radius"] == 1
        assert len(data["calls"]) == 1

    def test_undeclared_endpoints_are_external(self, graph: CodeGraph) -> None:
        graph.calls.append(CallEdge(_sym("check").id, "function:vendor/hash.php:bcrypt", CallSite("src/check.py", 4)))
        result = build_slice("app.check", graph, radius=1)
        assert result.external == ["function:vendor/hash.php:bcrypt"]
        declared = {s.id for s in result.symbols} | set(result.external)
        assert all(c.source in declared and c.target in declared for c in result.calls)
        assert result.to_dict()["external"] == ["function:vendor/hash.php:bcrypt"]

    def test_fully_declared_slice_has_no_external(self, graph: CodeGraph) -> None:
        assert build_slice("app.login", graph, radius=3).external == []

    def test_unknown_symbol(self, graph: CodeGraph) -> None:
        with pytest.raises(SymbolNotFoundError):
            build_slice("missing", graph)

    def test_negative_radius(self, graph: CodeGraph) -> None:
        with pytest.raises(ValueError):
            build_slice("app.main", graph, radius=-1)


# ---------------------------------------------------------------------------
# query_facts
# ---------------------------------------------------------------------------


class TestQueryFacts:
    def test_callers(self, graph: CodeGraph) -> None:
        rows = query_facts(graph, "callers", {"symbol": "app.login"})
        assert sorted(r["from"] for r in rows) == [_sym("audit").id, _sym("main").id, _sym("main").id]

    def test_callees(self, graph: CodeGraph) -> None:
        rows = query_facts(graph, "callees", {"symbol": "app.login"})
        assert [r["to"] for r in rows] == [_sym("check").id]

    def test_callers_of_undeclared_id(self) -> None:
        graph = CodeGraph(
            calls=[CallEdge("x", "external", CallSite("x.py", 1), ResolutionKind.HEURISTIC, 0.6)]
        )
        assert len(query_facts(graph, "callers", {"symbol": "external"})) == 1

    def test_module_deps(self, graph: CodeGraph) -> None:
        rows = query_facts(graph, "module_deps", {"module": "auth"})
        assert rows == [
            {"from": "api", "to": "auth", "weight": 3},
            {"from": "auth", "to": "db", "weight": 1},
        ]

    def test_recent_patterns_limit(self, graph: CodeGraph) -> None:
        assert len(query_facts(graph, "recent_patterns", {"limit": 1})) == 1
        assert len(query_facts(graph, "recent_patterns")) == 2

    def test_violations(self, graph: CodeGraph) -> None:
        policy = parse_policy({"modules": {"db": {"allowed_callers": ["repo"]}}})
        result = query_facts(graph, "violations", {}, policy)
        assert [v["from_module"] for v in result["violations"]] == ["auth"]

    def test_missing_argument(self, graph: CodeGraph) -> None:
        with pytest.raises(ValueError, match="symbol"):
            query_facts(graph, "callers", {})

    def test_unknown_type(self, graph: CodeGraph) -> None:
        with pytest.raises(ValueError, match="unknown query type"):
            query_facts(graph, "dead_code")

    def test_every_type_is_listed(self) -> None:
        assert set(QUERY_TYPES) == {"callers", "callees", "module_deps", "recent_patterns", "violations"}
