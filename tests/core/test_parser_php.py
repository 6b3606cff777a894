"""Tests for the PHP tree-sitter parser and extractor."""

from __future__ import annotations

import pytest

from lexmap.core.extractors.base import SourceFile
from lexmap.core.extractors.php_lang import PhpExtractor, PHPParser
from lexmap.core.extractors.treesitter import NAME_MATCH_CONFIDENCE, SELF_CALL_CONFIDENCE
from lexmap.core.graph.model import CodeGraph, ResolutionKind


@pytest.fixture
def php_parser() -> PHPParser:
    return PHPParser()


INVOICE = """<?php

namespace App\\Billing;

class Invoice
{
    public static function create(int $amount): int
    {
        return $amount;
    }

    public function total(): int
    {
        return $this->subtotal() + self::tax();
    }

    private function subtotal(): int
    {
        return 10;
    }

    protected static function tax(): int
    {
        return 2;
    }
}
"""

SERVICE = """<?php

namespace App\\Auth;

use App\\Billing\\Invoice;

function bootstrap(): void
{
}

class Service
{
    public function charge($invoice): int
    {
        bootstrap();
        Invoice::create(5);
        return $invoice->total();
    }
}
"""


def _batch() -> list[SourceFile]:
    return [
        SourceFile("src/Billing/Invoice.php", INVOICE, "php"),
        SourceFile("src/Auth/Service.php", SERVICE, "php"),
    ]


def _edge(graph: CodeGraph, source: str, target: str):
    matches = [c for c in graph.calls if c.source.endswith(source) and c.target.endswith(target)]
    assert len(matches) == 1, f"expected one edge {source} -> {target}, got {matches}"
    return matches[0]


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class TestPHPParser:
    def test_namespace(self, php_parser: PHPParser) -> None:
        assert php_parser.parse(INVOICE, "Invoice.php").namespace == "App\\Billing"

    def test_methods_belong_to_their_class(self, php_parser: PHPParser) -> None:
        result = php_parser.parse(INVOICE, "Invoice.php")
        assert [d.qualname for d in result.declarations] == [
            "Invoice",
            "Invoice.create",
            "Invoice.total",
            "Invoice.subtotal",
            "Invoice.tax",
        ]

    def test_visibility_and_modifiers(self, php_parser: PHPParser) -> None:
        by_name = {d.name: d for d in php_parser.parse(INVOICE, "Invoice.php").declarations}
        assert by_name["subtotal"].visibility == "private"
        assert by_name["tax"].visibility == "protected"
        assert by_name["tax"].modifiers == ["static"]
        assert by_name["create"].modifiers == ["static"]

    def test_interface_is_a_class_with_modifier(self, php_parser: PHPParser) -> None:
        [decl] = php_parser.parse("<?php\ninterface Payable {}\n", "x.php").declarations
        assert decl.kind == "class"
        assert decl.modifiers == ["interface"]

    def test_use_binds_short_name(self, php_parser: PHPParser) -> None:
        [imp] = php_parser.parse(SERVICE, "Service.php").imports
        assert imp.module == "App\\Billing\\Invoice"
        assert imp.names == ["Invoice"]

    def test_use_alias(self, php_parser: PHPParser) -> None:
        [imp] = php_parser.parse("<?php\nuse App\\Billing\\Invoice as Bill;\n", "x.php").imports
        assert imp.names == ["Bill"]

    def test_call_receivers(self, php_parser: PHPParser) -> None:
        invoice_calls = php_parser.parse(INVOICE, "Invoice.php").calls
        service_calls = php_parser.parse(SERVICE, "Service.php").calls
        assert [(c.name, c.receiver) for c in invoice_calls] == [("subtotal", "$this"), ("tax", "self")]
        assert [(c.name, c.receiver) for c in service_calls] == [
            ("bootstrap", ""),
            ("create", "Invoice"),
            ("total", "?"),
        ]

    def test_new_is_a_call(self, php_parser: PHPParser) -> None:
        code = "<?php\nfunction make() {\n    return new Invoice();\n}\n"
        [call] = php_parser.parse(code, "x.php").calls
        assert (call.name, call.line) == ("Invoice", 3)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class TestPhpExtractor:
    @pytest.fixture
    def graph(self) -> CodeGraph:
        return PhpExtractor().extract(_batch())

    def test_symbols(self, graph: CodeGraph) -> None:
        fqnames = {s.fqname for s in graph.symbols}
        assert "App\\Billing\\Invoice" in fqnames
        assert "App\\Billing\\Invoice::total" in fqnames
        assert "App\\Auth\\bootstrap" in fqnames
        assert len(graph.symbols) == 8

    def test_this_and_self_calls_are_hard_heuristic(self, graph: CodeGraph) -> None:
        for target in ("Invoice.subtotal", "Invoice.tax"):
            edge = _edge(graph, "Invoice.total", target)
            assert edge.kind is ResolutionKind.HEURISTIC
            assert edge.confidence == SELF_CALL_CONFIDENCE

    def test_namespaced_function_call_is_static(self, graph: CodeGraph) -> None:
        assert _edge(graph, "Service.charge", ":bootstrap").is_static

    def test_imported_static_method_is_static(self, graph: CodeGraph) -> None:
        edge = _edge(graph, "Service.charge", "Invoice.create")
        assert edge.is_static
        assert edge.site.line == 16

    def test_untyped_receiver_falls_back_to_name_match(self, graph: CodeGraph) -> None:
        edge = _edge(graph, "Service.charge", "Invoice.total")
        assert edge.kind is ResolutionKind.HEURISTIC
        assert edge.confidence == NAME_MATCH_CONFIDENCE

    def test_call_count(self, graph: CodeGraph) -> None:
        assert len(graph.calls) == 5

    def test_module_edges(self, graph: CodeGraph) -> None:
        assert [(m.source, m.target, m.weight) for m in graph.modules] == [("Auth", "Billing", 1)]

    def test_unknown_import_is_external(self) -> None:
        files = [SourceFile("src/Auth/A.php", "<?php\nuse Vendor\\Lib\\Thing;\nfunction f() {}\n", "php")]
        assert PhpExtractor().extract(files).modules == []
