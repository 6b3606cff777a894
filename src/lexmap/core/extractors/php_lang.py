"""PHP extractor using tree-sitter.

Extracts namespaces, classes, interfaces, traits, methods, functions,
``use`` imports and call sites.  ``$this->m()``, ``self::m()`` and
``static::m()`` resolve heuristically to a method of the enclosing class.
"""

from __future__ import annotations

from collections.abc import Sequence

import tree_sitter_php as tsphp
from tree_sitter import Language, Node, Parser

from lexmap.core.extractors.base import (
    CallInfo,
    DeclInfo,
    ImportInfo,
    LanguageParser,
    ParseResult,
    SourceFile,
)
from lexmap.core.extractors.modules import ModuleResolver
from lexmap.core.extractors.treesitter import BatchIndex, TreeSitterExtractor
from lexmap.core.policy.model import KillPattern

PHP_LANGUAGE = Language(tsphp.language_php())

_CLASS_LIKE = ("class_declaration", "interface_declaration", "trait_declaration", "enum_declaration")
_MODIFIER_NODES = {
    "static_modifier": "static",
    "abstract_modifier": "abstract",
    "final_modifier": "final",
    "readonly_modifier": "readonly",
}
_NAME_TYPES = ("name", "qualified_name")


def _text(node: Node) -> str:
    return node.text.decode("utf8")


class PHPParser(LanguageParser):
    """Parses PHP source code using tree-sitter."""

    def __init__(self) -> None:
        self._parser = Parser(PHP_LANGUAGE)

    def parse(self, content: str, file_path: str) -> ParseResult:
        tree = self._parser.parse(bytes(content, "utf8"))
        result = ParseResult()
        self._walk(tree.root_node, result, class_name="")
        return result

    def _walk(self, node: Node, result: ParseResult, class_name: str) -> None:
        for child in node.children:
            match child.type:
                case "namespace_definition":
                    self._enter_namespace(child, result, class_name)
                case "namespace_use_declaration":
                    self._extract_import(child, result)
                case "function_definition":
                    self._extract_function(child, result)
                case "method_declaration":
                    self._extract_method(child, result, class_name)
                case kind if kind in _CLASS_LIKE:
                    self._extract_class(child, result)
                case "function_call_expression":
                    self._extract_call(child, result)
                    self._walk(child, result, class_name)
                case "member_call_expression" | "nullsafe_member_call_expression":
                    self._extract_member_call(child, result, receiver_field="object")
                    self._walk(child, result, class_name)
                case "scoped_call_expression":
                    self._extract_member_call(child, result, receiver_field="scope")
                    self._walk(child, result, class_name)
                case "object_creation_expression":
                    self._extract_new(child, result)
                    self._walk(child, result, class_name)
                case _:
                    self._walk(child, result, class_name)

    def _enter_namespace(self, node: Node, result: ParseResult, class_name: str) -> None:
        name_node = node.child_by_field_name("name")
        if name_node is not None:
            result.namespace = _text(name_node)
        self._walk(node, result, class_name)

    def _extract_function(self, node: Node, result: ParseResult) -> None:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return
        result.declarations.append(
            DeclInfo(
                name=_text(name_node),
                kind="function",
                start_byte=node.start_byte,
                end_byte=node.end_byte,
                line=node.start_point[0] + 1,
            )
        )
        body = node.child_by_field_name("body")
        if body is not None:
            self._walk(body, result, class_name="")

    def _extract_method(self, node: Node, result: ParseResult, class_name: str) -> None:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return

        visibility = "public"
        modifiers: list[str] = []
        for child in node.children:
            if child.type == "visibility_modifier":
                visibility = _text(child)
            elif child.type in _MODIFIER_NODES:
                modifiers.append(_MODIFIER_NODES[child.type])

        result.declarations.append(
            DeclInfo(
                name=_text(name_node),
                kind="method",
                start_byte=node.start_byte,
                end_byte=node.end_byte,
                line=node.start_point[0] + 1,
                class_name=class_name,
                visibility=visibility,
                modifiers=modifiers,
            )
        )
        body = node.child_by_field_name("body")
        if body is not None:
            self._walk(body, result, class_name=class_name)

    def _extract_class(self, node: Node, result: ParseResult) -> None:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return

        class_name = _text(name_node)
        modifiers = [_MODIFIER_NODES[c.type] for c in node.children if c.type in _MODIFIER_NODES]
        if node.type != "class_declaration":
            modifiers.append(node.type.removesuffix("_declaration"))

        result.declarations.append(
            DeclInfo(
                name=class_name,
                kind="class",
                start_byte=node.start_byte,
                end_byte=node.end_byte,
                line=node.start_point[0] + 1,
                modifiers=modifiers,
            )
        )
        body = node.child_by_field_name("body")
        if body is not None:
            self._walk(body, result, class_name=class_name)

    @staticmethod
    def _extract_import(node: Node, result: ParseResult) -> None:
        """``use App\\Billing\\Invoice;`` binds ``Invoice``; ``as`` renames it."""
        for clause in node.children:
            if clause.type != "namespace_use_clause":
                continue
            names = [c for c in clause.children if c.type in _NAME_TYPES]
            alias_node = clause.child_by_field_name("alias")
            if not names:
                continue
            module = _text(names[0]).lstrip("\\")
            if alias_node is not None:
                local = _text(alias_node)
            elif len(names) > 1:
                # Grammar versions without an ``alias`` field: ``use A\\B as C``.
                local = _text(names[-1])
            else:
                local = module.rsplit("\\", 1)[-1]
            result.imports.append(ImportInfo(module=module, names=[local]))

    @staticmethod
    def _extract_call(node: Node, result: ParseResult) -> None:
        func = node.child_by_field_name("function")
        if func is None or func.type not in _NAME_TYPES:
            return
        result.calls.append(
            CallInfo(
                name=_text(func).rsplit("\\", 1)[-1],
                line=node.start_point[0] + 1,
                col=node.start_point[1],
                offset=node.start_byte,
            )
        )

    @staticmethod
    def _extract_member_call(node: Node, result: ParseResult, receiver_field: str) -> None:
        """``$obj->m()`` and ``Scope::m()``; unknown receivers become ``"?"``."""
        name_node = node.child_by_field_name("name")
        if name_node is None or name_node.type != "name":
            return
        receiver_node = node.child_by_field_name(receiver_field)
        receiver = "?"
        if receiver_node is not None:
            text = _text(receiver_node)
            if text in ("$this", "self", "static"):
                receiver = text
            elif receiver_node.type in _NAME_TYPES or receiver_node.type == "relative_scope":
                receiver = text.rsplit("\\", 1)[-1]
        result.calls.append(
            CallInfo(
                name=_text(name_node),
                line=node.start_point[0] + 1,
                col=node.start_point[1],
                offset=node.start_byte,
                receiver=receiver,
            )
        )

    @staticmethod
    def _extract_new(node: Node, result: ParseResult) -> None:
        """``new Invoice()`` is a call to the class ``Invoice``."""
        for child in node.children:
            if child.type in _NAME_TYPES:
                result.calls.append(
                    CallInfo(
                        name=_text(child).rsplit("\\", 1)[-1],
                        line=node.start_point[0] + 1,
                        col=node.start_point[1],
                        offset=node.start_byte,
                    )
                )
                return


class PhpExtractor(TreeSitterExtractor):
    """Extracts facts from ``.php`` files."""

    language = "php"

    def __init__(
        self,
        resolver: ModuleResolver | None = None,
        kill_patterns: Sequence[KillPattern] = (),
    ) -> None:
        super().__init__(resolver, kill_patterns)
        self._parser = PHPParser()

    def parse_file(self, file: SourceFile) -> ParseResult:
        return self._parser.parse(file.content, file.path)

    def fqname(self, file: SourceFile, decl: DeclInfo, result: ParseResult) -> str:
        prefix = f"{result.namespace}\\" if result.namespace else ""
        if decl.class_name:
            return f"{prefix}{decl.class_name}::{decl.name}"
        return f"{prefix}{decl.name}"

    def import_targets(self, file_path: str, imp: ImportInfo, index: BatchIndex) -> set[str]:
        # PHP imports name classes, not files: find the file declaring the class.
        symbol = index.by_fqname.get(imp.module)
        return {symbol.file} if symbol is not None else set()
