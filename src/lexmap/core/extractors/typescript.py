"""TypeScript / TSX / JavaScript extractor using tree-sitter.

Extracts classes, functions (declared or assigned arrow/function
expressions), methods, top-level variables, ES imports, ``require()``
calls and call sites.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import PurePosixPath

import tree_sitter_javascript as tsjavascript
import tree_sitter_typescript as tstypescript
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

TS_LANGUAGE = Language(tstypescript.language_typescript())
TSX_LANGUAGE = Language(tstypescript.language_tsx())
JS_LANGUAGE = Language(tsjavascript.language())

_DIALECT_MAP: dict[str, Language] = {
    "typescript": TS_LANGUAGE,
    "tsx": TSX_LANGUAGE,
    "javascript": JS_LANGUAGE,
}

_JS_TS_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs")

_MODIFIER_TOKENS = frozenset({"static", "async", "abstract", "readonly", "get", "set"})


def _text(node: Node) -> str:
    return node.text.decode()


def dialect_for(path: str) -> str:
    suffix = PurePosixPath(path).suffix.lower()
    if suffix == ".tsx":
        return "tsx"
    if suffix == ".ts":
        return "typescript"
    return "javascript"


class TypeScriptParser(LanguageParser):
    """Parse TypeScript, TSX, or JavaScript files via tree-sitter.

    Args:
        dialect: One of ``"typescript"``, ``"tsx"``, or ``"javascript"``.
    """

    def __init__(self, dialect: str = "typescript") -> None:
        if dialect not in _DIALECT_MAP:
            raise ValueError(
                f"Unknown dialect {dialect!r}. "
                f"Expected one of: {', '.join(sorted(_DIALECT_MAP))}"
            )
        self.dialect = dialect
        self._parser = Parser(_DIALECT_MAP[dialect])

    def parse(self, content: str, file_path: str) -> ParseResult:
        tree = self._parser.parse(content.encode("utf-8"))
        result = ParseResult()
        self._walk(tree.root_node, result, depth=0)
        return result

    def _walk(self, node: Node, result: ParseResult, depth: int) -> None:
        """Walk the tree, dispatching on node type.

        ``depth`` counts enclosing function/class bodies; only declarations
        at depth 0 are recorded as top-level variables.
        """
        ntype = node.type
        nested = depth

        if ntype == "function_declaration":
            self._extract_function_declaration(node, result)
            nested += 1
        elif ntype in ("lexical_declaration", "variable_declaration"):
            self._extract_variable_declaration(node, result, top_level=depth == 0)
        elif ntype == "class_declaration":
            self._extract_class(node, result)
            nested += 1
        elif ntype == "method_definition":
            self._extract_method(node, result)
            nested += 1
        elif ntype in ("arrow_function", "function_expression", "function"):
            nested += 1
        elif ntype == "import_statement":
            self._extract_import(node, result)
        elif ntype == "call_expression":
            self._extract_call(node, result)
        elif ntype == "new_expression":
            self._extract_new_expression(node, result)

        for child in node.children:
            self._walk(child, result, nested)

    def _extract_function_declaration(self, node: Node, result: ParseResult) -> None:
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
                modifiers=self._modifiers(node),
            )
        )

    def _extract_method(self, node: Node, result: ParseResult) -> None:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return

        name = _text(name_node)
        visibility = "private" if name.startswith("#") else "public"
        for child in node.children:
            if child.type == "accessibility_modifier":
                visibility = _text(child)

        result.declarations.append(
            DeclInfo(
                name=name,
                kind="method",
                start_byte=node.start_byte,
                end_byte=node.end_byte,
                line=node.start_point[0] + 1,
                class_name=self._find_parent_class_name(node),
                visibility=visibility,
                modifiers=self._modifiers(node),
            )
        )

    def _extract_class(self, node: Node, result: ParseResult) -> None:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return
        result.declarations.append(
            DeclInfo(
                name=_text(name_node),
                kind="class",
                start_byte=node.start_byte,
                end_byte=node.end_byte,
                line=node.start_point[0] + 1,
                modifiers=self._modifiers(node),
            )
        )

    def _extract_variable_declaration(self, node: Node, result: ParseResult, top_level: bool) -> None:
        """Handle arrow functions, function expressions, ``require()`` and constants."""
        for child in node.children:
            if child.type != "variable_declarator":
                continue

            name_node = child.child_by_field_name("name")
            value_node = child.child_by_field_name("value")
            if name_node is None or name_node.type != "identifier":
                continue
            name = _text(name_node)
            module = self._require_target(value_node) if value_node is not None else ""

            if value_node is not None and value_node.type in ("arrow_function", "function_expression", "function"):
                result.declarations.append(
                    DeclInfo(
                        name=name,
                        kind="function",
                        start_byte=node.start_byte,
                        end_byte=node.end_byte,
                        line=node.start_point[0] + 1,
                        modifiers=self._modifiers(value_node),
                    )
                )
            elif module:
                result.imports.append(ImportInfo(module=module, alias=name, is_relative=module.startswith(".")))
            elif top_level:
                result.declarations.append(
                    DeclInfo(
                        name=name,
                        kind="variable",
                        start_byte=child.start_byte,
                        end_byte=child.end_byte,
                        line=child.start_point[0] + 1,
                    )
                )

    def _require_target(self, node: Node) -> str:
        """Return the module of ``require('./x')``, or ``""`` for other values."""
        if node.type != "call_expression":
            return ""
        func = node.child_by_field_name("function")
        args = node.child_by_field_name("arguments")
        if func is None or args is None or _text(func) != "require":
            return ""
        for arg in args.children:
            if arg.type == "string":
                return self._string_value(arg)
        return ""

    def _extract_import(self, node: Node, result: ParseResult) -> None:
        """Handle ``import {A, B as C} from``, ``import * as ns from`` and defaults."""
        source_node = node.child_by_field_name("source")
        if source_node is None:
            return
        module = self._string_value(source_node)
        if not module:
            return

        names: list[str] = []
        alias = ""
        for child in node.children:
            if child.type != "import_clause":
                continue
            for clause_child in child.children:
                if clause_child.type == "named_imports":
                    for spec in clause_child.children:
                        if spec.type != "import_specifier":
                            continue
                        local = spec.child_by_field_name("alias") or spec.child_by_field_name("name")
                        if local is not None:
                            names.append(_text(local))
                elif clause_child.type == "namespace_import":
                    for ns_child in clause_child.children:
                        if ns_child.type == "identifier":
                            alias = _text(ns_child)
                            break
                elif clause_child.type == "identifier":
                    names.append(_text(clause_child))

        result.imports.append(
            ImportInfo(module=module, names=names, is_relative=module.startswith("."), alias=alias)
        )

    def _extract_call(self, node: Node, result: ParseResult) -> None:
        func = node.child_by_field_name("function")
        if func is None:
            return

        line, col = node.start_point[0] + 1, node.start_point[1]
        if func.type == "member_expression":
            obj = func.child_by_field_name("object")
            prop = func.child_by_field_name("property")
            if prop is None:
                return
            receiver = _text(obj) if obj is not None and obj.type in ("identifier", "this") else "?"
            result.calls.append(
                CallInfo(name=_text(prop), line=line, col=col, offset=node.start_byte, receiver=receiver)
            )
        elif func.type == "identifier":
            name = _text(func)
            if name != "require":
                result.calls.append(CallInfo(name=name, line=line, col=col, offset=node.start_byte))

    def _extract_new_expression(self, node: Node, result: ParseResult) -> None:
        """``new Foo()`` is a call to the class ``Foo``."""
        ctor = node.child_by_field_name("constructor")
        if ctor is None or ctor.type != "identifier":
            return
        result.calls.append(
            CallInfo(
                name=_text(ctor),
                line=node.start_point[0] + 1,
                col=node.start_point[1],
                offset=node.start_byte,
            )
        )

    @staticmethod
    def _modifiers(node: Node) -> list[str]:
        return [child.type for child in node.children if child.type in _MODIFIER_TOKENS]

    @staticmethod
    def _string_value(string_node: Node) -> str:
        for child in string_node.children:
            if child.type == "string_fragment":
                return _text(child)
        text = _text(string_node)
        if len(text) >= 2 and text[0] in ("'", '"', "`") and text[-1] in ("'", '"', "`"):
            return text[1:-1]
        return text

    @staticmethod
    def _find_parent_class_name(node: Node) -> str:
        current = node.parent
        while current is not None:
            if current.type in ("class_declaration", "class"):
                name_node = current.child_by_field_name("name")
                if name_node is not None:
                    return _text(name_node)
            current = current.parent
        return ""


class TypeScriptExtractor(TreeSitterExtractor):
    """Extracts facts from TypeScript and JavaScript files.

    The dialect is chosen per file from its extension, so one extractor
    handles ``.ts``, ``.tsx``, ``.js``, ``.jsx``, ``.mjs`` and ``.cjs``.
    """

    language = "typescript"

    def __init__(
        self,
        resolver: ModuleResolver | None = None,
        kill_patterns: Sequence[KillPattern] = (),
    ) -> None:
        super().__init__(resolver, kill_patterns)
        self._parsers: dict[str, TypeScriptParser] = {}

    def parse_file(self, file: SourceFile) -> ParseResult:
        dialect = dialect_for(file.path)
        parser = self._parsers.get(dialect)
        if parser is None:
            parser = self._parsers[dialect] = TypeScriptParser(dialect)
        return parser.parse(file.content, file.path)

    def fqname(self, file: SourceFile, decl: DeclInfo, result: ParseResult) -> str:
        return f"{PurePosixPath(file.path).with_suffix('')}#{decl.qualname}"

    def import_targets(self, file_path: str, imp: ImportInfo, index: BatchIndex) -> set[str]:
        # Bare specifiers ('react', '@scope/pkg') are external.
        if not imp.module.startswith("."):
            return set()

        base = PurePosixPath(file_path).parent / imp.module
        parts: list[str] = []
        for part in base.parts:
            if part == "..":
                if parts:
                    parts.pop()
            elif part != ".":
                parts.append(part)
        resolved = "/".join(parts)

        candidates = [resolved]
        candidates.extend(f"{resolved}{ext}" for ext in _JS_TS_EXTENSIONS)
        candidates.extend(f"{resolved}/index{ext}" for ext in _JS_TS_EXTENSIONS)
        for candidate in candidates:
            if candidate in index.files:
                return {candidate}
        return set()
