"""Python extractor using tree-sitter.

Extracts classes, functions, methods, module-level variables, imports and
call sites from Python source code.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import PurePosixPath

import tree_sitter_python as tspython
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

PY_LANGUAGE = Language(tspython.language())


def _text(node: Node) -> str:
    return node.text.decode("utf8")


def _visibility(name: str) -> str:
    if name.startswith("__") and name.endswith("__"):
        return "public"
    if name.startswith("__"):
        return "private"
    if name.startswith("_"):
        return "protected"
    return "public"


class PythonParser(LanguageParser):
    """Parses Python source code using tree-sitter."""

    def __init__(self) -> None:
        self._parser = Parser(PY_LANGUAGE)

    def parse(self, content: str, file_path: str) -> ParseResult:
        tree = self._parser.parse(bytes(content, "utf8"))
        result = ParseResult()
        root = tree.root_node
        self._walk(root, result, class_name="", top_level=True)
        self._extract_calls_recursive(root, result)
        return result

    def _walk(
        self,
        node: Node,
        result: ParseResult,
        class_name: str,
        top_level: bool = False,
    ) -> None:
        """Walk the AST collecting definitions and imports.

        Calls are collected separately by ``_extract_calls_recursive`` so
        that nested scopes are not counted twice.
        """
        for child in node.children:
            match child.type:
                case "function_definition":
                    self._extract_function(child, result, class_name, [])
                case "class_definition":
                    self._extract_class(child, result, [])
                case "decorated_definition":
                    self._extract_decorated(child, result, class_name)
                case "import_statement":
                    self._extract_import(child, result)
                case "import_from_statement":
                    self._extract_import_from(child, result)
                case "expression_statement" if top_level:
                    self._extract_variables(child, result)
                case _:
                    self._walk(child, result, class_name)

    def _extract_function(
        self,
        node: Node,
        result: ParseResult,
        class_name: str,
        decorators: list[str],
    ) -> None:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return

        name = _text(name_node)
        modifiers = list(decorators)
        if node.children and node.children[0].type == "async":
            modifiers.insert(0, "async")

        result.declarations.append(
            DeclInfo(
                name=name,
                kind="method" if class_name else "function",
                start_byte=node.start_byte,
                end_byte=node.end_byte,
                line=node.start_point[0] + 1,
                class_name=class_name,
                visibility=_visibility(name),
                modifiers=modifiers,
            )
        )

        body = node.child_by_field_name("body")
        if body is not None:
            # Functions nested in a function are standalone, not methods.
            self._walk(body, result, class_name="")

    def _extract_class(self, node: Node, result: ParseResult, decorators: list[str]) -> None:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return

        class_name = _text(name_node)
        result.declarations.append(
            DeclInfo(
                name=class_name,
                kind="class",
                start_byte=node.start_byte,
                end_byte=node.end_byte,
                line=node.start_point[0] + 1,
                visibility=_visibility(class_name),
                modifiers=list(decorators),
            )
        )

        body = node.child_by_field_name("body")
        if body is not None:
            self._walk(body, result, class_name=class_name)

    def _extract_decorated(self, node: Node, result: ParseResult, class_name: str) -> None:
        """Unwrap ``decorated_definition``; decorator names become modifiers.

        ``@staticmethod`` -> ``"staticmethod"``, ``@app.route("/")`` ->
        ``"app.route"``.
        """
        decorators: list[str] = []
        definition: Node | None = None
        for child in node.children:
            if child.type == "decorator":
                for part in child.children:
                    if part.type in ("identifier", "attribute"):
                        decorators.append(_text(part))
                        break
                    if part.type == "call":
                        func = part.child_by_field_name("function")
                        if func is not None:
                            decorators.append(_text(func))
                        break
            elif child.type in ("function_definition", "class_definition"):
                definition = child

        if definition is None:
            return
        if definition.type == "function_definition":
            self._extract_function(definition, result, class_name, decorators)
        else:
            self._extract_class(definition, result, decorators)

    @staticmethod
    def _extract_variables(node: Node, result: ParseResult) -> None:
        """Record ``NAME = ...`` assignments at module level as variables."""
        for child in node.children:
            if child.type != "assignment":
                continue
            left = child.child_by_field_name("left")
            if left is None or left.type != "identifier":
                continue
            name = _text(left)
            result.declarations.append(
                DeclInfo(
                    name=name,
                    kind="variable",
                    start_byte=child.start_byte,
                    end_byte=child.end_byte,
                    line=child.start_point[0] + 1,
                    visibility=_visibility(name),
                )
            )

    @staticmethod
    def _extract_import(node: Node, result: ParseResult) -> None:
        """``import a`` binds ``a``; ``import a.b as c`` binds ``c`` to ``a.b``.

        A bare dotted import binds only its package, which is not the
        imported file, so it contributes a module edge but no binding.
        """
        for child in node.children:
            if child.type == "dotted_name":
                module = _text(child)
                alias = "" if "." in module else module
                result.imports.append(ImportInfo(module=module, alias=alias))
            elif child.type == "aliased_import":
                name_node = child.child_by_field_name("name")
                alias_node = child.child_by_field_name("alias")
                if name_node is not None:
                    module = _text(name_node)
                    alias = _text(alias_node) if alias_node is not None else ""
                    result.imports.append(ImportInfo(module=module, alias=alias))

    @staticmethod
    def _extract_import_from(node: Node, result: ParseResult) -> None:
        module_node = node.child_by_field_name("module_name")
        if module_node is None:
            return

        names: list[str] = []
        past_import = False
        for child in node.children:
            if child.type == "import":
                past_import = True
                continue
            if not past_import:
                continue
            if child.type == "dotted_name":
                names.append(_text(child))
            elif child.type == "aliased_import":
                alias_node = child.child_by_field_name("alias")
                name_node = child.child_by_field_name("name")
                chosen = alias_node or name_node
                if chosen is not None:
                    names.append(_text(chosen))

        result.imports.append(
            ImportInfo(
                module=_text(module_node),
                names=names,
                is_relative=module_node.type == "relative_import",
            )
        )

    def _extract_calls_recursive(self, node: Node, result: ParseResult) -> None:
        if node.type == "call":
            self._extract_call(node, result)
        for child in node.children:
            self._extract_calls_recursive(child, result)

    @staticmethod
    def _extract_call(node: Node, result: ParseResult) -> None:
        func = node.child_by_field_name("function")
        if func is None:
            return

        line, col = node.start_point[0] + 1, node.start_point[1]
        if func.type == "identifier":
            result.calls.append(CallInfo(name=_text(func), line=line, col=col, offset=node.start_byte))
        elif func.type == "attribute":
            attr = func.child_by_field_name("attribute")
            obj = func.child_by_field_name("object")
            if attr is None:
                return
            # Only direct receivers (``self.x()``, ``mod.x()``) carry meaning;
            # ``self.repo.save()`` has an unknown receiver type.
            receiver = _text(obj) if obj is not None and obj.type == "identifier" else "?"
            result.calls.append(
                CallInfo(name=_text(attr), line=line, col=col, offset=node.start_byte, receiver=receiver)
            )


def module_path(file_path: str) -> str:
    """Return the dotted import path of a Python file.

    ``src/app/auth.py`` -> ``app.auth``; ``app/__init__.py`` -> ``app``.
    """
    parts = list(PurePosixPath(file_path).with_suffix("").parts)
    if parts and parts[0] == "src":
        parts = parts[1:]
    if parts and parts[-1] == "__init__":
        parts = parts[:-1]
    return ".".join(parts)


class PythonExtractor(TreeSitterExtractor):
    """Extracts facts from ``.py`` files."""

    language = "python"

    def __init__(
        self,
        resolver: ModuleResolver | None = None,
        kill_patterns: Sequence[KillPattern] = (),
    ) -> None:
        super().__init__(resolver, kill_patterns)
        self._parser = PythonParser()

    def parse_file(self, file: SourceFile) -> ParseResult:
        return self._parser.parse(file.content, file.path)

    def fqname(self, file: SourceFile, decl: DeclInfo, result: ParseResult) -> str:
        prefix = module_path(file.path)
        return f"{prefix}.{decl.qualname}" if prefix else decl.qualname

    def import_targets(self, file_path: str, imp: ImportInfo, index: BatchIndex) -> set[str]:
        if imp.is_relative:
            module = imp.module
            dots = len(module) - len(module.lstrip("."))
            base = PurePosixPath(file_path).parent
            for _ in range(dots - 1):
                base = base.parent
            remainder = module[dots:]
            target = base.joinpath(*remainder.split(".")) if remainder else base
            candidates = [str(target)]
        else:
            segments = imp.module.split(".")
            candidates = [str(PurePosixPath(*segments)), str(PurePosixPath("src", *segments))]

        found: set[str] = set()
        for base_path in candidates:
            for candidate in (f"{base_path}.py", f"{base_path}/__init__.py"):
                if candidate in index.files:
                    found.add(candidate)
                    break
        return found
