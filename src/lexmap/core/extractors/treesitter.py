"""Shared batch logic for the tree-sitter extractors.

Each language supplies a parser, a naming rule for fully-qualified names and
an import resolver; this module turns a batch of parsed files into symbols,
call edges, module edges and kill-pattern hits.

Call resolution, tried in order:

1. ``self``/``this``/``$this`` receiver: a method of the same name in the
   enclosing class -> heuristic, confidence 0.95.
2. Plain call to a name defined exactly once at the top level of the same
   file -> static.
3. Call bound by an import (``from m import f; f()`` or ``import m; m.f()``)
   to a unique definition in the imported file -> static.
4. Name defined exactly once anywhere in the batch -> heuristic,
   confidence 0.6.

Anything else is left unresolved; the engine never infers types.
"""

from __future__ import annotations

import bisect
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from lexmap.core.extractors.base import CallInfo, DeclInfo, ImportInfo, ParseResult, SourceFile
from lexmap.core.extractors.modules import ModuleResolver
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
from lexmap.core.policy.model import KillPattern

logger = logging.getLogger(__name__)

SELF_RECEIVERS: frozenset[str] = frozenset({"self", "cls", "this", "$this", "static"})
SELF_CALL_CONFIDENCE = 0.95
NAME_MATCH_CONFIDENCE = 0.6

_CALLABLE_KINDS = frozenset({"function", "method", "class"})


def generate_id(kind: str, file_path: str, qualname: str) -> str:
    """Return the symbol id ``kind:file:qualname``."""
    return f"{kind}:{file_path}:{qualname}"


def line_of(content: str, offset: int) -> int:
    return content.count("\n", 0, offset) + 1


@dataclass
class ParsedFile:
    """One file of the batch with its parse result and emitted symbols."""

    source: SourceFile
    result: ParseResult
    module: str
    symbols: list[Symbol] = field(default_factory=list)
    # Parallel to ``symbols``: the declaration each symbol came from.
    decls: list[DeclInfo] = field(default_factory=list)
    _starts: list[int] = field(default_factory=list)
    _ordered: list[tuple[int, int, int]] = field(default_factory=list)

    @property
    def path(self) -> str:
        return self.source.path

    def index_spans(self) -> None:
        self._ordered = sorted(
            (decl.start_byte, decl.end_byte, i)
            for i, decl in enumerate(self.decls)
            if decl.kind in ("function", "method")
        )
        self._starts = [start for start, _, _ in self._ordered]

    def enclosing(self, offset: int) -> int | None:
        """Return the index of the innermost function/method containing *offset*."""
        best: int | None = None
        best_span = None
        stop = bisect.bisect_right(self._starts, offset)
        for start, end, index in self._ordered[:stop]:
            if start <= offset < end and (best_span is None or end - start < best_span):
                best, best_span = index, end - start
        return best


class BatchIndex:
    """Name lookups over every symbol of a batch."""

    def __init__(self, files: Sequence[ParsedFile]) -> None:
        self.files: dict[str, ParsedFile] = {f.path: f for f in files}
        self.by_name: dict[str, list[Symbol]] = defaultdict(list)
        self.top_level: dict[tuple[str, str], list[Symbol]] = defaultdict(list)
        self.methods: dict[tuple[str, str, str], list[Symbol]] = defaultdict(list)
        self.by_fqname: dict[str, Symbol] = {}

        for parsed in files:
            for symbol, decl in zip(parsed.symbols, parsed.decls):
                self.by_fqname.setdefault(symbol.fqname, symbol)
                if decl.kind not in _CALLABLE_KINDS:
                    continue
                self.by_name[decl.name].append(symbol)
                if decl.kind == "method":
                    self.methods[(parsed.path, decl.class_name, decl.name)].append(symbol)
                elif not decl.class_name:
                    self.top_level[(parsed.path, decl.name)].append(symbol)

    def unique_top_level(self, file_path: str, name: str) -> Symbol | None:
        found = self.top_level.get((file_path, name), [])
        return found[0] if len(found) == 1 else None

    def unique_global(self, name: str) -> Symbol | None:
        found = self.by_name.get(name, [])
        return found[0] if len(found) == 1 else None


class TreeSitterExtractor(ABC):
    """Base class for extractors built on a tree-sitter :class:`LanguageParser`.

    Args:
        resolver: Assigns files to modules; defaults to layout-based names.
        kill_patterns: Regexes whose matches are reported as pattern hits.
    """

    language: str = ""

    def __init__(
        self,
        resolver: ModuleResolver | None = None,
        kill_patterns: Sequence[KillPattern] = (),
    ) -> None:
        self.resolver = resolver or ModuleResolver()
        self.kill_patterns = list(kill_patterns)
        self._compiled = [(kp.label, kp.compile()) for kp in self.kill_patterns]

    @abstractmethod
    def parse_file(self, file: SourceFile) -> ParseResult: ...

    @abstractmethod
    def fqname(self, file: SourceFile, decl: DeclInfo, result: ParseResult) -> str: ...

    @abstractmethod
    def import_targets(self, file_path: str, imp: ImportInfo, index: BatchIndex) -> set[str]:
        """Return the batch files that *imp* in *file_path* refers to."""

    def extract(self, files: Sequence[SourceFile]) -> CodeGraph:
        parsed = [self._parse(file) for file in files]
        index = BatchIndex(parsed)
        graph = CodeGraph()

        for pf in parsed:
            graph.symbols.extend(pf.symbols)

        for pf in parsed:
            bindings = self._bindings(pf, index)
            graph.calls.extend(self._resolve_calls(pf, index, bindings))

        graph.modules.extend(self._module_edges(parsed, index))

        for pf in parsed:
            graph.patterns.extend(self._scan_kill_patterns(pf))

        logger.debug(
            "%s extractor: %d file(s), %d symbol(s), %d call(s)",
            self.language,
            len(parsed),
            len(graph.symbols),
            len(graph.calls),
        )
        return graph

    def _parse(self, file: SourceFile) -> ParsedFile:
        try:
            result = self.parse_file(file)
        except Exception:
            logger.warning("Failed to parse %s (%s), skipping", file.path, file.language, exc_info=True)
            result = ParseResult()

        pf = ParsedFile(source=file, result=result, module=self.resolver.module_for(file.path))
        for decl in result.declarations:
            try:
                symbol = Symbol(
                    id=generate_id(decl.kind, file.path, decl.qualname),
                    fqname=self.fqname(file, decl, result),
                    kind=SymbolKind(decl.kind),
                    file=file.path,
                    span=ByteSpan(decl.start_byte, decl.end_byte),
                    visibility=decl.visibility,
                    modifiers=tuple(decl.modifiers),
                )
            except ValueError:
                logger.warning("Unknown declaration kind %r in %s, skipping", decl.kind, file.path)
                continue
            pf.symbols.append(symbol)
            pf.decls.append(decl)
        pf.index_spans()
        return pf

    def _bindings(self, pf: ParsedFile, index: BatchIndex) -> dict[str, set[str]]:
        """Map each locally bound import name to the batch files it refers to."""
        bindings: dict[str, set[str]] = {}
        for imp in pf.result.imports:
            targets = self.import_targets(pf.path, imp, index)
            if not targets:
                continue
            for name in [*imp.names, imp.alias]:
                if name:
                    bindings.setdefault(name, set()).update(targets)
        return bindings

    def _resolve_calls(
        self,
        pf: ParsedFile,
        index: BatchIndex,
        bindings: dict[str, set[str]],
    ) -> Iterable[CallEdge]:
        for call in pf.result.calls:
            owner = pf.enclosing(call.offset)
            if owner is None:
                logger.debug("No enclosing symbol for call %s at %s:%d", call.name, pf.path, call.line)
                continue
            source = pf.symbols[owner]
            resolved = self._resolve_call(call, pf, pf.decls[owner], index, bindings)
            if resolved is None:
                continue
            target, kind, confidence = resolved
            yield CallEdge(
                source=source.id,
                target=target.id,
                site=CallSite(file=pf.path, line=call.line, col=call.col),
                kind=kind,
                confidence=confidence,
            )

    @staticmethod
    def _resolve_call(
        call: CallInfo,
        pf: ParsedFile,
        owner: DeclInfo,
        index: BatchIndex,
        bindings: dict[str, set[str]],
    ) -> tuple[Symbol, ResolutionKind, float] | None:
        receiver = call.receiver

        if receiver in SELF_RECEIVERS:
            found = index.methods.get((pf.path, owner.class_name, call.name), [])
            if owner.class_name and len(found) == 1:
                return found[0], ResolutionKind.HEURISTIC, SELF_CALL_CONFIDENCE
        elif not receiver:
            local = index.unique_top_level(pf.path, call.name)
            if local is not None:
                return local, ResolutionKind.STATIC, 1.0
            imported = _unique_in(index, bindings.get(call.name, ()), call.name)
            if imported is not None:
                return imported, ResolutionKind.STATIC, 1.0
        else:
            # ``module.func()`` through an import alias, or ``Class.method()`` / ``Class::method()``.
            imported = _unique_in(index, bindings.get(receiver, ()), call.name)
            if imported is not None:
                return imported, ResolutionKind.STATIC, 1.0
            static_method = _unique_method(index, receiver, call.name, pf.path, bindings)
            if static_method is not None:
                return static_method, ResolutionKind.STATIC, 1.0

        fallback = index.unique_global(call.name)
        if fallback is not None:
            return fallback, ResolutionKind.HEURISTIC, NAME_MATCH_CONFIDENCE
        return None

    def _module_edges(self, parsed: Sequence[ParsedFile], index: BatchIndex) -> list[ModuleEdge]:
        weights: dict[tuple[str, str], int] = {}
        for pf in parsed:
            for imp in pf.result.imports:
                for target_path in sorted(self.import_targets(pf.path, imp, index)):
                    target_module = index.files[target_path].module
                    if target_module == pf.module:
                        continue
                    key = (pf.module, target_module)
                    weights[key] = weights.get(key, 0) + 1
        return [ModuleEdge(source=s, target=t, weight=w) for (s, t), w in sorted(weights.items())]

    def _scan_kill_patterns(self, pf: ParsedFile) -> list[PatternHit]:
        hits: list[PatternHit] = []
        content = pf.source.content
        for label, regex in self._compiled:
            for match in regex.finditer(content):
                hits.append(
                    PatternHit(
                        label=label,
                        module=pf.module,
                        file=pf.path,
                        line=line_of(content, match.start()),
                    )
                )
        return hits


def _unique_in(
    index: BatchIndex,
    files: Iterable[str],
    name: str,
) -> Symbol | None:
    candidates: list[Symbol] = []
    for path in files:
        candidates.extend(index.top_level.get((path, name), []))
    return candidates[0] if len(candidates) == 1 else None


def _unique_method(
    index: BatchIndex,
    class_name: str,
    method: str,
    file_path: str,
    bindings: dict[str, set[str]],
) -> Symbol | None:
    """Resolve ``Class.method`` where *class_name* is local or imported."""
    files = {file_path, *bindings.get(class_name, ())}
    candidates: list[Symbol] = []
    for path in sorted(files):
        candidates.extend(index.methods.get((path, class_name, method), []))
    return candidates[0] if len(candidates) == 1 else None
