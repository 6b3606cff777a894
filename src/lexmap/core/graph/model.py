"""Fact schema shared by every extractor and every consumer of the graph.

Defines the symbol, call-edge, module-edge and pattern-hit records that
extractors emit, and the :class:`CodeGraph` aggregate that carries them
through merging, persistence and queries.  Records are frozen: an extractor
creates them once and a re-extraction supersedes rather than updates them.

Serialised field names follow the wire format (``from``/``to``, ``fqname``,
``file``, ``span``); a few long-form aliases are accepted on input so that
extractors written against either naming can feed the engine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class SymbolKind(Enum):
    """Kinds of declarations an extractor may report."""

    CLASS = "class"
    METHOD = "method"
    FUNCTION = "function"
    VARIABLE = "variable"


class ResolutionKind(Enum):
    """How a call edge's target was determined."""

    STATIC = "static"
    HEURISTIC = "heuristic"


# Older extractors label certain edges "direct".
_RESOLUTION_ALIASES: dict[str, ResolutionKind] = {
    "static": ResolutionKind.STATIC,
    "direct": ResolutionKind.STATIC,
    "heuristic": ResolutionKind.HEURISTIC,
}


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the value of the first key of *keys* present in *data*."""
    for key in keys:
        if key in data:
            return data[key]
    return default


def _require_str(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} must be a non-empty string, got {value!r}")
    return value


def _require_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    return value


@dataclass(frozen=True)
class ByteSpan:
    """Half-open byte range of a declaration inside its file."""

    start: int
    end: int


@dataclass(frozen=True)
class CallSite:
    """Location of a call expression (1-based line, 0-based column)."""

    file: str
    line: int
    col: int = 0


@dataclass(frozen=True)
class Symbol:
    """A declaration observed by an extractor."""

    id: str
    fqname: str
    kind: SymbolKind
    file: str
    span: ByteSpan
    visibility: str = "public"
    modifiers: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "fqname": self.fqname,
            "kind": self.kind.value,
            "file": self.file,
            "span": {"start": self.span.start, "end": self.span.end},
            "visibility": self.visibility,
            "modifiers": list(self.modifiers),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Symbol:
        """Build a symbol from its serialised form.

        Raises:
            ValueError: If a required field is missing or has the wrong type.
        """
        span = _pick(data, "span", "byte_span")
        if not isinstance(span, dict):
            raise ValueError(f"span must be an object, got {span!r}")
        start = _require_int(span.get("start"), "span.start")
        end = _require_int(span.get("end"), "span.end")
        if end < start:
            raise ValueError(f"span end {end} precedes start {start}")

        modifiers = data.get("modifiers") or []
        if not isinstance(modifiers, list) or not all(isinstance(m, str) for m in modifiers):
            raise ValueError(f"modifiers must be a list of strings, got {modifiers!r}")

        return cls(
            id=_require_str(data.get("id"), "id"),
            fqname=_require_str(_pick(data, "fqname", "fully_qualified_name"), "fqname"),
            kind=SymbolKind(data.get("kind")),
            file=_require_str(_pick(data, "file", "origin_file"), "file"),
            span=ByteSpan(start=start, end=end),
            visibility=str(data.get("visibility") or "public"),
            modifiers=tuple(modifiers),
        )


@dataclass(frozen=True)
class CallEdge:
    """A caller -> callee edge between two symbol ids.

    ``static`` edges are certain and always carry ``confidence == 1.0``;
    ``heuristic`` edges carry the score of the pattern that produced them.
    """

    source: str
    target: str
    site: CallSite
    kind: ResolutionKind = ResolutionKind.STATIC
    confidence: float = 1.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence {self.confidence} outside [0, 1]")
        if self.kind is ResolutionKind.STATIC and self.confidence != 1.0:
            raise ValueError(
                f"static edge {self.source}->{self.target} has confidence {self.confidence}"
            )

    @property
    def is_static(self) -> bool:
        return self.kind is ResolutionKind.STATIC

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.source,
            "to": self.target,
            "site": {"file": self.site.file, "line": self.site.line, "col": self.site.col},
            "kind": self.kind.value,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CallEdge:
        """Build a call edge from its serialised form.

        A heuristic edge without a confidence is rejected: it cannot be
        placed on the heuristics ladder.
        """
        raw_kind = _pick(data, "kind", "resolution_kind", default="static")
        kind = _RESOLUTION_ALIASES.get(raw_kind) if isinstance(raw_kind, str) else None
        if kind is None:
            raise ValueError(f"unknown resolution kind {raw_kind!r}")

        confidence = data.get("confidence")
        if confidence is None:
            if kind is ResolutionKind.HEURISTIC:
                raise ValueError("heuristic edge is missing a confidence")
            confidence = 1.0
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise ValueError(f"confidence must be a number, got {confidence!r}")

        site = data.get("site")
        if not isinstance(site, dict):
            raise ValueError(f"site must be an object, got {site!r}")

        return cls(
            source=_require_str(_pick(data, "from", "from_symbol_id"), "from"),
            target=_require_str(_pick(data, "to", "to_symbol_id"), "to"),
            site=CallSite(
                file=_require_str(site.get("file"), "site.file"),
                line=_require_int(site.get("line"), "site.line"),
                col=_require_int(site.get("col", 0), "site.col"),
            ),
            kind=kind,
            confidence=float(confidence),
        )


@dataclass(frozen=True)
class ModuleEdge:
    """A dependency of module ``source`` on module ``target``."""

    source: str
    target: str
    weight: int = 1

    def __post_init__(self) -> None:
        if self.weight < 0:
            raise ValueError(f"weight must be non-negative, got {self.weight}")

    def to_dict(self) -> dict[str, Any]:
        return {"from": self.source, "to": self.target, "weight": self.weight}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModuleEdge:
        return cls(
            source=_require_str(_pick(data, "from", "from_module"), "from"),
            target=_require_str(_pick(data, "to", "to_module"), "to"),
            weight=_require_int(data.get("weight", 1), "weight"),
        )


@dataclass(frozen=True)
class PatternHit:
    """A kill-pattern label an extractor found in a module's source."""

    label: str
    module: str
    file: str = ""
    line: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "module": self.module, "file": self.file, "line": self.line}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PatternHit:
        return cls(
            label=_require_str(_pick(data, "label", "kind"), "label"),
            module=_require_str(data.get("module"), "module"),
            file=str(data.get("file") or ""),
            line=_require_int(data.get("line", 0), "line"),
        )


@dataclass
class CodeGraph:
    """Facts produced by one or more extractors during a single run.

    Duplicates are allowed: overlapping extractors may report the same
    symbol or edge twice, and consumers must tolerate that.
    """

    symbols: list[Symbol] = field(default_factory=list)
    calls: list[CallEdge] = field(default_factory=list)
    modules: list[ModuleEdge] = field(default_factory=list)
    patterns: list[PatternHit] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.symbols or self.calls or self.modules or self.patterns)

    def stats(self) -> dict[str, int]:
        """Return a summary of graph size."""
        return {
            "symbols": len(self.symbols),
            "calls": len(self.calls),
            "modules": len(self.modules),
            "patterns": len(self.patterns),
        }

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {
            "symbols": [s.to_dict() for s in self.symbols],
            "calls": [c.to_dict() for c in self.calls],
            "modules": [m.to_dict() for m in self.modules],
            "patterns": [p.to_dict() for p in self.patterns],
        }


_SECTIONS: tuple[tuple[str, type], ...] = (
    ("symbols", Symbol),
    ("calls", CallEdge),
    ("modules", ModuleEdge),
    ("patterns", PatternHit),
)


def parse_code_graph(data: Any, origin: str = "") -> tuple[CodeGraph, list[str]]:
    """Parse an extractor payload, dropping malformed entries one by one.

    A bad entry never rejects the whole payload: it is skipped, logged, and
    described in the returned warning list so the caller can surface it.

    Args:
        data: A mapping with optional ``symbols``, ``calls``, ``modules`` and
            ``patterns`` lists.
        origin: Label for the payload's source, used in warning messages.

    Returns:
        The parsed graph and a list of human-readable warnings.
    """
    graph = CodeGraph()
    warnings: list[str] = []
    prefix = f"{origin}: " if origin else ""

    if not isinstance(data, dict):
        message = f"{prefix}payload is not an object, ignoring it"
        logger.warning(message)
        return graph, [message]

    for section, record_type in _SECTIONS:
        entries = data.get(section)
        if entries is None:
            continue
        if not isinstance(entries, list):
            message = f"{prefix}{section} is not a list, ignoring it"
            logger.warning(message)
            warnings.append(message)
            continue

        target: list[Any] = getattr(graph, section)
        for index, entry in enumerate(entries):
            try:
                if not isinstance(entry, dict):
                    raise ValueError(f"expected an object, got {type(entry).__name__}")
                target.append(record_type.from_dict(entry))
            except (ValueError, TypeError) as exc:
                message = f"{prefix}dropped malformed {section}[{index}]: {exc}"
                logger.warning(message)
                warnings.append(message)

    return graph, warnings
