"""Extractor interface and the intermediate parse representation.

Language parsers turn one file into a :class:`ParseResult` (declarations,
imports and call sites with byte offsets).  A tree-sitter extractor parses
a whole batch, then resolves calls and imports across the batch and emits
the shared fact schema (:class:`~lexmap.core.graph.model.CodeGraph`).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from lexmap.core.graph.model import CodeGraph


@dataclass(frozen=True)
class SourceFile:
    """A file handed to an extractor; ``path`` is relative to the repo root."""

    path: str
    content: str
    language: str


@dataclass
class DeclInfo:
    """A parsed declaration (class, method, function or variable)."""

    name: str
    kind: str  # "class", "method", "function", "variable"
    start_byte: int
    end_byte: int
    line: int
    class_name: str = ""  # for methods: the owning class
    visibility: str = "public"
    modifiers: list[str] = field(default_factory=list)

    @property
    def qualname(self) -> str:
        return f"{self.class_name}.{self.name}" if self.class_name else self.name


@dataclass
class ImportInfo:
    """A parsed import statement."""

    module: str  # e.g. "app.services.auth", "./utils", "App\\Services\\Auth"
    names: list[str] = field(default_factory=list)  # names bound by the import
    is_relative: bool = False
    alias: str = ""  # local name bound to the module itself


@dataclass
class CallInfo:
    """A parsed call site."""

    name: str  # the called function/method name
    line: int
    col: int
    offset: int  # byte offset of the call, used to find the enclosing declaration
    receiver: str = ""  # e.g. "self", "this", "$this", "utils", "AuthService"


@dataclass
class ParseResult:
    """Complete parse result for a single file."""

    declarations: list[DeclInfo] = field(default_factory=list)
    imports: list[ImportInfo] = field(default_factory=list)
    calls: list[CallInfo] = field(default_factory=list)
    namespace: str = ""


class LanguageParser(ABC):
    """Base interface for language-specific parsers."""

    @abstractmethod
    def parse(self, content: str, file_path: str) -> ParseResult: ...


@runtime_checkable
class Extractor(Protocol):
    """Anything that turns a batch of source files into facts.

    Implementations must be safe to run on a worker thread; each call
    returns an independent graph and shares no mutable state.
    """

    language: str

    def extract(self, files: Sequence[SourceFile]) -> CodeGraph:
        """Return the facts for *files*.

        Raises:
            ExtractorError: If the batch cannot be processed at all.
        """
        ...
