"""Exception hierarchy shared by LexMap components.

Violations are returned as data; these exceptions are reserved for failures
that must abort the current operation.
"""

from __future__ import annotations


class LexMapError(Exception):
    """Base class for every error raised by LexMap."""


class PolicyError(LexMapError):
    """A policy document could not be read or decoded."""


class FrameStoreError(LexMapError):
    """A frame store request failed (transport error or non-2xx response)."""


class FrameIntegrityError(LexMapError):
    """A decoded frame does not hash back to its ``frame_id``."""


class ExtractorError(LexMapError):
    """An extractor could not produce a graph for its batch of files."""


class SymbolNotFoundError(LexMapError):
    """A slice or query referenced a symbol that is not in the graph."""
