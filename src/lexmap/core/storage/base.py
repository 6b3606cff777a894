"""Frame store abstraction for LexMap.

Defines the :class:`FrameStore` protocol that every concrete store
(in-memory, KuzuDB, remote HTTP fact store) must satisfy.  The only
cross-write invariant is per-``frame_id`` idempotence: writing a frame
whose id already exists reports ``inserted=False`` and leaves the stored
record untouched, so concurrent or repeated writes need no ordering.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from lexmap.core.frames.builder import Frame, FrameKind


@dataclass(frozen=True)
class PutResult:
    """Outcome of writing a single frame."""

    inserted: bool
    frame_id: str


@runtime_checkable
class FrameStore(Protocol):
    """Protocol that every LexMap frame store must implement."""

    def put(self, frame: Frame) -> PutResult:
        """Persist *frame* unless a frame with the same id already exists.

        Raises:
            FrameStoreError: If the store cannot confirm the write.
        """
        ...

    def get(
        self,
        kind: FrameKind | None = None,
        scope: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Frame]:
        """Return stored frames matching *kind* and every key of *scope*.

        Frames come back in insertion order, truncated to *limit*.
        """
        ...

    def close(self) -> None:
        """Release resources held by the store."""
        ...
