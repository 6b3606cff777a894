"""In-memory frame store, used for tests and single-process runs."""

from __future__ import annotations

from typing import Any

from lexmap.core.frames.builder import Frame, FrameKind
from lexmap.core.storage.base import PutResult


class InMemoryFrameStore:
    """Dict-backed :class:`~lexmap.core.storage.base.FrameStore`.

    Frames are keyed by ``frame_id``; Python dicts keep insertion order, so
    :meth:`get` returns frames in the order they were first written.
    """

    def __init__(self) -> None:
        self._frames: dict[str, Frame] = {}

    def __len__(self) -> int:
        return len(self._frames)

    def __contains__(self, frame_id: object) -> bool:
        return frame_id in self._frames

    def put(self, frame: Frame) -> PutResult:
        if frame.frame_id in self._frames:
            return PutResult(inserted=False, frame_id=frame.frame_id)
        self._frames[frame.frame_id] = frame
        return PutResult(inserted=True, frame_id=frame.frame_id)

    def get(
        self,
        kind: FrameKind | None = None,
        scope: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Frame]:
        matches = [
            frame
            for frame in self._frames.values()
            if (kind is None or frame.kind is kind) and frame.scope.matches(scope)
        ]
        return matches if limit is None else matches[:limit]

    def close(self) -> None:
        """Nothing to release; frames stay readable until the store is dropped."""
