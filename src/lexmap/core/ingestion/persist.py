"""Rebuild code graphs and metrics from stored frames."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from lexmap.core.frames.builder import Frame, FrameKind, assemble_payload
from lexmap.core.frames.codec import Codec
from lexmap.core.graph.model import CodeGraph, parse_code_graph
from lexmap.core.storage.base import FrameStore

logger = logging.getLogger(__name__)

_SECTIONS: tuple[tuple[FrameKind, str], ...] = (
    (FrameKind.SYMBOLS, "symbols"),
    (FrameKind.CALLS, "calls"),
    (FrameKind.MODULES, "modules"),
    (FrameKind.PATTERNS, "patterns"),
)


def _newest(frames: Sequence[Frame]) -> Frame:
    return max(enumerate(frames), key=lambda item: (item[1].ts, item[0]))[1]


def latest_run(frames: Sequence[Frame], inputs_hash: str | None = None) -> list[Frame]:
    """Return the frames of one run among *frames*.

    With *inputs_hash* the frames of that run are returned.  Without it, or
    when no frame carries it, the group with the newest ``ts`` wins, falling
    back to storage order when timestamps tie.
    """
    if inputs_hash:
        selected = [frame for frame in frames if frame.inputs_hash == inputs_hash]
        if selected:
            return selected

    groups: dict[str, list[Frame]] = {}
    rank: dict[str, tuple[str, int]] = {}
    for position, frame in enumerate(frames):
        groups.setdefault(frame.inputs_hash, []).append(frame)
        rank[frame.inputs_hash] = max(rank.get(frame.inputs_hash, ("", -1)), (frame.ts, position))
    if not groups:
        return []
    newest = max(rank, key=lambda key: rank[key])
    return groups[newest]


def current_inputs_hash(store: FrameStore, scope: dict[str, Any] | None = None) -> str | None:
    """Return the ``inputs_hash`` of the last indexing run for *scope*.

    Fact frames are content-addressed, so re-indexing inputs seen before
    stores nothing new and their frames keep their original ``ts``.  Every
    run does write a fresh metrics frame, and the newest one names the run
    whose facts are current.
    """
    frames = store.get(FrameKind.METRICS, scope)
    if not frames:
        return None
    return _newest(frames).inputs_hash


def load_payload(
    store: FrameStore,
    kind: FrameKind,
    scope: dict[str, Any] | None = None,
    codec: Codec | None = None,
    inputs_hash: str | None = None,
) -> Any:
    """Return the assembled payload of one run for *kind*, or ``None``."""
    frames = latest_run(store.get(kind, scope), inputs_hash)
    if not frames:
        return None
    return assemble_payload(frames, codec)


def load_graph(
    store: FrameStore,
    scope: dict[str, Any] | None = None,
    codec: Codec | None = None,
) -> CodeGraph:
    """Rebuild the :class:`CodeGraph` last indexed for *scope*.

    Facts are read from the run named by the newest metrics frame.  Malformed
    entries are dropped with a warning, exactly as for extractor output.

    Raises:
        FrameStoreError: If the store cannot be read.
        FrameIntegrityError: If a stored frame fails verification.
    """
    run = current_inputs_hash(store, scope)
    document: dict[str, Any] = {}
    for kind, section in _SECTIONS:
        payload = load_payload(store, kind, scope, codec, inputs_hash=run)
        if payload is None:
            continue
        if not isinstance(payload, list):
            logger.warning("Stored %s payload is not a list, ignoring it", kind.value)
            continue
        document[section] = payload

    graph, _ = parse_code_graph(document, origin="store")
    logger.debug("Loaded graph from store: %s", graph.stats())
    return graph


def load_metrics(
    store: FrameStore,
    scope: dict[str, Any] | None = None,
    codec: Codec | None = None,
) -> dict[str, Any] | None:
    """Return the metrics recorded by the latest indexing run, if any."""
    frames = store.get(FrameKind.METRICS, scope)
    if not frames:
        return None
    payload = assemble_payload([_newest(frames)], codec)
    return payload if isinstance(payload, dict) else None
