"""Content-addressed frames.

A frame is one immutable, size-bounded record of a larger payload.  Its id
is a pure function of ``(kind, scope, inputs_hash, blob_hash, part)``, so
identical inputs always produce identical frames and a second write of the
same frame is a no-op for any store that honours the id.

Payloads larger than the byte bound are split before encoding: arrays
element-wise, objects key-wise, into the fewest contiguous chunks whose
encoded size fits.  An element that does not fit on its own is emitted as
an oversized chunk rather than dropped or truncated.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from lexmap.core.frames.codec import Codec, GzipCodec, from_b64, to_b64
from lexmap.core.frames.hashing import sha256_hex, stable_dumps
from lexmap.errors import FrameIntegrityError

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAYLOAD_KB = 200
DEFAULT_MAX_BYTES = DEFAULT_MAX_PAYLOAD_KB * 1024


class FrameKind(Enum):
    """Logical payload types persisted as frames."""

    SYMBOLS = "codemap.symbols"
    CALLS = "codemap.calls"
    MODULES = "codemap.modules"
    PATTERNS = "codemap.patterns"
    SLICE = "codemap.slice"
    METRICS = "codemap.metrics"


@dataclass(frozen=True)
class Scope:
    """What a frame describes: a repository at a commit, optionally narrowed."""

    repo: str
    commit: str
    path: str = ""
    symbol: str = ""

    def to_dict(self) -> dict[str, str]:
        data = {"repo": self.repo, "commit": self.commit}
        if self.path:
            data["path"] = self.path
        if self.symbol:
            data["symbol"] = self.symbol
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Scope:
        return cls(
            repo=str(data.get("repo", "")),
            commit=str(data.get("commit", "")),
            path=str(data.get("path", "")),
            symbol=str(data.get("symbol", "")),
        )

    def matches(self, query: dict[str, Any] | None) -> bool:
        """Return ``True`` if every key/value in *query* equals this scope's."""
        if not query:
            return True
        own = self.to_dict()
        return all(own.get(key) == value for key, value in query.items())


@dataclass(frozen=True)
class Frame:
    """A persisted, content-addressed unit of a payload."""

    frame_id: str
    kind: FrameKind
    scope: Scope
    inputs_hash: str
    payload_b64: str
    part: int = 1
    total_parts: int = 1
    ts: str = ""
    stats: dict[str, float] | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "frame_id": self.frame_id,
            "kind": self.kind.value,
            "scope": self.scope.to_dict(),
            "inputs_hash": self.inputs_hash,
            "payload_b64": self.payload_b64,
            "part": self.part,
            "total_parts": self.total_parts,
            "ts": self.ts,
        }
        if self.stats is not None:
            data["stats"] = dict(self.stats)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Frame:
        """Rebuild a frame from its wire form.

        Raises:
            ValueError: If the kind is unknown or required fields are missing.
        """
        try:
            return cls(
                frame_id=str(data["frame_id"]),
                kind=FrameKind(data["kind"]),
                scope=Scope.from_dict(data.get("scope") or {}),
                inputs_hash=str(data["inputs_hash"]),
                payload_b64=str(data["payload_b64"]),
                part=int(data.get("part") or 1),
                total_parts=int(data.get("total_parts") or 1),
                ts=str(data.get("ts", "")),
                stats=data.get("stats"),
            )
        except KeyError as exc:
            raise ValueError(f"frame is missing field {exc.args[0]!r}") from exc


def compute_frame_id(
    kind: FrameKind,
    scope: Scope,
    inputs_hash: str,
    blob_hash: str,
    part: int = 1,
) -> str:
    """Return the deterministic id of a frame."""
    parts = [kind.value, stable_dumps(scope.to_dict()), inputs_hash, blob_hash, str(part)]
    return sha256_hex("|".join(parts))


def encode_payload(payload: Any, codec: Codec) -> bytes:
    return codec.encode(stable_dumps(payload).encode("utf-8"))


def _split_contiguous(
    count: int,
    fits: Callable[[int, int], bool],
) -> list[tuple[int, int]]:
    """Partition ``range(count)`` into the fewest fitting contiguous slices.

    Each slice is the longest prefix of the remainder for which
    ``fits(start, end)`` holds, found by doubling the candidate length and then
    bisecting.  A single item that does not fit becomes its own slice.
    """
    bounds: list[tuple[int, int]] = []
    start = 0
    while start < count:
        if not fits(start, start + 1):
            bounds.append((start, start + 1))
            start += 1
            continue

        good = start + 1
        bad: int | None = None
        length = 1
        while good < count:
            length *= 2
            reach = min(count, start + length)
            if fits(start, reach):
                good = reach
            else:
                bad = reach
                break

        if bad is not None:
            while bad - good > 1:
                mid = (good + bad) // 2
                if fits(start, mid):
                    good = mid
                else:
                    bad = mid

        bounds.append((start, good))
        start = good
    return bounds


def split_payload(payload: Any, max_bytes: int, codec: Codec) -> list[Any]:
    """Split *payload* into chunks whose encoded size is at most *max_bytes*.

    Arrays are split element-wise and objects key-wise in sorted key order.
    Scalars, and payloads that already fit, come back as a single chunk.
    """
    if len(encode_payload(payload, codec)) <= max_bytes:
        return [payload]

    if isinstance(payload, list):
        items: Sequence[Any] = payload

        def build(start: int, end: int) -> Any:
            return list(items[start:end])

    elif isinstance(payload, dict):
        keys = sorted(payload)

        def build(start: int, end: int) -> Any:
            return {key: payload[key] for key in keys[start:end]}

        items = keys
    else:
        logger.warning("Scalar payload exceeds %d bytes and cannot be split", max_bytes)
        return [payload]

    def fits(start: int, end: int) -> bool:
        return len(encode_payload(build(start, end), codec)) <= max_bytes

    chunks: list[Any] = []
    for start, end in _split_contiguous(len(items), fits):
        if end - start == 1 and not fits(start, end):
            logger.warning(
                "Element %d alone exceeds %d bytes; emitting it as an oversized chunk",
                start,
                max_bytes,
            )
        chunks.append(build(start, end))
    return chunks


def build_frames(
    kind: FrameKind,
    scope: Scope,
    inputs_hash: str,
    payload: Any,
    max_bytes: int = DEFAULT_MAX_BYTES,
    codec: Codec | None = None,
    stats: dict[str, float] | None = None,
    ts: str | None = None,
) -> list[Frame]:
    """Turn *payload* into one or more content-addressed frames.

    Args:
        kind: Logical payload type.
        scope: Repository/commit the payload describes.
        inputs_hash: Hash of every input that determined the payload.
        payload: Any JSON-serialisable value.
        max_bytes: Upper bound on each frame's encoded payload.
        codec: Payload codec; defaults to :class:`GzipCodec`.
        stats: Optional summary numbers, attached to the first part only.
        ts: Timestamp recorded on each frame.  It is not part of the id;
            pass a fixed value to make whole frames reproducible.

    Returns:
        Frames ordered by ``part`` (1-based).
    """
    if max_bytes <= 0:
        raise ValueError(f"max_bytes must be positive, got {max_bytes}")

    codec = codec or GzipCodec()
    timestamp = ts if ts is not None else datetime.now(tz=timezone.utc).isoformat()
    chunks = split_payload(payload, max_bytes, codec)
    total = len(chunks)

    frames: list[Frame] = []
    for part, chunk in enumerate(chunks, start=1):
        blob = encode_payload(chunk, codec)
        frames.append(
            Frame(
                frame_id=compute_frame_id(kind, scope, inputs_hash, sha256_hex(blob), part),
                kind=kind,
                scope=scope,
                inputs_hash=inputs_hash,
                payload_b64=to_b64(blob),
                part=part,
                total_parts=total,
                ts=timestamp,
                stats=stats if part == 1 else None,
            )
        )

    logger.debug("Built %d frame(s) for %s", total, kind.value)
    return frames


def decode_frame(frame: Frame, codec: Codec | None = None, *, strict: bool = True) -> Any:
    """Decode a frame's payload after checking it against its id.

    Args:
        frame: The frame to decode.
        codec: Codec the frame was built with; defaults to :class:`GzipCodec`.
        strict: Also require that re-encoding the decoded payload reproduces
            the stored blob byte for byte.

    Raises:
        FrameIntegrityError: If the blob does not hash back to ``frame_id``
            or fails the re-encoding check.
    """
    codec = codec or GzipCodec()
    try:
        blob = from_b64(frame.payload_b64)
    except ValueError as exc:
        raise FrameIntegrityError(f"frame {frame.frame_id} payload is not base64") from exc

    blob_hash = sha256_hex(blob)
    expected = compute_frame_id(frame.kind, frame.scope, frame.inputs_hash, blob_hash, frame.part)
    if expected != frame.frame_id:
        raise FrameIntegrityError(f"frame {frame.frame_id} does not match its payload hash")

    try:
        payload = json.loads(codec.decode(blob).decode("utf-8"))
    except (OSError, ValueError) as exc:
        raise FrameIntegrityError(f"frame {frame.frame_id} could not be decoded: {exc}") from exc

    if strict and sha256_hex(encode_payload(payload, codec)) != blob_hash:
        raise FrameIntegrityError(f"frame {frame.frame_id} does not re-encode to its blob")
    return payload


def assemble_payload(frames: Sequence[Frame], codec: Codec | None = None) -> Any:
    """Decode the parts of one logical payload and stitch them together.

    Array chunks are concatenated and object chunks merged, in ``part``
    order.  Duplicate parts (the same frame fetched twice) are ignored.
    """
    seen: set[str] = set()
    ordered: list[Frame] = []
    for frame in sorted(frames, key=lambda f: (f.part, f.frame_id)):
        if frame.frame_id in seen:
            continue
        seen.add(frame.frame_id)
        ordered.append(frame)

    if not ordered:
        return None

    expected = ordered[0].total_parts
    if len(ordered) != expected:
        logger.warning(
            "Expected %d part(s) for %s but found %d",
            expected,
            ordered[0].kind.value,
            len(ordered),
        )

    payloads = [decode_frame(frame, codec) for frame in ordered]
    if len(payloads) == 1:
        return payloads[0]
    if all(isinstance(p, list) for p in payloads):
        return [item for chunk in payloads for item in chunk]
    if all(isinstance(p, dict) for p in payloads):
        merged: dict[str, Any] = {}
        for chunk in payloads:
            merged.update(chunk)
        return merged
    raise FrameIntegrityError(
        f"parts of {ordered[0].kind.value} mix arrays and objects and cannot be assembled"
    )
