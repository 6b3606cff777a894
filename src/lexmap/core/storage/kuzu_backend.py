"""KuzuDB frame store for LexMap.

Implements the :class:`~lexmap.core.storage.base.FrameStore` protocol on an
embedded KuzuDB database.  Frames live in a single ``Frame`` node table
whose primary key is ``frame_id``, so the database itself rejects duplicate
ids; :meth:`KuzuFrameStore.put` checks for the id first and reports a
no-op instead of raising.  The check and the insert run under one lock,
so concurrent puts of the same frame on a shared store cannot race.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

import kuzu

from lexmap.core.frames.builder import Frame, FrameKind, Scope
from lexmap.core.storage.base import PutResult
from lexmap.errors import FrameStoreError

logger = logging.getLogger(__name__)

_FRAME_PROPERTIES = (
    "frame_id STRING, "
    "kind STRING, "
    "scope STRING, "
    "inputs_hash STRING, "
    "payload_b64 STRING, "
    "part INT64, "
    "total_parts INT64, "
    "ts STRING, "
    "stats STRING, "
    "seq INT64, "
    "PRIMARY KEY (frame_id)"
)

_FRAME_COLUMNS = (
    "f.frame_id, f.kind, f.scope, f.inputs_hash, f.payload_b64, "
    "f.part, f.total_parts, f.ts, f.stats"
)


class KuzuFrameStore:
    """FrameStore implementation backed by KuzuDB.

    Usage::

        store = KuzuFrameStore()
        store.initialize(Path(".lexmap/kuzu"))
        store.put(frame)
        frames = store.get(FrameKind.SYMBOLS, {"repo": "shop"})
        store.close()
    """

    def __init__(self) -> None:
        self._db: kuzu.Database | None = None
        self._conn: kuzu.Connection | None = None
        self._seq = 0
        self._lock = threading.RLock()

    def initialize(self, path: Path, *, read_only: bool = False) -> None:
        """Open or create the database at *path* and set up the schema.

        Args:
            path: Filesystem path to the KuzuDB database.
            read_only: Open without taking the writer lock, so several
                readers (CLI queries, the MCP server) can share one index.
        """
        try:
            self._db = kuzu.Database(str(path), read_only=read_only)
            self._conn = kuzu.Connection(self._db)
            if not read_only:
                self._conn.execute(f"CREATE NODE TABLE IF NOT EXISTS Frame({_FRAME_PROPERTIES})")
            self._seq = self._max_seq()
        except RuntimeError as exc:
            raise FrameStoreError(f"cannot open frame store at {path}: {exc}") from exc

    def close(self) -> None:
        """Release the connection and database handles.

        Closing the database releases its file lock, so another handle can
        open the same path afterwards.
        """
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        if self._db is not None:
            self._db.close()
            self._db = None

    def put(self, frame: Frame) -> PutResult:
        with self._lock:
            if self._exists(frame.frame_id):
                return PutResult(inserted=False, frame_id=frame.frame_id)
            self._insert(frame)
        return PutResult(inserted=True, frame_id=frame.frame_id)

    def _insert(self, frame: Frame) -> None:
        self._seq += 1
        query = (
            "CREATE (:Frame {"
            "frame_id: $frame_id, kind: $kind, scope: $scope, "
            "inputs_hash: $inputs_hash, payload_b64: $payload_b64, "
            "part: $part, total_parts: $total_parts, ts: $ts, "
            "stats: $stats, seq: $seq"
            "})"
        )
        params = {
            "frame_id": frame.frame_id,
            "kind": frame.kind.value,
            "scope": json.dumps(frame.scope.to_dict(), sort_keys=True),
            "inputs_hash": frame.inputs_hash,
            "payload_b64": frame.payload_b64,
            "part": frame.part,
            "total_parts": frame.total_parts,
            "ts": frame.ts,
            "stats": json.dumps(frame.stats) if frame.stats is not None else "",
            "seq": self._seq,
        }
        self._execute(query, params)

    def get(
        self,
        kind: FrameKind | None = None,
        scope: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Frame]:
        if kind is None:
            query = f"MATCH (f:Frame) RETURN {_FRAME_COLUMNS} ORDER BY f.seq"
            params: dict[str, Any] = {}
        else:
            query = f"MATCH (f:Frame) WHERE f.kind = $kind RETURN {_FRAME_COLUMNS} ORDER BY f.seq"
            params = {"kind": kind.value}

        frames: list[Frame] = []
        for row in self._execute(query, params):
            frame = self._row_to_frame(row)
            if frame is None or not frame.scope.matches(scope):
                continue
            frames.append(frame)
            if limit is not None and len(frames) >= limit:
                break
        return frames

    def count(self) -> int:
        rows = self._execute("MATCH (f:Frame) RETURN count(f)", {})
        return int(rows[0][0]) if rows else 0

    def _exists(self, frame_id: str) -> bool:
        rows = self._execute(
            "MATCH (f:Frame) WHERE f.frame_id = $fid RETURN count(f)",
            {"fid": frame_id},
        )
        return bool(rows and rows[0][0])

    def _max_seq(self) -> int:
        try:
            rows = self._execute("MATCH (f:Frame) RETURN max(f.seq)", {})
        except FrameStoreError:
            # Read-only handle on a database that has never been written.
            return 0
        return int(rows[0][0] or 0) if rows else 0

    def _execute(self, query: str, params: dict[str, Any]) -> list[list[Any]]:
        """Run *query* and return all rows, wrapping driver errors."""
        if self._conn is None:
            raise FrameStoreError("frame store is not initialised")
        with self._lock:
            try:
                result = self._conn.execute(query, parameters=params)
                rows: list[list[Any]] = []
                while result.has_next():
                    rows.append(result.get_next())
                return rows
            except RuntimeError as exc:
                raise FrameStoreError(f"kuzu query failed: {exc}") from exc

    @staticmethod
    def _row_to_frame(row: list[Any]) -> Frame | None:
        """Convert a row in :data:`_FRAME_COLUMNS` order into a Frame."""
        try:
            return Frame(
                frame_id=row[0],
                kind=FrameKind(row[1]),
                scope=Scope.from_dict(json.loads(row[2] or "{}")),
                inputs_hash=row[3] or "",
                payload_b64=row[4] or "",
                part=int(row[5] or 1),
                total_parts=int(row[6] or 1),
                ts=row[7] or "",
                stats=json.loads(row[8]) if row[8] else None,
            )
        except (ValueError, IndexError):
            logger.warning("Skipping unreadable frame row %r", row[:1], exc_info=True)
            return None
