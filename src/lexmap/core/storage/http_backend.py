"""Client for a remote fact store speaking the ``/facts`` HTTP API.

``POST /facts`` takes a frame record and answers ``{inserted, frame_id}``;
``GET /facts?kind=&scope=&limit=`` answers ``{facts: [frame, ...]}``.  Any
transport error or non-2xx status is a hard failure: a write the store did
not confirm cannot be counted as idempotently persisted.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from lexmap.core.frames.builder import Frame, FrameKind
from lexmap.core.storage.base import PutResult
from lexmap.errors import FrameStoreError

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:8123"
DEFAULT_TIMEOUT = 30.0


class HttpFrameStore:
    """FrameStore implementation backed by a remote fact store.

    Args:
        url: Base URL of the fact store.
        client: Optional pre-built :class:`httpx.Client` (tests inject one
            with a mock transport).  When omitted the store owns its client.
        timeout: Request timeout in seconds for an owned client.
    """

    def __init__(
        self,
        url: str = DEFAULT_URL,
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.url = url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def __enter__(self) -> HttpFrameStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def put(self, frame: Frame) -> PutResult:
        response = self._request("POST", "/facts", json=frame.to_dict())
        if response.status_code not in (200, 201):
            raise FrameStoreError(f"PUT {frame.frame_id} failed: {response.status_code} {response.text}")

        body = self._json(response)
        if not isinstance(body, dict) or "inserted" not in body:
            raise FrameStoreError(f"PUT {frame.frame_id} returned an unexpected body: {body!r}")
        return PutResult(
            inserted=bool(body["inserted"]),
            frame_id=str(body.get("frame_id") or frame.frame_id),
        )

    def get(
        self,
        kind: FrameKind | None = None,
        scope: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Frame]:
        params: dict[str, str] = {}
        if kind is not None:
            params["kind"] = kind.value
        if scope:
            params["scope"] = json.dumps(scope, sort_keys=True)
        if limit is not None:
            params["limit"] = str(limit)

        response = self._request("GET", "/facts", params=params)
        if response.status_code != 200:
            raise FrameStoreError(f"GET facts failed: {response.status_code} {response.text}")

        body = self._json(response)
        records = body.get("facts", []) if isinstance(body, dict) else []

        frames: list[Frame] = []
        for record in records:
            try:
                frame = Frame.from_dict(record)
            except (ValueError, TypeError, AttributeError):
                logger.warning("Skipping malformed fact record from %s", self.url, exc_info=True)
                continue
            # The server filters too; re-check so a lenient server cannot leak other scopes.
            if (kind is None or frame.kind is kind) and frame.scope.matches(scope):
                frames.append(frame)
        return frames if limit is None else frames[:limit]

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, f"{self.url}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise FrameStoreError(f"{method} {self.url}{path} failed: {exc}") from exc

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise FrameStoreError(f"fact store returned invalid JSON: {exc}") from exc
