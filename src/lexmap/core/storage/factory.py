"""Open a frame store by name for the CLI and the MCP server."""

from __future__ import annotations

import logging
from pathlib import Path

from lexmap.config.settings import STORE_KINDS, default_store_path
from lexmap.core.storage.base import FrameStore
from lexmap.core.storage.http_backend import DEFAULT_URL, HttpFrameStore
from lexmap.core.storage.kuzu_backend import KuzuFrameStore
from lexmap.core.storage.memory import InMemoryFrameStore

logger = logging.getLogger(__name__)


def open_store(
    kind: str,
    repo_path: Path,
    url: str = DEFAULT_URL,
    *,
    read_only: bool = False,
) -> FrameStore:
    """Return an initialised store.

    Args:
        kind: ``"memory"``, ``"kuzu"`` or ``"http"``.
        repo_path: Repository root; the Kuzu database lives under
            ``.lexmap/kuzu`` inside it.
        url: Fact store URL for the ``http`` store.
        read_only: Open the Kuzu database without the writer lock.

    Raises:
        ValueError: For an unknown store kind.
        FrameStoreError: If the store cannot be opened.
    """
    if kind == "memory":
        return InMemoryFrameStore()
    if kind == "http":
        logger.debug("Using remote fact store at %s", url)
        return HttpFrameStore(url)
    if kind == "kuzu":
        db_path = default_store_path(repo_path)
        if not read_only:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        store = KuzuFrameStore()
        store.initialize(db_path, read_only=read_only)
        return store
    raise ValueError(f"unknown store {kind!r}; expected one of {', '.join(STORE_KINDS)}")


def store_key(kind: str, url: str = DEFAULT_URL) -> str | None:
    """Return the label recorded for *kind* in ``.lexmap/meta.json``.

    ``None`` for the in-memory store, whose contents do not outlive the process.
    """
    if kind == "memory":
        return None
    if kind == "http":
        return f"http:{url.rstrip('/')}"
    return kind
