"""Stable serialisation and hashing for content addressing."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def stable_dumps(obj: Any) -> str:
    """Serialise *obj* as compact JSON with sorted keys.

    Two structurally equal values always produce the same string, which is
    what makes frame ids and input hashes reproducible.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_hex(data: str | bytes | Any) -> str:
    """Return the hex SHA-256 of *data*.

    Strings are hashed as UTF-8, bytes as-is, and anything else through
    :func:`stable_dumps`.
    """
    if isinstance(data, bytes):
        raw = data
    elif isinstance(data, str):
        raw = data.encode("utf-8")
    else:
        raw = stable_dumps(data).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()
