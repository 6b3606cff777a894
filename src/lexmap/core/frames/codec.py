"""Byte codecs applied to frame payloads before they are hashed and stored."""

from __future__ import annotations

import base64
import gzip
from typing import Protocol, runtime_checkable


@runtime_checkable
class Codec(Protocol):
    """Reversible ``bytes -> bytes`` transform.

    ``encode`` must be deterministic: the same input always yields the same
    output, otherwise frame ids would drift between runs.
    """

    name: str

    def encode(self, data: bytes) -> bytes: ...

    def decode(self, data: bytes) -> bytes: ...


class GzipCodec:
    """Gzip compression with a fixed header timestamp."""

    name = "gzip"

    def __init__(self, level: int = 9) -> None:
        self.level = level

    def encode(self, data: bytes) -> bytes:
        return gzip.compress(data, compresslevel=self.level, mtime=0)

    def decode(self, data: bytes) -> bytes:
        return gzip.decompress(data)


class IdentityCodec:
    """Pass-through codec, handy for debugging stored payloads."""

    name = "identity"

    def encode(self, data: bytes) -> bytes:
        return data

    def decode(self, data: bytes) -> bytes:
        return data


def to_b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def from_b64(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)
