"""Tests for content-addressed frames (hashing, codecs, chunking)."""

from __future__ import annotations

import dataclasses

import pytest

from lexmap.core.frames.builder import (
    Frame,
    FrameKind,
    Scope,
    assemble_payload,
    build_frames,
    compute_frame_id,
    decode_frame,
    split_payload,
)
from lexmap.core.frames.codec import GzipCodec, IdentityCodec, from_b64, to_b64
from lexmap.core.frames.hashing import sha256_hex, stable_dumps
from lexmap.errors import FrameIntegrityError

SCOPE = Scope(repo="shop", commit="abc123")


def _symbols(count: int) -> list[dict]:
    return [
        {
            "id": f"function:src/mod_{i}.py:handler_{i}",
            "fqname": f"mod_{i}.handler_{i}",
            "kind": "function",
            "file": f"src/mod_{i}.py",
            "span": {"start": i * 10, "end": i * 10 + 9},
        }
        for i in range(count)
    ]


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


class TestHashing:
    def test_stable_dumps_ignores_key_order(self) -> None:
        assert stable_dumps({"b": 1, "a": [1, 2]}) == stable_dumps({"a": [1, 2], "b": 1})

    def test_stable_dumps_is_compact(self) -> None:
        assert stable_dumps({"a": 1, "b": "x"}) == '{"a":1,"b":"x"}'

    def test_sha256_of_str_and_bytes_agree(self) -> None:
        assert sha256_hex("abc") == sha256_hex(b"abc")

    def test_sha256_of_object_uses_stable_dumps(self) -> None:
        assert sha256_hex({"x": 1, "y": 2}) == sha256_hex('{"x":1,"y":2}')


class TestCodecs:
    def test_gzip_is_deterministic(self) -> None:
        codec = GzipCodec()
        assert codec.encode(b"payload" * 50) == codec.encode(b"payload" * 50)

    def test_gzip_decodes_what_it_encodes(self) -> None:
        codec = GzipCodec()
        assert codec.decode(codec.encode(b"hello")) == b"hello"

    def test_identity_passes_through(self) -> None:
        assert IdentityCodec().encode(b"raw") == b"raw"


# ---------------------------------------------------------------------------
# Scope
# ---------------------------------------------------------------------------


class TestScope:
    def test_optional_fields_omitted(self) -> None:
        assert SCOPE.to_dict() == {"repo": "shop", "commit": "abc123"}

    def test_matches_subset(self) -> None:
        scope = Scope(repo="shop", commit="abc123", path="src/billing")
        assert scope.matches({"repo": "shop"})
        assert scope.matches({"repo": "shop", "path": "src/billing"})
        assert not scope.matches({"repo": "other"})

    def test_empty_query_matches_everything(self) -> None:
        assert SCOPE.matches(None)
        assert SCOPE.matches({})

    def test_round_trip(self) -> None:
        scope = Scope(repo="shop", commit="c", symbol="function:a.py:f")
        assert Scope.from_dict(scope.to_dict()) == scope


# ---------------------------------------------------------------------------
# build_frames
# ---------------------------------------------------------------------------


class TestBuildFrames:
    def test_small_payload_is_one_frame(self) -> None:
        frames = build_frames(FrameKind.SYMBOLS, SCOPE, "h1", _symbols(3), ts="t")
        assert len(frames) == 1
        assert frames[0].part == 1
        assert frames[0].total_parts == 1

    def test_ids_are_deterministic(self) -> None:
        first = build_frames(FrameKind.SYMBOLS, SCOPE, "h1", _symbols(5), ts="2024-01-01T00:00:00Z")
        second = build_frames(FrameKind.SYMBOLS, SCOPE, "h1", _symbols(5), ts="2025-06-30T12:00:00Z")
        assert [f.frame_id for f in first] == [f.frame_id for f in second]

    def test_id_depends_on_inputs_hash_and_kind(self) -> None:
        base = build_frames(FrameKind.SYMBOLS, SCOPE, "h1", [], ts="t")[0].frame_id
        assert build_frames(FrameKind.SYMBOLS, SCOPE, "h2", [], ts="t")[0].frame_id != base
        assert build_frames(FrameKind.CALLS, SCOPE, "h1", [], ts="t")[0].frame_id != base

    def test_id_depends_on_scope(self) -> None:
        other = Scope(repo="shop", commit="def456")
        a = build_frames(FrameKind.SYMBOLS, SCOPE, "h", [1], ts="t")[0]
        b = build_frames(FrameKind.SYMBOLS, other, "h", [1], ts="t")[0]
        assert a.frame_id != b.frame_id

    def test_id_formula(self) -> None:
        frame = build_frames(FrameKind.MODULES, SCOPE, "h", [{"from": "a", "to": "b"}], ts="t")[0]
        blob_hash = sha256_hex(from_b64(frame.payload_b64))
        assert frame.frame_id == compute_frame_id(FrameKind.MODULES, SCOPE, "h", blob_hash, 1)

    def test_stats_on_first_part_only(self) -> None:
        frames = build_frames(
            FrameKind.SYMBOLS,
            SCOPE,
            "h",
            _symbols(200),
            max_bytes=1024,
            codec=IdentityCodec(),
            stats={"symbols": 200.0},
            ts="t",
        )
        assert len(frames) > 1
        assert frames[0].stats == {"symbols": 200.0}
        assert all(f.stats is None for f in frames[1:])

    def test_non_positive_bound_rejected(self) -> None:
        with pytest.raises(ValueError):
            build_frames(FrameKind.SYMBOLS, SCOPE, "h", [], max_bytes=0)

    def test_default_timestamp_is_set(self) -> None:
        frame = build_frames(FrameKind.SYMBOLS, SCOPE, "h", [])[0]
        assert frame.ts


class TestChunking:
    def test_thousand_symbols_round_trip_under_bound(self) -> None:
        payload = _symbols(1000)
        codec = GzipCodec()
        max_bytes = 4 * 1024
        frames = build_frames(FrameKind.SYMBOLS, SCOPE, "h", payload, max_bytes=max_bytes, codec=codec, ts="t")

        assert len(frames) > 1
        assert [f.part for f in frames] == list(range(1, len(frames) + 1))
        assert all(f.total_parts == len(frames) for f in frames)
        assert all(len(from_b64(f.payload_b64)) <= max_bytes for f in frames)
        assert assemble_payload(frames, codec) == payload

    def test_assembly_ignores_part_order_and_duplicates(self) -> None:
        payload = _symbols(300)
        frames = build_frames(
            FrameKind.SYMBOLS, SCOPE, "h", payload, max_bytes=2048, codec=IdentityCodec(), ts="t"
        )
        shuffled = list(reversed(frames)) + [frames[0]]
        assert assemble_payload(shuffled, IdentityCodec()) == payload

    def test_object_payload_split_by_key(self) -> None:
        payload = {f"key_{i:04d}": "x" * 50 for i in range(100)}
        chunks = split_payload(payload, 1024, IdentityCodec())
        assert len(chunks) > 1
        assert all(isinstance(c, dict) for c in chunks)
        merged: dict = {}
        for chunk in chunks:
            merged.update(chunk)
        assert merged == payload

    def test_chunks_are_contiguous(self) -> None:
        payload = list(range(500))
        chunks = split_payload(payload, 256, IdentityCodec())
        assert [item for chunk in chunks for item in chunk] == payload

    def test_oversized_element_gets_its_own_chunk(self) -> None:
        payload = ["small", "y" * 5000, "tiny"]
        chunks = split_payload(payload, 1024, IdentityCodec())
        assert ["y" * 5000] in chunks
        assert [item for chunk in chunks for item in chunk] == payload

    def test_scalar_is_never_split(self) -> None:
        assert split_payload("z" * 5000, 100, IdentityCodec()) == ["z" * 5000]

    def test_fitting_payload_is_single_chunk(self) -> None:
        assert split_payload([1, 2, 3], 1024, GzipCodec()) == [[1, 2, 3]]


# ---------------------------------------------------------------------------
# decode / integrity
# ---------------------------------------------------------------------------


class TestDecodeFrame:
    def test_decode_returns_payload(self) -> None:
        frame = build_frames(FrameKind.CALLS, SCOPE, "h", [{"from": "a", "to": "b"}], ts="t")[0]
        assert decode_frame(frame) == [{"from": "a", "to": "b"}]

    def test_tampered_payload_fails(self) -> None:
        frame = build_frames(FrameKind.CALLS, SCOPE, "h", [1, 2, 3], ts="t")[0]
        forged = GzipCodec().encode(stable_dumps([9, 9, 9]).encode("utf-8"))
        tampered = dataclasses.replace(frame, payload_b64=to_b64(forged))
        with pytest.raises(FrameIntegrityError):
            decode_frame(tampered)

    def test_tampered_scope_fails(self) -> None:
        frame = build_frames(FrameKind.CALLS, SCOPE, "h", [1], ts="t")[0]
        moved = dataclasses.replace(frame, scope=Scope(repo="other", commit="abc123"))
        with pytest.raises(FrameIntegrityError):
            decode_frame(moved)

    def test_invalid_base64_fails(self) -> None:
        frame = build_frames(FrameKind.CALLS, SCOPE, "h", [1], ts="t")[0]
        broken = dataclasses.replace(frame, payload_b64="not base64!!")
        with pytest.raises(FrameIntegrityError):
            decode_frame(broken)

    def test_wrong_codec_fails(self) -> None:
        frame = build_frames(FrameKind.CALLS, SCOPE, "h", [1], codec=GzipCodec(), ts="t")[0]
        with pytest.raises(FrameIntegrityError):
            decode_frame(frame, IdentityCodec())


class TestFrameDict:
    def test_round_trip(self) -> None:
        frame = build_frames(FrameKind.SYMBOLS, SCOPE, "h", [], stats={"symbols": 0.0}, ts="t")[0]
        assert Frame.from_dict(frame.to_dict()) == frame

    def test_unknown_kind_rejected(self) -> None:
        data = build_frames(FrameKind.SYMBOLS, SCOPE, "h", [], ts="t")[0].to_dict()
        data["kind"] = "codemap.unknown"
        with pytest.raises(ValueError):
            Frame.from_dict(data)

    def test_missing_field_rejected(self) -> None:
        data = build_frames(FrameKind.SYMBOLS, SCOPE, "h", [], ts="t")[0].to_dict()
        del data["inputs_hash"]
        with pytest.raises(ValueError, match="inputs_hash"):
            Frame.from_dict(data)
