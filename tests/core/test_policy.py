"""Tests for loading and normalising policy documents."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from lexmap.core.policy.model import (
    DEFAULT_DETERMINISM_TARGET,
    PolicyFormat,
    load_policy,
    parse_policy,
)
from lexmap.errors import PolicyError

MODULE_CALLERS = {
    "modules": {
        "services/auth": {
            "description": "Authentication",
            "allowed_callers": ["services/api", "ui/login"],
            "forbidden_callers": ["ui/admin"],
            "feature_flags": ["sso"],
            "requires_permissions": ["auth:read"],
            "kill_patterns": ["legacy-session"],
        },
        "ui/admin": {},
    }
}

ALLOWED_DEPS = {
    "modules": {
        "patterns": [
            {"name": "api", "match": "src/api/**"},
            {"name": "core", "match": "src/core"},
        ],
        "allowed_deps": [{"from": "api", "to": "core"}],
    }
}


# ---------------------------------------------------------------------------
# Formats
# ---------------------------------------------------------------------------


class TestModuleCallersFormat:
    def test_detected(self) -> None:
        assert parse_policy(MODULE_CALLERS).format is PolicyFormat.MODULE_CALLERS

    def test_rules_are_read(self) -> None:
        rules = parse_policy(MODULE_CALLERS).module("services/auth")
        assert rules is not None
        assert rules.allowed_callers == ("services/api", "ui/login")
        assert rules.forbidden_callers == ("ui/admin",)
        assert rules.feature_flags == ("sso",)
        assert rules.requires_permissions == ("auth:read",)
        assert rules.kill_patterns == ("legacy-session",)

    def test_module_without_rules_is_declared_but_unconstrained(self) -> None:
        rules = parse_policy(MODULE_CALLERS).module("ui/admin")
        assert rules is not None
        assert rules.allowed_callers == ()

    def test_undeclared_module(self) -> None:
        policy = parse_policy(MODULE_CALLERS)
        assert policy.module("billing") is None
        assert policy.metadata_for("billing").to_metadata()["allowed_callers"] == []


class TestAllowedDepsFormat:
    def test_detected(self) -> None:
        assert parse_policy(ALLOWED_DEPS).format is PolicyFormat.ALLOWED_DEPS

    def test_normalised_to_allowed_callers(self) -> None:
        policy = parse_policy(ALLOWED_DEPS)
        assert policy.module("core").allowed_callers == ("api",)
        assert policy.module("api").allowed_callers == ()

    def test_patterns_map_paths_to_modules(self) -> None:
        policy = parse_policy(ALLOWED_DEPS)
        assert policy.module_for_path("src/api/routes/users.py") == "api"
        assert policy.module_for_path("src/core/db.py") == "core"
        assert policy.module_for_path("src/corelib/x.py") is None

    def test_bad_entries_warn(self) -> None:
        policy = parse_policy(
            {"modules": {"patterns": [{"name": "api"}], "allowed_deps": [{"from": "api"}]}}
        )
        assert policy.module_patterns == []
        assert policy.allowed_deps == []
        assert len(policy.warnings) == 2


class TestEmptyPolicy:
    def test_empty_document(self) -> None:
        policy = parse_policy({})
        assert policy.format is PolicyFormat.EMPTY
        assert policy.modules == {}
        assert policy.determinism_target == DEFAULT_DETERMINISM_TARGET
        assert policy.heuristics.enabled

    def test_non_object_rejected(self) -> None:
        with pytest.raises(PolicyError):
            parse_policy(["modules"])


# ---------------------------------------------------------------------------
# Other sections
# ---------------------------------------------------------------------------


class TestOtherSections:
    def test_kill_patterns(self) -> None:
        policy = parse_policy({"kill_patterns": [{"kind": "raw-sql", "match": r"mysql_query\("}]})
        assert policy.kill_pattern_labels == frozenset({"raw-sql"})
        assert policy.kill_patterns[0].compile().search("mysql_query($q)")

    def test_invalid_regex_skipped(self) -> None:
        policy = parse_policy({"kill_patterns": [{"kind": "bad", "match": "("}]})
        assert policy.kill_patterns == []
        assert "invalid regex" in policy.warnings[0]

    def test_heuristics_section(self) -> None:
        policy = parse_policy(
            {"heuristics": {"enable": False, "confidence": {"hard": 0.9, "soft": 0.5}}}
        )
        assert not policy.heuristics.enabled
        assert policy.heuristics.hard == 0.9
        assert policy.heuristics.soft == 0.5

    def test_out_of_range_threshold_uses_default(self) -> None:
        policy = parse_policy({"determinism_target": 3})
        assert policy.determinism_target == DEFAULT_DETERMINISM_TARGET
        assert policy.warnings

    def test_non_string_callers_skipped(self) -> None:
        policy = parse_policy({"modules": {"a": {"allowed_callers": ["b", 3]}}})
        assert policy.module("a").allowed_callers == ("b",)
        assert len(policy.warnings) == 1

    def test_content_hash_is_stable(self) -> None:
        a = parse_policy({"x": 1, "modules": {}})
        b = parse_policy({"modules": {}, "x": 1})
        assert a.content_hash == b.content_hash
        assert a.content_hash != parse_policy({"x": 2}).content_hash


# ---------------------------------------------------------------------------
# load_policy
# ---------------------------------------------------------------------------


class TestLoadPolicy:
    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        policy = load_policy(tmp_path / "lexmap.policy.json")
        assert policy.format is PolicyFormat.EMPTY
        assert policy.warnings == []

    def test_reads_file(self, tmp_path: Path) -> None:
        path = tmp_path / "lexmap.policy.json"
        path.write_text(json.dumps(MODULE_CALLERS), encoding="utf-8")
        policy = load_policy(path)
        assert policy.format is PolicyFormat.MODULE_CALLERS
        assert policy.raw == MODULE_CALLERS

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "lexmap.policy.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(PolicyError, match="not valid JSON"):
            load_policy(path)
