"""Architectural policy model and loader.

Policy documents come in two historical shapes:

* **module-callers**: ``modules`` maps each module id to its rules::

      {"modules": {"services/auth": {"allowed_callers": ["services/api"],
                                     "forbidden_callers": ["ui/admin"]}}}

* **allowed-deps**: ``modules`` holds file patterns and dependency pairs::

      {"modules": {"patterns": [{"name": "api", "match": "src/api/**"}],
                   "allowed_deps": [{"from": "api", "to": "core"}]}}

The shape is detected once at load time and recorded as
:attr:`Policy.format`; allowed-deps documents are normalised so that every
consumer reads per-module ``allowed_callers`` regardless of the source
shape.  Policy is the single source of truth for module identity: modules
it does not mention are unconstrained.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from lexmap.core.frames.hashing import sha256_hex
from lexmap.core.graph.determinism import DEFAULT_HARD_THRESHOLD, DEFAULT_SOFT_THRESHOLD
from lexmap.errors import PolicyError

logger = logging.getLogger(__name__)

DEFAULT_POLICY_FILE = "lexmap.policy.json"
DEFAULT_DETERMINISM_TARGET = 0.95


class PolicyFormat(Enum):
    """Discriminant for the shape a policy document was written in."""

    MODULE_CALLERS = "module-callers"
    ALLOWED_DEPS = "allowed-deps"
    EMPTY = "empty"


@dataclass(frozen=True)
class ModulePolicy:
    """Rules declared for a single module."""

    id: str
    description: str = ""
    allowed_callers: tuple[str, ...] = ()
    forbidden_callers: tuple[str, ...] = ()
    feature_flags: tuple[str, ...] = ()
    requires_permissions: tuple[str, ...] = ()
    kill_patterns: tuple[str, ...] = ()

    def to_metadata(self) -> dict[str, list[str]]:
        return {
            "allowed_callers": list(self.allowed_callers),
            "forbidden_callers": list(self.forbidden_callers),
            "feature_flags": list(self.feature_flags),
            "requires_permissions": list(self.requires_permissions),
            "kill_patterns": list(self.kill_patterns),
        }


@dataclass(frozen=True)
class ModulePattern:
    """Maps file paths to a module id (allowed-deps format)."""

    name: str
    match: str

    def matches(self, path: str) -> bool:
        """Glob match; a pattern without wildcards matches a directory prefix."""
        normalised = path.replace("\\", "/")
        if any(ch in self.match for ch in "*?["):
            return fnmatch.fnmatch(normalised, self.match)
        prefix = self.match.rstrip("/")
        return normalised == prefix or normalised.startswith(prefix + "/")


@dataclass(frozen=True)
class AllowedDep:
    source: str
    target: str


@dataclass(frozen=True)
class KillPattern:
    """A deprecated pattern: a label plus the regex extractors search for."""

    label: str
    match: str

    def compile(self) -> re.Pattern[str]:
        return re.compile(self.match, re.MULTILINE)


@dataclass(frozen=True)
class HeuristicsPolicy:
    enabled: bool = True
    hard: float = DEFAULT_HARD_THRESHOLD
    soft: float = DEFAULT_SOFT_THRESHOLD
    di_patterns: tuple[dict[str, str], ...] = ()


@dataclass
class Policy:
    """A loaded, normalised policy document."""

    format: PolicyFormat = PolicyFormat.EMPTY
    modules: dict[str, ModulePolicy] = field(default_factory=dict)
    module_patterns: list[ModulePattern] = field(default_factory=list)
    allowed_deps: list[AllowedDep] = field(default_factory=list)
    kill_patterns: list[KillPattern] = field(default_factory=list)
    heuristics: HeuristicsPolicy = field(default_factory=HeuristicsPolicy)
    determinism_target: float = DEFAULT_DETERMINISM_TARGET
    content_hash: str = ""
    raw: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def module(self, module_id: str) -> ModulePolicy | None:
        """Return the rules for *module_id*, or ``None`` if it is undeclared."""
        return self.modules.get(module_id)

    def metadata_for(self, module_id: str) -> ModulePolicy:
        """Return the rules for *module_id*, empty when it is undeclared."""
        return self.modules.get(module_id) or ModulePolicy(id=module_id)

    def module_for_path(self, path: str) -> str | None:
        """Return the first declared module whose pattern matches *path*."""
        for pattern in self.module_patterns:
            if pattern.matches(path):
                return pattern.name
        return None

    @property
    def kill_pattern_labels(self) -> frozenset[str]:
        return frozenset(kp.label for kp in self.kill_patterns)


def detect_format(modules: Any) -> PolicyFormat:
    """Decide which shape the ``modules`` section of a policy is written in."""
    if not isinstance(modules, dict) or not modules:
        return PolicyFormat.EMPTY
    if isinstance(modules.get("patterns"), list) or isinstance(modules.get("allowed_deps"), list):
        return PolicyFormat.ALLOWED_DEPS
    return PolicyFormat.MODULE_CALLERS


class _Collector:
    """Accumulates per-field warnings while a document is parsed."""

    def __init__(self, origin: str) -> None:
        self.origin = origin
        self.warnings: list[str] = []

    def warn(self, message: str) -> None:
        full = f"{self.origin}: {message}" if self.origin else message
        logger.warning("Policy %s", full)
        self.warnings.append(full)

    def strings(self, value: Any, where: str) -> tuple[str, ...]:
        if value is None:
            return ()
        if not isinstance(value, list):
            self.warn(f"{where} is not a list, ignoring it")
            return ()
        kept = []
        for item in value:
            if isinstance(item, str) and item:
                kept.append(item)
            else:
                self.warn(f"{where} contains non-string entry {item!r}, skipping it")
        return tuple(kept)


def _parse_module_callers(modules: dict[str, Any], col: _Collector) -> dict[str, ModulePolicy]:
    parsed: dict[str, ModulePolicy] = {}
    for module_id, spec in modules.items():
        if not isinstance(spec, dict):
            col.warn(f"module {module_id!r} is not an object, skipping it")
            continue
        where = f"modules.{module_id}"
        parsed[module_id] = ModulePolicy(
            id=module_id,
            description=str(spec.get("description") or ""),
            allowed_callers=col.strings(spec.get("allowed_callers"), f"{where}.allowed_callers"),
            forbidden_callers=col.strings(spec.get("forbidden_callers"), f"{where}.forbidden_callers"),
            feature_flags=col.strings(spec.get("feature_flags"), f"{where}.feature_flags"),
            requires_permissions=col.strings(
                spec.get("requires_permissions"), f"{where}.requires_permissions"
            ),
            kill_patterns=col.strings(spec.get("kill_patterns"), f"{where}.kill_patterns"),
        )
    return parsed


def _parse_allowed_deps(
    modules: dict[str, Any], col: _Collector
) -> tuple[list[ModulePattern], list[AllowedDep], dict[str, ModulePolicy]]:
    patterns: list[ModulePattern] = []
    for entry in modules.get("patterns") or []:
        if isinstance(entry, dict) and isinstance(entry.get("name"), str) and isinstance(entry.get("match"), str):
            patterns.append(ModulePattern(name=entry["name"], match=entry["match"]))
        else:
            col.warn(f"module pattern {entry!r} needs string 'name' and 'match', skipping it")

    deps: list[AllowedDep] = []
    for entry in modules.get("allowed_deps") or []:
        if isinstance(entry, dict) and entry.get("from") and entry.get("to"):
            deps.append(AllowedDep(source=str(entry["from"]), target=str(entry["to"])))
        else:
            col.warn(f"allowed dependency {entry!r} needs 'from' and 'to', skipping it")

    callers: dict[str, list[str]] = {p.name: [] for p in patterns}
    for dep in deps:
        callers.setdefault(dep.source, [])
        bucket = callers.setdefault(dep.target, [])
        if dep.source not in bucket:
            bucket.append(dep.source)

    normalised = {
        module_id: ModulePolicy(id=module_id, allowed_callers=tuple(allowed))
        for module_id, allowed in callers.items()
    }
    return patterns, deps, normalised


def _parse_kill_patterns(value: Any, col: _Collector) -> list[KillPattern]:
    if value is None:
        return []
    if not isinstance(value, list):
        col.warn("kill_patterns is not a list, ignoring it")
        return []
    patterns: list[KillPattern] = []
    for entry in value:
        if not isinstance(entry, dict):
            col.warn(f"kill pattern {entry!r} is not an object, skipping it")
            continue
        label = entry.get("kind") or entry.get("label")
        match = entry.get("match")
        if not isinstance(label, str) or not isinstance(match, str):
            col.warn(f"kill pattern {entry!r} needs string 'kind' and 'match', skipping it")
            continue
        try:
            re.compile(match)
        except re.error as exc:
            col.warn(f"kill pattern {label!r} has an invalid regex ({exc}), skipping it")
            continue
        patterns.append(KillPattern(label=label, match=match))
    return patterns


def _parse_threshold(value: Any, default: float, where: str, col: _Collector) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
        col.warn(f"{where} must be a number in [0, 1], using {default}")
        return default
    return float(value)


def _parse_heuristics(value: Any, col: _Collector) -> HeuristicsPolicy:
    if value is None:
        return HeuristicsPolicy()
    if not isinstance(value, dict):
        col.warn("heuristics is not an object, using defaults")
        return HeuristicsPolicy()

    confidence = value.get("confidence") or {}
    if not isinstance(confidence, dict):
        col.warn("heuristics.confidence is not an object, using defaults")
        confidence = {}

    di_patterns = value.get("di_patterns") or []
    if not isinstance(di_patterns, list):
        col.warn("heuristics.di_patterns is not a list, ignoring it")
        di_patterns = []

    return HeuristicsPolicy(
        enabled=bool(value.get("enable", True)),
        hard=_parse_threshold(confidence.get("hard"), DEFAULT_HARD_THRESHOLD, "heuristics.confidence.hard", col),
        soft=_parse_threshold(confidence.get("soft"), DEFAULT_SOFT_THRESHOLD, "heuristics.confidence.soft", col),
        di_patterns=tuple(p for p in di_patterns if isinstance(p, dict)),
    )


def parse_policy(document: Any, origin: str = "") -> Policy:
    """Build a :class:`Policy` from a decoded JSON document.

    Malformed fields and modules are skipped with a warning; only a
    document that is not a JSON object at all is rejected.

    Raises:
        PolicyError: If *document* is not a mapping.
    """
    if not isinstance(document, dict):
        raise PolicyError(f"{origin or 'policy'}: expected a JSON object, got {type(document).__name__}")

    col = _Collector(origin)
    modules_section = document.get("modules")
    fmt = detect_format(modules_section)

    modules: dict[str, ModulePolicy] = {}
    patterns: list[ModulePattern] = []
    deps: list[AllowedDep] = []
    if fmt is PolicyFormat.MODULE_CALLERS:
        modules = _parse_module_callers(modules_section, col)
    elif fmt is PolicyFormat.ALLOWED_DEPS:
        patterns, deps, modules = _parse_allowed_deps(modules_section, col)
    elif modules_section not in (None, {}, []):
        col.warn("modules section is not an object, ignoring it")

    return Policy(
        format=fmt,
        modules=modules,
        module_patterns=patterns,
        allowed_deps=deps,
        kill_patterns=_parse_kill_patterns(document.get("kill_patterns"), col),
        heuristics=_parse_heuristics(document.get("heuristics"), col),
        determinism_target=_parse_threshold(
            document.get("determinism_target"), DEFAULT_DETERMINISM_TARGET, "determinism_target", col
        ),
        content_hash=sha256_hex(document),
        raw=document,
        warnings=col.warnings,
    )


def load_policy(path: str | Path) -> Policy:
    """Load the policy file at *path*.

    A missing file yields the default policy (no modules, heuristics
    enabled, ``determinism_target`` 0.95).

    Raises:
        PolicyError: If the file exists but cannot be read or decoded.
    """
    policy_path = Path(path)
    if not policy_path.is_file():
        logger.info("No policy file at %s, using defaults", policy_path)
        return parse_policy({}, origin=str(policy_path))

    try:
        document = json.loads(policy_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        raise PolicyError(f"cannot read policy {policy_path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise PolicyError(f"policy {policy_path} is not valid JSON: {exc}") from exc

    return parse_policy(document, origin=str(policy_path))
