"""Policy conformance checking.

Evaluates the module edges and pattern hits of a :class:`CodeGraph` against
a :class:`Policy`.  Violations are data, not errors: the checker always
returns the full list, and it is the caller's decision whether a non-empty
list fails a build.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from lexmap.core.graph.model import CodeGraph
from lexmap.core.policy.model import Policy

logger = logging.getLogger(__name__)


class ViolationKind(Enum):
    FORBIDDEN_EDGE = "forbidden_edge"
    DISALLOWED_EDGE = "disallowed_edge"
    KILL_PATTERN_DETECTED = "kill_pattern_detected"


@dataclass(frozen=True)
class Violation:
    """A single policy violation.

    Edge violations name the calling module in ``from_module`` and the
    called module in ``to_module``; kill-pattern violations name the module
    the hit was found in and leave ``to_module`` empty.
    """

    kind: ViolationKind
    from_module: str
    to_module: str = ""
    label: str = ""
    file: str = ""
    line: int = 0
    weight: int = 0

    @property
    def sort_key(self) -> tuple[str, str, str, str, str, int]:
        return (self.from_module, self.to_module, self.kind.value, self.label, self.file, self.line)

    @property
    def message(self) -> str:
        if self.kind is ViolationKind.FORBIDDEN_EDGE:
            return f"{self.from_module} is a forbidden caller of {self.to_module}"
        if self.kind is ViolationKind.DISALLOWED_EDGE:
            return f"{self.from_module} is not in the allowed callers of {self.to_module}"
        where = f" at {self.file}:{self.line}" if self.file else ""
        return f"kill pattern {self.label!r} found in {self.from_module}{where}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "from_module": self.from_module,
            "message": self.message,
        }
        if self.kind is ViolationKind.KILL_PATTERN_DETECTED:
            data.update(label=self.label, file=self.file, line=self.line)
        else:
            data.update(to_module=self.to_module, weight=self.weight)
        return data


def _aggregate_edges(graph: CodeGraph) -> dict[tuple[str, str], int]:
    pairs: dict[tuple[str, str], int] = {}
    for edge in graph.modules:
        key = (edge.source, edge.target)
        pairs[key] = pairs.get(key, 0) + edge.weight
    return pairs


def check_policy(graph: CodeGraph, policy: Policy) -> list[Violation]:
    """Return every violation of *policy* found in *graph*, in stable order.

    For each distinct module edge ``(A, B)``:

    * ``forbidden_edge`` when ``B`` lists ``A`` in ``forbidden_callers``;
    * ``disallowed_edge`` when ``B`` has a non-empty ``allowed_callers``
      list without ``A``.

    A module depending on itself is never an edge violation, and modules
    the policy does not declare are unconstrained.  Each pattern hit whose
    label the hit module (or the global list) declares as a kill pattern
    yields a ``kill_pattern_detected`` violation.
    """
    violations: list[Violation] = []

    for (source, target), weight in _aggregate_edges(graph).items():
        if source == target:
            continue
        rules = policy.module(target)
        if rules is None:
            continue
        if source in rules.forbidden_callers:
            violations.append(
                Violation(ViolationKind.FORBIDDEN_EDGE, from_module=source, to_module=target, weight=weight)
            )
        if rules.allowed_callers and source not in rules.allowed_callers:
            violations.append(
                Violation(ViolationKind.DISALLOWED_EDGE, from_module=source, to_module=target, weight=weight)
            )

    global_labels = policy.kill_pattern_labels
    seen_hits: set[tuple[str, str, str, int]] = set()
    for hit in graph.patterns:
        key = (hit.label, hit.module, hit.file, hit.line)
        if key in seen_hits:
            continue
        seen_hits.add(key)
        module_labels = policy.metadata_for(hit.module).kill_patterns
        if hit.label in module_labels or hit.label in global_labels:
            violations.append(
                Violation(
                    ViolationKind.KILL_PATTERN_DETECTED,
                    from_module=hit.module,
                    label=hit.label,
                    file=hit.file,
                    line=hit.line,
                )
            )

    violations.sort(key=lambda v: v.sort_key)
    if violations:
        logger.info("Policy check found %d violation(s)", len(violations))
    return violations
