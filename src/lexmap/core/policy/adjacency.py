"""Policy-derived module adjacency.

Turns a :class:`~lexmap.core.policy.model.Policy` into the graph of which
modules may legally talk to each other.  For module-callers policies an
allowed or forbidden caller relation is recorded in both directions; for
allowed-deps policies each declared dependency is a one-way edge.

Results are memoised in a :class:`PolicyGraphCache` keyed by the policy's
content hash.  The cache is passed in explicitly, never held globally, so
tests and long-running servers decide its lifetime.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from lexmap.core.policy.model import Policy, PolicyFormat

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyAdjacency:
    """Allowed and forbidden module relations, neighbours sorted per module."""

    adjacency: dict[str, list[str]] = field(default_factory=dict)
    forbidden: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, dict[str, list[str]]]:
        return {
            "adjacency": {k: list(v) for k, v in self.adjacency.items()},
            "forbidden": {k: list(v) for k, v in self.forbidden.items()},
        }


class PolicyGraphCache:
    """Write-once cache of :class:`PolicyAdjacency` keyed by policy hash.

    A second :meth:`put` for a key already present keeps the first value;
    since keys are content hashes both values are identical anyway.  Entries
    are never replaced, so sharing one cache between threads needs no lock.
    """

    def __init__(self) -> None:
        self._entries: dict[str, PolicyAdjacency] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> PolicyAdjacency | None:
        return self._entries.get(key)

    def put(self, key: str, value: PolicyAdjacency) -> PolicyAdjacency:
        return self._entries.setdefault(key, value)

    def clear(self) -> None:
        self._entries.clear()


def _link(graph: dict[str, set[str]], source: str, target: str, *, both: bool) -> None:
    graph.setdefault(source, set()).add(target)
    if both:
        graph.setdefault(target, set()).add(source)


def _freeze(graph: dict[str, set[str]]) -> dict[str, list[str]]:
    return {module: sorted(neighbours) for module, neighbours in sorted(graph.items())}


def _generate(policy: Policy) -> PolicyAdjacency:
    allowed: dict[str, set[str]] = {}
    forbidden: dict[str, set[str]] = {}

    if policy.format is PolicyFormat.MODULE_CALLERS:
        for module_id, rules in policy.modules.items():
            for caller in rules.allowed_callers:
                _link(allowed, module_id, caller, both=True)
            for caller in rules.forbidden_callers:
                _link(forbidden, module_id, caller, both=True)
    elif policy.format is PolicyFormat.ALLOWED_DEPS:
        for dep in policy.allowed_deps:
            _link(allowed, dep.source, dep.target, both=False)

    return PolicyAdjacency(adjacency=_freeze(allowed), forbidden=_freeze(forbidden))


def generate_policy_adjacency(
    policy: Policy,
    cache: PolicyGraphCache | None = None,
) -> PolicyAdjacency:
    """Return the adjacency implied by *policy*, consulting *cache* if given."""
    if cache is not None:
        cached = cache.get(policy.content_hash)
        if cached is not None:
            return cached

    result = _generate(policy)
    logger.debug(
        "Generated policy adjacency (%s): %d allowed, %d forbidden module(s)",
        policy.format.value,
        len(result.adjacency),
        len(result.forbidden),
    )

    if cache is not None:
        result = cache.put(policy.content_hash, result)
    return result
