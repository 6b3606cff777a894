"""N-hop module neighbourhoods annotated with policy metadata.

Used to hand an assistant or a reviewer a small, policy-aware map around
the modules being changed (an "atlas frame").
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from lexmap.core.policy.model import Policy
from lexmap.core.query.adjacency import AdjacencyGraph
from lexmap.core.query.traversal import bounded_bfs

CRITICAL_RULE = "Every module name MUST match the IDs in lexmap.policy.json. No ad hoc naming."


@dataclass(frozen=True)
class ModuleWithMetadata:
    id: str
    coords: tuple[int, int]
    allowed_callers: tuple[str, ...] = ()
    forbidden_callers: tuple[str, ...] = ()
    feature_flags: tuple[str, ...] = ()
    requires_permissions: tuple[str, ...] = ()
    kill_patterns: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "coords": list(self.coords),
            "allowed_callers": list(self.allowed_callers),
            "forbidden_callers": list(self.forbidden_callers),
            "feature_flags": list(self.feature_flags),
            "requires_permissions": list(self.requires_permissions),
            "kill_patterns": list(self.kill_patterns),
        }


@dataclass(frozen=True)
class Neighborhood:
    seed_modules: list[str]
    fold_radius: int
    modules: list[ModuleWithMetadata] = field(default_factory=list)

    @property
    def module_ids(self) -> list[str]:
        return [m.id for m in self.modules]

    def to_dict(self) -> dict[str, Any]:
        return {
            "seed_modules": list(self.seed_modules),
            "fold_radius": self.fold_radius,
            "modules": [m.to_dict() for m in self.modules],
        }


def grid_coords(index: int, total: int) -> tuple[int, int]:
    """Place item *index* of *total* on a square-ish grid, row-major."""
    width = max(1, math.ceil(math.sqrt(total)))
    return index % width, index // width


def extract_neighborhood(
    seeds: Sequence[str],
    graph: AdjacencyGraph,
    policy: Policy,
    radius: int = 1,
) -> Neighborhood:
    """Collect every module within *radius* undirected hops of *seeds*.

    Seeds are always included, even when the graph has never seen them.
    Modules are returned sorted by id; each carries the lists its policy
    declares (empty when undeclared) and a grid position derived from its
    index in that order.

    Raises:
        ValueError: If *radius* is negative.
    """
    reached = bounded_bfs(seeds, graph.neighbours, radius)
    ordered = sorted(reached)

    modules = []
    for index, module_id in enumerate(ordered):
        rules = policy.metadata_for(module_id)
        modules.append(
            ModuleWithMetadata(
                id=module_id,
                coords=grid_coords(index, len(ordered)),
                allowed_callers=rules.allowed_callers,
                forbidden_callers=rules.forbidden_callers,
                feature_flags=rules.feature_flags,
                requires_permissions=rules.requires_permissions,
                kill_patterns=rules.kill_patterns,
            )
        )

    return Neighborhood(seed_modules=list(seeds), fold_radius=radius, modules=modules)


def build_atlas_frame(
    seeds: Sequence[str],
    graph: AdjacencyGraph,
    policy: Policy,
    radius: int = 1,
    timestamp: str | None = None,
) -> dict[str, Any]:
    """Wrap a neighbourhood in the atlas-frame envelope.

    *timestamp* defaults to now (UTC, ISO 8601); pass one to make the
    output reproducible.
    """
    neighborhood = extract_neighborhood(seeds, graph, policy, radius)
    return {
        "atlas_timestamp": timestamp or datetime.now(tz=timezone.utc).isoformat(),
        **neighborhood.to_dict(),
        "critical_rule": CRITICAL_RULE,
    }
