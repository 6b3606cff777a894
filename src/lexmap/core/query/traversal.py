"""Bounded breadth-first traversal shared by the module and symbol queries."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Hashable, Iterable
from typing import TypeVar

Node = TypeVar("Node", bound=Hashable)


def bounded_bfs(
    seeds: Iterable[Node],
    neighbours: Callable[[Node], Iterable[Node]],
    radius: int,
) -> dict[Node, int]:
    """Return every node within *radius* hops of any seed, with its distance.

    Multi-source BFS with a visited set: each node is expanded at most once,
    so the cost is ``O(V + E)`` over the reachable subgraph regardless of
    cycles.  Seeds are at distance 0; ``radius=0`` returns exactly the seeds.

    Raises:
        ValueError: If *radius* is negative.
    """
    if radius < 0:
        raise ValueError(f"radius must be non-negative, got {radius}")

    distance: dict[Node, int] = {}
    queue: deque[Node] = deque()
    for seed in seeds:
        if seed not in distance:
            distance[seed] = 0
            queue.append(seed)

    while queue:
        node = queue.popleft()
        hops = distance[node]
        if hops >= radius:
            continue
        for neighbour in neighbours(node):
            if neighbour not in distance:
                distance[neighbour] = hops + 1
                queue.append(neighbour)

    return distance
