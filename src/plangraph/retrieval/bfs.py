"""Bounded breadth-first expansion over the entity graph."""

from __future__ import annotations

from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import structlog

from plangraph.models.entities import Entity
from plangraph.retrieval.recipes import GraphExpansionConfig

log = structlog.get_logger()


class GraphReader(Protocol):
    """The slice of graph storage that traversal needs."""

    def get_entity(self, canonical_id: str) -> Entity | None: ...

    def get_neighbors(self, entity_id: int) -> list[Entity]: ...


@dataclass(frozen=True)
class BFSNode:
    """An entity reached by expansion and its hop distance from the seeds."""

    entity: Entity
    depth: int


@dataclass(frozen=True)
class ScoredEntity:
    entity: Entity
    score: float


def bfs_expansion(
    storage: GraphReader,
    seeds: Sequence[str],
    config: GraphExpansionConfig,
    limit: int,
) -> list[BFSNode]:
    """Expand outward from seed entities, nearest hops first.

    Seeds are traversal anchors and are not returned. Each canonical id is
    visited at most once across all seeds (marked on enqueue), nodes at
    ``config.max_depth`` are returned but not expanded, and traversal stops
    as soon as ``limit`` nodes are collected, so seed order decides which
    nodes survive truncation.

    Args:
        storage: Graph reader used for seed lookup and neighbor queries.
        seeds: Canonical ids to start from; unknown ids are skipped.
        config: Depth bound (decay is applied later by scoring).
        limit: Maximum number of nodes to return.

    Returns:
        Reached nodes in BFS order.
    """
    if not seeds or limit <= 0:
        return []

    visited: set[str] = set()
    queue: deque[BFSNode] = deque()
    for seed_id in seeds:
        entity = storage.get_entity(seed_id)
        if entity is None or entity.canonical_id in visited:
            continue
        visited.add(entity.canonical_id)
        queue.append(BFSNode(entity=entity, depth=0))

    results: list[BFSNode] = []
    while queue:
        current = queue.popleft()
        if current.depth >= config.max_depth or current.entity.id is None:
            continue

        for neighbor in storage.get_neighbors(current.entity.id):
            if neighbor.canonical_id in visited:
                continue
            visited.add(neighbor.canonical_id)

            node = BFSNode(entity=neighbor, depth=current.depth + 1)
            results.append(node)
            queue.append(node)
            if len(results) >= limit:
                log.debug("bfs_limit_reached", seeds=len(seeds), limit=limit)
                return results

    return results


def score_by_hop_distance(nodes: Sequence[BFSNode], hop_decay: float) -> list[ScoredEntity]:
    """Score nodes as ``hop_decay ** depth``; depth 0 scores exactly 1.0."""
    return [ScoredEntity(entity=node.entity, score=hop_decay**node.depth) for node in nodes]
