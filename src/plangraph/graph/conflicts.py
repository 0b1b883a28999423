"""Conflict detection and health reporting over the plan graph.

Four checks run against stored entities and relationships:

- file_contention: two or more WIP agents modify the same file
- feature_overlap: a SIMILAR_TO edge at or above the overlap threshold
- circular_dependency: a cycle among DEPENDS_ON edges
- stale_wip: a WIP agent that has not been updated for too long
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog

from plangraph.config import core_config
from plangraph.graph.storage import GraphStorage
from plangraph.models.entities import Entity, EntityType, GraphStats, RelationType

log = structlog.get_logger()

WIP_STATUS = "WIP"


class ConflictType(StrEnum):
    FILE_CONTENTION = "file_contention"
    FEATURE_OVERLAP = "feature_overlap"
    CIRCULAR_DEPENDENCY = "circular_dependency"
    STALE_WIP = "stale_wip"


class ConflictSeverity(StrEnum):
    WARNING = "warning"
    ERROR = "error"


@dataclass
class ConflictReport:
    """One detected conflict.

    Attributes:
        type: Which check produced the report.
        severity: warning or error.
        message: Human-readable description.
        entities: Canonical ids (or names) involved.
        metadata: Check-specific details.
    """

    type: ConflictType
    severity: ConflictSeverity
    message: str
    entities: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": str(self.type),
            "severity": str(self.severity),
            "message": self.message,
            "entities": list(self.entities),
            "metadata": dict(self.metadata),
        }


@dataclass
class ConflictDetectorOptions:
    stale_warning_days: int = field(default_factory=lambda: core_config.stale_warning_days)
    stale_error_days: int = field(default_factory=lambda: core_config.stale_error_days)
    overlap_threshold: float = field(default_factory=lambda: core_config.overlap_threshold)


@dataclass(frozen=True)
class AgentStatusView:
    """Typed view over the metadata bag of an agent entity."""

    canonical_id: str
    name: str
    status: str
    updated_at: datetime | None

    @classmethod
    def from_entity(cls, entity: Entity) -> AgentStatusView:
        return cls(
            canonical_id=entity.canonical_id,
            name=entity.name,
            status=str(entity.metadata.get("status", "")),
            updated_at=_parse_timestamp(entity.updated_at),
        )

    @property
    def is_wip(self) -> bool:
        return self.status == WIP_STATUS


def _parse_timestamp(value: str) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        log.debug("timestamp_parse_failed", value=value)
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class ConflictDetector:
    """Runs conflict checks against a graph storage.

    Usage:
        detector = ConflictDetector(storage)
        for report in detector.detect_all():
            print(report.severity, report.message)
    """

    def __init__(
        self, storage: GraphStorage, options: ConflictDetectorOptions | None = None
    ) -> None:
        self.storage = storage
        self.options = options or ConflictDetectorOptions()
        self._canonical_cache: dict[int, str] = {}

    def detect_all(self, now: datetime | None = None) -> list[ConflictReport]:
        reports = [
            *self.detect_file_contention(),
            *self.detect_feature_overlap(),
            *self.detect_circular_dependencies(),
            *self.detect_stale_wip(now),
        ]
        log.info("conflict_detection_complete", conflicts=len(reports))
        return reports

    def detect_file_contention(self) -> list[ConflictReport]:
        """Files modified by two or more WIP agents."""
        by_file: dict[int, list[int]] = defaultdict(list)
        for rel in self.storage.get_relationships_by_type(RelationType.MODIFIES):
            by_file[rel.target_id].append(rel.source_id)

        reports: list[ConflictReport] = []
        for file_id, agent_ids in by_file.items():
            if len(agent_ids) < 2:
                continue

            wip_agents: list[str] = []
            for agent_id in dict.fromkeys(agent_ids):
                agent = self.storage.get_entity_by_id(agent_id)
                if agent is not None and AgentStatusView.from_entity(agent).is_wip:
                    wip_agents.append(agent.canonical_id)
            if len(wip_agents) < 2:
                continue

            file_entity = self.storage.get_entity_by_id(file_id)
            file_name = file_entity.name if file_entity else f"entity:{file_id}"
            reports.append(
                ConflictReport(
                    type=ConflictType.FILE_CONTENTION,
                    severity=ConflictSeverity.ERROR,
                    message=(
                        f'File "{file_name}" is modified by {len(wip_agents)} WIP agents: '
                        f"{', '.join(wip_agents)}"
                    ),
                    entities=[file_name, *wip_agents],
                    metadata={
                        "file_id": file_entity.canonical_id if file_entity else None,
                        "agent_count": len(wip_agents),
                    },
                )
            )
        return reports

    def detect_feature_overlap(self) -> list[ConflictReport]:
        """SIMILAR_TO links strong enough to count as overlapping scope."""
        reports: list[ConflictReport] = []
        for rel in self.storage.get_relationships_by_type(RelationType.SIMILAR_TO):
            if rel.confidence < self.options.overlap_threshold:
                continue
            source = self.storage.get_entity_by_id(rel.source_id)
            target = self.storage.get_entity_by_id(rel.target_id)
            if source is None or target is None:
                continue

            reports.append(
                ConflictReport(
                    type=ConflictType.FEATURE_OVERLAP,
                    severity=ConflictSeverity.WARNING,
                    message=(
                        f'Features "{source.name}" and "{target.name}" are '
                        f"{rel.confidence * 100:.0f}% similar"
                    ),
                    entities=[source.canonical_id, target.canonical_id],
                    metadata={"confidence": rel.confidence},
                )
            )
        return reports

    def detect_circular_dependencies(self) -> list[ConflictReport]:
        """Cycles among DEPENDS_ON edges, each reported once."""
        graph: dict[int, list[int]] = defaultdict(list)
        for rel in self.storage.get_relationships_by_type(RelationType.DEPENDS_ON):
            graph[rel.source_id].append(rel.target_id)

        cycles: list[list[int]] = []
        visited: set[int] = set()
        rec_stack: set[int] = set()
        path: list[int] = []

        # Explicit stack: DEPENDS_ON chain depth is unbounded
        for start in list(graph):
            if start in visited:
                continue
            visited.add(start)
            rec_stack.add(start)
            path.append(start)
            stack = [(start, iter(graph.get(start, [])))]

            while stack:
                node, neighbors = stack[-1]
                for neighbor in neighbors:
                    if neighbor not in visited:
                        visited.add(neighbor)
                        rec_stack.add(neighbor)
                        path.append(neighbor)
                        stack.append((neighbor, iter(graph.get(neighbor, []))))
                        break
                    if neighbor in rec_stack:
                        cycle_start = path.index(neighbor)
                        cycles.append([*path[cycle_start:], neighbor])
                else:
                    stack.pop()
                    path.pop()
                    rec_stack.remove(node)

        reports: list[ConflictReport] = []
        reported: set[str] = set()
        for cycle in cycles:
            cycle_ids = [self._canonical_id(node) for node in cycle]
            key = "|".join(sorted(set(cycle_ids)))
            if key in reported:
                continue
            reported.add(key)
            reports.append(
                ConflictReport(
                    type=ConflictType.CIRCULAR_DEPENDENCY,
                    severity=ConflictSeverity.ERROR,
                    message=f"Circular dependency detected: {' -> '.join(cycle_ids)}",
                    entities=cycle_ids,
                )
            )
        return reports

    def detect_stale_wip(self, now: datetime | None = None) -> list[ConflictReport]:
        """WIP agents past the warning or error age."""
        current = now or datetime.now(UTC)
        reports: list[ConflictReport] = []

        for entity in self.storage.get_entities_by_type(EntityType.AGENT):
            agent = AgentStatusView.from_entity(entity)
            if not agent.is_wip or agent.updated_at is None:
                continue

            days = (current - agent.updated_at).total_seconds() / 86400
            if days >= self.options.stale_error_days:
                severity = ConflictSeverity.ERROR
            elif days >= self.options.stale_warning_days:
                severity = ConflictSeverity.WARNING
            else:
                continue

            reports.append(
                ConflictReport(
                    type=ConflictType.STALE_WIP,
                    severity=severity,
                    message=(
                        f'Agent "{agent.name}" ({agent.canonical_id}) has been WIP '
                        f"for {int(days)} days"
                    ),
                    entities=[agent.canonical_id],
                    metadata={"days_since_update": int(days)},
                )
            )
        return reports

    def _canonical_id(self, entity_id: int) -> str:
        if entity_id not in self._canonical_cache:
            entity = self.storage.get_entity_by_id(entity_id)
            self._canonical_cache[entity_id] = (
                entity.canonical_id if entity else f"unknown:{entity_id}"
            )
        return self._canonical_cache[entity_id]


@dataclass
class GraphHealthResult:
    stats: GraphStats
    conflicts: list[ConflictReport]
    summary: dict[str, Any]


def graph_health(
    storage: GraphStorage,
    options: ConflictDetectorOptions | None = None,
    now: datetime | None = None,
) -> GraphHealthResult:
    """Stats, conflicts, and a summary of both for a stored graph."""
    stats = storage.get_stats()
    conflicts = ConflictDetector(storage, options).detect_all(now)

    summary = {
        "total_entities": stats.total_entities,
        "total_relations": stats.total_relations,
        "conflict_count": len(conflicts),
        "error_count": sum(1 for c in conflicts if c.severity == ConflictSeverity.ERROR),
        "warning_count": sum(1 for c in conflicts if c.severity == ConflictSeverity.WARNING),
        "last_indexed": stats.last_indexed,
    }
    log.info("graph_health_checked", **summary)
    return GraphHealthResult(stats=stats, conflicts=conflicts, summary=summary)
