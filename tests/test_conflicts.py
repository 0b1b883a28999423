"""Tests for conflict detection and graph health."""

import sys
from datetime import UTC, datetime

import pytest

from plangraph.graph.conflicts import (
    AgentStatusView,
    ConflictDetector,
    ConflictDetectorOptions,
    ConflictSeverity,
    ConflictType,
    graph_health,
)
from plangraph.graph.storage import GraphStorage
from plangraph.models.entities import Entity
from tests.conftest import link, make_entity, make_relationship, store_entities

NOW = datetime(2026, 1, 15, tzinfo=UTC)


def agent(
    canonical_id: str, status: str = "WIP", updated_at: str = "2026-01-14T00:00:00+00:00"
) -> Entity:
    return make_entity(canonical_id, metadata={"status": status}, updated_at=updated_at)


class TestAgentStatusView:
    """Tests for the typed view over agent metadata."""

    def test_from_entity(self) -> None:
        view = AgentStatusView.from_entity(agent("agent:0001#001"))

        assert view.is_wip
        assert view.updated_at == datetime(2026, 1, 14, tzinfo=UTC)

    def test_naive_timestamp_is_utc(self) -> None:
        entity = agent("agent:0001#001", updated_at="2026-01-14T00:00:00")
        view = AgentStatusView.from_entity(entity)
        assert view.updated_at == datetime(2026, 1, 14, tzinfo=UTC)

    def test_unparseable_timestamp(self) -> None:
        view = AgentStatusView.from_entity(agent("agent:0001#001", updated_at="last tuesday"))
        assert view.updated_at is None

    def test_status_is_case_sensitive(self) -> None:
        assert not AgentStatusView.from_entity(agent("agent:0001#001", status="wip")).is_wip


class TestFileContention:
    """Tests for detect_file_contention()."""

    @pytest.fixture
    def contended(self, storage: GraphStorage) -> list[Entity]:
        file, a1, a2, a3 = store_entities(
            storage,
            make_entity("file:auth.py", name="src/auth.py"),
            agent("agent:0001#001"),
            agent("agent:0002#001"),
            agent("agent:0003#001", status="PASS"),
        )
        for owner in (a1, a2, a3):
            link(storage, owner, file, "MODIFIES")
        return [file, a1, a2, a3]

    def test_two_wip_agents(self, storage: GraphStorage, contended: list[Entity]) -> None:
        (report,) = ConflictDetector(storage).detect_file_contention()

        assert report.type == ConflictType.FILE_CONTENTION
        assert report.severity == ConflictSeverity.ERROR
        assert report.entities == ["src/auth.py", "agent:0001#001", "agent:0002#001"]
        assert report.metadata == {"file_id": "file:auth.py", "agent_count": 2}
        assert report.message == (
            'File "src/auth.py" is modified by 2 WIP agents: agent:0001#001, agent:0002#001'
        )

    def test_single_wip_agent(self, storage: GraphStorage) -> None:
        file, a1, a2 = store_entities(
            storage,
            make_entity("file:auth.py"),
            agent("agent:0001#001"),
            agent("agent:0002#001", status="PASS"),
        )
        link(storage, a1, file, "MODIFIES")
        link(storage, a2, file, "MODIFIES")

        assert ConflictDetector(storage).detect_file_contention() == []


class TestFeatureOverlap:
    """Tests for detect_feature_overlap()."""

    @pytest.mark.parametrize(
        ("confidence", "reported"), [(0.9, True), (0.85, True), (0.8, False)]
    )
    def test_threshold(self, storage: GraphStorage, confidence: float, reported: bool) -> None:
        a, b = store_entities(
            storage,
            make_entity("feature:login", name="Login"),
            make_entity("feature:sign-in", name="Sign in"),
        )
        link(storage, a, b, "SIMILAR_TO", confidence=confidence)

        reports = ConflictDetector(storage).detect_feature_overlap()

        assert bool(reports) is reported
        if reported:
            assert reports[0].severity == ConflictSeverity.WARNING
            assert reports[0].entities == ["feature:login", "feature:sign-in"]

    def test_message(self, storage: GraphStorage) -> None:
        a, b = store_entities(
            storage,
            make_entity("feature:login", name="Login"),
            make_entity("feature:sign-in", name="Sign in"),
        )
        link(storage, a, b, "SIMILAR_TO", confidence=0.9)

        (report,) = ConflictDetector(storage).detect_feature_overlap()

        assert report.message == 'Features "Login" and "Sign in" are 90% similar'

    def test_custom_threshold(self, storage: GraphStorage) -> None:
        a, b = store_entities(storage, make_entity("feature:a"), make_entity("feature:b"))
        link(storage, a, b, "SIMILAR_TO", confidence=0.7)

        options = ConflictDetectorOptions(overlap_threshold=0.6)
        assert len(ConflictDetector(storage, options).detect_feature_overlap()) == 1


class TestCircularDependencies:
    """Tests for detect_circular_dependencies()."""

    def test_cycle(self, storage: GraphStorage) -> None:
        a, b, c = store_entities(
            storage,
            make_entity("agent:0001#001"),
            make_entity("agent:0001#002"),
            make_entity("agent:0001#003"),
        )
        link(storage, a, b)
        link(storage, b, c)
        link(storage, c, a)

        (report,) = ConflictDetector(storage).detect_circular_dependencies()

        assert report.type == ConflictType.CIRCULAR_DEPENDENCY
        assert report.severity == ConflictSeverity.ERROR
        assert report.entities[0] == report.entities[-1]
        assert report.message == (
            "Circular dependency detected: "
            "agent:0001#001 -> agent:0001#002 -> agent:0001#003 -> agent:0001#001"
        )

    def test_acyclic(self, storage: GraphStorage) -> None:
        a, b, c = store_entities(
            storage,
            make_entity("agent:0001#001"),
            make_entity("agent:0001#002"),
            make_entity("agent:0001#003"),
        )
        link(storage, a, b)
        link(storage, a, c)
        link(storage, b, c)

        assert ConflictDetector(storage).detect_circular_dependencies() == []

    def test_only_depends_on_edges(self, storage: GraphStorage) -> None:
        a, b = store_entities(storage, make_entity("agent:0001#001"), make_entity("plan:0001"))
        link(storage, a, b, "DEPENDS_ON")
        link(storage, b, a, "CONTAINS")

        assert ConflictDetector(storage).detect_circular_dependencies() == []

    def test_two_cycles(self, storage: GraphStorage) -> None:
        a, b, c, d = store_entities(
            storage,
            make_entity("agent:0001#001"),
            make_entity("agent:0001#002"),
            make_entity("agent:0002#001"),
            make_entity("agent:0002#002"),
        )
        link(storage, a, b)
        link(storage, b, a)
        link(storage, c, d)
        link(storage, d, c)

        reports = ConflictDetector(storage).detect_circular_dependencies()

        assert [r.entities for r in reports] == [
            ["agent:0001#001", "agent:0001#002", "agent:0001#001"],
            ["agent:0002#001", "agent:0002#002", "agent:0002#001"],
        ]

    @pytest.mark.parametrize("closed", [True, False])
    def test_chain_deeper_than_recursion_limit(self, storage: GraphStorage, closed: bool) -> None:
        depth = sys.getrecursionlimit() + 500
        chain = [f"feature:step-{i:05d}" for i in range(depth)]
        storage.upsert_entities_bulk(make_entity(cid) for cid in chain)
        ids = storage.resolve_ids(chain)
        edges = [
            make_relationship(ids[a], ids[b]) for a, b in zip(chain, chain[1:], strict=False)
        ]
        if closed:
            edges.append(make_relationship(ids[chain[-1]], ids[chain[0]]))
        storage.upsert_relationships_bulk(edges)

        reports = ConflictDetector(storage).detect_circular_dependencies()

        if closed:
            (report,) = reports
            assert report.entities == [*chain, chain[0]]
        else:
            assert reports == []


class TestStaleWip:
    """Tests for detect_stale_wip()."""

    def test_severity_by_age(self, storage: GraphStorage) -> None:
        store_entities(
            storage,
            agent("agent:0001#001", updated_at="2026-01-01T00:00:00+00:00"),
            agent("agent:0001#002", updated_at="2026-01-07T00:00:00+00:00"),
            agent("agent:0001#003", updated_at="2026-01-14T00:00:00+00:00"),
            agent("agent:0001#004", status="PASS", updated_at="2025-06-01T00:00:00+00:00"),
        )

        reports = ConflictDetector(storage).detect_stale_wip(NOW)

        assert [(r.entities[0], r.severity) for r in reports] == [
            ("agent:0001#001", ConflictSeverity.ERROR),
            ("agent:0001#002", ConflictSeverity.WARNING),
        ]
        assert reports[0].metadata == {"days_since_update": 14}
        assert reports[1].message == 'Agent "0001#002" (agent:0001#002) has been WIP for 8 days'

    def test_custom_windows(self, storage: GraphStorage) -> None:
        storage.upsert_entity(agent("agent:0001#001", updated_at="2026-01-13T00:00:00+00:00"))

        options = ConflictDetectorOptions(stale_warning_days=1, stale_error_days=2)
        (report,) = ConflictDetector(storage, options).detect_stale_wip(NOW)

        assert report.severity == ConflictSeverity.ERROR

    def test_only_agents(self, storage: GraphStorage) -> None:
        storage.upsert_entity(
            make_entity(
                "plan:0001", metadata={"status": "WIP"}, updated_at="2025-01-01T00:00:00+00:00"
            )
        )

        assert ConflictDetector(storage).detect_stale_wip(NOW) == []


class TestGraphHealth:
    """Tests for graph_health() and detect_all()."""

    def test_summary(self, storage: GraphStorage) -> None:
        file, a1, a2 = store_entities(
            storage,
            make_entity("file:auth.py", name="src/auth.py"),
            agent("agent:0001#001"),
            agent("agent:0002#001", updated_at="2026-01-05T00:00:00+00:00"),
        )
        link(storage, a1, file, "MODIFIES")
        link(storage, a2, file, "MODIFIES")
        storage.mark_indexed("2026-01-15T00:00:00+00:00")

        health = graph_health(storage, now=NOW)

        assert health.stats.entity_counts["agent"] == 2
        assert [c.type for c in health.conflicts] == [
            ConflictType.FILE_CONTENTION,
            ConflictType.STALE_WIP,
        ]
        assert health.summary == {
            "total_entities": 3,
            "total_relations": 2,
            "conflict_count": 2,
            "error_count": 1,
            "warning_count": 1,
            "last_indexed": "2026-01-15T00:00:00+00:00",
        }

    def test_empty_graph(self, storage: GraphStorage) -> None:
        health = graph_health(storage, now=NOW)

        assert health.conflicts == []
        assert health.summary["conflict_count"] == 0
        assert health.summary["last_indexed"] == ""

    def test_report_to_dict(self, storage: GraphStorage) -> None:
        storage.upsert_entity(agent("agent:0001#001", updated_at="2025-12-01T00:00:00+00:00"))

        (report,) = ConflictDetector(storage).detect_all(NOW)

        assert report.to_dict() == {
            "type": "stale_wip",
            "severity": "error",
            "message": 'Agent "0001#001" (agent:0001#001) has been WIP for 45 days',
            "entities": ["agent:0001#001"],
            "metadata": {"days_since_update": 45},
        }
