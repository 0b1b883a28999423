"""Entity resolution: find and link duplicate or near-duplicate features.

Only ``feature`` entities are compared. Duplication risk is concentrated
there (independently written plans describing the same capability), and
the pairwise scan is O(n²) over that subset.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from plangraph.graph.similarity import (
    THRESHOLDS,
    SimilarityScore,
    compute_similarity,
    compute_structural_similarity,
    is_duplicate,
)
from plangraph.graph.storage import GraphStorage
from plangraph.models.entities import Entity, EntityType, Relationship, RelationType, utc_now_iso
from plangraph.retrieval.backends import (
    EmbeddingStore,
    Vector,
    can_embed,
    can_find_similar,
    hit_canonical_id,
    hit_score,
    resolve,
)

log = structlog.get_logger()

PROBE_CANONICAL_ID = "feature:new"
NEAREST_NEIGHBOURS = 10


@dataclass
class ResolutionMatch:
    """A pair of features and how alike they are."""

    a: Entity
    b: Entity
    score: SimilarityScore

    def to_dict(self) -> dict[str, Any]:
        return {
            "a": self.a.canonical_id,
            "b": self.b.canonical_id,
            "score": {k: round(v, 4) for k, v in self.score.to_dict().items()},
        }


@dataclass
class ResolutionResult:
    duplicates: list[ResolutionMatch] = field(default_factory=list)
    similar: list[ResolutionMatch] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SimilarityEdge:
    """Typed view over a ``SIMILAR_TO`` relationship and its metadata."""

    source_id: int
    target_id: int
    confidence: float
    lexical: float
    semantic: float
    structural: float
    detected_at: str

    @classmethod
    def from_relationship(cls, rel: Relationship) -> SimilarityEdge:
        meta = rel.metadata
        return cls(
            source_id=rel.source_id,
            target_id=rel.target_id,
            confidence=rel.confidence,
            lexical=_as_float(meta, "lexical"),
            semantic=_as_float(meta, "semantic"),
            structural=_as_float(meta, "structural"),
            detected_at=str(meta.get("detected_at", "")),
        )

    def other(self, entity_id: int) -> int:
        """The endpoint that is not ``entity_id``."""
        return self.target_id if self.source_id == entity_id else self.source_id


def _as_float(meta: Mapping[str, Any], key: str) -> float:
    try:
        return float(meta.get(key, 0.0))
    except (TypeError, ValueError):
        return 0.0


def format_suggestion(kind: str, match: ResolutionMatch, advice: str) -> str:
    return (
        f'{kind}: "{match.a.name}" ({match.a.canonical_id}) and '
        f'"{match.b.name}" ({match.b.canonical_id}) are '
        f"{match.score.combined * 100:.0f}% similar. {advice}"
    )


class _ProbeEmbeddings:
    """Embedding store that also knows the vector of an unsaved probe."""

    def __init__(self, inner: EmbeddingStore, probe_id: str, probe_vector: Vector) -> None:
        self.inner = inner
        self.probe_id = probe_id
        self.probe_vector = probe_vector

    def get(self, canonical_id: str) -> Vector | None:
        if canonical_id == self.probe_id:
            return self.probe_vector
        return self.inner.get(canonical_id)


class EntityResolver:
    """Detects duplicate and similar features in the stored graph.

    Usage:
        resolver = EntityResolver(storage, embeddings)
        result = resolver.resolve_all()
        for line in result.suggestions:
            print(line)
    """

    def __init__(self, storage: GraphStorage, embeddings: EmbeddingStore | None = None) -> None:
        self.storage = storage
        self.embeddings = embeddings

    def resolve_all(self) -> ResolutionResult:
        """Compare every pair of features and link the alike ones.

        Each duplicate or similar pair gets a ``SIMILAR_TO`` edge (confidence
        = combined score, sub-scores and detection time in metadata) and a
        suggestion line. Holds ``storage.write_lock`` throughout.
        """
        result = ResolutionResult()

        with self.storage.write_lock:
            features = self.storage.get_entities_by_type(EntityType.FEATURE)
            neighbors = {f.canonical_id: self._neighbor_ids(f) for f in features}
            log.info("resolve_all_start", features=len(features))

            for i, feature_a in enumerate(features):
                for feature_b in features[i + 1 :]:
                    structural = compute_structural_similarity(
                        neighbors[feature_a.canonical_id], neighbors[feature_b.canonical_id]
                    )
                    score = compute_similarity(
                        feature_a, feature_b, self.embeddings, structural=structural
                    )

                    if is_duplicate(score):
                        result.duplicates.append(ResolutionMatch(feature_a, feature_b, score))
                        self._link(feature_a, feature_b, score)
                    elif score.combined >= THRESHOLDS["similar"]:
                        result.similar.append(ResolutionMatch(feature_a, feature_b, score))
                        self._link(feature_a, feature_b, score)

        for match in result.duplicates:
            result.suggestions.append(
                format_suggestion("DUPLICATE", match, "Consider consolidating.")
            )
        for match in result.similar:
            result.suggestions.append(
                format_suggestion("SIMILAR", match, "Consider linking or clarifying scope.")
            )

        log.info(
            "resolve_all_complete",
            duplicates=len(result.duplicates),
            similar=len(result.similar),
        )
        return result

    async def check_new_feature(self, name: str, description: str = "") -> list[Entity]:
        """Existing features that a proposed feature probably duplicates.

        With an embedding backend offering ``embed`` and ``find_similar``,
        the proposal text is embedded and its nearest neighbours kept when
        at or above the similar threshold. Otherwise every stored feature
        is scored against an unsaved probe with zero structural overlap.
        ``embed`` and ``find_similar`` may be plain or ``async``.
        """
        text = f"{name} {description}".strip()
        store: Any = self.embeddings

        if can_embed(store) and can_find_similar(store):
            vector = await resolve(store.embed(text))
            candidates = await resolve(store.find_similar(vector, NEAREST_NEIGHBOURS))

            matches: list[Entity] = []
            for candidate in candidates:
                canonical_id = hit_canonical_id(candidate)
                if not canonical_id or hit_score(candidate) < THRESHOLDS["similar"]:
                    continue
                entity = self.storage.get_entity(canonical_id)
                if entity is not None and entity.type == EntityType.FEATURE:
                    matches.append(entity)
            return matches

        probe = Entity(
            canonical_id=PROBE_CANONICAL_ID,
            type=EntityType.FEATURE,
            name=name.strip(),
        )
        if can_embed(store):
            probe_vector = await resolve(store.embed(text))
            store = _ProbeEmbeddings(store, probe.canonical_id, probe_vector)

        matches = []
        for entity in self.storage.get_entities_by_type(EntityType.FEATURE):
            score = compute_similarity(probe, entity, store, structural=0.0)
            if score.combined >= THRESHOLDS["similar"]:
                matches.append(entity)
        return matches

    def similar_features(self, canonical_id: str) -> list[tuple[Entity, SimilarityEdge]]:
        """Features linked to ``canonical_id`` by ``SIMILAR_TO``, strongest first.

        Raises:
            EntityNotFoundError: If ``canonical_id`` is not stored.
        """
        entity = self.storage.require_entity(canonical_id)
        if entity.id is None:
            return []

        linked: list[tuple[Entity, SimilarityEdge]] = []
        for rel in self.storage.get_relationships(entity.id):
            if rel.relation_type != RelationType.SIMILAR_TO:
                continue
            edge = SimilarityEdge.from_relationship(rel)
            other = self.storage.get_entity_by_id(edge.other(entity.id))
            if other is not None:
                linked.append((other, edge))

        linked.sort(key=lambda pair: (-pair[1].confidence, pair[0].canonical_id))
        return linked

    def _neighbor_ids(self, entity: Entity) -> set[str]:
        """Canonical ids of direct neighbours, ignoring earlier ``SIMILAR_TO`` links."""
        if entity.id is None:
            return set()
        return {
            neighbor.canonical_id
            for neighbor in self.storage.get_neighbors(
                entity.id, exclude_relation_type=RelationType.SIMILAR_TO
            )
        }

    def _link(self, a: Entity, b: Entity, score: SimilarityScore) -> None:
        if a.id is None or b.id is None:
            return
        self.storage.upsert_relationship(
            Relationship(
                source_id=a.id,
                target_id=b.id,
                relation_type=RelationType.SIMILAR_TO,
                confidence=score.combined,
                metadata={
                    "lexical": score.lexical,
                    "semantic": score.semantic,
                    "structural": score.structural,
                    "detected_at": utc_now_iso(),
                },
            )
        )
