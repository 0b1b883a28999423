"""Pytest fixtures and fakes for plangraph tests.

This module provides:
- storage: an in-memory GraphStorage per test
- FakeEmbeddingStore / SearchableEmbeddingStore / EmbedOnlyEmbeddingStore
  (plus Async* variants with coroutine methods):
  embedding backends with and without the optional methods
- FakeLexicalIndex / FailingBackend: lexical backends with call tracking
- FakeExtractor: canned extraction batches per source
- Factory functions: make_entity, make_relationship, store_entities

Usage:
    def test_something(storage):
        plan, agent = store_entities(
            storage, make_entity("plan:0001"), make_entity("agent:0001#001")
        )
        link(storage, plan, agent, "CONTAINS")
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

import pytest

from plangraph.graph.reindex import ExtractionBatch
from plangraph.graph.storage import GraphStorage
from plangraph.models.entities import Entity, Relationship

# =============================================================================
# Embedding backends
# =============================================================================


@dataclass
class FakeEmbeddingStore:
    """Stored vectors only; no ``embed`` or ``find_similar``."""

    vectors: dict[str, list[float]] = field(default_factory=dict)

    def get(self, canonical_id: str) -> list[float] | None:
        return self.vectors.get(canonical_id)


@dataclass
class SearchableEmbeddingStore(FakeEmbeddingStore):
    """Embedding store with nearest-neighbour search returning canned hits."""

    text_vectors: dict[str, list[float]] = field(default_factory=dict)
    hits: list[Any] = field(default_factory=list)
    embed_calls: list[str] = field(default_factory=list)
    find_calls: list[tuple[list[float], int]] = field(default_factory=list)

    def embed(self, text: str) -> list[float]:
        self.embed_calls.append(text)
        return self.text_vectors.get(text, [1.0, 0.0])

    def find_similar(self, vector: list[float], limit: int) -> list[Any]:
        self.find_calls.append((vector, limit))
        return self.hits[:limit]


@dataclass
class AsyncEmbeddingStore(SearchableEmbeddingStore):
    """Same as SearchableEmbeddingStore, with coroutine methods."""

    async def embed(self, text: str) -> list[float]:  # type: ignore[override]
        return SearchableEmbeddingStore.embed(self, text)

    async def find_similar(  # type: ignore[override]
        self, vector: list[float], limit: int
    ) -> list[Any]:
        return SearchableEmbeddingStore.find_similar(self, vector, limit)


@dataclass
class EmbedOnlyEmbeddingStore(FakeEmbeddingStore):
    """Can embed text but offers no nearest-neighbour search."""

    text_vectors: dict[str, list[float]] = field(default_factory=dict)

    def embed(self, text: str) -> list[float]:
        return self.text_vectors.get(text, [0.0, 0.0])


@dataclass
class AsyncEmbedOnlyEmbeddingStore(EmbedOnlyEmbeddingStore):
    """EmbedOnlyEmbeddingStore with a coroutine ``embed``."""

    async def embed(self, text: str) -> list[float]:  # type: ignore[override]
        return EmbedOnlyEmbeddingStore.embed(self, text)


# =============================================================================
# Lexical backends
# =============================================================================


@dataclass
class FakeLexicalIndex:
    """Returns canned best-first hits and records every call."""

    hits: list[Any] = field(default_factory=list)
    calls: list[tuple[str, int]] = field(default_factory=list)

    def search(self, query: str, limit: int) -> list[Any]:
        self.calls.append((query, limit))
        return self.hits[:limit]


@dataclass
class FailingBackend:
    """Any search or lookup raises."""

    calls: int = 0

    def search(self, query: str, limit: int) -> list[Any]:
        self.calls += 1
        raise RuntimeError("index unavailable")

    def get(self, canonical_id: str) -> list[float] | None:
        return None

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        raise RuntimeError("model unavailable")

    def find_similar(self, vector: list[float], limit: int) -> list[Any]:
        return []


# =============================================================================
# Extraction
# =============================================================================


@dataclass
class FakeExtractor:
    """Serves pre-built batches by source; unknown sources raise."""

    batches: dict[str, ExtractionBatch] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)

    def extract(self, source: str) -> ExtractionBatch:
        self.calls.append(source)
        if source not in self.batches:
            raise FileNotFoundError(source)
        return self.batches[source]


# =============================================================================
# Factories
# =============================================================================


def make_entity(
    canonical_id: str,
    name: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    metadata: dict[str, Any] | None = None,
    **kwargs: Any,
) -> Entity:
    """Factory for test entities.

    The type defaults to the canonical id prefix (``feature:x`` -> feature)
    and the name to the part after the prefix.
    """
    prefix, _, rest = canonical_id.partition(":")
    return Entity(
        id=entity_id,
        canonical_id=canonical_id,
        type=entity_type or prefix,
        name=name if name is not None else rest,
        metadata=metadata or {},
        **kwargs,
    )


def make_relationship(
    source_id: int,
    target_id: int,
    relation_type: str = "DEPENDS_ON",
    confidence: float = 1.0,
    metadata: dict[str, Any] | None = None,
) -> Relationship:
    return Relationship(
        source_id=source_id,
        target_id=target_id,
        relation_type=relation_type,
        confidence=confidence,
        metadata=metadata or {},
    )


def store_entities(storage: GraphStorage, *entities: Entity) -> list[Entity]:
    """Upsert entities and return the stored copies (with surrogate ids)."""
    return [storage.upsert_entity(entity) for entity in entities]


def link(
    storage: GraphStorage,
    source: Entity,
    target: Entity,
    relation_type: str = "DEPENDS_ON",
    confidence: float = 1.0,
) -> Relationship:
    assert source.id is not None and target.id is not None
    return storage.upsert_relationship(
        make_relationship(source.id, target.id, relation_type, confidence)
    )


def canonical_ids(items: Sequence[Any]) -> list[str]:
    """Canonical ids of entities, BFS nodes, or search results."""
    ids: list[str] = []
    for item in items:
        entity = getattr(item, "entity", item)
        ids.append(entity.canonical_id)
    return ids


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def storage() -> Iterator[GraphStorage]:
    graph = GraphStorage(sqlite3.connect(":memory:"))
    yield graph
    graph.close()


@pytest.fixture
def chain_graph(storage: GraphStorage) -> list[Entity]:
    """plan:0001 -> agent:0001#001, which implements feature:auth and modifies file:auth.py."""
    plan, agent, feature, file = store_entities(
        storage,
        make_entity("plan:0001", name="Authentication plan"),
        make_entity("agent:0001#001", name="Build login"),
        make_entity("feature:auth", name="User authentication"),
        make_entity("file:auth.py", name="src/auth.py"),
    )
    link(storage, plan, agent, "CONTAINS")
    link(storage, agent, feature, "IMPLEMENTS")
    link(storage, agent, file, "MODIFIES")
    return [plan, agent, feature, file]
