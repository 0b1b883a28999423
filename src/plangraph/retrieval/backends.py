"""Pluggable retrieval backends.

The retriever and resolver only rely on these narrow protocols, so any
lexical index or embedding store can be plugged in. Search-style methods
may be plain or ``async`` (``EmbeddingStore.get`` stays plain); hits may
be mappings or objects exposing ``canonical_id`` plus ``similarity`` or
``score``.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

if TYPE_CHECKING:
    from plangraph.graph.storage import GraphStorage

T = TypeVar("T")

Vector = Sequence[float]


@dataclass(frozen=True)
class LexicalHit:
    canonical_id: str
    score: float


@dataclass(frozen=True)
class SimilarityHit:
    canonical_id: str
    score: float


@runtime_checkable
class LexicalIndex(Protocol):
    """Keyword search: best-first hits for a query."""

    def search(self, query: str, limit: int) -> Any: ...


@runtime_checkable
class EmbeddingStore(Protocol):
    """Stored entity embeddings.

    Stores may also provide ``embed(text) -> vector`` and
    ``find_similar(vector, limit) -> hits``; both are optional and their
    absence disables the corresponding feature rather than failing. Those
    two may be ``async``. ``get`` is called inside pairwise scoring loops
    and must be a plain method.
    """

    def get(self, canonical_id: str) -> Vector | None: ...


def can_embed(store: object | None) -> bool:
    return store is not None and callable(getattr(store, "embed", None))


def can_find_similar(store: object | None) -> bool:
    return store is not None and callable(getattr(store, "find_similar", None))


async def resolve(value: T | Awaitable[T]) -> T:
    """Await ``value`` if a backend returned a coroutine, else pass it through."""
    if inspect.isawaitable(value):
        return await value
    return value


def hit_canonical_id(hit: Any) -> str | None:
    if isinstance(hit, Mapping):
        value = hit.get("canonical_id")
    else:
        value = getattr(hit, "canonical_id", None)
    return str(value) if value else None


def hit_score(hit: Any) -> float:
    """Similarity of a hit, preferring ``similarity`` over ``score``."""
    for key in ("similarity", "score"):
        value = hit.get(key) if isinstance(hit, Mapping) else getattr(hit, key, None)
        if value is not None:
            return float(value)
    return 0.0


class StorageLexicalIndex:
    """Lexical backend over the graph storage's FTS5 name index."""

    def __init__(self, storage: GraphStorage) -> None:
        self.storage = storage

    def search(self, query: str, limit: int) -> list[LexicalHit]:
        return [
            LexicalHit(canonical_id=entity.canonical_id, score=score)
            for entity, score in self.storage.search_entities(query, limit)
        ]
