"""Multi-signal similarity between graph entities.

Four signals feed the combined score:

- exact: canonical ids are equal (1.0) or not (0.0)
- lexical: Jaccard over name tokens longer than two characters
- semantic: cosine of stored embeddings (0.0 without an embedding backend)
- structural: supplied by the caller, usually Jaccard over neighbor sets

The exact weight only counts toward the normalizer when the ids match, so
two distinct entities are scored purely on the remaining three signals.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from plangraph.models.entities import Entity
    from plangraph.retrieval.backends import EmbeddingStore

WEIGHTS: dict[str, float] = {
    "exact": 0.4,
    "lexical": 0.2,
    "semantic": 0.3,
    "structural": 0.1,
}

THRESHOLDS: dict[str, float] = {
    "duplicate": 0.95,
    "duplicate_lexical": 0.98,
    "duplicate_semantic": 0.98,
    "duplicate_structural": 0.95,
    "similar": 0.8,
    "related": 0.6,
}

_TOKEN_SPLIT = re.compile(r"\W+")


@dataclass(frozen=True)
class SimilarityScore:
    """Per-signal and combined similarity of two entities, all in [0, 1]."""

    exact: float
    lexical: float
    semantic: float
    structural: float
    combined: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def tokenize(text: str) -> set[str]:
    """Lowercased word tokens longer than two characters."""
    return {token for token in _TOKEN_SPLIT.split(text.lower()) if len(token) > 2}


def jaccard_similarity(a: set[str], b: set[str]) -> float:
    """Jaccard index of two sets; two empty sets score 0."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def cosine_similarity(
    a: Sequence[float] | np.ndarray | None,
    b: Sequence[float] | np.ndarray | None,
) -> float:
    """Cosine similarity over the shared leading dimensions.

    Missing, empty, or zero-norm vectors score 0.
    """
    if a is None or b is None:
        return 0.0

    left = np.asarray(a, dtype=np.float64).ravel()
    right = np.asarray(b, dtype=np.float64).ravel()
    dims = min(left.size, right.size)
    if dims == 0:
        return 0.0

    left, right = left[:dims], right[:dims]
    norm = float(np.linalg.norm(left) * np.linalg.norm(right))
    if norm == 0.0:
        return 0.0
    return float(np.dot(left, right) / norm)


def compute_structural_similarity(neighbors_a: set[str], neighbors_b: set[str]) -> float:
    """Structural overlap of two entities from their neighbor canonical ids."""
    return jaccard_similarity(neighbors_a, neighbors_b)


def compute_similarity(
    a: Entity,
    b: Entity,
    embeddings: EmbeddingStore | None = None,
    structural: float = 0.0,
) -> SimilarityScore:
    """Score how alike two entities are.

    Args:
        a: First entity.
        b: Second entity.
        embeddings: Optional store providing ``get(canonical_id)`` vectors.
        structural: Precomputed structural similarity of the pair.

    Returns:
        SimilarityScore with the combined score clamped to [0, 1]. The
        result is symmetric in ``a`` and ``b``.
    """
    exact = 1.0 if a.canonical_id == b.canonical_id else 0.0
    lexical = jaccard_similarity(tokenize(a.name), tokenize(b.name))

    semantic = 0.0
    if embeddings is not None:
        semantic = cosine_similarity(
            embeddings.get(a.canonical_id), embeddings.get(b.canonical_id)
        )

    weighted = (
        WEIGHTS["exact"] * exact
        + WEIGHTS["lexical"] * lexical
        + WEIGHTS["semantic"] * semantic
        + WEIGHTS["structural"] * structural
    )
    total_weight = (
        (WEIGHTS["exact"] if exact >= 1.0 else 0.0)
        + WEIGHTS["lexical"]
        + WEIGHTS["semantic"]
        + WEIGHTS["structural"]
    )
    combined = weighted / total_weight if total_weight > 0 else 0.0

    return SimilarityScore(
        exact=exact,
        lexical=lexical,
        semantic=semantic,
        structural=structural,
        combined=max(0.0, min(1.0, combined)),
    )


def is_duplicate(score: SimilarityScore) -> bool:
    """Duplicate when the combined score is high enough, or every signal is."""
    if score.combined >= THRESHOLDS["duplicate"]:
        return True

    # Renamed copies keep near-identical meaning and context while names drift
    return (
        score.lexical >= THRESHOLDS["duplicate_lexical"]
        and score.semantic >= THRESHOLDS["duplicate_semantic"]
        and score.structural >= THRESHOLDS["duplicate_structural"]
    )


def is_similar(score: SimilarityScore) -> bool:
    """Similar but not duplicate."""
    return not is_duplicate(score) and score.combined >= THRESHOLDS["similar"]


def is_related(score: SimilarityScore) -> bool:
    return score.combined >= THRESHOLDS["related"]
