"""Reciprocal Rank Fusion (RRF) for merging ranked candidate lists.

RRF combines multiple ranked lists using the formula:
    score(d) = sum(weight(L) / (k + r(d, L) + 1)) for each list L

where r is the zero-based rank. Only rank position matters, so lists
scored on incomparable scales (BM25, cosine, hop decay) fuse fairly.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

import structlog

log = structlog.get_logger()

DEFAULT_RRF_K = 60


@dataclass(frozen=True)
class RankedItem:
    """One candidate in a source ranking. ``score`` is carried but not used."""

    id: str
    score: float = 0.0
    source: str = ""


@dataclass
class FusedItem:
    """A fused candidate with the sources that contributed to it."""

    id: str
    score: float
    sources: list[str] = field(default_factory=list)


def rrf_score(rank: int, k: int = DEFAULT_RRF_K) -> float:
    """RRF contribution of a zero-based rank."""
    return 1.0 / (k + rank + 1)


def rrf(
    rankings: Mapping[str, Sequence[RankedItem]],
    weights: Mapping[str, float],
    k: int = DEFAULT_RRF_K,
) -> list[FusedItem]:
    """Fuse ranked lists from several sources.

    Args:
        rankings: Source name -> candidates ordered best-first.
        weights: Source name -> weight; sources with weight <= 0 (or no
            weight) are ignored.
        k: RRF constant; non-positive values fall back to 60.

    Returns:
        Fused items by descending score, ties broken by ascending id.

    Example:
        >>> fused = rrf(
        ...     {"lexical": [RankedItem("a"), RankedItem("b")],
        ...      "graph": [RankedItem("b")]},
        ...     {"lexical": 0.5, "graph": 0.5},
        ... )
        >>> [item.id for item in fused]
        ['b', 'a']
    """
    if k <= 0:
        k = DEFAULT_RRF_K

    scores: dict[str, float] = defaultdict(float)
    sources: dict[str, list[str]] = defaultdict(list)

    for source, items in rankings.items():
        weight = weights.get(source, 0.0)
        if weight <= 0 or not items:
            continue

        seen: set[str] = set()
        for rank, item in enumerate(items):
            # Repeats within one list only count at their best rank
            if item.id in seen:
                continue
            seen.add(item.id)
            scores[item.id] += weight * rrf_score(rank, k)
            sources[item.id].append(source)

    fused = [FusedItem(id=key, score=score, sources=sources[key]) for key, score in scores.items()]
    fused.sort(key=lambda item: (-item.score, item.id))

    log.debug("rrf_fused", sources=len(rankings), candidates=len(fused), k=k)
    return fused
