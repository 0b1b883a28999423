"""Hybrid retrieval combining lexical search, embeddings, and graph expansion.

Implements an over-retrieve-then-fuse strategy:
1. Recipe selection: explicit override, then the retriever default, then
   the query router. The recipe is validated before any backend is called.
2. Parallel retrieval: lexical index, embedding nearest neighbours, and
   BFS from entities named in the query, each asked for
   ``max(1, top_k * over_retrieve_factor)`` candidates.
3. Fusion: weighted RRF over the three rankings, truncated to ``top_k``.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from plangraph.config import core_config
from plangraph.models.entities import Entity
from plangraph.retrieval.backends import (
    EmbeddingStore,
    LexicalIndex,
    StorageLexicalIndex,
    can_embed,
    can_find_similar,
    hit_canonical_id,
    hit_score,
    resolve,
)
from plangraph.retrieval.bfs import bfs_expansion, score_by_hop_distance
from plangraph.retrieval.fusion import RankedItem, rrf
from plangraph.retrieval.recipes import (
    GraphExpansionConfig,
    RecipeRegistry,
    SearchRecipe,
    default_registry,
    validate_recipe,
)
from plangraph.retrieval.router import route_query

if TYPE_CHECKING:
    from plangraph.graph.storage import GraphStorage

log = structlog.get_logger()

PLAN_SEED = re.compile(r"plan\s*(\d{4})", re.IGNORECASE)
AGENT_SEED = re.compile(r"(\d{4})#(\d{3})")

DEFAULT_GRAPH_CONFIG = GraphExpansionConfig(max_depth=1, hop_decay=0.5)


@dataclass
class SearchResult:
    """One ranked entity from hybrid search."""

    entity: Entity
    score: float
    recipe_name: str


def extract_seeds(query: str) -> list[str]:
    """Canonical ids of plans and agents referenced in the raw query text.

    ``plan 0042`` -> ``plan:0042`` and ``0042#003`` -> ``agent:0042#003``.
    Plan seeds come before agent seeds; duplicates are removed.
    """
    seeds: dict[str, None] = {}
    for match in PLAN_SEED.finditer(query):
        seeds[f"plan:{match.group(1)}"] = None
    for match in AGENT_SEED.finditer(query):
        seeds[f"agent:{match.group(1)}#{match.group(2)}"] = None
    return list(seeds)


class HybridRetriever:
    """Answers free-text queries with ranked entities from the graph.

    Usage:
        retriever = HybridRetriever(storage, embeddings=store)
        results = await retriever.search("what blocks agent 0042#003")
    """

    def __init__(
        self,
        storage: GraphStorage,
        embeddings: EmbeddingStore | None = None,
        lexical: LexicalIndex | None = None,
        default_recipe: SearchRecipe | str | None = None,
        registry: RecipeRegistry | None = None,
        rrf_k: int | None = None,
    ) -> None:
        self.storage = storage
        self.embeddings = embeddings
        self.lexical = lexical if lexical is not None else StorageLexicalIndex(storage)
        self.registry = registry if registry is not None else default_registry
        self.default_recipe = default_recipe
        self.rrf_k = rrf_k if rrf_k is not None else core_config.rrf_k

    def select_recipe(
        self,
        query: str,
        recipe_override: SearchRecipe | str | None = None,
    ) -> SearchRecipe:
        """Resolve the recipe for a query and validate it.

        Raises:
            RecipeNotFoundError: If a recipe name is not registered.
            RecipeValidationError: If the chosen recipe is out of range.
        """
        chosen = recipe_override if recipe_override is not None else self.default_recipe
        if chosen is None:
            recipe = route_query(query, self.registry)
        elif isinstance(chosen, str):
            recipe = self.registry.get(chosen)
        else:
            recipe = chosen
        validate_recipe(recipe)
        return recipe

    async def search(
        self,
        query: str,
        top_k: int | None = None,
        recipe_override: SearchRecipe | str | None = None,
    ) -> list[SearchResult]:
        """Run hybrid search.

        Args:
            query: Free-text query.
            top_k: Maximum results (defaults to ``core_config.default_top_k``).
            recipe_override: Recipe or recipe name that bypasses routing.

        Returns:
            Up to ``top_k`` results ordered by fused score.
        """
        limit = top_k if top_k is not None else core_config.default_top_k
        recipe = self.select_recipe(query, recipe_override)
        over_k = max(1, limit * core_config.over_retrieve_factor)

        log.info("hybrid_search_start", query=query[:50], recipe=recipe.name, top_k=limit)

        lexical, semantic, graph = await asyncio.gather(
            self._lexical_search(query, over_k, recipe),
            self._semantic_search(query, over_k, recipe),
            self._graph_search(query, over_k, recipe),
        )
        rankings = {"lexical": lexical, "semantic": semantic, "graph": graph}
        fused = rrf(rankings, recipe.weights.as_dict(), k=self.rrf_k)

        results: list[SearchResult] = []
        for item in fused[: max(0, limit)]:
            entity = self.storage.get_entity(item.id)
            if entity is None:
                continue
            results.append(SearchResult(entity=entity, score=item.score, recipe_name=recipe.name))

        log.info(
            "hybrid_search_complete",
            query=query[:50],
            recipe=recipe.name,
            results=len(results),
            lexical_count=len(lexical),
            semantic_count=len(semantic),
            graph_count=len(graph),
        )
        return results

    async def _lexical_search(
        self, query: str, limit: int, recipe: SearchRecipe
    ) -> list[RankedItem]:
        if recipe.weights.lexical <= 0:
            return []
        try:
            hits = await resolve(self.lexical.search(query, limit))
        except Exception as e:
            log.warning("lexical_search_failed", query=query[:50], error=str(e))
            return []

        ranked: list[RankedItem] = []
        for hit in hits:
            canonical_id = hit_canonical_id(hit)
            if canonical_id:
                ranked.append(RankedItem(id=canonical_id, score=hit_score(hit), source="lexical"))
        return ranked

    async def _semantic_search(
        self, query: str, limit: int, recipe: SearchRecipe
    ) -> list[RankedItem]:
        if recipe.weights.semantic <= 0:
            return []
        store: Any = self.embeddings
        if not (can_embed(store) and can_find_similar(store)):
            return []

        try:
            vector = await resolve(store.embed(query))
            hits = await resolve(store.find_similar(vector, limit))
        except Exception as e:
            log.warning("semantic_search_failed", query=query[:50], error=str(e))
            return []

        threshold = recipe.similarity_threshold
        ranked: list[RankedItem] = []
        for hit in hits:
            canonical_id = hit_canonical_id(hit)
            similarity = hit_score(hit)
            if not canonical_id:
                continue
            if threshold is not None and similarity < threshold:
                continue
            ranked.append(RankedItem(id=canonical_id, score=similarity, source="semantic"))
        return ranked

    async def _graph_search(
        self, query: str, limit: int, recipe: SearchRecipe
    ) -> list[RankedItem]:
        if recipe.weights.graph <= 0:
            return []
        seeds = extract_seeds(query)
        if not seeds:
            return []

        config = recipe.graph_config or DEFAULT_GRAPH_CONFIG
        try:
            nodes = bfs_expansion(self.storage, seeds, config, limit)
        except Exception as e:
            log.warning("graph_expansion_failed", seeds=seeds, error=str(e))
            return []

        return [
            RankedItem(id=scored.entity.canonical_id, score=scored.score, source="graph")
            for scored in score_by_hop_distance(nodes, config.hop_decay)
        ]
