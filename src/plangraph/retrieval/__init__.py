"""Retrieval components for plan graph search.

This module provides:
- fusion: Reciprocal Rank Fusion over ranked candidate lists
- bfs: bounded breadth-first graph expansion with hop decay
- recipes: named, validated retrieval presets
- router: deterministic query -> recipe classification
- backends: lexical index and embedding store protocols
- hybrid: the over-retrieve-then-fuse retriever
"""

from plangraph.retrieval.backends import (
    EmbeddingStore,
    LexicalHit,
    LexicalIndex,
    SimilarityHit,
    StorageLexicalIndex,
)
from plangraph.retrieval.bfs import BFSNode, ScoredEntity, bfs_expansion, score_by_hop_distance
from plangraph.retrieval.fusion import FusedItem, RankedItem, rrf
from plangraph.retrieval.hybrid import HybridRetriever, SearchResult, extract_seeds
from plangraph.retrieval.recipes import (
    BUILT_IN_RECIPES,
    GraphExpansionConfig,
    RecipeRegistry,
    RecipeWeights,
    SearchRecipe,
    get_recipe,
    list_recipes,
    validate_recipe,
)
from plangraph.retrieval.router import classify_query, route_query

__all__ = [
    # Recipes
    "BUILT_IN_RECIPES",
    # BFS
    "BFSNode",
    # Backends
    "EmbeddingStore",
    # Fusion
    "FusedItem",
    "GraphExpansionConfig",
    # Hybrid
    "HybridRetriever",
    "LexicalHit",
    "LexicalIndex",
    "RankedItem",
    "RecipeRegistry",
    "RecipeWeights",
    "ScoredEntity",
    "SearchRecipe",
    "SearchResult",
    "SimilarityHit",
    "StorageLexicalIndex",
    "bfs_expansion",
    # Router
    "classify_query",
    "extract_seeds",
    "get_recipe",
    "list_recipes",
    "route_query",
    "rrf",
    "score_by_hop_distance",
    "validate_recipe",
]
