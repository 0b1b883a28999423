"""Graph storage, reindexing, entity resolution, and health checks."""

from plangraph.graph.conflicts import (
    AgentStatusView,
    ConflictDetector,
    ConflictDetectorOptions,
    ConflictReport,
    ConflictSeverity,
    ConflictType,
    GraphHealthResult,
    graph_health,
)
from plangraph.graph.reindex import (
    ExtractionBatch,
    Extractor,
    ReindexPipeline,
    ReindexResult,
    find_plan_dirs,
    graph_reindex,
)
from plangraph.graph.resolver import (
    EntityResolver,
    ResolutionMatch,
    ResolutionResult,
    SimilarityEdge,
)
from plangraph.graph.similarity import (
    THRESHOLDS,
    WEIGHTS,
    SimilarityScore,
    compute_similarity,
    compute_structural_similarity,
    cosine_similarity,
    is_duplicate,
    is_similar,
    jaccard_similarity,
    tokenize,
)
from plangraph.graph.storage import GraphStorage, compute_content_hash, has_changed

__all__ = [
    # Conflicts
    "AgentStatusView",
    "ConflictDetector",
    "ConflictDetectorOptions",
    "ConflictReport",
    "ConflictSeverity",
    "ConflictType",
    # Resolver
    "EntityResolver",
    # Reindex
    "ExtractionBatch",
    "Extractor",
    "GraphHealthResult",
    # Storage
    "GraphStorage",
    "ReindexPipeline",
    "ReindexResult",
    "ResolutionMatch",
    "ResolutionResult",
    "SimilarityEdge",
    # Similarity
    "SimilarityScore",
    "THRESHOLDS",
    "WEIGHTS",
    "compute_content_hash",
    "compute_similarity",
    "compute_structural_similarity",
    "cosine_similarity",
    "find_plan_dirs",
    "graph_health",
    "graph_reindex",
    "has_changed",
    "is_duplicate",
    "is_similar",
    "jaccard_similarity",
    "tokenize",
]
