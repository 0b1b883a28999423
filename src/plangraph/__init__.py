"""
plangraph: Hybrid retrieval and graph resolution for plan knowledge graphs.

This package provides:
- Domain models (Entity, Relationship, GraphStats)
- SQLite graph storage and the two-phase reindex pipeline
- Entity resolution (duplicate/similar feature detection) and conflict checks
- Hybrid retrieval (lexical + semantic + graph expansion, fused with RRF)
- Deterministic query routing over named search recipes
"""

from plangraph._version import __version__, get_version
from plangraph.config import CoreConfig, core_config
from plangraph.errors import (
    EntityNotFoundError,
    GraphError,
    PlanGraphError,
    RecipeNotFoundError,
    RecipeValidationError,
    ReindexError,
    StorageError,
    ValidationError,
)

__all__ = [
    # Config
    "CoreConfig",
    # Errors
    "EntityNotFoundError",
    "GraphError",
    "PlanGraphError",
    "RecipeNotFoundError",
    "RecipeValidationError",
    "ReindexError",
    "StorageError",
    "ValidationError",
    # Version
    "__version__",
    "core_config",
    "get_version",
]
