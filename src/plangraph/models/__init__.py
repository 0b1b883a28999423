"""Domain models for plangraph."""

from plangraph.models.entities import (
    Entity,
    EntityType,
    GraphStats,
    Relationship,
    RelationType,
    utc_now_iso,
)

__all__ = [
    "Entity",
    "EntityType",
    "GraphStats",
    "RelationType",
    "Relationship",
    "utc_now_iso",
]
