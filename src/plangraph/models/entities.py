"""Entity and relationship models for the plan knowledge graph."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC string (the storage timestamp format)."""
    return datetime.now(UTC).isoformat()


class EntityType(StrEnum):
    """Known entity types. The set is open: storage accepts any string type."""

    PLAN = "plan"
    AGENT = "agent"
    FEATURE = "feature"
    FILE = "file"
    TAG = "tag"
    CONCEPT = "concept"


class RelationType(StrEnum):
    """Known relationship types."""

    CONTAINS = "CONTAINS"  # Plan -> Agent, Plan -> Feature
    DEPENDS_ON = "DEPENDS_ON"  # Agent -> Agent, Feature -> Feature
    MODIFIES = "MODIFIES"  # Agent -> File
    IMPLEMENTS = "IMPLEMENTS"  # Agent -> Feature
    SIMILAR_TO = "SIMILAR_TO"  # Feature -> Feature (entity resolution)
    BLOCKS = "BLOCKS"  # Agent -> Agent (inverse of DEPENDS_ON)
    TAGGED_WITH = "TAGGED_WITH"  # Plan/Agent -> Tag


class Entity(BaseModel):
    """A node in the knowledge graph.

    ``canonical_id`` is the identity callers use; ``id`` is the storage
    surrogate key and is ``None`` until the entity has been persisted.
    """

    id: int | None = Field(default=None, description="Storage surrogate key")
    canonical_id: str = Field(description="Stable global key, e.g. plan:0001")
    type: str = Field(description="Entity type (see EntityType)")
    name: str = Field(description="Display label")
    source_path: str | None = Field(default=None, description="Source document path")
    content_hash: str | None = Field(default=None, description="Hash of the source content")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Type-specific attributes")
    created_at: str = Field(default="", description="ISO-8601 creation timestamp")
    updated_at: str = Field(default="", description="ISO-8601 last update timestamp")


class Relationship(BaseModel):
    """A directed, typed edge between two persisted entities (surrogate ids)."""

    id: int | None = Field(default=None, description="Storage surrogate key")
    source_id: int = Field(description="Source entity surrogate id")
    target_id: int = Field(description="Target entity surrogate id")
    relation_type: str = Field(description="Relationship type (see RelationType)")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0, description="Edge confidence")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Additional metadata")
    created_at: str = Field(default="", description="ISO-8601 creation timestamp")


class GraphStats(BaseModel):
    """Aggregate counts over the stored graph."""

    entity_counts: dict[str, int] = Field(default_factory=dict)
    relation_counts: dict[str, int] = Field(default_factory=dict)
    total_entities: int = 0
    total_relations: int = 0
    last_indexed: str = ""
