"""Core configuration for plangraph - storage, retrieval, and health settings.

Only runtime knobs live here. Similarity thresholds are fixed constants in
``plangraph.graph.similarity`` and recipe parameters live in the recipe
registry, so neither can drift through the environment.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CoreConfig(BaseSettings):
    """Core settings shared by the retriever, resolver, and reindex pipeline."""

    model_config = SettingsConfigDict(
        env_prefix="PLANGRAPH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Emit JSON log lines instead of the themed console format",
    )
    service_name: str = Field(
        default="graph",
        description="Service label shown in console log lines",
    )

    # Storage
    db_path: str = Field(
        default=":memory:",
        description="SQLite database path for the knowledge graph",
    )

    # Retrieval
    rrf_k: int = Field(
        default=60,
        ge=1,
        description="Reciprocal Rank Fusion constant",
    )
    default_top_k: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Default number of results returned by hybrid search",
    )
    over_retrieve_factor: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Candidates fetched per backend = max(1, top_k * factor)",
    )

    # Health / conflict detection
    stale_warning_days: int = Field(
        default=7,
        ge=1,
        description="Days a WIP agent may go without updates before a warning",
    )
    stale_error_days: int = Field(
        default=14,
        ge=1,
        description="Days a WIP agent may go without updates before an error",
    )
    overlap_threshold: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Minimum SIMILAR_TO confidence reported as feature overlap",
    )


# Default core config instance
core_config = CoreConfig()
