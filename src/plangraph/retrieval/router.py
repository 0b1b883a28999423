"""Deterministic query routing: free text -> search recipe.

Patterns are checked in a fixed order and the first match wins. Question
and concept cues outrank bare entity ids, so "what depends on plan 0041"
is routed by intent rather than by the id it mentions.
"""

from __future__ import annotations

import re

import structlog

from plangraph.retrieval.recipes import RecipeRegistry, SearchRecipe, default_registry

log = structlog.get_logger()

# Matched against the original-case query
ENTITY_QUERY = re.compile(r"plan\s*\d+|agent\s*#?\d+|\d{4}[-#]\d{3}", re.IGNORECASE)

# Matched against the lowercased query
QUESTION_RELATION = re.compile(
    r"(what|which|show|find|check).*\b(depends|blocks|modifies|blocking|related|overlap|contention)"
)
QUESTION_STATUS = re.compile(
    r"(what|which|show|status).*\b(of|for|on|is).*\b"
    r"(plan|agent|blocked|wip|gap|pass|progress|completion)"
)
CONCEPT_WITH_ENTITY = re.compile(
    r"\b(similar|like|explain|describe|how|why).*\b(plan|agent|to\s+\d)"
)
RELATION_QUERY = re.compile(
    r"depends|blocks|modifies|what.*blocking|related|overlap|contention|trace"
)
CONCEPT_QUERY = re.compile(r"\b(how|why|explain|describe|similar|like)\b|what is|tell me about")
STATUS_QUERY = re.compile(r"status|progress|completion|blocked|wip|gap|pass|done|remaining")
FILE_QUERY = re.compile(r"file|\.(?:ts|tsx|js|jsx|md|py|json|ya?ml)\b|modif|touch|change")

DEFAULT_RECIPE = "HYBRID_BALANCED"


def classify_query(query: str) -> str:
    """Name of the recipe a query routes to."""
    lowered = query.lower()

    if QUESTION_RELATION.search(lowered):
        return "EDGE_HYBRID_RRF"
    if QUESTION_STATUS.search(lowered):
        return "EDGE_HYBRID_RRF"
    if CONCEPT_WITH_ENTITY.search(lowered):
        return "NODE_HYBRID_RRF"
    if ENTITY_QUERY.search(query):
        return "LEXICAL_FIRST"
    if RELATION_QUERY.search(lowered):
        return "EDGE_HYBRID_RRF"
    if CONCEPT_QUERY.search(lowered):
        return "SEMANTIC_FIRST"
    if STATUS_QUERY.search(lowered):
        return "EDGE_HYBRID_RRF"
    if FILE_QUERY.search(lowered):
        return "LEXICAL_FIRST"
    return DEFAULT_RECIPE


def route_query(query: str, registry: RecipeRegistry | None = None) -> SearchRecipe:
    """Pick the recipe for a query.

    Args:
        query: Free-text query.
        registry: Registry to resolve the recipe name in (built-ins by default).

    Returns:
        A copy of the routed recipe; identical queries always route the same way.
    """
    name = classify_query(query)
    log.debug("query_routed", query=query[:50], recipe=name)
    return (registry if registry is not None else default_registry).get(name)
