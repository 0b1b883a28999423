"""Named search recipes: validated presets for hybrid retrieval.

A recipe states how much to trust each retrieval signal (lexical,
semantic, graph) and how far to expand the graph. Recipes live in an
explicit ``RecipeRegistry``; the module-level helpers operate on a
default registry that holds only the built-ins.
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass

import structlog

from plangraph.errors import RecipeNotFoundError, RecipeValidationError

log = structlog.get_logger()

WEIGHT_SUM_TOLERANCE = 0.001
MIN_DEPTH = 1
MAX_DEPTH = 10
MIN_HOP_DECAY = 0.1
MAX_HOP_DECAY = 1.0


@dataclass
class RecipeWeights:
    """Relative trust in each retrieval signal; must sum to 1.0."""

    lexical: float
    semantic: float
    graph: float

    def total(self) -> float:
        return self.lexical + self.semantic + self.graph

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass
class GraphExpansionConfig:
    """BFS bounds for the graph signal."""

    max_depth: int = 1
    hop_decay: float = 0.5


@dataclass
class SearchRecipe:
    """A named retrieval preset."""

    name: str
    description: str
    weights: RecipeWeights
    graph_config: GraphExpansionConfig | None = None
    similarity_threshold: float | None = None


BUILT_IN_RECIPES: dict[str, SearchRecipe] = {
    # Relationship questions: "what blocks agent 003"
    "EDGE_HYBRID_RRF": SearchRecipe(
        name="EDGE_HYBRID_RRF",
        description="Graph-first with semantic fallback for relationship queries",
        weights=RecipeWeights(lexical=0.2, semantic=0.3, graph=0.5),
        graph_config=GraphExpansionConfig(max_depth=1, hop_decay=0.5),
    ),
    # Conceptual questions naming an entity: "explain authentication in plan 42"
    "NODE_HYBRID_RRF": SearchRecipe(
        name="NODE_HYBRID_RRF",
        description="Semantic-first with graph support for conceptual queries",
        weights=RecipeWeights(lexical=0.2, semantic=0.5, graph=0.3),
        graph_config=GraphExpansionConfig(max_depth=1, hop_decay=0.5),
        similarity_threshold=0.6,
    ),
    # Impact analysis: "trace dependencies of plan 41"
    "BFS_EXPANSION": SearchRecipe(
        name="BFS_EXPANSION",
        description="Deep multi-hop graph traversal for impact analysis",
        weights=RecipeWeights(lexical=0.1, semantic=0.2, graph=0.7),
        graph_config=GraphExpansionConfig(max_depth=3, hop_decay=0.5),
    ),
    # Direct references: "plan 0042", "agent #003"
    "LEXICAL_FIRST": SearchRecipe(
        name="LEXICAL_FIRST",
        description="Exact entity lookups by ID or name",
        weights=RecipeWeights(lexical=0.6, semantic=0.2, graph=0.2),
        graph_config=GraphExpansionConfig(max_depth=1, hop_decay=0.5),
    ),
    # Concepts: "how does authentication work"
    "SEMANTIC_FIRST": SearchRecipe(
        name="SEMANTIC_FIRST",
        description="Conceptual exploration via embeddings",
        weights=RecipeWeights(lexical=0.2, semantic=0.6, graph=0.2),
        graph_config=GraphExpansionConfig(max_depth=1, hop_decay=0.5),
        similarity_threshold=0.7,
    ),
    # Everything else
    "HYBRID_BALANCED": SearchRecipe(
        name="HYBRID_BALANCED",
        description="Balanced fusion for exploratory queries",
        weights=RecipeWeights(lexical=0.33, semantic=0.34, graph=0.33),
        graph_config=GraphExpansionConfig(max_depth=2, hop_decay=0.6),
    ),
}


def validate_recipe(recipe: SearchRecipe) -> None:
    """Check a recipe's parameters.

    Raises:
        RecipeValidationError: If weights do not sum to 1.0, or depth,
            decay, or similarity threshold is out of range.
    """
    total = recipe.weights.total()
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        raise RecipeValidationError(recipe.name, f"weights must sum to 1.0 (got {total:.3f})")

    if recipe.graph_config is not None:
        max_depth = recipe.graph_config.max_depth
        hop_decay = recipe.graph_config.hop_decay
        if not MIN_DEPTH <= max_depth <= MAX_DEPTH:
            raise RecipeValidationError(
                recipe.name,
                f"max_depth must be between {MIN_DEPTH} and {MAX_DEPTH} (got {max_depth})",
            )
        if not MIN_HOP_DECAY <= hop_decay <= MAX_HOP_DECAY:
            raise RecipeValidationError(
                recipe.name,
                f"hop_decay must be between {MIN_HOP_DECAY:.1f} and {MAX_HOP_DECAY:.1f} "
                f"(got {hop_decay})",
            )

    threshold = recipe.similarity_threshold
    if threshold is not None and not 0.0 <= threshold <= 1.0:
        raise RecipeValidationError(
            recipe.name, f"similarity_threshold must be between 0 and 1 (got {threshold})"
        )


class RecipeRegistry:
    """Catalog of named recipes.

    Starts with the built-ins; custom recipes are validated on
    ``register``. Lookups always return deep copies.

    Usage:
        registry = RecipeRegistry()
        registry.register(SearchRecipe("DEEP", "...", RecipeWeights(0, 0, 1)))
        recipe = registry.get("DEEP")
    """

    def __init__(self, include_builtins: bool = True) -> None:
        self._recipes: dict[str, SearchRecipe] = {}
        if include_builtins:
            for recipe in BUILT_IN_RECIPES.values():
                self._recipes[recipe.name] = copy.deepcopy(recipe)

    def register(self, recipe: SearchRecipe, *, replace: bool = False) -> None:
        """Add a recipe after validating it."""
        validate_recipe(recipe)
        if recipe.name in self._recipes and not replace:
            raise RecipeValidationError(recipe.name, "a recipe with this name already exists")
        self._recipes[recipe.name] = copy.deepcopy(recipe)
        log.debug("recipe_registered", recipe=recipe.name)

    def get(self, name: str) -> SearchRecipe:
        """Look up a recipe by exact, case-sensitive name.

        Raises:
            RecipeNotFoundError: If no recipe has that name.
        """
        recipe = self._recipes.get(name)
        if recipe is None:
            raise RecipeNotFoundError(name, available=self.names())
        return copy.deepcopy(recipe)

    def names(self) -> list[str]:
        return list(self._recipes)

    def __contains__(self, name: object) -> bool:
        return name in self._recipes

    def __len__(self) -> int:
        return len(self._recipes)


default_registry = RecipeRegistry()


def get_recipe(name: str) -> SearchRecipe:
    """Deep copy of a built-in recipe."""
    return default_registry.get(name)


def list_recipes() -> list[str]:
    return default_registry.names()
