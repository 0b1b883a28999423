"""Core exceptions for plangraph operations."""


class PlanGraphError(Exception):
    """Base exception for all plangraph errors."""

    def __init__(self, message: str, *, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PlanGraphError):
    """Raised when input validation fails."""


class RecipeValidationError(ValidationError):
    """Raised when a search recipe carries out-of-range parameters."""

    def __init__(self, recipe_name: str, reason: str) -> None:
        super().__init__(
            f'Recipe "{recipe_name}": {reason}',
            details={"recipe": recipe_name, "reason": reason},
        )


class RecipeNotFoundError(PlanGraphError):
    """Raised when a recipe name is not registered."""

    def __init__(self, name: str, available: list[str] | None = None) -> None:
        super().__init__(
            f"Unknown recipe: {name}",
            details={"name": name, "available": available or []},
        )


class GraphError(PlanGraphError):
    """Raised when a graph storage operation fails."""


class StorageError(GraphError):
    """Raised when the underlying database rejects a write."""


class EntityNotFoundError(GraphError):
    """Raised when a requested entity is not found in the graph."""

    def __init__(self, identifier: str, entity_type: str | None = None) -> None:
        label = entity_type or "entity"
        super().__init__(
            f"{label} not found: {identifier}",
            details={"entity_type": entity_type, "identifier": identifier},
        )


class ReindexError(PlanGraphError):
    """Raised when a reindex cannot start (e.g. a pass is run out of order)."""
