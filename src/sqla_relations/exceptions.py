"""sqla_relations exception hierarchy.

Every error raised by the relationship layer derives from ``RelationsError``.
Errors are raised synchronously or from the awaited coroutine; nothing here is
logged or swallowed. Driver errors coming from SQLAlchemy are left untouched.
"""

from __future__ import annotations


class RelationsError(Exception):
    """Base exception for all sqla_relations errors."""


# --- Schema ---


class MissingAttributeError(RelationsError):
    """Raised at boot time when a convention-derived or explicit key is not on a model."""

    def __init__(self, relation: str, model_name: str, attribute: str) -> None:
        self.relation = relation
        self.model_name = model_name
        self.attribute = attribute
        super().__init__(
            f'"{relation}" expects "{attribute}" to exist on "{model_name}" model, but is missing'
        )


class UndefinedRelationError(RelationsError):
    """Raised when a relation name is not declared on the model."""

    def __init__(self, relation_name: str, model_name: str) -> None:
        self.relation_name = relation_name
        self.model_name = model_name
        super().__init__(
            f'"{relation_name}" is not defined as a relationship on "{model_name}" model'
        )


class RelationNotBootedError(RelationsError):
    """Raised when a relation is used for querying before ``boot()`` ran."""

    def __init__(self, relation: str) -> None:
        self.relation = relation
        super().__init__(f'Relation "{relation}" must be booted before it can be queried')


# --- Query ---


class ValueUndefinedError(RelationsError):
    """Raised when the parent key needed to scope a relation query has no value."""

    def __init__(self, action: str, relation_name: str, model_name: str, key: str) -> None:
        self.action = action
        self.relation_name = relation_name
        self.model_name = model_name
        self.key = key
        super().__init__(
            f'Cannot {action} "{relation_name}", value of "{model_name}.{key}" is undefined'
        )


class PaginationNotAllowedError(RelationsError):
    """Raised when ``paginate`` is requested on a relation query built for preloading."""

    def __init__(self, relation_name: str) -> None:
        self.relation_name = relation_name
        super().__init__(f'Cannot paginate relationship "{relation_name}" during preload')


class UnsupportedOperationError(RelationsError):
    """Raised for persistence operations a relation type cannot perform."""

    def __init__(self, operation: str, relation_type: str) -> None:
        self.operation = operation
        self.relation_type = relation_type
        super().__init__(f'Cannot call "{operation}" on a "{relation_type}" relationship')


class UnsavedModelError(RelationsError):
    """Raised when an operation requires a persisted model instance."""


class ModelNotFoundError(RelationsError):
    """Raised by ``find_or_fail`` / ``first_or_fail`` when no row matches."""

    def __init__(self, model_name: str) -> None:
        self.model_name = model_name
        super().__init__(f'Row not found for "{model_name}" model')


# --- Instance ---


class RelationNotLoadedError(RelationsError, AttributeError):
    """Raised when reading a relation that was never loaded on the instance."""

    def __init__(self, relation_name: str, model_name: str) -> None:
        self.relation_name = relation_name
        self.model_name = model_name
        super().__init__(
            f'Relation "{model_name}.{relation_name}" is not loaded. '
            f"Use preload(), load() or related().query() first"
        )


# --- Connection ---


class MissingConnectionError(RelationsError):
    """Raised for an unknown named connection or a query executed without a client."""
