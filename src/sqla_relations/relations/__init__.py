"""Relationship descriptors.

Relations are declared in the class body of a model with one of the
shorthands below; the related model may be a class, a zero-argument callable
returning the class (for forward references), or a registered model name::

    class User(Base):
        id = column(sa.Integer, is_primary=True)
        country_id = column(sa.Integer)

        posts = has_many(lambda: Post)
        country = belongs_to("Country")
        skills = many_to_many(lambda: Skill, pivot_columns=["proficiency"])
"""

from __future__ import annotations

from typing import Any, Final

from .base import BaseRelation, ModelRef, RelationClient, RelationOptions, RelationQueryBuilder, RelationState, RelationType
from .belongs_to import BelongsTo, BelongsToClient, BelongsToQueryBuilder
from .has_many import HasMany, HasManyClient, HasManyQueryBuilder
from .has_many_through import HasManyThrough, HasManyThroughClient, HasManyThroughQueryBuilder
from .has_one import HasOne, HasOneClient, HasOneQueryBuilder
from .keys import KeySpec, ResolvedKey, resolve_keys
from .many_to_many import ManyToMany, ManyToManyClient, ManyToManyQueryBuilder
from .matcher import match


_RELATIONS: Final[dict[RelationType, type[BaseRelation]]] = {
    RelationType.HAS_ONE: HasOne,
    RelationType.HAS_MANY: HasMany,
    RelationType.BELONGS_TO: BelongsTo,
    RelationType.MANY_TO_MANY: ManyToMany,
}


def declare_relation(
    kind: RelationType | str,
    related: ModelRef,
    *,
    through: ModelRef | None = None,
    **options: Any,
) -> BaseRelation:
    """Create a relation descriptor of *kind*.

    Args:
        kind: A ``RelationType`` or its value (``"has_many"``, ...).
        related: The related model.
        through: The intermediate model; required for ``has_many_through`` only.
        **options: ``RelationOptions`` fields (``local_key``, ``foreign_key``, ...).

    Raises:
        ValueError: For an unknown kind, or a misplaced or missing *through*.
        TypeError: For an unknown option.
    """
    kind = RelationType(kind)
    if kind is RelationType.HAS_MANY_THROUGH:
        if through is None:
            raise ValueError("has_many_through relations require a through model")
        return HasManyThrough(related, through, **options)

    if through is not None:
        raise ValueError(f"{kind.value} relations do not accept a through model")

    return _RELATIONS[kind](related, **options)


def has_one(related: ModelRef, **options: Any) -> Any:
    return declare_relation(RelationType.HAS_ONE, related, **options)


def has_many(related: ModelRef, **options: Any) -> Any:
    return declare_relation(RelationType.HAS_MANY, related, **options)


def belongs_to(related: ModelRef, **options: Any) -> Any:
    return declare_relation(RelationType.BELONGS_TO, related, **options)


def many_to_many(related: ModelRef, **options: Any) -> Any:
    return declare_relation(RelationType.MANY_TO_MANY, related, **options)


def has_many_through(related: ModelRef, through: ModelRef, **options: Any) -> Any:
    return declare_relation(RelationType.HAS_MANY_THROUGH, related, through=through, **options)


__all__ = (
    "BaseRelation",
    "BelongsTo",
    "BelongsToClient",
    "BelongsToQueryBuilder",
    "HasMany",
    "HasManyClient",
    "HasManyQueryBuilder",
    "HasManyThrough",
    "HasManyThroughClient",
    "HasManyThroughQueryBuilder",
    "HasOne",
    "HasOneClient",
    "HasOneQueryBuilder",
    "KeySpec",
    "ManyToMany",
    "ManyToManyClient",
    "ManyToManyQueryBuilder",
    "ModelRef",
    "RelationClient",
    "RelationOptions",
    "RelationQueryBuilder",
    "RelationState",
    "RelationType",
    "ResolvedKey",
    "belongs_to",
    "declare_relation",
    "has_many",
    "has_many_through",
    "has_one",
    "many_to_many",
    "match",
    "resolve_keys",
)
