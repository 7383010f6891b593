from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

import sqlalchemy as sa

from .base import BaseRelation, ModelRef, RelationClient, RelationQueryBuilder, RelationType, resolve_model
from .keys import KeySpec, resolve_keys


if TYPE_CHECKING:
    from ..model import BaseModel

T = TypeVar("T", bound="BaseModel")


class HasManyThroughQueryBuilder(RelationQueryBuilder[T]):
    """Joins the through table and filters on its foreign key.

    For ``Country.posts`` through ``User``::

        SELECT posts.*, users.country_id AS through_country_id
        FROM posts JOIN users ON users.id = posts.user_id
        WHERE users.country_id = 1

    Updates and deletes cannot join, so they filter with a subquery instead:
    ``WHERE posts.user_id IN (SELECT users.id FROM users WHERE users.country_id = 1)``.
    """

    def apply_relation_constraints(self) -> None:
        relation: HasManyThrough = self.relation  # type: ignore[assignment]
        through = relation.through_model.__table__
        foreign_key = through.c[relation.key("foreign_key").column_name]
        through_local_key = through.c[relation.key("through_local_key").column_name]
        through_foreign_key = self.table.c[relation.key("through_foreign_key").column_name]
        local_key = relation.key("local_key").attribute_name

        if self.is_batch:
            condition = foreign_key.in_(self.parent_values(local_key))
        else:
            condition = foreign_key == self.parent_value(local_key)

        if self._action in ("update", "delete"):
            self.where_in(through_foreign_key, sa.select(through_local_key).where(condition))
            return

        if not self.has_aggregates:
            self._extra_columns.append(foreign_key.label(relation.through_alias))

        self.join(through, through_local_key == through_foreign_key)
        self._push("_where", condition)


class HasManyThroughClient(RelationClient):
    """Read-only: rows are reached through an intermediate model, so there is nothing to attach to."""


class HasManyThrough(BaseRelation):
    """Owner -> through model (by ``foreign_key``) -> related model (by ``through_foreign_key``).

    Example:
        >>> class Country(Base):
        ...     posts = has_many_through(lambda: Post, through=lambda: User)
    """

    relation_type = RelationType.HAS_MANY_THROUGH
    many = True

    query_builder_class = HasManyThroughQueryBuilder
    client_class = HasManyThroughClient

    def __init__(self, related: ModelRef, through: ModelRef, **options: Any) -> None:
        super().__init__(related, **options)
        self._through_ref = through

    @property
    def through_model(self) -> type[BaseModel]:
        return resolve_model(self.owner, self._through_ref)

    @property
    def through_alias(self) -> str:
        """Extras key holding the owner's key on every fetched row."""
        return f"through_{self.key('foreign_key').column_name}"

    def _boot(self) -> None:
        owner, through, related = self.owner, self.through_model, self.related_model
        through.boot()

        options, naming = self.options, self.naming
        self.keys = resolve_keys(
            owner,
            self.relation_name,
            {
                "local_key": KeySpec(owner, options.local_key or owner.primary_key),
                "foreign_key": KeySpec(through, options.foreign_key or naming.foreign_key(owner)),
                "through_local_key": KeySpec(through, options.through_local_key or through.primary_key),
                "through_foreign_key": KeySpec(
                    related, options.through_foreign_key or naming.foreign_key(through)
                ),
            },
        )

    def match_keys(self) -> tuple[str, str, bool]:
        return self.key("local_key").attribute_name, self.through_alias, True
