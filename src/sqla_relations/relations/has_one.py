from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from ..database import managed_transaction
from ..tools import get_value
from .base import BaseRelation, RelationClient, RelationQueryBuilder, RelationType
from .keys import KeySpec, resolve_keys


if TYPE_CHECKING:
    from ..database import BaseClient
    from ..model import BaseModel

T = TypeVar("T", bound="BaseModel")


class HasOneQueryBuilder(RelationQueryBuilder[T]):
    """``related.foreign_key = parent.local_key`` (``IN`` for a batch of parents)."""

    limit_single_parent: ClassVar[bool] = True

    def apply_relation_constraints(self) -> None:
        local_key = self.relation.key("local_key")
        column = self.table.c[self.relation.key("foreign_key").column_name]

        if self.is_batch:
            self.where_in(column, self.parent_values(local_key.attribute_name))
            return

        self.where(column, self.parent_value(local_key.attribute_name))
        if self.limit_single_parent and self._action == "select":
            self.limit(1)


class HasOneClient(RelationClient):
    """Persists related rows, copying the parent's key into their foreign key."""

    async def save(self, related: BaseModel, *, client: BaseClient | None = None) -> BaseModel:
        async with managed_transaction(self._require_client(client)) as trx:
            await self._save_one(related, trx)

        self._push(related)
        return related

    async def create(
        self,
        payload: Mapping[str, Any] | None = None,
        *,
        client: BaseClient | None = None,
        **attributes: Any,
    ) -> BaseModel:
        related = self.relation.related_model(**{**(payload or {}), **attributes})
        return await self.save(related, client=client)

    async def _save_one(self, related: BaseModel, trx: BaseClient) -> None:
        relation = self.relation
        if not self.parent.is_persisted:
            await self.parent.save(client=trx)

        value = get_value(self.parent, relation.key("local_key").attribute_name, relation, "save")
        related.set_attribute(relation.key("foreign_key").attribute_name, value)
        await related.save(client=trx)

    def _push(self, related: BaseModel | list[BaseModel]) -> None:
        if self.parent.is_loaded(self.relation.relation_name):
            self.relation.push_related(self.parent, related)


class HasOne(BaseRelation):
    """The related model holds a foreign key pointing at the owner; at most one row.

    Example:
        >>> class User(Base):
        ...     profile = has_one(lambda: Profile)
    """

    relation_type = RelationType.HAS_ONE
    many = False

    query_builder_class = HasOneQueryBuilder
    client_class = HasOneClient

    def _boot(self) -> None:
        owner, related = self.owner, self.related_model
        self.keys = resolve_keys(
            owner,
            self.relation_name,
            {
                "local_key": KeySpec(owner, self.options.local_key or owner.primary_key),
                "foreign_key": KeySpec(related, self.options.foreign_key or self.naming.foreign_key(owner)),
            },
        )

    def match_keys(self) -> tuple[str, str, bool]:
        return self.key("local_key").attribute_name, self.key("foreign_key").attribute_name, False
