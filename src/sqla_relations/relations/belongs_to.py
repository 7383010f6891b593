from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

from ..database import managed_transaction
from ..exceptions import UnsavedModelError
from ..tools import get_value
from .base import BaseRelation, RelationClient, RelationQueryBuilder, RelationType
from .keys import KeySpec, resolve_keys


if TYPE_CHECKING:
    from ..database import BaseClient
    from ..model import BaseModel

T = TypeVar("T", bound="BaseModel")


class BelongsToQueryBuilder(RelationQueryBuilder[T]):
    """``related.local_key = parent.foreign_key``; parents with a null foreign key are skipped in batches."""

    def apply_relation_constraints(self) -> None:
        foreign_key = self.relation.key("foreign_key")
        column = self.table.c[self.relation.key("local_key").column_name]

        if self.is_batch:
            self.where_in(column, self.parent_values(foreign_key.attribute_name))
            return

        self.where(column, self.parent_value(foreign_key.attribute_name))
        if self._action == "select":
            self.limit(1)


class BelongsToClient(RelationClient):
    """The owner holds the foreign key, so persisting means updating the owner."""

    async def associate(self, related: BaseModel, *, client: BaseClient | None = None) -> None:
        """Point the owner at *related*, saving *related* first when it is new."""
        relation = self.relation
        async with managed_transaction(self._require_client(client)) as trx:
            if not related.is_persisted:
                await related.save(client=trx)

            value = get_value(related, relation.key("local_key").attribute_name, relation, "associate")
            self.parent.set_attribute(relation.key("foreign_key").attribute_name, value)
            await self.parent.save(client=trx)

        relation.set_related(self.parent, related)

    async def dissociate(self, *, client: BaseClient | None = None) -> None:
        if not self.parent.is_persisted:
            raise UnsavedModelError(
                f'Cannot dissociate "{self.relation.qualified_name}": '
                f"the {type(self.parent).__name__} instance is not persisted"
            )

        self.parent.set_attribute(self.relation.key("foreign_key").attribute_name, None)
        await self.parent.save(client=self._require_client(client))
        self.relation.set_related(self.parent, None)


class BelongsTo(BaseRelation):
    """The owner holds a foreign key pointing at the related model.

    Example:
        >>> class Post(Base):
        ...     author = belongs_to(lambda: User, foreign_key="user_id")
    """

    relation_type = RelationType.BELONGS_TO
    many = False

    query_builder_class = BelongsToQueryBuilder
    client_class = BelongsToClient

    def _boot(self) -> None:
        owner, related = self.owner, self.related_model
        self.keys = resolve_keys(
            owner,
            self.relation_name,
            {
                "local_key": KeySpec(related, self.options.local_key or related.primary_key),
                "foreign_key": KeySpec(owner, self.options.foreign_key or self.naming.foreign_key(related)),
            },
        )

    def match_keys(self) -> tuple[str, str, bool]:
        return self.key("foreign_key").attribute_name, self.key("local_key").attribute_name, False
