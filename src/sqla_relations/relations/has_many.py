from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, TypeVar

from ..database import managed_transaction
from .base import RelationType
from .has_one import HasOne, HasOneClient, HasOneQueryBuilder


if TYPE_CHECKING:
    from ..database import BaseClient
    from ..model import BaseModel

T = TypeVar("T", bound="BaseModel")


class HasManyQueryBuilder(HasOneQueryBuilder[T]):
    limit_single_parent = False


class HasManyClient(HasOneClient):
    async def save_many(
        self,
        related: Sequence[BaseModel],
        *,
        client: BaseClient | None = None,
    ) -> list[BaseModel]:
        """Save every instance in one transaction."""
        related = list(related)
        async with managed_transaction(self._require_client(client)) as trx:
            for instance in related:
                await self._save_one(instance, trx)

        self._push(related)
        return related

    async def create_many(
        self,
        payloads: Iterable[Mapping[str, Any]],
        *,
        client: BaseClient | None = None,
    ) -> list[BaseModel]:
        model = self.relation.related_model
        return await self.save_many([model(**payload) for payload in payloads], client=client)


class HasMany(HasOne):
    """The related model holds a foreign key pointing at the owner.

    Loaded values are lists in the order rows were returned.
    """

    relation_type = RelationType.HAS_MANY
    many = True

    query_builder_class = HasManyQueryBuilder
    client_class = HasManyClient
