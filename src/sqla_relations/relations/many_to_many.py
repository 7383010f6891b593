from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, TypeVar

import sqlalchemy as sa

from ..database import managed_transaction
from ..tools import get_value
from .base import BaseRelation, RelationClient, RelationQueryBuilder, RelationType
from .keys import KeySpec, resolve_keys


if TYPE_CHECKING:
    from ..database import BaseClient
    from ..model import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="BaseModel")

PivotRows = Mapping[Any, Mapping[str, Any]]


def _normalize(ids: Iterable[Any] | PivotRows) -> dict[Any, dict[str, Any]]:
    """``[1, 2]`` or ``{1: {"proficiency": "expert"}}`` -> ``{id: pivot attributes}``."""
    if isinstance(ids, Mapping):
        return {key: dict(value or {}) for key, value in ids.items()}

    return {key: {} for key in ids}


class ManyToManyQueryBuilder(RelationQueryBuilder[T]):
    """Joins the pivot table and filters on the owner's pivot foreign key.

    Pivot keys and pivot columns are selected as ``pivot_<column>`` extras.
    """

    def apply_relation_constraints(self) -> None:
        relation: ManyToMany = self.relation  # type: ignore[assignment]
        pivot_foreign_key = relation.pivot_column(relation.pivot_foreign_key)
        pivot_related_foreign_key = relation.pivot_column(relation.pivot_related_foreign_key)
        related_key = self.table.c[relation.key("related_key").column_name]
        local_key = relation.key("local_key").attribute_name

        if self.is_batch:
            condition = pivot_foreign_key.in_(self.parent_values(local_key))
        else:
            condition = pivot_foreign_key == self.parent_value(local_key)

        if self._action in ("update", "delete"):
            self.where_in(related_key, sa.select(pivot_related_foreign_key).where(condition))
            return

        if not self.has_aggregates:
            self._extra_columns.extend(
                relation.pivot_column(name).label(f"pivot_{name}") for name in relation.pivot_select_columns
            )

        self.join(relation.pivot, related_key == pivot_related_foreign_key)
        self._push("_where", condition)

    def where_pivot(self, *args: Any) -> ManyToManyQueryBuilder[T]:
        """``where`` on a pivot column: ``where_pivot("proficiency", "expert")``."""
        key, *rest = args
        return self.where(self.relation.pivot_column(key), *rest)  # type: ignore[attr-defined]

    def or_where_pivot(self, *args: Any) -> ManyToManyQueryBuilder[T]:
        key, *rest = args
        return self.or_where(self.relation.pivot_column(key), *rest)  # type: ignore[attr-defined]

    def where_in_pivot(self, key: str, values: Any) -> ManyToManyQueryBuilder[T]:
        return self.where_in(self.relation.pivot_column(key), values)  # type: ignore[attr-defined]

    def where_not_in_pivot(self, key: str, values: Any) -> ManyToManyQueryBuilder[T]:
        return self.where_not_in(self.relation.pivot_column(key), values)  # type: ignore[attr-defined]


class ManyToManyClient(RelationClient):
    """Reads and writes the pivot table for one owner instance."""

    relation: ManyToMany

    def _owner_value(self, action: str) -> Any:
        return get_value(self.parent, self.relation.key("local_key").attribute_name, self.relation, action)

    async def _existing(self, client: BaseClient, value: Any, ids: Iterable[Any] | None = None) -> dict[Any, dict[str, Any]]:
        relation = self.relation
        related_column = relation.pivot_column(relation.pivot_related_foreign_key)
        statement = sa.select(relation.pivot).where(relation.pivot_column(relation.pivot_foreign_key) == value)
        if ids is not None:
            statement = statement.where(related_column.in_(list(ids)))

        result = await client.execute(statement)
        return {row[relation.pivot_related_foreign_key]: row for row in result.rows}

    async def _insert(self, client: BaseClient, value: Any, rows: Mapping[Any, Mapping[str, Any]]) -> None:
        relation = self.relation
        # Rows with different pivot attributes cannot share one executemany.
        groups: defaultdict[tuple[str, ...], list[dict[str, Any]]] = defaultdict(list)
        for related_id, attributes in rows.items():
            row = {
                **attributes,
                relation.pivot_foreign_key: value,
                relation.pivot_related_foreign_key: related_id,
            }
            groups[tuple(sorted(row))].append(row)

        for group in groups.values():
            await client.execute(sa.insert(relation.pivot), group)

    async def attach(self, ids: Iterable[Any] | PivotRows, *, client: BaseClient | None = None) -> None:
        """Insert pivot rows for *ids* (a list, or a mapping of id to pivot attributes)."""
        rows = _normalize(ids)
        if not rows:
            return

        value = self._owner_value("attach")
        async with managed_transaction(self._require_client(client)) as trx:
            await self._insert(trx, value, rows)

    async def detach(self, ids: Iterable[Any] | None = None, *, client: BaseClient | None = None) -> int:
        """Delete pivot rows for *ids*, or every pivot row of the owner when *ids* is ``None``."""
        relation = self.relation
        value = self._owner_value("detach")
        statement = sa.delete(relation.pivot).where(relation.pivot_column(relation.pivot_foreign_key) == value)
        if ids is not None:
            statement = statement.where(relation.pivot_column(relation.pivot_related_foreign_key).in_(list(ids)))

        result = await self._require_client(client).execute(statement)
        return result.rowcount

    async def sync(
        self,
        ids: Iterable[Any] | PivotRows,
        *,
        detach: bool = True,
        client: BaseClient | None = None,
    ) -> None:
        """Make the owner's pivot rows match *ids*.

        Missing rows are inserted, rows whose pivot attributes changed are
        updated, and (with *detach*) rows not listed are deleted.
        """
        relation = self.relation
        desired = _normalize(ids)
        value = self._owner_value("sync")
        pivot_foreign_key = relation.pivot_column(relation.pivot_foreign_key)
        pivot_related_foreign_key = relation.pivot_column(relation.pivot_related_foreign_key)

        async with managed_transaction(self._require_client(client)) as trx:
            existing = await self._existing(trx, value)

            to_delete = [key for key in existing if key not in desired] if detach else []
            to_insert = {key: attributes for key, attributes in desired.items() if key not in existing}
            to_update = {
                key: attributes
                for key, attributes in desired.items()
                if key in existing and any(existing[key].get(name) != item for name, item in attributes.items())
            }

            if to_delete:
                await trx.execute(
                    sa.delete(relation.pivot).where(pivot_foreign_key == value, pivot_related_foreign_key.in_(to_delete))
                )
            for key, attributes in to_update.items():
                await trx.execute(
                    sa.update(relation.pivot)
                    .where(pivot_foreign_key == value, pivot_related_foreign_key == key)
                    .values(attributes)
                )
            if to_insert:
                await self._insert(trx, value, to_insert)

        logger.debug(
            "Synced %s: %d inserted, %d updated, %d deleted",
            relation.qualified_name,
            len(to_insert),
            len(to_update),
            len(to_delete),
        )

    async def _save_all(
        self,
        related: Sequence[BaseModel],
        pivot_attributes: Mapping[str, Any] | None,
        check_existing: bool,
        client: BaseClient | None,
    ) -> None:
        relation = self.relation
        related_key = relation.key("related_key").attribute_name

        async with managed_transaction(self._require_client(client)) as trx:
            if not self.parent.is_persisted:
                await self.parent.save(client=trx)
            value = self._owner_value("save")

            rows: dict[Any, dict[str, Any]] = {}
            for instance in related:
                await instance.save(client=trx)
                rows[get_value(instance, related_key, relation, "save")] = dict(pivot_attributes or {})

            if check_existing:
                existing = await self._existing(trx, value, rows)
                rows = {key: attributes for key, attributes in rows.items() if key not in existing}
            if rows:
                await self._insert(trx, value, rows)

        if self.parent.is_loaded(relation.relation_name):
            relation.push_related(self.parent, list(related))

    async def save(
        self,
        related: BaseModel,
        *,
        check_existing: bool = True,
        pivot_attributes: Mapping[str, Any] | None = None,
        client: BaseClient | None = None,
    ) -> BaseModel:
        """Persist *related* and attach it, skipping the pivot insert if the row exists."""
        await self._save_all([related], pivot_attributes, check_existing, client)
        return related

    async def save_many(
        self,
        related: Sequence[BaseModel],
        *,
        check_existing: bool = True,
        client: BaseClient | None = None,
    ) -> list[BaseModel]:
        related = list(related)
        await self._save_all(related, None, check_existing, client)
        return related

    async def create(
        self,
        payload: Mapping[str, Any] | None = None,
        *,
        pivot_attributes: Mapping[str, Any] | None = None,
        client: BaseClient | None = None,
        **attributes: Any,
    ) -> BaseModel:
        related = self.relation.related_model(**{**(payload or {}), **attributes})
        await self._save_all([related], pivot_attributes, False, client)
        return related

    async def create_many(
        self,
        payloads: Iterable[Mapping[str, Any]],
        *,
        client: BaseClient | None = None,
    ) -> list[BaseModel]:
        model = self.relation.related_model
        related = [model(**payload) for payload in payloads]
        await self._save_all(related, None, False, client)
        return related


class ManyToMany(BaseRelation):
    """Owner and related model linked by rows of a pivot table.

    The pivot table is looked up on the registry metadata by name
    (``skill_user`` for ``User`` and ``Skill``). When it is not declared there,
    a table holding only the two pivot keys is defined at boot.
    """

    relation_type = RelationType.MANY_TO_MANY
    many = True

    query_builder_class = ManyToManyQueryBuilder
    client_class = ManyToManyClient

    pivot: sa.Table
    pivot_foreign_key: str
    pivot_related_foreign_key: str

    def _boot(self) -> None:
        owner, related = self.owner, self.related_model
        options, naming = self.options, self.naming
        self.keys = resolve_keys(
            owner,
            self.relation_name,
            {
                "local_key": KeySpec(owner, options.local_key or owner.primary_key),
                "related_key": KeySpec(related, options.related_key or related.primary_key),
            },
        )

        self.pivot_foreign_key = options.pivot_foreign_key or naming.pivot_foreign_key(owner)
        self.pivot_related_foreign_key = options.pivot_related_foreign_key or naming.pivot_foreign_key(related)

        table_name = options.pivot_table or naming.pivot_table(owner, related)
        registry = owner.__registry__
        pivot = registry.table(table_name)
        if pivot is None:
            local_column = owner.__table__.c[self.keys["local_key"].column_name]
            related_column = related.__table__.c[self.keys["related_key"].column_name]
            pivot = sa.Table(
                table_name,
                registry.metadata,
                sa.Column(self.pivot_foreign_key, local_column.type, primary_key=True),
                sa.Column(self.pivot_related_foreign_key, related_column.type, primary_key=True),
            )
            logger.debug("Defined pivot table %r for %s", table_name, self.qualified_name)

        self.pivot = pivot

    @property
    def pivot_columns(self) -> tuple[str, ...]:
        return self.options.pivot_columns

    @property
    def pivot_select_columns(self) -> tuple[str, ...]:
        return (self.pivot_foreign_key, self.pivot_related_foreign_key, *self.pivot_columns)

    def pivot_column(self, name: str) -> Any:
        self.ensure_booted()
        if name in self.pivot.c:
            return self.pivot.c[name]

        return sa.literal_column(f"{self.pivot.name}.{name}")

    def match_keys(self) -> tuple[str, str, bool]:
        return self.key("local_key").attribute_name, f"pivot_{self.pivot_foreign_key}", True
