from __future__ import annotations

from collections.abc import Hashable, Iterable
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Final, NamedTuple, TypeVar

import sqlalchemy as sa

from .exceptions import ValueUndefinedError


if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect

    from .model import BaseModel
    from .relations.base import BaseRelation

_H = TypeVar("_H", bound=Hashable)


class _Undefined:
    """Marker for an attribute that was never set (as opposed to ``None``)."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED: Final = _Undefined()


class SQLStatement(NamedTuple):
    sql: str
    bindings: list[Any]


def compile_statement(statement: sa.ClauseElement, dialect: Dialect | None = None) -> SQLStatement:
    """Compile *statement* into SQL text plus positional bindings.

    ``IN`` lists are expanded so the SQL contains one placeholder per value.
    """
    compiled = statement.compile(dialect=dialect, compile_kwargs={"render_postcompile": True})
    params = compiled.params
    positions = getattr(compiled, "positiontup", None)
    bindings = [params[name] for name in positions] if positions else list(params.values())

    return SQLStatement(sql=compiled.string, bindings=bindings)


def literal_sql(statement: sa.ClauseElement, dialect: Dialect | None = None) -> str:
    """Render *statement* with its bound values inlined, for debugging and tests."""
    return str(statement.compile(dialect=dialect, compile_kwargs={"literal_binds": True}))


@lru_cache
def _get_table_name(model: type[BaseModel]) -> str:
    """Return the table name for *model* (cached)."""
    result = model.__tablename__ or model.__registry__.naming.table_name(model)
    if not result:
        raise ValueError(f"Cannot determine tablename for {model}")

    return result


def get_table_name(model: type[BaseModel]) -> str:
    """Get the table name of a model: ``__tablename__`` or the naming convention."""
    return _get_table_name(model)


def get_primary_key(model: type[BaseModel]) -> sa.Column[Any]:
    """Get the primary key column of a booted model's table.

    Raises:
        ValueError: If the table has no column for ``model.primary_key``.
    """
    column = model.get_column(model.primary_key)
    table = model.__table__
    if column is None or column.column_name not in table.c:
        raise ValueError(f"{model.__name__} has no primary key column {model.primary_key!r}")

    return table.c[column.column_name]


def resolve_column(tables: Iterable[sa.FromClause], ref: str) -> sa.ColumnElement[Any] | None:
    """Resolve ``'table.column'`` (or a bare column name) against *tables*.

    Bare names are looked up in order, so the first table takes precedence.
    Returns ``None`` when nothing matches.
    """
    table_name, sep, column_name = ref.rpartition(".")
    for table in tables:
        if sep and table.name != table_name:
            continue
        if column_name in table.c:
            return table.c[column_name]

    return None


def unique(values: Iterable[_H]) -> list[_H]:
    """Distinct values, in first-seen order."""
    return list(dict.fromkeys(values))


def get_value(
    instance: BaseModel,
    key: str,
    relation: BaseRelation,
    action: str,
    *,
    allow_null: bool = False,
) -> Any:
    """Read attribute *key* of *instance* to scope a relation query.

    Missing values raise ``ValueUndefinedError`` instead of silently producing
    ``WHERE col IS NULL``. ``None`` is accepted only with *allow_null*, which
    batch constraints use to skip parents with an empty key.
    """
    value = instance.get_attribute(key, UNDEFINED)
    if value is UNDEFINED or (value is None and not allow_null):
        raise ValueUndefinedError(action, relation.relation_name, type(instance).__name__, key)

    return value


def collect_values(
    instances: Iterable[BaseModel],
    key: str,
    relation: BaseRelation,
    action: str,
) -> list[Any]:
    """Distinct, non-null values of *key* across *instances* for an ``IN`` list."""
    return unique(
        value
        for instance in instances
        if (value := get_value(instance, key, relation, action, allow_null=True)) is not None
    )
