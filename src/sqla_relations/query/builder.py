"""Fluent, awaitable query builder over SQLAlchemy Core.

``ModelQueryBuilder`` collects clauses and compiles them into one
``sa.Select`` / ``sa.Update`` / ``sa.Delete`` on demand::

    posts = await Post.query().where("user_id", 1).order_by("id", "desc").limit(10)
    total = await Post.query().count().where("is_published", True)

Awaiting a builder executes it: a select returns model instances (or plain
dict rows once an aggregate or ``pojo()`` is used), update and delete return
the affected row count.
"""

from __future__ import annotations

import copy
import operator
import sys
import warnings
from collections.abc import Awaitable, Callable, Generator, Iterable, Mapping
from typing import TYPE_CHECKING, Any, Final, Generic, Literal, TypeVar

import sqlalchemy as sa

from ..exceptions import MissingConnectionError, ModelNotFoundError
from ..tools import SQLStatement, compile_statement, literal_sql, resolve_column
from .paginator import Paginator
from .preloader import Preloader


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect

    from ..database import BaseClient
    from ..model import BaseModel

T = TypeVar("T", bound="BaseModel")

Action = Literal["select", "update", "delete"]

_OPERATORS: Final[dict[str, Callable[[Any, Any], Any]]] = {
    "=": operator.eq,
    "==": operator.eq,
    "!=": operator.ne,
    "<>": operator.ne,
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "like": lambda column, value: column.like(value),
    "not like": lambda column, value: column.not_like(value),
    "ilike": lambda column, value: column.ilike(value),
    "in": lambda column, value: column.in_(value),
    "not in": lambda column, value: column.not_in(value),
}


class ScopesProxy:
    """Exposes a model's scopes as chainable methods bound to one query."""

    __slots__ = ("_model", "_query")

    def __init__(self, model: type[BaseModel], query: ModelQueryBuilder[Any]) -> None:
        self._model = model
        self._query = query

    def __getattr__(self, name: str) -> Callable[..., ScopesProxy]:
        try:
            fn = self._model.__scopes__[name]
        except KeyError:
            raise AttributeError(f'"{name}" is not a scope on "{self._model.__name__}" model') from None

        def apply(*args: Any, **kwargs: Any) -> ScopesProxy:
            fn(self._query, *args, **kwargs)
            return self

        return apply


class ModelQueryBuilder(Generic[T]):
    """Query builder for one model, executed through a query client."""

    def __init__(self, model: type[T], client: BaseClient | None = None) -> None:
        model.boot()
        self.model = model
        self.client = client
        self.table: sa.Table = model.__table__
        self.preloader = Preloader(model)

        self._action: Action = "select"
        self._values: dict[str, Any] = {}
        self._columns: list[Any] = []
        self._extra_columns: list[Any] = []
        self._aggregates: list[Any] = []
        self._joins: list[tuple[sa.FromClause, Any, bool]] = []
        self._where: sa.ColumnElement[bool] | None = None
        self._having: sa.ColumnElement[bool] | None = None
        self._group_by: list[Any] = []
        self._order_by: list[Any] = []
        self._limit: int | None = None
        self._offset: int | None = None
        self._distinct = False
        self._for_update = False
        self._pojo = False

    # --- column resolution ---

    def _tables(self) -> list[sa.FromClause]:
        return [self.table, *(target for target, _, _ in self._joins)]

    def _column(self, ref: Any, extra: Iterable[sa.FromClause] = ()) -> Any:
        """Resolve an attribute name, ``table.column`` string or SQL expression."""
        if isinstance(ref, sa.ClauseElement):
            return ref

        if "." not in ref and (col := self.model.get_column(ref)) is not None:
            return self.table.c[col.column_name]

        resolved = resolve_column([*self._tables(), *extra], ref)
        return resolved if resolved is not None else sa.literal_column(ref)

    def _select_column(self, ref: Any) -> Any:
        if isinstance(ref, str) and " as " in ref.lower():
            index = ref.lower().index(" as ")
            return self._column(ref[:index].strip()).label(ref[index + 4 :].strip())

        return self._column(ref)

    # --- conditions ---

    def _nested(self) -> ModelQueryBuilder[T]:
        nested = ModelQueryBuilder(self.model, self.client)
        nested._joins = list(self._joins)
        return nested

    def _equals(self, column: Any, value: Any) -> Any:
        if value is None:
            return column.is_(None)
        if isinstance(value, ModelQueryBuilder):
            return column == value.to_statement().scalar_subquery()

        return column == value

    def _condition(self, args: tuple[Any, ...], kwargs: Mapping[str, Any]) -> Any:
        if kwargs:
            if args:
                raise TypeError("Pass either positional conditions or keyword conditions, not both")
            args = (dict(kwargs),)

        if len(args) == 1:
            (arg,) = args
            if isinstance(arg, sa.ClauseElement):
                return arg
            if isinstance(arg, Mapping):
                return sa.and_(*(self._equals(self._column(key), value) for key, value in arg.items()))
            if callable(arg):
                nested = self._nested()
                arg(nested)
                return nested._where
            raise TypeError(f"Unsupported condition: {arg!r}")

        if len(args) == 2:
            return self._equals(self._column(args[0]), args[1])

        if len(args) == 3:
            key, op, value = args
            try:
                compare = _OPERATORS[op.lower().strip()]
            except KeyError:
                raise ValueError(f"Unsupported operator {op!r}") from None
            if isinstance(value, ModelQueryBuilder):
                value = value.to_statement().scalar_subquery()
            return compare(self._column(key), value)

        raise TypeError(f"Expected 1 to 3 positional arguments, got {len(args)}")

    def _push(self, clause: Literal["_where", "_having"], condition: Any, boolean: str = "and") -> Self:
        if condition is None:
            return self

        current = getattr(self, clause)
        if current is None:
            setattr(self, clause, condition)
        elif boolean == "or":
            setattr(self, clause, sa.or_(current, condition))
        else:
            setattr(self, clause, sa.and_(current, condition))

        return self

    @staticmethod
    def _values_or_subquery(values: Any) -> Any:
        if isinstance(values, ModelQueryBuilder):
            return values.to_statement()
        if isinstance(values, sa.ClauseElement):
            return values

        return list(values)

    def where(self, *args: Any, **kwargs: Any) -> Self:
        """Add an ``AND`` condition.

        Accepts ``where("title", "Hi")``, ``where("id", ">", 3)``,
        ``where(title="Hi")``, an SQL expression, or a callable that receives a
        nested builder (its conditions are grouped in parentheses).
        """
        return self._push("_where", self._condition(args, kwargs))

    def or_where(self, *args: Any, **kwargs: Any) -> Self:
        return self._push("_where", self._condition(args, kwargs), "or")

    def where_not(self, *args: Any, **kwargs: Any) -> Self:
        return self._push("_where", sa.not_(self._condition(args, kwargs)))

    def or_where_not(self, *args: Any, **kwargs: Any) -> Self:
        return self._push("_where", sa.not_(self._condition(args, kwargs)), "or")

    def where_in(self, key: Any, values: Any) -> Self:
        return self._push("_where", self._column(key).in_(self._values_or_subquery(values)))

    def or_where_in(self, key: Any, values: Any) -> Self:
        return self._push("_where", self._column(key).in_(self._values_or_subquery(values)), "or")

    def where_not_in(self, key: Any, values: Any) -> Self:
        return self._push("_where", self._column(key).not_in(self._values_or_subquery(values)))

    def or_where_not_in(self, key: Any, values: Any) -> Self:
        return self._push("_where", self._column(key).not_in(self._values_or_subquery(values)), "or")

    def where_null(self, key: Any) -> Self:
        return self._push("_where", self._column(key).is_(None))

    def or_where_null(self, key: Any) -> Self:
        return self._push("_where", self._column(key).is_(None), "or")

    def where_not_null(self, key: Any) -> Self:
        return self._push("_where", self._column(key).is_not(None))

    def or_where_not_null(self, key: Any) -> Self:
        return self._push("_where", self._column(key).is_not(None), "or")

    def where_between(self, key: Any, bounds: tuple[Any, Any]) -> Self:
        low, high = bounds
        return self._push("_where", self._column(key).between(low, high))

    def where_not_between(self, key: Any, bounds: tuple[Any, Any]) -> Self:
        low, high = bounds
        return self._push("_where", sa.not_(self._column(key).between(low, high)))

    def where_exists(self, query: ModelQueryBuilder[Any] | sa.Select[Any]) -> Self:
        statement = query.to_statement() if isinstance(query, ModelQueryBuilder) else query
        return self._push("_where", sa.exists(statement))

    def where_raw(self, sql: str, bindings: Mapping[str, Any] | None = None) -> Self:
        clause = sa.text(sql)
        if bindings:
            clause = clause.bindparams(**bindings)

        return self._push("_where", clause)

    def having(self, *args: Any, **kwargs: Any) -> Self:
        return self._push("_having", self._condition(args, kwargs))

    def or_having(self, *args: Any, **kwargs: Any) -> Self:
        return self._push("_having", self._condition(args, kwargs), "or")

    # --- shape ---

    def select(self, *columns: Any) -> Self:
        self._columns.extend(self._select_column(column) for column in columns)
        return self

    def clear_select(self) -> Self:
        self._columns = []
        return self

    def _resolve_table(self, target: Any) -> sa.FromClause:
        if isinstance(target, sa.FromClause):
            return target
        if isinstance(target, str):
            table = self.model.__registry__.table(target)
            return table if table is not None else sa.table(target)

        target.boot()
        return target.__table__

    def join(
        self,
        target: Any,
        first: Any = None,
        op: Any = None,
        second: Any = None,
        *,
        isouter: bool = False,
    ) -> Self:
        """Join *target* (model class, table or table name).

        ``join("users", "users.id", "posts.user_id")`` and
        ``join("users", "users.id", "=", "posts.user_id")`` are equivalent.
        """
        table = self._resolve_table(target)
        if first is None or isinstance(first, sa.ClauseElement):
            onclause = first
        else:
            if second is None:
                op, second = "=", op
            left = self._column(first, (table,))
            right = self._column(second, (table,))
            onclause = _OPERATORS[op](left, right)

        self._joins.append((table, onclause, isouter))
        return self

    inner_join = join

    def left_join(self, target: Any, first: Any = None, op: Any = None, second: Any = None) -> Self:
        return self.join(target, first, op, second, isouter=True)

    def group_by(self, *columns: Any) -> Self:
        self._group_by.extend(self._column(column) for column in columns)
        return self

    def order_by(self, column: Any, direction: str = "asc") -> Self:
        resolved = self._column(column)
        if isinstance(column, str):
            direction = direction.lower()
            if direction not in ("asc", "desc"):
                warnings.warn(
                    f"Unknown order direction {direction!r}, falling back to 'asc'",
                    stacklevel=2,
                )
                direction = "asc"
            resolved = resolved.desc() if direction == "desc" else resolved.asc()

        self._order_by.append(resolved)
        return self

    def clear_order(self) -> Self:
        self._order_by = []
        return self

    def limit(self, value: int | None) -> Self:
        self._limit = value
        return self

    def offset(self, value: int | None) -> Self:
        self._offset = value
        return self

    def for_page(self, page: int, per_page: int = 20) -> Self:
        page = max(page, 1)
        return self.limit(per_page).offset((page - 1) * per_page)

    def distinct(self) -> Self:
        self._distinct = True
        return self

    def for_update(self) -> Self:
        self._for_update = True
        return self

    def pojo(self) -> Self:
        """Return plain dict rows instead of model instances."""
        self._pojo = True
        return self

    # --- aggregates ---

    @property
    def has_aggregates(self) -> bool:
        return bool(self._aggregates)

    def _aggregate(self, fn: Any, column: Any, alias: str, *, distinct: bool = False) -> Self:
        if column == "*":
            expression = fn()
        else:
            target = self._column(column)
            expression = fn(sa.distinct(target) if distinct else target)

        self._aggregates.append(expression.label(alias))
        self._pojo = True
        return self

    def count(self, column: Any = "*", alias: str = "total") -> Self:
        return self._aggregate(sa.func.count, column, alias)

    def count_distinct(self, column: Any, alias: str = "total") -> Self:
        return self._aggregate(sa.func.count, column, alias, distinct=True)

    def min(self, column: Any, alias: str = "min") -> Self:
        return self._aggregate(sa.func.min, column, alias)

    def max(self, column: Any, alias: str = "max") -> Self:
        return self._aggregate(sa.func.max, column, alias)

    def sum(self, column: Any, alias: str = "sum") -> Self:
        return self._aggregate(sa.func.sum, column, alias)

    def avg(self, column: Any, alias: str = "avg") -> Self:
        return self._aggregate(sa.func.avg, column, alias)

    # --- actions ---

    def update(self, values: Mapping[str, Any] | None = None, **kwargs: Any) -> Self:
        """Turn this query into an UPDATE of the matching rows; await it for the row count."""
        self._action = "update"
        self._values = {**(values or {}), **kwargs}
        return self

    def delete(self) -> Self:
        """Turn this query into a DELETE of the matching rows; await it for the row count."""
        self._action = "delete"
        return self

    def preload(self, path: str, callback: Callable[[Any], Any] | None = None) -> Self:
        self.preloader.preload(path, callback)
        return self

    def apply(self, callback: Callable[[ScopesProxy], Any]) -> Self:
        """Apply model scopes: ``query.apply(lambda scopes: scopes.published())``."""
        callback(ScopesProxy(self.model, self))
        return self

    def use_transaction(self, trx: BaseClient) -> Self:
        self.client = trx
        return self

    def clone(self) -> Self:
        clone = copy.copy(self)
        clone._values = dict(self._values)
        clone._columns = list(self._columns)
        clone._extra_columns = list(self._extra_columns)
        clone._aggregates = list(self._aggregates)
        clone._joins = list(self._joins)
        clone._group_by = list(self._group_by)
        clone._order_by = list(self._order_by)
        clone.preloader = self.preloader.clone()
        return clone

    # --- compilation ---

    def scoped(self) -> Self:
        """The builder statements are built from. Relation builders constrain a copy of themselves."""
        return self

    def _from_clause(self) -> sa.FromClause:
        from_clause: sa.FromClause = self.table
        for target, onclause, isouter in self._joins:
            from_clause = from_clause.join(target, onclause, isouter=isouter)

        return from_clause

    def _prepared_values(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for key, value in self._values.items():
            col = self.model.get_column(key)
            if col is None:
                values[key] = value
            else:
                values[col.column_name] = col.prepare(value) if col.prepare else value

        return values

    def _select_statement(self) -> sa.Select[Any]:
        columns = [
            *(self._columns or ([] if self._aggregates else [self.table])),
            *self._extra_columns,
            *self._aggregates,
        ]
        statement = sa.select(*columns).select_from(self._from_clause())

        if self._where is not None:
            statement = statement.where(self._where)
        if self._group_by:
            statement = statement.group_by(*self._group_by)
        if self._having is not None:
            statement = statement.having(self._having)
        if self._order_by:
            statement = statement.order_by(*self._order_by)
        if self._limit is not None:
            statement = statement.limit(self._limit)
        if self._offset is not None:
            statement = statement.offset(self._offset)
        if self._distinct:
            statement = statement.distinct()
        if self._for_update:
            statement = statement.with_for_update()

        return statement

    def to_statement(self) -> sa.Select[Any] | sa.Update | sa.Delete:
        """Build the SQLAlchemy statement for the current action."""
        query = self.scoped()

        if query._action == "update":
            update = sa.update(query.table).values(query._prepared_values())
            return update.where(query._where) if query._where is not None else update

        if query._action == "delete":
            delete = sa.delete(query.table)
            return delete.where(query._where) if query._where is not None else delete

        return query._select_statement()

    def _dialect(self) -> Dialect | None:
        return self.client.dialect if self.client is not None else None

    def to_sql(self) -> SQLStatement:
        """SQL text and positional bindings, compiled for the client's dialect."""
        return compile_statement(self.to_statement(), self._dialect())

    def to_query(self) -> str:
        """SQL with bindings inlined. For debugging only."""
        return literal_sql(self.to_statement(), self._dialect())

    # --- execution ---

    def _require_client(self) -> BaseClient:
        if self.client is None:
            raise MissingConnectionError(
                f"Cannot execute query for {self.model.__name__}: no query client and no database "
                f"bound to its registry"
            )

        return self.client

    async def exec(self) -> Any:
        client = self._require_client()
        result = await client.execute(self.to_statement())

        if self._action != "select":
            return result.rowcount
        if self._pojo:
            return result.rows

        models = [self.model._from_row(row, client) for row in result.rows]
        if models and self.preloader.has_preloads:
            await self.preloader.process_all_for_many(models, client)

        return models

    def __await__(self) -> Generator[Any, None, Any]:
        return self.exec().__await__()

    async def all(self) -> list[T]:
        return await self.exec()

    async def first(self) -> T | None:
        rows = await self.limit(1).exec()
        return rows[0] if rows else None

    async def first_or_fail(self) -> T:
        row = await self.first()
        if row is None:
            raise ModelNotFoundError(self.model.__name__)

        return row

    def paginate(self, page: int, per_page: int = 20) -> Awaitable[Paginator[T]]:
        return self._paginate(page, per_page)

    async def _paginate(self, page: int, per_page: int) -> Paginator[T]:
        page = max(page, 1)
        client = self._require_client()

        counter = self.clone().clear_order().limit(None).offset(None)
        counter.preloader = Preloader(self.model)
        subquery = counter.to_statement().subquery()
        result = await client.execute(sa.select(sa.func.count().label("total")).select_from(subquery))
        total = result.rows[0]["total"] if result.rows else 0

        rows = await self.for_page(page, per_page).exec()
        return Paginator(rows, total=total, per_page=per_page, current_page=page)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} model={self.model.__name__} action={self._action}>"
