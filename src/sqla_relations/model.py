"""Model definitions.

A model is a plain class deriving from ``BaseModel``. Attributes, relations
and scopes are registered by explicit calls evaluated once, when the class
body runs::

    class Base(BaseModel, abstract=True):
        pass


    class User(Base):
        id = column(sa.Integer, is_primary=True)
        country_id = column(sa.Integer)

        posts = has_many(lambda: Post)

        active = scope(lambda query: query.where("is_active", True))

The schema maps (``__columns__``, ``__relations__``, ``__scopes__``) are
immutable. ``boot()`` builds the ``sa.Table`` of the model on its registry's
metadata; relations are booted separately (see ``Registry.boot``).
"""

from __future__ import annotations

import functools
import sys
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

import sqlalchemy as sa

from .database import TransactionClient, managed_transaction
from .datastructures import frozendict
from .exceptions import MissingConnectionError, ModelNotFoundError, UndefinedRelationError
from .query.builder import ModelQueryBuilder
from .query.preloader import Preloader
from .registry import Registry
from .relations.base import BaseRelation, RelationClient
from .tools import UNDEFINED, get_primary_key, get_table_name


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from .database import BaseClient

M = TypeVar("M", bound="BaseModel")
_Q = TypeVar("_Q")


class ModelColumn:
    """Descriptor for one model attribute backed by a table column.

    Reading an attribute that was never set returns ``None``; use
    ``BaseModel.get_attribute`` to tell unset values apart.
    """

    __slots__ = (
        "attribute_name",
        "column_name",
        "consume",
        "explicit_column_name",
        "is_primary",
        "nullable",
        "prepare",
        "type_",
    )

    def __init__(
        self,
        type_: sa.types.TypeEngine[Any] | type[sa.types.TypeEngine[Any]] | None = None,
        *,
        column_name: str | None = None,
        is_primary: bool = False,
        nullable: bool = True,
        prepare: Callable[[Any], Any] | None = None,
        consume: Callable[[Any], Any] | None = None,
    ) -> None:
        self.type_ = type_
        self.explicit_column_name = column_name
        self.column_name = column_name or ""
        self.attribute_name = ""
        self.is_primary = is_primary
        self.nullable = nullable
        self.prepare = prepare
        self.consume = consume

    def __set_name__(self, owner: type[Any], name: str) -> None:
        self.attribute_name = name

    def __get__(self, instance: BaseModel | None, owner: type[Any] | None = None) -> Any:
        if instance is None:
            return self

        return instance._attributes.get(self.attribute_name)

    def __set__(self, instance: BaseModel, value: Any) -> None:
        instance._attributes[self.attribute_name] = value

    def to_sa_column(self) -> sa.Column[Any]:
        args: list[Any] = [self.type_] if self.type_ is not None else []

        return sa.Column(
            self.column_name,
            *args,
            primary_key=self.is_primary,
            nullable=self.nullable and not self.is_primary,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.attribute_name!r} -> {self.column_name!r}>"


def column(
    type_: sa.types.TypeEngine[Any] | type[sa.types.TypeEngine[Any]] | None = None,
    *,
    column_name: str | None = None,
    is_primary: bool = False,
    nullable: bool = True,
    prepare: Callable[[Any], Any] | None = None,
    consume: Callable[[Any], Any] | None = None,
) -> Any:
    """Declare a model attribute.

    Args:
        type_: SQLAlchemy type used when the table is created. Optional for
            models that are only queried.
        column_name: Storage column; defaults to the snake-cased attribute name.
        is_primary: Marks the primary key. At most one attribute may set it.
        nullable: Column nullability for ``create_all``.
        prepare: Applied to the value before it is written.
        consume: Applied to the value after it is read.
    """
    return ModelColumn(
        type_,
        column_name=column_name,
        is_primary=is_primary,
        nullable=nullable,
        prepare=prepare,
        consume=consume,
    )


class scope(Generic[_Q]):  # noqa: N801
    """A named, reusable query constraint.

    Applied through ``query.apply(lambda scopes: scopes.published())``. The
    wrapped function receives the query builder followed by any arguments.
    """

    def __init__(self, fn: Callable[..., Any]) -> None:
        functools.update_wrapper(self, fn)
        self.fn = fn
        self.name = getattr(fn, "__name__", "")

    def __set_name__(self, owner: type[Any], name: str) -> None:
        self.name = name

    def __call__(self, query: _Q, *args: Any, **kwargs: Any) -> Any:
        return self.fn(query, *args, **kwargs)


def _collect(cls: type[Any], kind: type[Any]) -> dict[str, Any]:
    found: dict[str, Any] = {}
    for klass in reversed(cls.__mro__):
        for name, value in vars(klass).items():
            if isinstance(value, kind):
                found[name] = value

    return found


class BaseModel:
    """Base class of every model.

    ``class Base(BaseModel, abstract=True)`` creates a new ``Registry`` shared
    by all of its subclasses. Concrete models register themselves with that
    registry when defined.
    """

    __registry__: ClassVar[Registry] = Registry()
    __tablename__: ClassVar[str | None] = None
    __connection__: ClassVar[str | None] = None
    __abstract__: ClassVar[bool] = True
    __columns__: ClassVar[frozendict[str, ModelColumn]] = frozendict()
    __columns_by_name__: ClassVar[frozendict[str, ModelColumn]] = frozendict()
    __relations__: ClassVar[frozendict[str, BaseRelation]] = frozendict()
    __scopes__: ClassVar[frozendict[str, scope[Any]]] = frozendict()
    __table__: ClassVar[sa.Table]

    primary_key: ClassVar[str] = "id"
    _booted: ClassVar[bool] = False

    def __init_subclass__(
        cls,
        *,
        abstract: bool = False,
        registry: Registry | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init_subclass__(**kwargs)
        cls.__abstract__ = abstract
        cls._booted = False

        if registry is not None:
            cls.__registry__ = registry
        elif abstract and BaseModel in cls.__bases__:
            cls.__registry__ = Registry()

        naming = cls.__registry__.naming
        columns: dict[str, ModelColumn] = _collect(cls, ModelColumn)
        for name, col in columns.items():
            col.column_name = col.explicit_column_name or naming.column_name(name)

        primaries = [name for name, col in columns.items() if col.is_primary]
        if len(primaries) > 1:
            raise ValueError(f"{cls.__name__} declares more than one primary key: {primaries}")

        relations: dict[str, BaseRelation] = {
            name: relation if relation.model is cls else relation.bind(cls, name)
            for name, relation in _collect(cls, BaseRelation).items()
        }

        cls.primary_key = primaries[0] if primaries else "id"
        cls.__columns__ = frozendict(columns)
        cls.__columns_by_name__ = frozendict({col.column_name: col for col in columns.values()})
        cls.__relations__ = frozendict(relations)
        cls.__scopes__ = frozendict(_collect(cls, scope))

        if not abstract:
            cls.__registry__.register(cls)

    def __init__(self, **attributes: Any) -> None:
        self._attributes: dict[str, Any] = {}
        self._original: dict[str, Any] = {}
        self._preloaded: dict[str, Any] = {}
        self._persisted = False
        self._deleted = False
        self._client: BaseClient | None = None
        self.extras: dict[str, Any] = {}
        self.merge(attributes)

    # --- schema ---

    @classmethod
    def boot(cls) -> None:
        """Build the table of the model. Idempotent."""
        if cls.__dict__.get("_booted", False):
            return

        if cls.__abstract__:
            raise TypeError(f"Cannot boot abstract model {cls.__name__}")

        cls.__table__ = sa.Table(
            get_table_name(cls),
            cls.__registry__.metadata,
            *(col.to_sa_column() for col in cls.__columns__.values()),
            extend_existing=True,
        )
        cls._booted = True

    @classmethod
    def is_booted(cls) -> bool:
        return bool(cls.__dict__.get("_booted", False))

    @classmethod
    def get_column(cls, attribute_name: str) -> ModelColumn | None:
        return cls.__columns__.get(attribute_name)

    @classmethod
    def has_column(cls, attribute_name: str) -> bool:
        return attribute_name in cls.__columns__

    @classmethod
    def get_relation(cls, name: str) -> BaseRelation:
        try:
            return cls.__relations__[name]
        except KeyError:
            raise UndefinedRelationError(name, cls.__name__) from None

    @classmethod
    def has_relation(cls, name: str) -> bool:
        return name in cls.__relations__

    # --- querying ---

    @classmethod
    def query(cls, client: BaseClient | None = None) -> ModelQueryBuilder[Self]:
        cls.boot()
        return ModelQueryBuilder(cls, client if client is not None else cls.__registry__.client_for(cls))

    @classmethod
    async def find(cls, value: Any, *, client: BaseClient | None = None) -> Self | None:
        return await cls.query(client).where(cls.primary_key, value).first()

    @classmethod
    async def find_or_fail(cls, value: Any, *, client: BaseClient | None = None) -> Self:
        return await cls.query(client).where(cls.primary_key, value).first_or_fail()

    @classmethod
    async def find_by(cls, key: str, value: Any, *, client: BaseClient | None = None) -> Self | None:
        return await cls.query(client).where(key, value).first()

    @classmethod
    async def first(cls, *, client: BaseClient | None = None) -> Self | None:
        return await cls.query(client).first()

    @classmethod
    async def all(cls, *, client: BaseClient | None = None) -> list[Self]:
        """Every row, newest primary key first."""
        return await cls.query(client).order_by(cls.primary_key, "desc").exec()

    @classmethod
    async def create(
        cls,
        payload: Mapping[str, Any] | None = None,
        *,
        client: BaseClient | None = None,
        **attributes: Any,
    ) -> Self:
        instance = cls(**{**(payload or {}), **attributes})
        await instance.save(client=client)
        return instance

    @classmethod
    async def create_many(
        cls,
        payloads: Iterable[Mapping[str, Any]],
        *,
        client: BaseClient | None = None,
    ) -> list[Self]:
        """Create every payload inside one transaction."""
        instances = [cls(**payload) for payload in payloads]
        async with managed_transaction(cls._require_client(client)) as trx:
            for instance in instances:
                await instance.save(client=trx)

        return instances

    @classmethod
    def _require_client(cls, client: BaseClient | None = None) -> BaseClient:
        client = client if client is not None else cls.__registry__.client_for(cls)
        if client is None:
            raise MissingConnectionError(
                f"Cannot execute query for {cls.__name__}: no query client and no database bound "
                f"to its registry"
            )

        return client

    @classmethod
    def _from_row(cls, row: Mapping[str, Any], client: BaseClient | None = None) -> Self:
        """Hydrate an instance from a result row keyed by column name."""
        instance = cls()
        for key, value in row.items():
            col = cls.__columns_by_name__.get(key)
            if col is None:
                instance.extras[key] = value
                continue

            instance._attributes[col.attribute_name] = col.consume(value) if col.consume else value

        instance._persisted = True
        instance._sync_original()
        instance._client = client

        return instance

    # --- attributes ---

    @property
    def is_persisted(self) -> bool:
        return self._persisted

    @property
    def is_new(self) -> bool:
        return not self._persisted

    @property
    def is_deleted(self) -> bool:
        return self._deleted

    @property
    def dirty(self) -> dict[str, Any]:
        """Attributes changed since the instance was last fetched or saved."""
        if not self._persisted:
            return dict(self._attributes)

        return {
            key: value
            for key, value in self._attributes.items()
            if key not in self._original or self._original[key] != value
        }

    @property
    def is_dirty(self) -> bool:
        return bool(self.dirty)

    def get_attribute(self, name: str, default: Any = None) -> Any:
        return self._attributes.get(name, default)

    def set_attribute(self, name: str, value: Any) -> None:
        self._attributes[name] = value

    def fill(self, values: Mapping[str, Any]) -> Self:
        """Replace all attributes with *values*."""
        self._attributes.clear()
        return self.merge(values)

    def merge(self, values: Mapping[str, Any]) -> Self:
        """Set known attributes from *values*; unknown keys go to ``extras``."""
        for key, value in values.items():
            if key in self.__columns__:
                self._attributes[key] = value
            else:
                self.extras[key] = value

        return self

    def _sync_original(self) -> None:
        self._original = dict(self._attributes)

    def _prepared(self, attributes: Mapping[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for key, value in attributes.items():
            col = self.__columns__[key]
            values[col.column_name] = col.prepare(value) if col.prepare else value

        return values

    # --- relations ---

    def set_related(self, name: str, value: Any) -> None:
        """Write the loaded value of relation *name* (a list, an instance or ``None``)."""
        relation = type(self).get_relation(name)
        self._preloaded[name] = list(value) if relation.many else value

    def push_related(self, name: str, value: Any) -> None:
        """Append to a to-many relation, or set a to-one relation."""
        relation = type(self).get_relation(name)
        if not relation.many:
            self._preloaded[name] = value
            return

        values = value if isinstance(value, (list, tuple)) else [value]
        self._preloaded.setdefault(name, []).extend(values)

    def get_related(self, name: str, default: Any = UNDEFINED) -> Any:
        type(self).get_relation(name)
        if name in self._preloaded:
            return self._preloaded[name]
        if default is UNDEFINED:
            return getattr(self, name)

        return default

    def is_loaded(self, name: str) -> bool:
        return name in self._preloaded

    def related(self, name: str) -> RelationClient:
        """Query or persist relation *name* scoped to this instance."""
        relation = type(self).get_relation(name)
        relation.boot()
        return relation.client(self, self._resolve_client())

    async def load(self, name: str, callback: Callable[[Any], Any] | None = None) -> Self:
        """Load relation *name* (dotted paths allowed) onto this instance."""
        preloader = Preloader(type(self)).preload(name, callback)
        await preloader.process_all_for_one(self, type(self)._require_client(self._resolve_client()))
        return self

    # --- persistence ---

    def use_transaction(self, trx: TransactionClient) -> Self:
        self._client = trx
        return self

    def _has_live_client(self) -> bool:
        current = self._client
        return current is not None and not (isinstance(current, TransactionClient) and current.is_completed)

    def _resolve_client(self, client: BaseClient | None = None) -> BaseClient | None:
        """Explicit client, then the client this instance came from, then the model default."""
        if client is not None:
            return client
        if self._has_live_client():
            return self._client

        return type(self).__registry__.client_for(type(self))

    async def save(self, *, client: BaseClient | None = None) -> Self:
        """Insert a new instance or update the dirty attributes of a persisted one."""
        cls = type(self)
        cls.boot()
        client = cls._require_client(self._resolve_client(client))
        table = cls.__table__

        if self._persisted:
            dirty = self.dirty
            if dirty:
                pk_value = self._original.get(cls.primary_key, self.get_attribute(cls.primary_key))
                await client.execute(
                    sa.update(table)
                    .where(get_primary_key(cls) == pk_value)
                    .values(self._prepared(dirty))
                )
        else:
            primary_key = await client.insert(sa.insert(table).values(self._prepared(self._attributes)))
            if self.get_attribute(cls.primary_key) is None and primary_key:
                self._attributes[cls.primary_key] = primary_key[0]
            self._persisted = True

        self._sync_original()
        if not self._has_live_client():
            self._client = client

        return self

    async def delete(self, *, client: BaseClient | None = None) -> None:
        cls = type(self)
        cls.boot()
        client = cls._require_client(self._resolve_client(client))
        pk_value = self._original.get(cls.primary_key, self.get_attribute(cls.primary_key))
        await client.execute(sa.delete(cls.__table__).where(get_primary_key(cls) == pk_value))
        self._deleted = True
        self._persisted = False

    async def refresh(self, *, client: BaseClient | None = None) -> Self:
        """Re-read the attributes of this instance from the database."""
        cls = type(self)
        fresh = await cls.query(self._resolve_client(client)).where(
            cls.primary_key, self.get_attribute(cls.primary_key)
        ).first()
        if fresh is None:
            raise ModelNotFoundError(cls.__name__)

        self._attributes = fresh._attributes
        self.extras = fresh.extras
        self._sync_original()
        return self

    def serialize(self) -> dict[str, Any]:
        """Attributes plus loaded relations, keyed by each relation's ``serialize_as``."""
        data = {name: self._attributes[name] for name in self.__columns__ if name in self._attributes}
        for name, value in self._preloaded.items():
            key = self.__relations__[name].serialize_as
            if key is None:
                continue
            if isinstance(value, list):
                data[key] = [item.serialize() for item in value]
            else:
                data[key] = value.serialize() if value is not None else None

        return data

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._attributes!r}>"
