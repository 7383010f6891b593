from __future__ import annotations

import copy
import logging
import sys
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar, Union

from ..datastructures import frozendict
from ..exceptions import (
    MissingConnectionError,
    PaginationNotAllowedError,
    RelationNotBootedError,
    RelationNotLoadedError,
    UnsupportedOperationError,
)
from ..query.builder import ModelQueryBuilder
from ..query.paginator import Paginator
from ..tools import UNDEFINED, collect_values, get_value
from .matcher import match


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from ..database import BaseClient
    from ..model import BaseModel
    from .keys import ResolvedKey

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="BaseModel")

ModelRef = Union[type["BaseModel"], Callable[[], type["BaseModel"]], str]


class RelationType(str, Enum):
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    BELONGS_TO = "belongs_to"
    HAS_MANY_THROUGH = "has_many_through"
    MANY_TO_MANY = "many_to_many"


class RelationState(Enum):
    UNBOOTED = "unbooted"
    BOOTED = "booted"


@dataclass(frozen=True, slots=True)
class RelationOptions:
    """Explicit overrides for a relation. ``None`` means "use the naming convention"."""

    local_key: str | None = None
    foreign_key: str | None = None
    through_local_key: str | None = None
    through_foreign_key: str | None = None
    related_key: str | None = None
    pivot_table: str | None = None
    pivot_foreign_key: str | None = None
    pivot_related_foreign_key: str | None = None
    pivot_columns: tuple[str, ...] = ()
    on_query: Callable[[Any], Any] | None = None
    serialize_as: Any = UNDEFINED


def resolve_model(owner: type[BaseModel], ref: ModelRef) -> type[BaseModel]:
    """Resolve a class, a zero-argument thunk or a registered model name."""
    if isinstance(ref, str):
        return owner.__registry__.get(ref)
    if isinstance(ref, type):
        return ref

    return ref()


class BaseRelation:
    """Relationship descriptor shared by all relation kinds.

    Declared on the owner class body and bound to it by ``__set_name__``.
    Keys are resolved by ``boot()``, once, on first use; until then the
    relation can be inspected but not queried. On instances, the attribute
    returns the loaded value or raises ``RelationNotLoadedError``.
    """

    relation_type: ClassVar[RelationType]
    many: ClassVar[bool] = False

    def __init__(self, related: ModelRef, **options: Any) -> None:
        if "pivot_columns" in options:
            options["pivot_columns"] = tuple(options["pivot_columns"])

        self.options = RelationOptions(**options)
        self.relation_name = ""
        self.model: type[BaseModel] | None = None
        self.state = RelationState.UNBOOTED
        self.keys: frozendict[str, ResolvedKey] = frozendict()
        self._related_ref = related

    def __set_name__(self, owner: type[BaseModel], name: str) -> None:
        self.relation_name = name
        self.model = owner

    def bind(self, model: type[BaseModel], name: str) -> Self:
        """Copy of this relation owned by *model* (used for inherited relations)."""
        relation = copy.copy(self)
        relation.model = model
        relation.relation_name = name
        relation.state = RelationState.UNBOOTED
        relation.keys = frozendict()
        return relation

    def __get__(self, instance: BaseModel | None, owner: type[Any] | None = None) -> Any:
        if instance is None:
            return self

        try:
            return instance._preloaded[self.relation_name]
        except KeyError:
            raise RelationNotLoadedError(self.relation_name, type(instance).__name__) from None

    def __set__(self, instance: BaseModel, value: Any) -> None:
        instance.set_related(self.relation_name, value)

    @property
    def owner(self) -> type[BaseModel]:
        if self.model is None:
            raise TypeError(f"Relation {self!r} is not attached to a model")
        return self.model

    @property
    def qualified_name(self) -> str:
        return f"{self.owner.__name__}.{self.relation_name}"

    @property
    def related_model(self) -> type[BaseModel]:
        return resolve_model(self.owner, self._related_ref)

    @property
    def booted(self) -> bool:
        return self.state is RelationState.BOOTED

    @property
    def serialize_as(self) -> str | None:
        value = self.options.serialize_as
        return self.relation_name if value is UNDEFINED else value

    @property
    def naming(self) -> Any:
        return self.owner.__registry__.naming

    def boot(self) -> None:
        """Resolve and validate keys. Idempotent."""
        if self.booted:
            return

        self.owner.boot()
        self.related_model.boot()
        self._boot()
        self.state = RelationState.BOOTED
        logger.debug("Booted relation %s (%s)", self.qualified_name, self.relation_type.value)

    def _boot(self) -> None:
        raise NotImplementedError

    def ensure_booted(self) -> None:
        if not self.booted:
            raise RelationNotBootedError(self.qualified_name)

    def key(self, name: str) -> ResolvedKey:
        self.ensure_booted()
        return self.keys[name]

    def apply_on_query(self, builder: Any) -> None:
        if self.options.on_query is not None:
            self.options.on_query(builder)

    # --- matching ---

    def set_related(self, parent: BaseModel, related: Any) -> None:
        self.ensure_booted()
        parent.set_related(self.relation_name, related)

    def push_related(self, parent: BaseModel, related: Any) -> None:
        self.ensure_booted()
        parent.push_related(self.relation_name, related)

    def match_keys(self) -> tuple[str, str, bool]:
        """``(parent_key, related_key, from_extras)`` used to match eager rows."""
        raise NotImplementedError

    def set_related_for_many(self, parents: Sequence[BaseModel], related: Sequence[BaseModel]) -> None:
        self.ensure_booted()
        parent_key, related_key, from_extras = self.match_keys()
        match(
            parents,
            related,
            relation_name=self.relation_name,
            parent_key=parent_key,
            related_key=related_key,
            many=self.many,
            from_extras=from_extras,
        )

    # --- queries ---

    query_builder_class: ClassVar[type[RelationQueryBuilder[Any]]]
    client_class: ClassVar[type[RelationClient]]

    def client(self, parent: BaseModel, client: BaseClient | None) -> RelationClient:
        """Query/persistence client scoped to one parent instance."""
        self.ensure_booted()
        return self.client_class(self, parent, client)

    def eager_query(self, parents: Sequence[BaseModel], client: BaseClient | None) -> RelationQueryBuilder[Any]:
        """Query fetching the related rows of all *parents* at once."""
        self.ensure_booted()
        builder = self.query_builder_class(self, list(parents), client, is_eager=True)
        self.apply_on_query(builder)
        return builder

    def __repr__(self) -> str:
        owner = self.model.__name__ if self.model is not None else "?"
        return f"<{type(self).__name__} {owner}.{self.relation_name} state={self.state.value}>"


class RelationQueryBuilder(ModelQueryBuilder[T]):
    """Query builder pre-constrained to the rows related to one parent or a batch of parents.

    Relation constraints are added to a copy each time a statement is built.
    The builder itself never carries them, so ``to_sql()`` followed by
    execution does not duplicate them, and switching to ``update()`` or
    ``delete()`` after a select was compiled gets that action's own shape.
    """

    def __init__(
        self,
        relation: BaseRelation,
        parent: BaseModel | list[BaseModel],
        client: BaseClient | None = None,
        *,
        is_eager: bool = False,
    ) -> None:
        relation.ensure_booted()
        super().__init__(relation.related_model, client)
        self.relation = relation
        self.parent = parent
        self.is_eager = is_eager
        self._applied_constraints = False

    @property
    def is_batch(self) -> bool:
        return isinstance(self.parent, list)

    def query_action(self) -> str:
        if self.is_eager and self._action == "select":
            return "preload"
        return self._action

    def scoped(self) -> Self:
        if self._applied_constraints:
            return self

        scoped = self.clone()
        scoped.apply_constraints()
        return scoped

    def apply_constraints(self) -> None:
        if self._applied_constraints:
            return

        self._applied_constraints = True
        self.apply_relation_constraints()

    def apply_relation_constraints(self) -> None:
        raise NotImplementedError

    def parent_value(self, key: str) -> Any:
        assert not isinstance(self.parent, list)
        return get_value(self.parent, key, self.relation, self.query_action())

    def parent_values(self, key: str) -> list[Any]:
        parents = self.parent if isinstance(self.parent, list) else [self.parent]
        return collect_values(parents, key, self.relation, self.query_action())

    def paginate(self, page: int, per_page: int = 20) -> Awaitable[Paginator[T]]:
        if self.is_eager:
            raise PaginationNotAllowedError(self.relation.relation_name)

        return super().paginate(page, per_page)


class RelationClient:
    """Per-parent entry point returned by ``instance.related(name)``."""

    def __init__(self, relation: BaseRelation, parent: BaseModel, client: BaseClient | None) -> None:
        relation.ensure_booted()
        self.relation = relation
        self.parent = parent
        self.client = client

    def query(self) -> RelationQueryBuilder[Any]:
        builder = self.relation.query_builder_class(self.relation, self.parent, self.client)
        self.relation.apply_on_query(builder)
        return builder

    def _require_client(self, client: BaseClient | None = None) -> BaseClient:
        client = client if client is not None else self.client
        if client is None:
            raise MissingConnectionError(
                f'Cannot persist "{self.relation.qualified_name}": no query client and no '
                f"database bound to its registry"
            )

        return client

    def _unsupported(self, operation: str) -> UnsupportedOperationError:
        return UnsupportedOperationError(operation, self.relation.relation_type.value)

    async def save(self, related: BaseModel, **kwargs: Any) -> Any:
        raise self._unsupported("save")

    async def save_many(self, related: Sequence[BaseModel], **kwargs: Any) -> Any:
        raise self._unsupported("save_many")

    async def create(self, payload: Any = None, **kwargs: Any) -> Any:
        raise self._unsupported("create")

    async def create_many(self, payloads: Any, **kwargs: Any) -> Any:
        raise self._unsupported("create_many")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.relation.qualified_name} parent={self.parent!r}>"
