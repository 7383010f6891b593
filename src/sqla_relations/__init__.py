"""Relationships and eager loading for SQLAlchemy Core models.

sqla_relations declares ``has_one``, ``has_many``, ``belongs_to``,
``has_many_through`` and ``many_to_many`` relations on plain model classes and
builds awaitable, per-parent relation queries on top of SQLAlchemy Core.
``query.preload("posts.comments")`` loads a relation tree for any number of
parents with one batched ``IN`` query per relation.
"""

from ._version import __version__, __version_tuple__
from .config import ConnectionSettings, DatabaseSettings, get_settings
from .database import BaseClient, Database, QueryClient, QueryResult, TransactionClient, managed_transaction
from .datastructures import PreloadNode, PreloadTree, frozendict
from .exceptions import (
    MissingAttributeError,
    MissingConnectionError,
    ModelNotFoundError,
    PaginationNotAllowedError,
    RelationNotBootedError,
    RelationNotLoadedError,
    RelationsError,
    UndefinedRelationError,
    UnsavedModelError,
    UnsupportedOperationError,
    ValueUndefinedError,
)
from .model import BaseModel, ModelColumn, column, scope
from .naming import NamingStrategy, default_naming, pluralize, snake_case
from .query import ModelQueryBuilder, Paginator, Preloader
from .registry import Registry
from .relations import (
    RelationState,
    RelationType,
    belongs_to,
    declare_relation,
    has_many,
    has_many_through,
    has_one,
    many_to_many,
)
from .tools import UNDEFINED, SQLStatement, get_primary_key, get_table_name


__all__ = (
    "UNDEFINED",
    "BaseClient",
    "BaseModel",
    "ConnectionSettings",
    "Database",
    "DatabaseSettings",
    "MissingAttributeError",
    "MissingConnectionError",
    "ModelColumn",
    "ModelNotFoundError",
    "ModelQueryBuilder",
    "NamingStrategy",
    "PaginationNotAllowedError",
    "Paginator",
    "PreloadNode",
    "PreloadTree",
    "Preloader",
    "QueryClient",
    "QueryResult",
    "Registry",
    "RelationNotBootedError",
    "RelationNotLoadedError",
    "RelationState",
    "RelationType",
    "RelationsError",
    "SQLStatement",
    "TransactionClient",
    "UndefinedRelationError",
    "UnsavedModelError",
    "UnsupportedOperationError",
    "ValueUndefinedError",
    "__version__",
    "__version_tuple__",
    "belongs_to",
    "column",
    "declare_relation",
    "default_naming",
    "frozendict",
    "get_primary_key",
    "get_settings",
    "get_table_name",
    "has_many",
    "has_many_through",
    "has_one",
    "many_to_many",
    "managed_transaction",
    "pluralize",
    "scope",
    "snake_case",
)
