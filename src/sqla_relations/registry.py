from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

from .naming import NamingStrategy, default_naming


if TYPE_CHECKING:
    from .database import BaseClient, Database
    from .model import BaseModel

logger = logging.getLogger(__name__)


class Registry:
    """Owner of a family of models sharing one ``sa.MetaData``.

    Models register themselves when their class is defined (the *define*
    phase). ``boot()`` is the single explicit point that builds every table and
    resolves every relation's keys before the first query runs.

    Example:
        >>> class Base(BaseModel, abstract=True):
        ...     pass
        >>> Base.__registry__.bind(Database())
        >>> Base.__registry__.boot()
    """

    __slots__ = ("_booted", "_models", "database", "metadata", "naming")

    def __init__(
        self,
        *,
        naming: NamingStrategy | None = None,
        metadata: sa.MetaData | None = None,
        database: Database | None = None,
    ) -> None:
        self.naming = naming or default_naming
        self.metadata = metadata if metadata is not None else sa.MetaData()
        self.database = database
        self._models: dict[str, type[BaseModel]] = {}
        self._booted = False

    def register(self, model: type[BaseModel]) -> None:
        """Add *model* to the registry; re-registering a name replaces the old class."""
        self._models[model.__name__] = model
        self._booted = False

    def get(self, name: str) -> type[BaseModel]:
        """Look up a model by class name, raising ``KeyError`` if not registered."""
        try:
            return self._models[name]
        except KeyError:
            raise KeyError(
                f"Model {name!r} is not registered. Available: {sorted(self._models)}"
            ) from None

    def __contains__(self, name: object) -> bool:
        return name in self._models

    def __iter__(self) -> Iterator[type[BaseModel]]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)

    @property
    def booted(self) -> bool:
        return self._booted

    def bind(self, database: Database) -> None:
        self.database = database

    def client_for(self, model: type[BaseModel]) -> BaseClient | None:
        """Default client of *model*, or ``None`` when no database is bound."""
        if self.database is None:
            return None

        return self.database.connection(model.__connection__)

    def boot(self) -> None:
        """Boot every model, then every relation. Safe to call repeatedly."""
        if self._booted:
            return

        models = list(self._models.values())
        for model in models:
            model.boot()

        for model in models:
            for relation in model.__relations__.values():
                relation.boot()

        self._booted = True
        logger.debug("Booted %d models", len(models))

    def table(self, name: str) -> sa.Table | None:
        return self.metadata.tables.get(name)

    def __repr__(self) -> str:
        models: Any = sorted(self._models)
        return f"<{type(self).__name__} models={models!r} booted={self._booted}>"
