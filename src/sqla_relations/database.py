"""Connection manager and query clients.

``Database`` looks up named connections from ``DatabaseSettings`` and creates
one ``AsyncEngine`` per name on first use. Statements are executed through a
``QueryClient`` (one short-lived connection per statement) or a
``TransactionClient`` (one connection held for the whole transaction).
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Literal

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncTransaction,
    create_async_engine,
)

from .config import ConnectionSettings, DatabaseSettings, get_settings
from .exceptions import MissingConnectionError


if TYPE_CHECKING:
    from sqlalchemy.engine import CursorResult, Dialect

    from .model import BaseModel
    from .query.builder import ModelQueryBuilder

logger = logging.getLogger(__name__)

TransactionEvent = Literal["commit", "rollback"]
TransactionListener = Callable[["TransactionClient"], Any]


@dataclass(slots=True, frozen=True)
class QueryResult:
    """Buffered outcome of one statement."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    rowcount: int = 0


def _buffer(result: CursorResult[Any]) -> QueryResult:
    if result.returns_rows:
        return QueryResult(rows=[dict(row) for row in result.mappings().all()], rowcount=result.rowcount)

    return QueryResult(rowcount=result.rowcount)


class BaseClient:
    """Shared API of ``QueryClient`` and ``TransactionClient``."""

    is_transaction: ClassVar[bool] = False

    def __init__(self, name: str, *, debug: bool = False) -> None:
        self.name = name
        self.debug = debug

    @property
    def dialect(self) -> Dialect:
        raise NotImplementedError

    async def execute(
        self,
        statement: sa.Executable,
        parameters: list[dict[str, Any]] | None = None,
    ) -> QueryResult:
        raise NotImplementedError

    async def insert(self, statement: sa.Insert) -> tuple[Any, ...]:
        """Execute a single-row INSERT and return the new primary key."""
        raise NotImplementedError

    def query(self, model: type[BaseModel]) -> ModelQueryBuilder[Any]:
        return model.query(client=self)

    async def raw(self, sql: str, bindings: Mapping[str, Any] | None = None) -> QueryResult:
        statement = sa.text(sql)
        if bindings:
            statement = statement.bindparams(**bindings)

        return await self.execute(statement)

    def _report(self, statement: sa.Executable) -> None:
        if not self.debug or not logger.isEnabledFor(logging.DEBUG):
            return

        compiled = statement.compile(dialect=self.dialect)
        logger.debug(
            "[%s] %s | bindings=%r | transaction=%s",
            self.name,
            compiled.string,
            compiled.params,
            self.is_transaction,
        )


class QueryClient(BaseClient):
    """Executes every statement on its own pooled connection."""

    def __init__(self, name: str, engine: AsyncEngine, *, debug: bool = False) -> None:
        super().__init__(name, debug=debug)
        self.engine = engine

    @property
    def dialect(self) -> Dialect:
        return self.engine.dialect

    async def execute(
        self,
        statement: sa.Executable,
        parameters: list[dict[str, Any]] | None = None,
    ) -> QueryResult:
        self._report(statement)
        async with self.engine.begin() as connection:
            return _buffer(await connection.execute(statement, parameters))

    async def insert(self, statement: sa.Insert) -> tuple[Any, ...]:
        self._report(statement)
        async with self.engine.begin() as connection:
            result = await connection.execute(statement)
            return tuple(result.inserted_primary_key or ())

    async def transaction(self) -> TransactionClient:
        """Open a connection and begin a transaction on it."""
        connection = await self.engine.connect()
        transaction = await connection.begin()

        return TransactionClient(
            self.name,
            connection,
            transaction,
            debug=self.debug,
            owns_connection=True,
        )

    async def dispose(self) -> None:
        await self.engine.dispose()


class TransactionClient(BaseClient):
    """Runs statements on one connection inside a (possibly nested) transaction.

    Use it as an async context manager to commit on success and roll back on
    error::

        async with await db.transaction() as trx:
            await user.related("posts").create({"title": "Hello"}, client=trx)

    Callbacks registered with ``on("commit")`` or ``on("rollback")`` run once,
    after the transaction completes that way. Every listener is dropped on
    completion, whichever way it went.
    """

    is_transaction: ClassVar[bool] = True

    def __init__(
        self,
        name: str,
        connection: AsyncConnection,
        transaction: AsyncTransaction,
        *,
        debug: bool = False,
        owns_connection: bool = False,
    ) -> None:
        super().__init__(name, debug=debug)
        self.connection = connection
        self._transaction = transaction
        self._owns_connection = owns_connection
        self._listeners: dict[str, list[TransactionListener]] = {"commit": [], "rollback": []}

    @property
    def dialect(self) -> Dialect:
        return self.connection.dialect

    @property
    def is_completed(self) -> bool:
        return not self._transaction.is_active

    async def execute(
        self,
        statement: sa.Executable,
        parameters: list[dict[str, Any]] | None = None,
    ) -> QueryResult:
        self._report(statement)
        return _buffer(await self.connection.execute(statement, parameters))

    async def insert(self, statement: sa.Insert) -> tuple[Any, ...]:
        self._report(statement)
        result = await self.connection.execute(statement)
        return tuple(result.inserted_primary_key or ())

    async def transaction(self) -> TransactionClient:
        """Start a nested transaction backed by a SAVEPOINT."""
        savepoint = await self.connection.begin_nested()

        return TransactionClient(self.name, self.connection, savepoint, debug=self.debug)

    def on(self, event: TransactionEvent, listener: TransactionListener) -> TransactionClient:
        if event not in self._listeners:
            raise ValueError(f'Unknown transaction event "{event}", expected "commit" or "rollback"')

        self._listeners[event].append(listener)
        return self

    def listener_count(self, event: TransactionEvent) -> int:
        return len(self._listeners.get(event, ()))

    async def commit(self) -> None:
        await self._complete("commit", self._transaction.commit)

    async def rollback(self) -> None:
        await self._complete("rollback", self._transaction.rollback)

    async def _complete(self, event: TransactionEvent, finish: Callable[[], Awaitable[None]]) -> None:
        listeners = self._listeners[event]
        self._listeners = {"commit": [], "rollback": []}
        try:
            await finish()
        finally:
            await self._release()

        for listener in listeners:
            result = listener(self)
            if inspect.isawaitable(result):
                await result

    async def _release(self) -> None:
        if self._owns_connection:
            await self.connection.close()

    async def __aenter__(self) -> TransactionClient:
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, *_: Any) -> None:
        if self.is_completed:
            return

        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()


@asynccontextmanager
async def managed_transaction(client: BaseClient) -> AsyncIterator[BaseClient]:
    """Yield *client* itself when it is a transaction, else a fresh transaction on it.

    A transaction opened here is committed when the block succeeds and rolled
    back when it raises.
    """
    if isinstance(client, TransactionClient):
        yield client
        return

    assert isinstance(client, QueryClient)
    trx = await client.transaction()
    try:
        yield trx
    except BaseException:
        await trx.rollback()
        raise

    await trx.commit()


class Database:
    """Named connection lookup with explicit delegation to the default connection."""

    def __init__(self, settings: DatabaseSettings | None = None) -> None:
        # own copy, so add_connection never leaks into the cached settings
        self.settings = (settings if settings is not None else get_settings()).model_copy(deep=True)
        self._clients: dict[str, QueryClient] = {}

    @property
    def default_connection(self) -> str:
        return self.settings.connection

    def add_connection(self, name: str, settings: ConnectionSettings | str) -> None:
        if isinstance(settings, str):
            settings = ConnectionSettings(url=settings)

        self.settings.connections[name] = settings

    def has_connection(self, name: str) -> bool:
        return name in self.settings.connections

    def connection(self, name: str | None = None) -> QueryClient:
        """Return the client of connection *name*, creating its engine on first use."""
        name = name or self.settings.connection
        if (client := self._clients.get(name)) is not None:
            return client

        config = self.settings.connections.get(name)
        if config is None:
            raise MissingConnectionError(
                f'Missing database connection "{name}". '
                f"Available: {sorted(self.settings.connections)}"
            )

        engine = create_async_engine(config.url, echo=config.echo, **config.engine_options)
        client = QueryClient(name, engine, debug=config.debug or self.settings.debug)
        self._clients[name] = client
        logger.debug("Created engine for connection %r", name)

        return client

    async def transaction(self, name: str | None = None) -> TransactionClient:
        return await self.connection(name).transaction()

    def query(self, model: type[BaseModel], connection: str | None = None) -> ModelQueryBuilder[Any]:
        return model.query(client=self.connection(connection or model.__connection__))

    async def raw(
        self,
        sql: str,
        bindings: Mapping[str, Any] | None = None,
        connection: str | None = None,
    ) -> QueryResult:
        return await self.connection(connection).raw(sql, bindings)

    async def close(self, name: str | None = None) -> None:
        name = name or self.settings.connection
        if (client := self._clients.pop(name, None)) is not None:
            await client.dispose()

    async def close_all(self) -> None:
        for name in list(self._clients):
            await self.close(name)
