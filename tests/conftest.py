from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator
from typing import Any

import pytest
import sqlalchemy as sa

from sqla_relations import ConnectionSettings, Database, DatabaseSettings, TransactionClient

from .models import Base, Comment, Country, Post, Profile, Skill, User


pytestmark = pytest.mark.anyio


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["postgres", "mysql", "mariadb", "sqlite"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(scope="session")
def supports_savepoints(db_backend: str) -> bool:
    # pysqlite does not emit BEGIN, so SAVEPOINT inside it misbehaves
    return db_backend != "sqlite"


# tests marked savepoint need a backend with nested transactions
@pytest.fixture(autouse=True)
def _skip_savepoint(request: pytest.FixtureRequest, supports_savepoints: bool) -> None:
    if request.node.get_closest_marker("savepoint") and not supports_savepoints:
        pytest.skip("SAVEPOINT not supported on this backend")


@pytest.fixture(scope="session", autouse=True)
def _boot_registry() -> None:
    """Boot models and relations once. Sync, no DB needed."""
    Base.__registry__.boot()


def _container(backend: str) -> tuple[Any, str]:
    """Container for *backend* and the async driver used to reach it."""
    if backend == "postgres":
        from testcontainers.postgres import PostgresContainer

        return PostgresContainer(image="postgres:16-alpine"), "postgresql+asyncpg"

    from testcontainers.mysql import MySqlContainer

    image = "mariadb:11" if backend == "mariadb" else "mysql:8.4"
    return MySqlContainer(image=image), "mysql+asyncmy"


def _container_url(container: Any, driver: str) -> str:
    # docker desktop on windows publishes ports on the loopback address only
    host = "127.0.0.1" if os.name == "nt" else container.get_container_host_ip()
    port = container.get_exposed_port(container.port)
    return f"{driver}://{container.username}:{container.password}@{host}:{port}/{container.dbname}"


@pytest.fixture(scope="session")
def db_config(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    if db_backend == "sqlite":
        yield f"sqlite+aiosqlite:///{tmp_path_factory.mktemp('db')}/relations.db"
        return

    container, driver = _container(db_backend)
    with container:
        yield _container_url(container, driver)


@pytest.fixture(scope="session")
def database(db_config: str) -> Database:
    db = Database(DatabaseSettings(connections={"primary": ConnectionSettings(url=db_config)}))
    Base.__registry__.bind(db)
    return db


@pytest.fixture(scope="session")
async def _create_tables(database: Database) -> AsyncIterator[None]:
    engine = database.connection().engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.__registry__.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.__registry__.metadata.drop_all)
    await database.close_all()


@pytest.fixture
async def trx(database: Database, _create_tables: None) -> AsyncIterator[TransactionClient]:
    """A transaction rolled back after each test."""
    client = await database.transaction()
    yield client
    if not client.is_completed:
        await client.rollback()


@pytest.fixture
def executed(database: Database) -> Iterator[list[str]]:
    """SELECT statements sent to the database while the test runs."""
    statements: list[str] = []

    def _on_execute(conn, cursor, statement, parameters, context, executemany) -> None:  # noqa: ANN001
        if statement.lstrip().upper().startswith("SELECT"):
            statements.append(statement)

    engine = database.connection().engine.sync_engine
    sa.event.listen(engine, "before_cursor_execute", _on_execute)
    yield statements
    sa.event.remove(engine, "before_cursor_execute", _on_execute)


@pytest.fixture
async def seed_data(trx: TransactionClient) -> dict[str, Base]:
    india = await Country.create(name="India", client=trx)
    usa = await Country.create(name="USA", client=trx)
    atlantis = await Country.create(name="Atlantis", client=trx)

    virk = await User.create(username="virk", country_id=india.id, is_active=True, client=trx)
    romain = await User.create(username="romain", country_id=india.id, is_active=True, client=trx)
    nikk = await User.create(username="nikk", country_id=usa.id, is_active=False, client=trx)
    loner = await User.create(username="loner", country_id=None, is_active=True, client=trx)

    await Profile.create(user_id=virk.id, display_name="Virk", client=trx)
    await Profile.create(user_id=romain.id, display_name="Romain", client=trx)

    adonis = await Post.create(user_id=virk.id, title="Adonis 101", is_published=True, client=trx)
    lucid = await Post.create(user_id=virk.id, title="Lucid 101", is_published=False, client=trx)
    await Post.create(user_id=romain.id, title="Romain's post", is_published=True, client=trx)
    await Post.create(user_id=nikk.id, title="Nikk's post", is_published=True, client=trx)

    await Comment.create(post_id=adonis.id, body="Great post", client=trx)
    await Comment.create(post_id=adonis.id, body="Thanks", client=trx)

    programming = await Skill.create(name="Programming", client=trx)
    dancing = await Skill.create(name="Dancing", client=trx)
    singing = await Skill.create(name="Singing", client=trx)

    await virk.related("skills").attach(
        {programming.id: {"proficiency": "expert"}, dancing.id: {"proficiency": "beginner"}}
    )
    await romain.related("skills").attach({programming.id: {"proficiency": "beginner"}})

    return {
        "india": india,
        "usa": usa,
        "atlantis": atlantis,
        "virk": virk,
        "romain": romain,
        "nikk": nikk,
        "loner": loner,
        "adonis": adonis,
        "lucid": lucid,
        "programming": programming,
        "dancing": dancing,
        "singing": singing,
    }
