from __future__ import annotations

import os
from collections.abc import Iterator

import pytest
import sqlalchemy as sa

from sqla_criteria import AliasAllocator, Context, Dialect, MetadataCache, Settings

from .models import db_metadata, groups_table, posts_table, users_table


DRIVERS = {"sqlite": "sqlite", "postgres": "pgsql", "mysql": "mysql"}


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["sqlite", "postgres", "mysql"],
        help="Database backend to run the integration cases against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def db_config(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    match db_backend:
        case "postgres":
            from testcontainers.postgres import PostgresContainer

            pg = PostgresContainer(image="postgres:latest")
            if os.name == "nt":
                pg.get_container_host_ip = lambda: "127.0.0.1"
            with pg:
                host = pg.get_container_host_ip()
                yield (
                    f"postgresql+psycopg2://{pg.username}:{pg.password}"
                    f"@{host}:{pg.get_exposed_port(pg.port)}/{pg.dbname}"
                )

        case "mysql":
            from testcontainers.mysql import MySqlContainer

            my = MySqlContainer(image="mysql:8.0")
            if os.name == "nt":
                my.get_container_host_ip = lambda: "127.0.0.1"
            with my:
                host = my.get_container_host_ip()
                yield (
                    f"mysql+pymysql://{my.username}:{my.password}"
                    f"@{host}:{my.get_exposed_port(my.port)}/{my.dbname}"
                )

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite:///{tmp}/test.db"


@pytest.fixture(scope="session")
def engine(db_config: str) -> Iterator[sa.Engine]:
    engine = sa.create_engine(db_config)
    yield engine
    engine.dispose()


@pytest.fixture(scope="session")
def _create_tables(engine: sa.Engine) -> Iterator[None]:
    with engine.begin() as conn:
        db_metadata.create_all(conn)
    yield
    with engine.begin() as conn:
        db_metadata.drop_all(conn)


@pytest.fixture
def connection(engine: sa.Engine, _create_tables: None) -> Iterator[sa.Connection]:
    with engine.connect() as conn:
        trans = conn.begin()
        yield conn
        trans.rollback()


@pytest.fixture
def aliases() -> AliasAllocator:
    return AliasAllocator()


@pytest.fixture
def metadata(aliases: AliasAllocator) -> MetadataCache:
    return MetadataCache(aliases=aliases)


@pytest.fixture
def context(metadata: MetadataCache) -> Context:
    """A connection-less sqlite context for SQL generation tests."""
    return Context(Settings(driver="sqlite"), metadata)


@pytest.fixture
def db_context(db_backend: str, connection: sa.Connection, metadata: MetadataCache) -> Context:
    return Context(
        Settings(driver=DRIVERS[db_backend]),
        metadata,
        dialect=Dialect.from_connection(connection),
        connection=connection,
    )


@pytest.fixture
def seed_data(connection: sa.Connection) -> dict[str, list[dict[str, object]]]:
    groups = [{"id": 1, "name": "admins"}, {"id": 2, "name": "members"}]
    users = [
        {"id": 1, "email": "alice@example.com", "active": True, "score": 9.5, "group_id": 1},
        {"id": 2, "email": "bob@example.com", "active": True, "score": 7.0, "group_id": 2},
        {"id": 3, "email": "charlie@example.com", "active": False, "score": None, "group_id": 2},
    ]
    posts = [
        {"id": 1, "title": "Alice Post 1", "author_id": 1, "editor_id": 2},
        {"id": 2, "title": "Alice Post 2", "author_id": 1, "editor_id": None},
        {"id": 3, "title": "Bob Post 1", "author_id": 2, "editor_id": 1},
    ]
    connection.execute(groups_table.insert(), groups)
    connection.execute(users_table.insert(), users)
    connection.execute(posts_table.insert(), posts)

    if connection.dialect.name == "postgresql":
        # Explicit ids leave the serial sequences behind.
        for name in ("groups", "users", "posts"):
            connection.execute(
                sa.text(f"SELECT setval('{name}_id_seq', (SELECT MAX(id) FROM {name}))")
            )

    return {"groups": groups, "users": users, "posts": posts}


@pytest.fixture
def reset_default_context() -> Iterator[None]:
    saved = Context._Context__default  # type: ignore[attr-defined]
    yield
    Context._Context__default = saved  # type: ignore[attr-defined]
