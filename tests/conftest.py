"""
Core configuration. Tests run against a temporary SQLite file unless
FAMILYHUB_TEST_POSTGRES is set, in which case a PostgreSQL container is used.
"""

import itertools
import os

import pytest_asyncio
import structlog

from familyhub.config.settings import Settings

IDENTITY_NUMBERS = itertools.count(20000000)


@pytest_asyncio.fixture(scope="session")
def database_container(tmp_path_factory):
    if not os.environ.get("FAMILYHUB_TEST_POSTGRES"):
        yield {
            "database_type": "sqlite",
            "database_db": str(tmp_path_factory.mktemp("db") / "familyhub.db"),
        }
        return

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer() as container:
        yield {
            "database_type": "postgres",
            "database_user": container.username,
            "database_password": container.password,
            "database_port": container.get_exposed_port(container.port),
            "database_host": "localhost",
            "database_db": container.dbname,
            "database_echo": True,
        }


@pytest_asyncio.fixture(scope="session")
def server_settings(database_container):
    yield Settings(
        **database_container,
        password_hash_rounds=4,
        registry_url=None,
        identity_service_url=None,
    )


@pytest_asyncio.fixture(scope="session")
def database(server_settings: Settings):
    server_settings.sync_manager().create_all()


@pytest_asyncio.fixture(scope="session")
def session_manager(server_settings: Settings, database):
    yield server_settings.async_manager()


@pytest_asyncio.fixture(scope="session")
def logger():
    yield structlog.get_logger()


@pytest_asyncio.fixture(scope="session")
def new_identity():
    """
    Returns a callable giving a fresh (identity_key, email) pair, so tests
    never collide on the unique columns.
    """

    def make() -> tuple[str, str]:
        number = next(IDENTITY_NUMBERS)
        return f"{number}-{number % 10}", f"person{number}@example.org"

    yield make
