"""
Database session management. One manager is created per process and shared
by every request; it owns the connection pool.
"""

from sqlalchemy import Engine, event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel, create_engine


def _enable_sqlite_foreign_keys(engine: Engine):
    """
    SQLite ignores foreign keys (and hence ON DELETE SET NULL, which group
    deletion relies on) unless asked per connection.
    """

    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class SyncSessionManager:
    """
    A manager for synchronous sessions, used by the CLI and test setup:

    manager = SyncSessionManager(conn_url)
    manager.create_all()

    with manager.session() as conn:
        group = conn.get(FamilyGroup, group_id)
    """

    connection_url: str
    engine: Engine
    session: sessionmaker

    def __init__(self, connection_url: str, echo: bool = False):
        self.connection_url = connection_url
        self.engine = create_engine(self.connection_url, echo=echo)
        _enable_sqlite_foreign_keys(self.engine)
        self.session = sessionmaker(self.engine)

    def create_all(self):
        """
        Create every table that does not exist yet. There are no
        migrations; the schema is created in one go.
        """
        # Registers the tables on the metadata.
        from familyhub.database.meta import ALL_TABLES  # noqa: F401

        with self.engine.begin() as conn:
            SQLModel.metadata.create_all(conn)


class AsyncSessionManager:
    """
    A manager for asynchronous sessions. Every provisioning operation runs
    inside one transaction opened by the caller:

    manager = AsyncSessionManager(conn_url)

    async with manager.session() as conn:
        async with conn.begin():
            result = await ensure_group_for_identity(..., conn=conn, log=log)

    Call `dispose` on shutdown to drain the pool.
    """

    connection_url: str
    engine: AsyncEngine
    session: async_sessionmaker

    def __init__(self, connection_url: str, echo: bool = False):
        self.connection_url = connection_url
        self.engine = create_async_engine(self.connection_url, echo=echo)
        _enable_sqlite_foreign_keys(self.engine.sync_engine)
        self.session = async_sessionmaker(self.engine, expire_on_commit=False)

    async def create_all(self):
        """
        Async counterpart of `SyncSessionManager.create_all`, run by the API
        on startup when `create_tables` is set.
        """
        from familyhub.database.meta import ALL_TABLES  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self):
        """
        Close every pooled connection.
        """
        await self.engine.dispose()
