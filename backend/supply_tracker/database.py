"""
Supply Tracker Backend: Database Store Handle
===============================================

What:  The `Database` store handle (engine + session factory), the ORM base
       class, and the FastAPI session dependency.
How:   One `Database` is constructed in the application lifespan (or handed to
       `create_app()` by tests), attached to `app.state.store`, and disposed on
       shutdown. Request handlers receive a session through `get_db_session`,
       which commits on success and rolls back on error.
Who:   Used by route handlers via FastAPI's dependency injection system and
       by services that receive the session as an argument.

Connection Pooling:
    PostgreSQL (asyncpg): pool_size / max_overflow from settings, pre-ping,
    hourly recycle. The pool is the only shared resource in the process.

    SQLite (aiosqlite): a single shared connection (StaticPool) so that an
    in-memory database is visible to every session; foreign keys are switched
    on per connection because SQLite defaults them off.
"""

from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from supply_tracker.config import settings


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Shares one metadata object; Alembic reads it for autogenerate.
    """
    pass


def _configure_sqlite_connection(dbapi_connection, connection_record) -> None:
    # driver-level transactions off; SQLAlchemy emits BEGIN itself so that
    # SAVEPOINT / ROLLBACK TO behave as on PostgreSQL
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


class Database:
    """
    Explicitly constructed store handle with a bounded lifetime.

    Lifecycle:
        1. Constructed once per process (lifespan startup or test fixture)
        2. `session()` opens one AsyncSession per request
        3. `dispose()` closes every pooled connection on shutdown

    Attributes:
        url:     Connection URL the engine was built from
        engine:  The AsyncEngine owning the connection pool
    """

    def __init__(self, url: Optional[str] = None, echo: bool = False):
        self.url = url or settings.database_url
        self.engine: AsyncEngine = self._build_engine(self.url, echo)
        # expire_on_commit=False keeps attributes readable after commit
        self._session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @staticmethod
    def _build_engine(url: str, echo: bool) -> AsyncEngine:
        if url.startswith("sqlite"):
            engine = create_async_engine(
                url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
            event.listen(engine.sync_engine, "connect", _configure_sqlite_connection)
            event.listen(engine.sync_engine, "begin", _sqlite_begin)
            return engine

        return create_async_engine(
            url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
            echo=echo,
        )

    def session_factory(self) -> AsyncSession:
        """Returns a new, unmanaged session (caller closes it)."""
        return self._session_factory()

    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Yields a session that commits on success and rolls back on error.

        The whole request runs in one transaction; nothing is committed if
        the handler raises.
        """
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def create_all(self) -> None:
        """Creates every mapped table. Used by tests and local SQLite runs."""
        # Import models so they register with Base.metadata
        import supply_tracker.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        """Runs `SELECT 1`; True when the store answers."""
        from sqlalchemy import text

        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def dispose(self) -> None:
        """Closes all pooled connections."""
        await self.engine.dispose()


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency providing a session from the app's store handle.

    Example usage in a route:
        @router.get("/patients")
        async def list_patients(db: AsyncSession = Depends(get_db_session)):
            ...
    """
    store: Database = request.app.state.store
    async for session in store.session():
        yield session
