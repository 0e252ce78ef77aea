"""Database handle with async SQLAlchemy.

The engine and session factory live on an explicitly constructed
``Database`` object: create it at startup, ``dispose()`` it at shutdown.
"""
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

# Declarative base for all models
Base = declarative_base()


class Database:
    """Owns the async engine and session factory for one process."""

    def __init__(self, url: str, echo: bool = False, pool_size: int = 20, max_overflow: int = 10):
        """
        Create the engine and session factory.

        Args:
            url: SQLAlchemy async database URL
            echo: Log SQL statements
            pool_size: Connection pool size (ignored for SQLite)
            max_overflow: Extra connections above pool_size (ignored for SQLite)
        """
        engine_kwargs: dict = {"echo": echo, "pool_pre_ping": True}
        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"timeout": 30}
        else:
            engine_kwargs["pool_size"] = pool_size
            engine_kwargs["max_overflow"] = max_overflow

        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    def session(self) -> AsyncSession:
        """Open a new session (use as ``async with database.session() as db``)."""
        return self.session_factory()

    async def ping(self) -> None:
        """Run a trivial query; raises if the database is unreachable."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def create_all(self) -> None:
        """Create all tables (tests and local development only)."""
        import relay.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        """Drop all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await self.engine.dispose()

