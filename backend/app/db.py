import os
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool, StaticPool


engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[sessionmaker] = None
Base = declarative_base()


def normalize_database_url(database_url: str) -> str:
    """Use the asyncpg driver for plain ``postgresql://`` URLs."""

    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    return database_url


def engine_options(database_url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": False}
    if database_url.startswith("sqlite+aiosqlite://"):
        # In-memory SQLite must reuse one connection or the schema disappears.
        if ":memory:" in database_url:
            options["poolclass"] = StaticPool
        else:
            options["poolclass"] = NullPool
    else:
        options["pool_pre_ping"] = True
    return options


def get_engine() -> AsyncEngine:
    """Return the lazily created engine for ``DATABASE_URL``.

    Importing this module has no side effects so tests can set the variable at
    runtime. ``RuntimeError`` is raised only when the engine is first needed
    and ``DATABASE_URL`` is missing.
    """

    global engine, AsyncSessionLocal

    if engine is None:
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL environment variable is required")
        database_url = normalize_database_url(database_url)
        engine = create_async_engine(database_url, **engine_options(database_url))
        AsyncSessionLocal = sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )

    return engine


async def create_all() -> None:
    """Create every table directly from the models (tests and local dev)."""

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Provide a database session for FastAPI dependencies."""

    if AsyncSessionLocal is None:
        get_engine()

    assert AsyncSessionLocal is not None  # for type checkers
    async with AsyncSessionLocal() as session:
        yield session
