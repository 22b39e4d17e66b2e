"""Async SQLAlchemy engine and session factory.

Uses psycopg3 which supports both sync and async with the same
``postgresql+psycopg://`` URL.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def normalize_url(database_url: str) -> str:
    """Coerce legacy ``postgres://`` and asyncpg URLs to the psycopg3 dialect."""
    for prefix in ("postgresql+asyncpg://", "postgres://", "postgresql://"):
        if database_url.startswith(prefix):
            return "postgresql+psycopg://" + database_url[len(prefix) :]
    return database_url


def create_engine(database_url: str, **kwargs: object) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    - **pool_size=5** / **max_overflow=10**: baseline plus burst connections.
    - **pool_pre_ping=True**: survive PG restarts and idle disconnects.
    - **pool_recycle=3600**: recycle connections after an hour.

    All defaults can be overridden via *kwargs*.
    """
    defaults = {
        "echo": False,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }
    defaults.update(kwargs)  # type: ignore[arg-type]
    return create_async_engine(normalize_url(database_url), **defaults)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to *engine*.

    ``expire_on_commit=False`` keeps ORM instances usable after commit
    without lazy loads, which async sessions forbid.
    """
    return async_sessionmaker(engine, expire_on_commit=False)
