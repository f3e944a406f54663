"""Shared SQLAlchemy base, engine construction, and schema bootstrap."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


async def init_db(url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine and make sure every table exists.

    The caller owns the returned engine and must hand it to ``close_db``.
    """
    engine = create_async_engine(url, echo=echo, pool_pre_ping=True)

    # Import all models so metadata is populated before create_all
    import app.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return engine


async def close_db(engine: AsyncEngine) -> None:
    """Dispose of the engine and release all connections."""
    await engine.dispose()


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
