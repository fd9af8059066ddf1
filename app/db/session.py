from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings

Base = declarative_base()


def build_engine(database_url: str) -> AsyncEngine:
    """Async engine for the ledger database."""
    kwargs = {"echo": False, "future": True}
    if not database_url.startswith("sqlite"):
        # pool_pre_ping: check connection is alive before use (avoids "connection is closed" errors
        # when DB or network closed idle connections).
        # pool_recycle: discard connections after this many seconds to avoid stale connections.
        kwargs.update(pool_pre_ping=True, pool_recycle=300)
    return create_async_engine(database_url, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    # expire_on_commit=False: ledger snapshots are read after the unit of work commits.
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


async def create_tables(bind: AsyncEngine) -> None:
    # Import for side effect: registers every table on Base.metadata.
    import app.core.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


engine = build_engine(settings.database_url)
AsyncSessionLocal = build_session_factory(engine)
