# DB connections

from functools import lru_cache
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.engine import make_url
from app.core.config import settings
from app.models.event import Base
from app.services.sql_store import SqlAlchemyEventStore
from app.services.store import EventStore, InMemoryEventStore


@lru_cache
def get_engine() -> AsyncEngine:
    """Async engine, created on first use"""
    url = make_url(settings.database_url)
    options = {"echo": settings.debug}

    if url.get_backend_name() == "postgresql":
        options.update(pool_size=20, max_overflow=0)

    return create_async_engine(url, **options)


@lru_cache
def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False
    )


async def init_models(engine: AsyncEngine | None = None) -> None:
    """Create tables directly (SQLite / local runs; Postgres uses alembic)"""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@lru_cache
def _build_event_store() -> EventStore:
    if settings.event_store == "memory":
        return InMemoryEventStore()
    return SqlAlchemyEventStore(get_sessionmaker())


def get_event_store() -> EventStore:
    """Dependency for getting the configured event store"""
    return _build_event_store()
