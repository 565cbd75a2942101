"""Async database engine, sessions and shared persistence helpers"""

import logging
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import delete, insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from wellcode.config import get_settings

logger = logging.getLogger(__name__)

Base = declarative_base()

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage representation)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    In-memory SQLite shares a single connection so every session sees
    the same database.
    """
    kwargs: Dict[str, Any] = {"echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url:
            kwargs["poolclass"] = StaticPool
    return create_async_engine(database_url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings().database_url)
    return _engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session per request"""
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def create_tables(engine: AsyncEngine) -> None:
    # Import models so they register on Base.metadata
    import wellcode.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """Create all tables on the configured engine"""
    await create_tables(get_engine())


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def reset_session(session: AsyncSession) -> None:
    """
    Roll back after a failed step.

    Instances are detached first so the objects callers still hold keep
    their loaded state instead of expiring.
    """
    session.expunge_all()
    await session.rollback()


async def create_or_get(
    session: AsyncSession,
    instance,
    lookup: Callable[[], Awaitable[Any]],
):
    """
    Insert `instance` and commit; if a concurrent writer created the same
    row first, return that row instead.

    Returns:
        (row, created)
    """
    session.add(instance)
    try:
        await session.commit()
        return instance, True
    except IntegrityError:
        await reset_session(session)
        existing = await lookup()
        if existing is None:
            raise
        logger.info(f"{type(instance).__name__} already exists, using stored row")
        return existing, False


async def replace_set(
    session: AsyncSession,
    model,
    key_column,
    key_value: Any,
    rows: List[Dict[str, Any]],
    *criteria,
) -> int:
    """
    Replace every row of `model` matching `key_column == key_value` (and any
    extra `criteria`) with `rows`.

    The delete and the bulk insert commit together, so readers see either the
    old set or the new one. Returns the number of rows inserted.
    """
    try:
        result = await session.execute(delete(model).where(key_column == key_value, *criteria))
        if result.rowcount:
            logger.debug(f"Deleted {result.rowcount} {model.__tablename__} rows for {key_value}")
        if rows:
            await session.execute(insert(model), rows)
        await session.commit()
    except Exception:
        await reset_session(session)
        raise
    return len(rows)
