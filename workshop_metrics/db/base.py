"""Declarative base and async engine lifecycle for the vehicle store."""

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from workshop_metrics.core.config import get_settings

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(url: str, debug: bool) -> dict:
    options: dict = {"echo": debug}
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
        # An in-memory database exists only on its single connection
        if parsed.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
    else:
        options["pool_pre_ping"] = True
    return options


async def init_db(url: str | None = None, create_schema: bool = True) -> async_sessionmaker[AsyncSession]:
    """Create the engine and session factory once per process.

    Args:
        url: Database URL (defaults to settings.database_url)
        create_schema: Create missing tables; the metrics core only reads,
            so this is for local stores and tests

    Returns:
        The session factory to hand to SqlVehicleSource
    """
    global _engine, _session_factory

    if _session_factory is not None:
        return _session_factory

    settings = get_settings()
    db_url = url or settings.database_url

    _engine = create_async_engine(db_url, **_engine_options(db_url, settings.debug))
    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    logger.info("database_initialized", backend=make_url(db_url).get_backend_name())

    if create_schema:
        # Import all models so metadata is populated before create_all
        import workshop_metrics.db.models  # noqa: F401

        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    return _session_factory


async def close_db() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory created by init_db().

    Raises:
        RuntimeError: if init_db() has not been called
    """
    if _session_factory is None:
        raise RuntimeError("Vehicle store not initialized; call init_db() first")
    return _session_factory
