"""
Database Configuration

Async SQLAlchemy 2.0 on asyncpg. Engine options come from Settings so the
application and Alembic build identical connections.
"""

import ssl
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import pool
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import Settings


class Base(DeclarativeBase):
    """Declarative base for the identity tables."""


_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def database_url(config: Settings) -> str:
    """
    DATABASE_URL rewritten for asyncpg.

    Plain ``postgresql://`` URLs get the asyncpg driver, and query options
    such as ``sslmode`` are dropped because asyncpg rejects them. TLS is
    driven by DATABASE_SSL instead.
    """
    url = make_url(config.DATABASE_URL)
    if url.drivername in ("postgres", "postgresql"):
        url = url.set(drivername="postgresql+asyncpg")
    return url.set(query={}).render_as_string(hide_password=False)


def connect_args(config: Settings) -> Dict[str, Any]:
    if config.DATABASE_SSL:
        return {"ssl": ssl.create_default_context()}
    return {}


def create_engine(config: Settings, migrations: bool = False) -> AsyncEngine:
    """
    Build an engine from settings.

    Migration runs are short lived and use NullPool; the application pool
    is sized by DATABASE_POOL_SIZE and DATABASE_MAX_OVERFLOW.
    """
    if migrations:
        pool_options: Dict[str, Any] = {"poolclass": pool.NullPool}
    else:
        pool_options = {
            "pool_pre_ping": True,
            "pool_size": config.DATABASE_POOL_SIZE,
            "max_overflow": config.DATABASE_MAX_OVERFLOW,
            "pool_recycle": config.DATABASE_POOL_RECYCLE_SECONDS,
        }
    return create_async_engine(
        database_url(config),
        echo=config.DATABASE_ECHO,
        connect_args=connect_args(config),
        **pool_options,
    )


def get_engine() -> AsyncEngine:
    """Process-wide engine, created on first use so imports never connect."""
    global _engine
    if _engine is None:
        from app.core.config import settings

        _engine = create_engine(settings)
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_maker


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session dependency.

    Commits when the endpoint returns and rolls back if it raises.
    """
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create missing tables. Development only; deployments run Alembic."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_maker = None
