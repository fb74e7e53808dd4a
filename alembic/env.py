"""
Alembic migration environment for the identity schema.

Connections are built by ``app.core.database.create_engine`` so migrations
see the same URL rewriting and TLS settings as the running service.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection

from app.core.config import settings
from app.core.database import create_engine, database_url
from app.models import Base

alembic_config = context.config
if alembic_config.config_file_name is not None:
    fileConfig(alembic_config.config_file_name)

target_metadata = Base.metadata


def _configure(**kwargs) -> None:
    context.configure(target_metadata=target_metadata, compare_type=True, **kwargs)
    with context.begin_transaction():
        context.run_migrations()


def run_offline() -> None:
    """Render the migration SQL without a database connection."""
    _configure(
        url=database_url(settings),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )


def _run_with(connection: Connection) -> None:
    _configure(connection=connection)


async def run_online() -> None:
    engine = create_engine(settings, migrations=True)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_with)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    asyncio.run(run_online())
