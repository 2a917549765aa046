"""
Alembic environment for the calendar core schema.

The connection string comes from the same place the app reads it
(``DATABASE_URL`` / ``DATABASE_PUBLIC_URL``, normalised to asyncpg by
``db.db._build_url``), falling back to ``sqlalchemy.url`` in alembic.ini.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from db.db import _build_url
from db.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    try:
        return _build_url()
    except RuntimeError:
        url = config.get_main_option("sqlalchemy.url")
        if not url:
            raise RuntimeError(
                "DATABASE_URL not set and sqlalchemy.url missing from alembic.ini"
            )
        return url


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _do_run_migrations(connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_async_engine(_database_url(), poolclass=pool.NullPool)
    async with engine.connect() as conn:
        await conn.run_sync(_do_run_migrations)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
