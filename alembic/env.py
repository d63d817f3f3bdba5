"""
Alembic migrations for the ``kis_token_cache`` table.

Online runs go through the asyncpg engine built from POSTGRES_URL; offline
mode (``alembic upgrade --sql``) emits the DDL for a DBA to apply.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from kisprice.db.base import Base
from kisprice.db.engine import get_async_url
from kisprice.db.models import KISTokenCacheRow  # noqa: F401

if context.config.config_file_name is not None:
    fileConfig(context.config.config_file_name)

DATABASE_URL = get_async_url()


def _migrate(**options) -> None:
    context.configure(target_metadata=Base.metadata, compare_type=True, **options)
    with context.begin_transaction():
        context.run_migrations()


async def _migrate_online() -> None:
    engine = create_async_engine(DATABASE_URL, poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(lambda conn: _migrate(connection=conn))
    finally:
        await engine.dispose()


if context.is_offline_mode():
    _migrate(url=DATABASE_URL, literal_binds=True, dialect_opts={"paramstyle": "named"})
else:
    asyncio.run(_migrate_online())
