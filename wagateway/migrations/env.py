"""Alembic environment for the gateway schema (clients and api_keys).

Migrations always run through the asyncpg driver. Plain ``postgresql://``
URLs, as used by the service itself, are rewritten on the way in.
"""
from __future__ import annotations

import asyncio
import logging
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

LOGGER = logging.getLogger("wagateway.migrations")

# revisions are hand-written; there is no declarative model to diff against
target_metadata = None


def migration_url() -> str:
    raw = config.get_main_option("sqlalchemy.url") or os.getenv("DATABASE_URL") or ""
    raw = raw.strip()
    if not raw:
        LOGGER.error("event=migration_url_missing")
        raise RuntimeError("DATABASE_URL is required to run gateway migrations")
    for prefix in ("postgresql+asyncpg://", "postgresql://", "postgres://"):
        if raw.startswith(prefix):
            return "postgresql+asyncpg://" + raw[len(prefix):]
    return raw


def _migrate(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def _migrate_online(url: str) -> None:
    engine = create_async_engine(url, poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


def main() -> None:
    url = migration_url()
    LOGGER.info("event=migrations_start offline=%s", context.is_offline_mode())
    if context.is_offline_mode():
        context.configure(
            url=url,
            target_metadata=target_metadata,
            literal_binds=True,
            dialect_opts={"paramstyle": "named"},
        )
        with context.begin_transaction():
            context.run_migrations()
        return
    asyncio.run(_migrate_online(url))


main()
