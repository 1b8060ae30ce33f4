"""
Alembic environment configuration for async migrations.

Entry point for `alembic upgrade head` (run from the mahjong_club directory)
and for run_migrations_online_programmatic, which the API calls on startup.
"""

from logging.config import fileConfig
import asyncio
import logging
import os
from pathlib import Path
from concurrent.futures import ThreadPoolExecutor
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config
from alembic import context, config as alembic_config, command

# Import all models so Alembic can detect them
from mahjong_club.database.db import Base, DATABASE_URL
from mahjong_club.database import models  # noqa: F401

logger = logging.getLogger(__name__)

# Only available when run by the Alembic CLI, not when imported
config = None
try:
    config = context.config
    if config.config_file_name is not None:
        fileConfig(config.config_file_name, disable_existing_loggers=False)
except AttributeError:
    pass

target_metadata = Base.metadata


def run_migrations_offline(alembic_cfg=None) -> None:
    """Run migrations in 'offline' mode (generates SQL without connecting)."""
    config_obj = alembic_cfg if alembic_cfg is not None else config
    if config_obj is None:
        raise ValueError("Alembic config is required for offline migrations")
    context.configure(
        url=DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    """Execute migrations using the provided connection."""
    context.configure(connection=connection, target_metadata=target_metadata)

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations(alembic_cfg=None) -> None:
    """Run migrations in async mode against DATABASE_URL."""
    config_obj = alembic_cfg if alembic_cfg is not None else config
    if config_obj is None:
        raise ValueError("Alembic config is required for async migrations")

    configuration = config_obj.get_section(config_obj.config_ini_section)
    configuration["sqlalchemy.url"] = DATABASE_URL

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (called by Alembic CLI)."""
    asyncio.run(run_async_migrations())


async def run_migrations_online_programmatic() -> None:
    """
    Run migrations from inside the running app.

    command.upgrade is synchronous and starts its own event loop, so it runs
    in a worker thread.
    """
    package_dir = Path(__file__).parent.parent
    alembic_cfg = alembic_config.Config(str(package_dir / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(package_dir / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", DATABASE_URL)

    original_cwd = os.getcwd()
    try:
        os.chdir(str(package_dir))

        def run_upgrade():
            command.upgrade(alembic_cfg, "head")

        loop = asyncio.get_running_loop()
        with ThreadPoolExecutor() as executor:
            await loop.run_in_executor(executor, run_upgrade)
    finally:
        os.chdir(original_cwd)

    logger.info("Migrations completed")


if config is not None:
    try:
        if context.is_offline_mode():
            run_migrations_offline()
        else:
            run_migrations_online()
    except AttributeError:
        pass
