"""Alembic environment for the studyforge pipeline tables.

The database URL comes from DATABASE_URL via studyforge.core.config, the
same setting the API and the worker read.  The app talks to Postgres
through asyncpg; migrations run synchronously through psycopg2, so the
driver part of the URL is swapped before Alembic sees it.
"""

from __future__ import annotations

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context
from studyforge.core.config import SETTINGS
from studyforge.db.engine import Base

# Registers ledger, course, submission, content, mastery and leaderboard rows
import studyforge.db.tables  # noqa: E402, F401

config = context.config
target_metadata = Base.metadata


def _sync_url() -> str:
    url = SETTINGS.database_url or config.get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError("DATABASE_URL is not set; nothing to migrate")
    return url.replace("postgresql+asyncpg", "postgresql+psycopg2")


def run_migrations_offline() -> None:
    """Emit SQL for the migrations without connecting."""
    context.configure(
        url=_sync_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = _sync_url()
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if config.config_file_name is not None:
    fileConfig(config.config_file_name)

if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
