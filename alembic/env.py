"""Alembic environment configuration for media-index.

Migrations run through psycopg2 (sync). The URL comes from the same
resolution as the runtime pool (``DatabaseConfig``) so ``alembic upgrade``
targets whatever MEDIA_INDEX_ENDPOINT / DATABASE_URL / DB_* point at.
"""

import os
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context
from media_service.db import DatabaseConfig

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _get_url() -> str:
    dsn = DatabaseConfig.get_connection_string(
        os.environ.get("MEDIA_INDEX_ENDPOINT") or None,
        os.environ.get("MEDIA_INDEX_CREDENTIALS") or None,
    )
    for scheme in ("postgresql://", "postgres://"):
        if dsn.startswith(scheme):
            return "postgresql+psycopg2://" + dsn[len(scheme):]
    return dsn


def run_migrations_offline() -> None:
    context.configure(
        url=_get_url(),
        target_metadata=None,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = _get_url()
    engine = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=None)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
