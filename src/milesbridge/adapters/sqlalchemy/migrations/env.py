"""Alembic entry point for the order store.

``upgrade_head`` hands over an open connection through ``config.attributes``;
the ``alembic`` command line falls back to ``sqlalchemy.url`` or
``DATABASE_URI``.
"""

from __future__ import annotations

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import Connection

from milesbridge.adapters.sqlalchemy.mappings import mapper_registry, start_mappers
from milesbridge.config import get_database_config

config = context.config

start_mappers()

# SQLite cannot ALTER most columns in place, hence batch mode
MIGRATION_OPTIONS = {
    "target_metadata": mapper_registry.metadata,
    "render_as_batch": True,
    "compare_type": True,
}


def _run(connection: Connection | None = None) -> None:
    if connection is None:
        url = config.get_main_option("sqlalchemy.url") or get_database_config().uri
        context.configure(url=url, literal_binds=True, **MIGRATION_OPTIONS)
    else:
        context.configure(connection=connection, **MIGRATION_OPTIONS)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connection = config.attributes.get("connection")
    if isinstance(connection, Connection):
        _run(connection)
        return

    url = config.get_main_option("sqlalchemy.url") or get_database_config().uri
    engine = create_engine(url, poolclass=pool.NullPool, future=True)
    try:
        with engine.connect() as fresh:
            _run(fresh)
    finally:
        engine.dispose()


if context.is_offline_mode():
    _run()
else:
    run_migrations_online()
