"""Alembic environment configuration.

Nova shares its database with the rest of the platform, so migrations only
consider ``nova_*`` tables and record their revision in a separate version
table.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from nova.config import get_settings
from nova.db.base import Base
from nova.db import models  # noqa: F401 - Import models to register them

# Alembic Config object
config = context.config

# Configure logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Set target metadata for 'autogenerate' support
target_metadata = Base.metadata

VERSION_TABLE = "nova_alembic_version"
TABLE_PREFIX = "nova_"

settings = get_settings()


def get_url() -> str:
    """Get the database URL for migrations (sync driver for Alembic)."""
    return settings.database_url_sync


def include_object(obj, name, type_, reflected, compare_to) -> bool:
    """Ignore tables owned by other services."""
    if type_ == "table":
        return name.startswith(TABLE_PREFIX)
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        version_table=VERSION_TABLE,
        include_object=include_object,
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode, emitting SQL to the script output."""
    _configure(
        url=get_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode using a sync psycopg2 engine."""
    connectable = create_engine(
        get_url(),
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        _configure(connection=connection)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
