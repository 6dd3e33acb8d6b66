"""
Alembic environment configuration for authschema.

Reads database connection settings from the existing DatabaseConfig
so there is no duplication of connection parameters.
"""

import sys
import os
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

# Add project root to path so migrations can import auth_schema and config
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import get_config
from auth_schema import metadata

# Alembic Config object
config = context.config

# Set up logging from alembic.ini, unless the caller (migrate.py) already did
if config.config_file_name is not None and config.attributes.get("configure_logger", True):
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# Typed tables from auth_schema, used by autogenerate comparisons
target_metadata = metadata


def get_database_url() -> str:
    """Get database URL.

    Priority:
    1. sqlalchemy.url already set in Alembic config (e.g., by tests or CLI)
    2. DatabaseConfig.connection_string from application config
    """
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url

    return get_config().database.connection_string


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode.

    Generates SQL scripts without connecting to the database.
    """
    url = get_database_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode.

    Connects to the database and applies migrations inside one transaction.
    """
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = get_database_url()

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
