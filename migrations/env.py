"""Alembic migration environment.

Takes the database URL from the application settings (DATABASE_URL) unless
alembic's own config already names one.
"""
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

from retention.core.config import get_settings
from retention.models.tables import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

if not config.get_main_option("sqlalchemy.url"):
    config.set_main_option("sqlalchemy.url", get_settings().database_url)

target_metadata = Base.metadata


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


run_migrations_online()
