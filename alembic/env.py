"""Alembic environment for brand-monitor.

Migrations are hand-written; `sqlalchemy.url` is set by
`brand_monitor.storage.alembic_runner.upgrade_head`; command-line runs read
BRAND_MONITOR_DATABASE_URL, falling back to alembic.ini.
"""

from __future__ import annotations

import os

from sqlalchemy import engine_from_config, pool

from alembic import context

config = context.config

database_url = os.environ.get("BRAND_MONITOR_DATABASE_URL")
if database_url and not config.attributes.get("url_from_caller"):
    config.set_main_option("sqlalchemy.url", database_url)

target_metadata = None


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (SQL script output only)."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (live database connection)."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
