"""Alembic environment for Swaami.

At app startup database.py hands over its connection; from the command line
an engine is built from the app settings. Batch mode works around SQLite's
ALTER TABLE limitations.
"""

from __future__ import annotations

from alembic import context
from sqlalchemy import create_engine, pool
from sqlmodel import SQLModel

from swaami.db_models import *  # noqa: F401, F403 (registers all tables)

config = context.config
target_metadata = SQLModel.metadata


def _sync_url() -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url
    from swaami.config import settings

    if settings.database_url.startswith("sqlite"):
        return settings.database_url.replace("sqlite+aiosqlite", "sqlite")
    return f"sqlite:///{settings.database_url}"


def _run(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connection = config.attributes.get("connection")
    if connection is not None:
        _run(connection)
        return

    engine = create_engine(_sync_url(), poolclass=pool.NullPool)
    with engine.connect() as conn:
        _run(conn)


if context.is_offline_mode():
    raise SystemExit("Offline migrations are not supported; run against a database")
run_migrations_online()
