"""Async SQLModel database setup."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from swaami.db_models import (  # noqa: F401 (registers tables)
    CreditLedger,
    Endorsement,
    Match,
    Message,
    Profile,
    Task,
    VerificationEvent,
)

logger = logging.getLogger("swaami.database")

_engine = None
_session_factory = None

# Absolute path to the migrations directory (sibling of swaami/ package)
_MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


def sqlite_url(database_url: str) -> str:
    if database_url.startswith("sqlite"):
        return database_url
    return f"sqlite+aiosqlite:///{database_url}"


async def init_db(url: str = "sqlite+aiosqlite:///swaami.db") -> None:
    global _engine, _session_factory
    connect_args = {}
    if "sqlite" in url:
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 30
    _engine = create_async_engine(url, echo=False, connect_args=connect_args, pool_pre_ping=True)
    _session_factory = sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)  # type: ignore[call-overload]

    async with _engine.begin() as conn:
        if "sqlite" in url:
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA foreign_keys=ON"))
        await _run_alembic_upgrade(conn)


async def _run_alembic_upgrade(conn) -> None:
    """Bring the schema to the latest Alembic revision on the given connection."""
    from alembic import command
    from alembic.config import Config

    def _do_upgrade(sync_conn):
        from alembic.migration import MigrationContext
        from alembic.script import ScriptDirectory

        alembic_cfg = Config()
        alembic_cfg.set_main_option("script_location", str(_MIGRATIONS_DIR))
        # Pass connection so env.py uses it instead of creating a new engine
        alembic_cfg.attributes["connection"] = sync_conn

        current_rev = MigrationContext.configure(sync_conn).get_current_revision()
        head_rev = ScriptDirectory.from_config(alembic_cfg).get_current_head()
        if current_rev == head_rev:
            logger.debug("Database schema is up to date at revision %s", current_rev)
            return
        logger.info("Upgrading database from %s to %s", current_rev or "(empty)", head_rev)
        command.upgrade(alembic_cfg, "head")

    # Alembic's command API is synchronous; run_sync bridges the gap
    await conn.run_sync(_do_upgrade)


async def close_db() -> None:
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    assert _session_factory is not None, "Database not initialised; call init_db() first"
    async with _session_factory() as session:
        yield session
