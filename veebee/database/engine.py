"""
veebee.database.engine — Database Connection & Async Helper
============================================================

Discord bots run on an ``asyncio`` event loop, while SQLAlchemy + psycopg2 is
**synchronous**.  Calling the DB directly from a cog would freeze the gateway
until the query returns, so every store call is shipped to a worker thread:

    1. A slash command or task fires (async world).
    2. The cog calls ``await run_db(some_function, engine, arg1, ...)``.
    3. ``run_db`` hands the sync function to ``asyncio.to_thread()``.
    4. The result is awaited back in the cog.

Usage::

    from veebee.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # create tables + run migrations

    # Inside an async method:
    ok = await run_db(is_premium_user, engine, user_id)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from veebee.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,   # Reconnect stale connections automatically
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all premium tables and bring older layouts up to date.

    Safe to call on every startup.  Legacy premium tables are rebuilt into
    the current shape first (their rows are copied, never dropped), then
    ``create_all`` fills in anything missing, then ``premium_sources`` gets
    its uniqueness index if an older copy of the table lacks it.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  This path is kept for dev/test environments and for
        databases created before Alembic was introduced.
    """
    from veebee.database.migrations import (
        ensure_premium_sources_schema,
        migrate_legacy_premium_tables,
    )

    with engine.begin() as conn:
        migrate_legacy_premium_tables(conn)
    Base.metadata.create_all(engine)
    with engine.begin() as conn:
        ensure_premium_sources_schema(conn)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    Usage::

        with get_session(engine) as session:
            session.add(PremiumRole(guild_id=1, role_id=2, ...))
            # commit happens automatically on block exit
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every DB call made from a cog, a task loop or the premium manager goes
    through this wrapper::

        result = await run_db(my_sync_db_function, engine, user_id)

    Parameters
    ----------
    func:
        Any sync callable (typically a function that opens a session and
        runs queries).
    *args, **kwargs:
        Forwarded to *func*.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
