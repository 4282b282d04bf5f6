"""
hourglass.database.engine — Database Connection, Async Bridge & Advisory Locks
===============================================================================

**Why this file exists:**
Discord bots run on an ``asyncio`` event loop.  SQLAlchemy + psycopg2 is
**synchronous** — calling the DB straight from a cog would freeze the bot
until the query returns.

The bridge pattern:

    1. A voice event (or a scheduler tick) fires in the async world.
    2. The cog calls ``await run_db(some_function, engine, arg1, ...)``.
    3. ``run_db`` ships the synchronous function to a thread via
       ``asyncio.to_thread()``.
    4. The DB work happens on that thread; the event loop stays free.

House totals are written by every member of a house, so they are updated
under a named **advisory lock** (:func:`advisory_lock`).  PostgreSQL
provides ``pg_advisory_lock``; other dialects (SQLite in tests) fall back to
a process-local named lock with the same contract.

Usage::

    from hourglass.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS + house seed

    result = await run_db(end_session, engine, member_id, channel_id)
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import Session

from hourglass.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

ADVISORY_LOCK_TIMEOUT_SECONDS = 5.0
_ADVISORY_POLL_SECONDS = 0.05


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from ``DATABASE_URL``.

    The pool is sized for one bot process plus the dashboard API:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections during reset batches.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set and no *url* is given.
    """
    url = url or os.getenv("DATABASE_URL")
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
        pool_timeout=10,      # Fail after 10s instead of hanging forever
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine, houses: Iterable[str] | None = None) -> None:
    """Create all tables and make sure every configured house has a row.

    Safe to call on every startup.  In production the schema is managed by
    Alembic (``alembic upgrade head``); ``create_all`` stays as a safety net
    for dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from hourglass.database.seed import seed_houses

    seed_houses(engine, houses)


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine) -> Iterator[Session]:
    """Yield a :class:`Session` that commits on success and rolls back
    on exception.

    Usage::

        with get_session(engine) as session:
            session.add(Member(id=123, display_name="drew"))
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Advisory locks
# ---------------------------------------------------------------------------
class AdvisoryLockTimeout(RuntimeError):
    """The named lock could not be taken in time.  Safe to retry."""

    def __init__(self, key: str, timeout: float) -> None:
        self.key = key
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:.1f}s waiting for lock {key!r}")


_local_locks: dict[str, threading.Lock] = {}
_local_locks_guard = threading.Lock()


def _local_lock(key: str) -> threading.Lock:
    with _local_locks_guard:
        lock = _local_locks.get(key)
        if lock is None:
            lock = _local_locks[key] = threading.Lock()
        return lock


def advisory_lock_id(key: str) -> int:
    """Stable signed 64-bit id for *key* (``pg_advisory_lock`` takes a bigint)."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


@contextmanager
def advisory_lock(
    session: Session,
    key: str,
    *,
    timeout: float = ADVISORY_LOCK_TIMEOUT_SECONDS,
) -> Iterator[None]:
    """Hold the named lock *key* for the duration of the ``with`` block.

    The lock is released on every exit path, including exceptions raised
    inside the block.

    Raises
    ------
    AdvisoryLockTimeout
        If the lock is still held elsewhere after *timeout* seconds.
    """
    if session.get_bind().dialect.name == "postgresql":
        lock_id = advisory_lock_id(key)
        deadline = time.monotonic() + timeout
        while not session.scalar(
            text("SELECT pg_try_advisory_lock(:id)"), {"id": lock_id}
        ):
            if time.monotonic() >= deadline:
                raise AdvisoryLockTimeout(key, timeout)
            time.sleep(_ADVISORY_POLL_SECONDS)
        try:
            yield
        finally:
            session.execute(text("SELECT pg_advisory_unlock(:id)"), {"id": lock_id})
        return

    lock = _local_lock(key)
    if not lock.acquire(timeout=timeout):
        raise AdvisoryLockTimeout(key, timeout)
    try:
        yield
    finally:
        lock.release()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every DB call in a cog goes through this wrapper::

        result = await run_db(my_sync_db_function, engine, member_id)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
