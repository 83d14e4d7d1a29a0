"""
levelstore.database.engine — Database Connection & Async Helper
================================================================

**Why this file exists:**
The store is SQLite behind SQLAlchemy, used synchronously.  Callers run on
an ``asyncio`` event loop, so every store call is shipped to a worker
thread with :func:`run_db` and the loop never blocks on disk I/O.

Two details make SQLite behave under many concurrent callers:

    1. pysqlite's implicit transaction handling is switched off and the
       engine emits ``BEGIN`` itself, so a transaction really starts where
       SQLAlchemy thinks it does.
    2. Write sessions start with ``BEGIN IMMEDIATE``: the single writer lock
       is taken up front, so read-modify-write sequences (XP increments,
       sacrifice transitions) serialise instead of failing on lock upgrade.

Usage::

    from levelstore.database.engine import create_db_engine, get_session, run_db

    engine = create_db_engine(cfg.database)

    with get_session(engine, write=True) as session:
        session.add(Setting(tenant_id="123", key="k", value="v"))

    # Inside an async handler:
    result = await run_db(store.add_xp, user_id, tenant_id, 20)
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import DatabaseError, IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from levelstore.database.models import Base
from levelstore.errors import ConflictRetryable, StorageUnavailable

if TYPE_CHECKING:
    from levelstore.config import DatabaseConfig

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Execution option read by the "begin" listener.
BEGIN_MODE_OPTION = "levelstore_begin"

_PRAGMA_NAME = re.compile(r"^[a-z_]+$")
_PRAGMA_VALUE = re.compile(r"^-?[A-Za-z0-9_]+$")


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------
def translate_db_error(exc: DatabaseError) -> Exception:
    """Map a SQLAlchemy driver error onto the store's error taxonomy."""
    message = str(getattr(exc, "orig", exc)).lower()
    if isinstance(exc, OperationalError) and ("locked" in message or "busy" in message):
        return ConflictRetryable(f"Database write lock not acquired: {message}")
    return StorageUnavailable(f"Database unavailable: {message}")


@contextmanager
def translate_errors() -> Iterator[None]:
    """Re-raise storage failures as ``StorageUnavailable`` / ``ConflictRetryable``.

    Integrity errors are caller bugs, not storage failures, and propagate
    untouched.
    """
    try:
        yield
    except IntegrityError:
        raise
    except DatabaseError as exc:
        raise translate_db_error(exc) from exc


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def _pragma_statements(cfg: DatabaseConfig) -> list[str]:
    statements = [f"PRAGMA busy_timeout = {int(cfg.busy_timeout_ms)}"]
    for name, value in cfg.pragmas.items():
        rendered = str(value)
        if not _PRAGMA_NAME.match(name) or not _PRAGMA_VALUE.match(rendered):
            raise ValueError(f"Refusing suspicious PRAGMA {name!r} = {rendered!r}")
        statements.append(f"PRAGMA {name} = {rendered}")
    return statements


def create_db_engine(cfg: DatabaseConfig) -> Engine:
    """Build a SQLAlchemy :class:`Engine` for the SQLite file at ``cfg.path``.

    * The parent directory is created if it does not exist.
    * Every pooled connection gets ``busy_timeout`` and the configured
      PRAGMAs before first use.
    * ``:memory:`` uses a :class:`StaticPool` so all threads share one
      database.

    Raises
    ------
    StorageUnavailable
        If the parent directory cannot be created.
    ValueError
        If a configured PRAGMA name or value is not a plain token.
    """
    statements = _pragma_statements(cfg)
    connect_args = {
        "check_same_thread": False,
        "timeout": cfg.busy_timeout_ms / 1000,
    }

    if cfg.path == ":memory:":
        engine = create_engine(
            "sqlite://",
            echo=False,
            connect_args=connect_args,
            poolclass=StaticPool,
        )
    else:
        db_path = Path(cfg.path)
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailable(
                f"Cannot create database directory {db_path.parent}: {exc}"
            ) from exc
        engine = create_engine(
            f"sqlite:///{db_path}",
            echo=False,          # Set True for SQL debugging
            connect_args=connect_args,
            pool_timeout=30,
        )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _connection_record) -> None:
        # Hand transaction control to the "begin" listener below.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            for statement in statements:
                cursor.execute(statement)
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:
        mode = conn.get_execution_options().get(BEGIN_MODE_OPTION, "DEFERRED")
        conn.exec_driver_sql(f"BEGIN {mode}")

    logger.info("Database engine created → %s", cfg.path)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create every shared table that does not exist yet.

    Safe to call on every startup — ``CREATE TABLE IF NOT EXISTS`` under the
    hood.  Tenant partitions are registered separately by
    :class:`~levelstore.services.schema_service.SchemaRegistry`.
    """
    with translate_errors():
        Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine, *, write: bool = False) -> Iterator[Session]:
    """Yield a :class:`Session` that commits on success and rolls back on
    exception.

    ``write=True`` opens the transaction with ``BEGIN IMMEDIATE``.  Driver
    errors leave as :class:`StorageUnavailable` or :class:`ConflictRetryable`.

    Usage::

        with get_session(engine, write=True) as session:
            session.add(Statistic(key="k", value="1"))
            # commit happens automatically on block exit
    """
    bind = engine.execution_options(**{BEGIN_MODE_OPTION: "IMMEDIATE"}) if write else engine
    session = Session(bind, expire_on_commit=False)
    try:
        with translate_errors():
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
    """Run a **synchronous** store function on a background thread.

    Every store call made from an event handler should go through this
    wrapper::

        result = await run_db(store.add_xp, user_id, tenant_id, 15)

    Under the hood it calls :func:`asyncio.to_thread`, which schedules
    *func* on the default ``ThreadPoolExecutor`` so the event loop is never
    blocked.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
