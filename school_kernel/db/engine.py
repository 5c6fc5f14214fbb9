"""
Module: school_kernel.db.engine
Responsibility: The process-wide engine, its session factory and the
    ``session_scope()`` transaction helper.
Architecture position: Kernel > DB.  Imports the model modules only when
    creating or dropping tables.

Backends:
    - PostgreSQL (psycopg2) in production: pooled connections with
      pre-ping at READ COMMITTED.  Receipt counters are serialized with
      row locks, not isolation level.
    - SQLite for local runs and the test suite.  pysqlite's own
      transaction handling swallows SAVEPOINTs, which every payment and
      every promotion item relies on, so the driver is put in autocommit
      and BEGIN is issued by SQLAlchemy.  An in-memory URL shares one
      connection through StaticPool.

``get_engine()``, ``get_session()`` and ``session_scope()`` raise
RuntimeError until ``init_engine_from_url()`` has run.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from school_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Database engine not initialized; call init_engine_from_url() first"


def _sqlite_engine(url: URL, echo: bool) -> Engine:
    in_memory = url.database in (None, "", ":memory:")
    engine = create_engine(
        url,
        echo=echo,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if in_memory else None,
    )

    @event.listens_for(engine, "connect")
    def _driver_autocommit(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def _postgres_engine(url: URL, echo: bool, **pool) -> Engine:
    return create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        isolation_level="READ COMMITTED",
        **pool,
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Build the engine for ``database_url`` and bind the session factory to it.

    Pool arguments apply to PostgreSQL only.  Calling this again replaces
    the previous engine without disposing it; use ``reset_engine()`` for
    that.
    """
    global _engine, _SessionFactory

    url = make_url(database_url)
    backend = url.get_backend_name()
    if backend == "sqlite":
        _engine = _sqlite_engine(url, echo)
    else:
        _engine = _postgres_engine(
            url,
            echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
        )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info("engine_initialized", extra={"dialect": backend, "echo": echo})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session() -> Session:
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Unit of work for callers outside a web framework.

    Services only flush; the commit happens here on normal exit.  Any
    exception rolls the whole unit back (payment, receipt and carry-forward
    rows alike) and is re-raised.

        with session_scope() as session:
            BalanceService(session).record_payment(command)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _table_metadata() -> MetaData:
    from school_kernel.db.base import Base
    import school_kernel.models  # noqa: F401
    import school_kernel.services.sequence_service  # noqa: F401

    return Base.metadata


def create_tables() -> None:
    _table_metadata().create_all(get_engine())


def drop_tables() -> None:
    """Drop every ledger table.  Test and local use only."""
    _table_metadata().drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _atexit_dispose() -> None:
    if _engine is not None:
        _engine.dispose()
