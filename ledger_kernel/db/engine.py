"""
Module: ledger_kernel.db.engine
Responsibility: The process-wide SQLAlchemy engine and session factory, the
    per-dialect locking setup, and session_scope(), the one place a ledger
    transaction is committed or rolled back.
Architecture position: Kernel > DB.  May import from db/base.py and
    db/immutability.py.  MUST NOT import from services/ or selectors/
    (create_tables imports models lazily so Base.metadata is complete).

Invariants enforced:
    - PostgreSQL sessions run at READ COMMITTED; the posting path takes
      explicit row locks (SELECT ... FOR UPDATE) on every touched account.
    - SQLite sessions open with BEGIN IMMEDIATE, which takes the database
      write lock up front.  Concurrent writers therefore queue on the busy
      timeout instead of failing later at commit time.
    - SQLite enforces foreign keys (PRAGMA foreign_keys=ON).
    - No session is handed out before the immutability listeners are
      registered (init_engine_from_url registers them).

Failure modes:
    - RuntimeError from get_engine/get_session_factory before
      init_engine_from_url().
    - OperationalError on lock timeouts (retried by LedgerService).
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.immutability import register_immutability_listeners
from ledger_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


def _sqlite_engine(url: str, echo: bool, busy_timeout_seconds: float) -> Engine:
    engine = create_engine(
        url,
        echo=echo,
        connect_args={"timeout": busy_timeout_seconds, "check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # pysqlite must not issue its own deferred BEGIN; _on_begin does it
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_seconds * 1000)}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout_seconds: float = 30.0,
) -> Engine:
    """
    Build the engine and session factory for ``database_url``.

    The immutability listeners are registered here, so every session the
    factory hands out is guarded whether or not create_tables() runs in
    this process.  A second call replaces the first; call reset_engine() in
    between to dispose of the old pool.  Pool arguments apply to PostgreSQL only.
    ``sqlite_busy_timeout_seconds`` is how long a SQLite writer waits for
    the database lock before failing with "database is locked".
    """
    global _engine, _session_factory

    if database_url.startswith("sqlite"):
        _engine = _sqlite_engine(database_url, echo, sqlite_busy_timeout_seconds)
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)

    register_immutability_listeners()

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """The shared factory.  Share the factory between threads, never a session."""
    if _session_factory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _session_factory


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """
    One transaction: commit on normal exit, roll back and re-raise otherwise.

    The session is closed either way, releasing any row locks (or the
    SQLite write lock) it held.
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every ledger table and register the immutability listeners."""
    from ledger_kernel.db.base import Base
    import ledger_kernel.models  # noqa: F401  (populates Base.metadata)

    Base.metadata.create_all(get_engine())
    register_immutability_listeners()


def drop_tables() -> None:
    """Drop every ledger table.  Test setup only."""
    from ledger_kernel.db.base import Base
    import ledger_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose of the pool and forget the engine and factory."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


atexit.register(reset_engine)


def _dialect_name() -> str | None:
    return _engine.dialect.name if _engine is not None else None


def is_postgres() -> bool:
    return _dialect_name() == "postgresql"


def is_sqlite() -> bool:
    return _dialect_name() == "sqlite"
