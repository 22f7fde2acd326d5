"""
Module: market_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  This is the single point of database
    connection configuration for the entire system.
Architecture position: Kernel > DB.  May import from db/base.py and
    db/immutability.py.
    MUST NOT import from services/, selectors/, domain/, or outer layers
    (except create_tables, which imports the models so their tables register).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED with explicit row locks
      (SELECT ... FOR UPDATE) where a read must precede a write.
    - SQLite (tests, local runs) opens every transaction with BEGIN IMMEDIATE,
      so concurrent writers serialize on the database lock instead of
      failing mid-transaction on a lock upgrade.
    - Every initialized engine runs with the ledger immutability listeners.
    - session_scope() gives commit-or-rollback atomicity: a failed operation
      leaves no partial rows and no partial balance updates.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory are called
      before init_engine_from_url().
    - OperationalError("database is locked") on SQLite when a writer waits
      longer than the busy timeout.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from market_kernel.db.immutability import register_immutability_listeners
from market_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

# Module-level engine and session factory
_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _install_sqlite_transaction_control(engine: Engine) -> None:
    """Let SQLAlchemy, not pysqlite, emit BEGIN; make it BEGIN IMMEDIATE."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


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
    Initialize the SQLAlchemy engine from a database URL.

    Postconditions: Module-level _engine and _SessionFactory are initialized.
        All subsequent get_engine/get_session calls use this engine, and the
        ORM immutability listeners are registered.

    Args:
        database_url: PostgreSQL URL (production) or SQLite URL (tests).
        echo: If True, log all SQL statements.
        pool_size: Number of connections to keep in the pool.
        max_overflow: Max connections beyond pool_size.
        pool_pre_ping: If True, test connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine, _SessionFactory

    if database_url.startswith("sqlite"):
        dialect = "sqlite"
        connect_args = {
            "check_same_thread": False,
            "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
        }
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            _engine = create_engine(
                database_url,
                echo=echo,
                poolclass=StaticPool,
                connect_args=connect_args,
            )
        else:
            _engine = create_engine(
                database_url,
                echo=echo,
                poolclass=QueuePool,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                connect_args=connect_args,
            )
        _install_sqlite_transaction_control(_engine)
    else:
        dialect = "postgresql"
        _engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)
    register_immutability_listeners()

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": dialect,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )

    return _engine

def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("no engine; call init_engine_from_url() first")
    return _SessionFactory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("no engine; call init_engine_from_url() first")
    return _engine


def get_session() -> Session:
    return _require_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """The shared factory; worker threads each open their own session from it."""
    return _require_factory()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    One committed unit of work.

    Commits and closes on a clean exit.  Any exception rolls the session
    back, is logged as ``transaction_rolled_back`` and propagates.

        with session_scope() as session:
            WalletLedger(session, policy).top_up(account_id, 100, actor_id)
    """
    session = (factory or _require_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _metadata():
    from market_kernel.db.base import Base
    import market_kernel.models  # noqa: F401  (registers every table)

    return Base.metadata


def create_tables() -> None:
    metadata = _metadata()
    metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(metadata.sorted_tables)})


def drop_tables() -> None:
    """Test helper: drops every marketplace table."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    global _engine, _SessionFactory
    engine, _engine, _SessionFactory = _engine, None, None
    if engine is not None:
        engine.dispose()


atexit.register(reset_engine)
