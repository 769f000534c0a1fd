"""
Module: pantry_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    transactional scope utilities and the storage-error boundary for BOTH
    stores the kernel talks to (``inventory`` and ``quota``).
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/, selectors/ or domain/ (create_tables imports the
    models package lazily so metadata is populated).

Invariants enforced:
    - One engine and one session factory per store.  Sessions are never
      shared between stores, so no transaction can span them.
    - Every storage call carries a bounded timeout: pool checkout
      (``pool_timeout``), SQLite busy timeout, PostgreSQL ``statement_timeout``
      and ``connect_timeout``.  Nothing may hang its caller.
    - SQLite engines open every transaction with ``BEGIN IMMEDIATE`` so
      concurrent writers queue on the busy timeout instead of failing with a
      lock upgrade error, and SAVEPOINT works as documented.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory is called
      for a store before init_engine_from_url().
    - StorageUnavailableError (from storage_guard) on OperationalError,
      InterfaceError or pool TimeoutError.
"""

import atexit
from contextlib import contextmanager
from typing import Generator, Iterable

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from pantry_kernel.exceptions import StorageUnavailableError
from pantry_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

INVENTORY_STORE = "inventory"
QUOTA_STORE = "quota"
ALL_STORES = (INVENTORY_STORE, QUOTA_STORE)

# Module-level engines and session factories, keyed by store name
_engines: dict[str, Engine] = {}
_factories: dict[str, sessionmaker[Session]] = {}


def _install_sqlite_transaction_hooks(engine: Engine) -> None:
    """Let SQLAlchemy, not pysqlite, emit BEGIN (as BEGIN IMMEDIATE)."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine_from_url(
    database_url: str,
    store: str = INVENTORY_STORE,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    statement_timeout_seconds: float = 10.0,
) -> Engine:
    """
    Initialize the engine for one store from a database URL.

    Preconditions: database_url is a SQLAlchemy URL (PostgreSQL in
        production, SQLite for local runs and tests).
    Postconditions: the store's engine and session factory are registered.
        A second call for the same store disposes and replaces the first.

    Args:
        database_url: Connection URL.
        store: ``INVENTORY_STORE`` or ``QUOTA_STORE``.
        echo: If True, log all SQL statements.
        pool_size: Connections kept in the pool (server databases only).
        max_overflow: Max connections beyond pool_size.
        pool_pre_ping: Test connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.
        statement_timeout_seconds: Upper bound for a single statement
            (PostgreSQL) or for waiting on a database lock (SQLite).

    Returns:
        SQLAlchemy Engine instance.
    """
    if store not in ALL_STORES:
        raise ValueError(f"Unknown store {store!r}; expected one of {ALL_STORES}")

    previous = _engines.pop(store, None)
    if previous is not None:
        previous.dispose()

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={
                "timeout": statement_timeout_seconds,
                "check_same_thread": False,
            },
        )
        _install_sqlite_transaction_hooks(engine)
        dialect = "sqlite"
    else:
        timeout_ms = int(statement_timeout_seconds * 1000)
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
            connect_args={
                "connect_timeout": max(1, int(statement_timeout_seconds)),
                "options": f"-c statement_timeout={timeout_ms}",
            },
        )
        dialect = engine.dialect.name

    _engines[store] = engine
    _factories[store] = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "store": store,
            "dialect": dialect,
            "pool_size": pool_size,
            "echo": echo,
        },
    )

    return engine


def get_engine(store: str = INVENTORY_STORE) -> Engine:
    """
    Get the engine for a store.

    Raises:
        RuntimeError: If the store's engine has not been initialized.
    """
    engine = _engines.get(store)
    if engine is None:
        raise RuntimeError(
            f"Engine for store '{store}' not initialized. Call init_engine_from_url() first."
        )
    return engine


def get_session_factory(store: str = INVENTORY_STORE) -> sessionmaker[Session]:
    """
    Get the session factory for a store.

    Services receive a factory rather than a session because a checkout
    commits each cart line in its own transaction.

    Raises:
        RuntimeError: If the store's engine has not been initialized.
    """
    factory = _factories.get(store)
    if factory is None:
        raise RuntimeError(
            f"Engine for store '{store}' not initialized. Call init_engine_from_url() first."
        )
    return factory


def get_session(store: str = INVENTORY_STORE) -> Session:
    """Get a new session for a store."""
    return get_session_factory(store)()


@contextmanager
def storage_guard(store: str, operation: str) -> Generator[None, None, None]:
    """
    Translate driver-level availability failures into StorageUnavailableError.

    Integrity errors and programming errors are NOT translated; they are
    either handled by the caller (unique-key races) or are bugs.
    """
    try:
        yield
    except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
        logger.warning(
            "storage_unavailable",
            extra={"store": store, "operation": operation},
            exc_info=True,
        )
        raise StorageUnavailableError(store, operation, type(exc).__name__) from exc


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
    store: str = INVENTORY_STORE,
    operation: str = "transaction",
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed, and the exception
        is re-raised (availability failures as StorageUnavailableError).

    Usage:
        with session_scope(store=QUOTA_STORE) as session:
            session.add(entity)
    """
    session = (factory or get_session_factory(store))()
    logger.debug("transaction_started", extra={"store": store, "operation": operation})
    try:
        with storage_guard(store, operation):
            yield session
            session.commit()
        logger.debug("transaction_committed", extra={"store": store, "operation": operation})
    except Exception:
        session.rollback()
        logger.debug(
            "transaction_rolled_back",
            extra={"store": store, "operation": operation},
        )
        raise
    finally:
        session.close()


def create_tables(stores: Iterable[str] = ALL_STORES) -> None:
    """
    Create all tables for the given stores.

    Preconditions: engines for the requested stores are initialized.
    """
    from pantry_kernel import models  # noqa: F401  (registers all tables)
    from pantry_kernel.db.base import Base, QuotaBase

    metadata_by_store = {INVENTORY_STORE: Base.metadata, QUOTA_STORE: QuotaBase.metadata}
    for store in stores:
        metadata_by_store[store].create_all(get_engine(store))
        logger.info("tables_created", extra={"store": store})


def drop_tables(stores: Iterable[str] = ALL_STORES) -> None:
    """
    Drop all tables. Use with caution - primarily for testing.
    """
    from pantry_kernel import models  # noqa: F401
    from pantry_kernel.db.base import Base, QuotaBase

    metadata_by_store = {INVENTORY_STORE: Base.metadata, QUOTA_STORE: QuotaBase.metadata}
    for store in stores:
        metadata_by_store[store].drop_all(get_engine(store))


def reset_engine(store: str | None = None) -> None:
    """
    Dispose and forget engines (one store, or all).

    Useful for test cleanup.
    """
    for name in ([store] if store else list(_engines)):
        engine = _engines.pop(name, None)
        if engine is not None:
            engine.dispose()
        _factories.pop(name, None)


def _atexit_dispose():
    """Dispose engines on process exit to release all pooled connections."""
    for engine in list(_engines.values()):
        try:
            engine.dispose()
        except Exception:
            pass


atexit.register(_atexit_dispose)
