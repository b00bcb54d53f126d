"""
Module: settlement_kernel.db.engine
Responsibility: the process-wide engine and session factory.  The single
    place where database connectivity is configured.
Architecture position: Kernel > DB.  Imports db/base.py; imports the model
    registry lazily inside create_tables()/drop_tables().

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED with explicit ``FOR UPDATE`` row
      locks on Container, ContainerItem, Sale and FinancialPeriod.
    - SQLite (local runs and tests) gets pysqlite's implicit transaction
      handling replaced by explicit BEGIN so SAVEPOINTs nest correctly,
      and foreign keys switched on.
    - Sessions never expire attributes on commit.
    - Immutability guards are installed whenever an engine is.

Failure modes:
    - RuntimeError if a session is requested before init_engine_from_url().
    - OperationalError / pool timeouts propagate unchanged.
"""

import atexit

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from settlement_kernel.db.immutability import register_immutability_listeners
from settlement_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _is_memory_url(database_url: str) -> bool:
    return ":memory:" in database_url or database_url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:")


def _sqlite_engine(database_url: str, echo: bool) -> Engine:
    # One shared connection for in-memory databases, otherwise each
    # connection would see its own empty database.
    pool = {"poolclass": StaticPool} if _is_memory_url(database_url) else {}
    engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False},
        **pool,
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def _server_engine(database_url: str, echo: bool, pool_options: dict) -> Engine:
    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_pre_ping=True,
        isolation_level="READ COMMITTED",
        **pool_options,
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Build the engine for ``database_url`` and bind the session factory.

    Pool options only apply to server databases.  Calling again replaces
    the previous engine.
    """
    global _engine, _SessionFactory

    if database_url.startswith("sqlite"):
        _engine = _sqlite_engine(database_url, echo)
    else:
        _engine = _server_engine(
            database_url,
            echo,
            {
                "pool_size": pool_size,
                "max_overflow": max_overflow,
                "pool_timeout": pool_timeout,
                "pool_recycle": pool_recycle,
            },
        )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    register_immutability_listeners()
    logger.info("engine_initialized", extra={"dialect": _engine.dialect.name})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("No database engine; call init_engine_from_url() first")
    return _engine


def get_session() -> Session:
    """A new session on the current engine.  Callers own commit and close."""
    if _SessionFactory is None:
        raise RuntimeError("No database engine; call init_engine_from_url() first")
    return _SessionFactory()


def create_tables() -> None:
    """Create every settlement table (models are imported first)."""
    from settlement_kernel.db.base import Base
    from settlement_kernel.models import import_all_models

    import_all_models()
    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables() -> None:
    from settlement_kernel.db.base import Base
    from settlement_kernel.models import import_all_models

    import_all_models()
    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


atexit.register(reset_engine)
