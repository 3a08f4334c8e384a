"""
Module: capital_kernel.db.engine
Responsibility: SQLAlchemy engine construction, session factory creation, and
    the transactional scope used by every financial mutation.
Architecture position: Kernel > DB.  May import from db/base.py.
    MUST NOT import from services/, selectors/, or domain/.

Invariants enforced:
    - No process-wide engine or session handle.  Engines and session factories
      are created explicitly and passed to the orchestrator, which opens one
      session_scope() per operation.
    - PostgreSQL runs at READ COMMITTED with QueuePool and pre-ping; row-level
      locking (FOR UPDATE) supplies the stronger guarantees where needed.
    - SQLite is accepted for local runs and the test suite.  It has no
      row locks, so concurrent-writer guarantees are PostgreSQL-only.

Failure modes:
    - OperationalError when the database is unreachable.
    - Any exception inside session_scope() rolls the transaction back and
      propagates unchanged.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from capital_kernel.logging_config import get_logger

logger = get_logger("db.engine")


def create_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create a SQLAlchemy engine for the given database URL.

    Args:
        database_url: PostgreSQL or SQLite connection URL.
        echo: If True, log all SQL statements.
        pool_size: Number of connections to keep in the pool (PostgreSQL).
        max_overflow: Max connections beyond pool_size (PostgreSQL).
        pool_pre_ping: If True, test connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.

    Returns:
        SQLAlchemy Engine instance.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": pool_timeout},
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        dialect = "sqlite"
    else:
        engine = create_engine(
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
        dialect = engine.dialect.name

    logger.info(
        "engine_initialized",
        extra={
            "dialect": dialect,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """
    Build the session factory handed to the orchestrator.

    Objects stay readable after commit (expire_on_commit=False) so DTOs can
    be built from them once the transaction has closed.
    """
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed.  The exception
        is re-raised to the caller.

    Usage:
        with session_scope(factory) as session:
            session.add(entity)
            # Commits on successful exit, rolls back on exception
    """
    session = session_factory()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """
    Create all tables defined in the models.

    All ORM models are imported here so Base.metadata discovers them.
    """
    from capital_kernel.db.base import Base
    import capital_kernel.models  # noqa: F401

    Base.metadata.create_all(engine)


def drop_tables(engine: Engine) -> None:
    """
    Drop all tables. Use with caution - primarily for testing.
    """
    from capital_kernel.db.base import Base
    import capital_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine)


def clear_tables(engine: Engine) -> None:
    """Delete every row from every table, children first.  FOR TESTING ONLY."""
    from capital_kernel.db.base import Base
    import capital_kernel.models  # noqa: F401

    table_names = [t.name for t in reversed(Base.metadata.sorted_tables)]
    if not table_names:
        return
    with engine.begin() as conn:
        if engine.dialect.name == "postgresql":
            conn.execute(text("TRUNCATE " + ", ".join(table_names) + " CASCADE"))
        else:
            for name in table_names:
                conn.execute(text(f"DELETE FROM {name}"))


def is_postgres(engine: Engine) -> bool:
    """Check if the engine is PostgreSQL."""
    return engine.dialect.name == "postgresql"
