"""
Database configuration and session management.
"""
import os
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from playersync.core.config import settings

DATABASE_URL = settings.DATABASE_URL


def _engine_options(url: str) -> dict:
    """Pool options per backend; SQLite gets its default pool and cross-thread access."""
    echo = os.getenv("SQL_ECHO", "false").lower() == "true"
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "echo": echo}
    return {
        "poolclass": QueuePool,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,  # Verify connections before using
        "echo": echo,
    }


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Provide a database session and close it afterwards.

    Usage:
    ```python
    db = next(get_db())
    ```
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database tables."""
    from playersync.models import Base
    # checkfirst=True will only create tables that don't exist
    Base.metadata.create_all(bind=engine, checkfirst=True)


def enable_sqlite_savepoints(target_engine) -> None:
    """
    Let pysqlite honour SAVEPOINT.

    pysqlite defers BEGIN until the first DML statement, which breaks
    ``Session.begin_nested()``. Take over transaction control so nested
    transactions roll back as on PostgreSQL.
    """
    @event.listens_for(target_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(target_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)
