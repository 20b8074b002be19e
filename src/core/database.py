"""Database connection and document store management.

This module creates the SQLAlchemy engine that backs the document store.
"""

import threading
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from config import DATA_DIR, DOCUMENT_DB_URL, SQLITE_BUSY_TIMEOUT
from models.base import Base
# Import models to ensure they are registered with Base.metadata
import models  # noqa: F401
from utils.document_store import DocumentStore

_store_instance: Optional[DocumentStore] = None
_store_lock = threading.Lock()


def create_db_engine(url: str = DOCUMENT_DB_URL) -> Engine:
    """Create an engine whose transactions take the write lock up front.

    pysqlite defers BEGIN until the first DML statement, which lets two
    commits validate the same snapshot. Emitting BEGIN IMMEDIATE ourselves
    serializes commit-time validation and writes.

    Args:
        url: SQLAlchemy database URL.

    Returns:
        Configured Engine.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    engine = create_engine(
        url,
        connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


def get_store() -> DocumentStore:
    """Dependency returning the process-wide document store."""
    global _store_instance
    if _store_instance is None:
        with _store_lock:
            if _store_instance is None:
                DATA_DIR.mkdir(parents=True, exist_ok=True)
                engine = create_db_engine()
                init_db(engine)
                _store_instance = DocumentStore(engine)
    return _store_instance
