"""Database engine/session helpers."""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from models.base import Base

SQLITE_BUSY_TIMEOUT_SECONDS = 30.0


def create_db_engine(db_url: str) -> Engine:
    """Create a SQLAlchemy engine with conservative defaults for scripts.

    SQLite engines open every transaction with ``BEGIN IMMEDIATE`` so that
    concurrent writers serialize on the database lock instead of racing on
    read-then-write sequences. PostgreSQL relies on row locks taken with
    ``SELECT ... FOR UPDATE`` instead.
    """
    if db_url.startswith("sqlite"):
        engine = create_engine(
            db_url,
            future=True,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
        )
        _install_sqlite_transaction_hooks(engine)
        return engine
    return create_engine(db_url, pool_pre_ping=True, future=True)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create a session factory bound to the provided engine."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)


def ensure_schema(engine: Engine) -> None:
    """Create all engine tables and indexes if they do not exist."""
    with engine.begin() as connection:
        Base.metadata.create_all(bind=connection, checkfirst=True)


def _install_sqlite_transaction_hooks(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, _connection_record: Any) -> None:
        # Hand transaction control to SQLAlchemy so the BEGIN below is the only one emitted.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(connection: Any) -> None:
        connection.exec_driver_sql("BEGIN IMMEDIATE")
