"""Database engine creation.

Engines are cached per connection string so that every test class that
builds a registry for the same database shares one connection pool.
"""
from __future__ import annotations

from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import Connection, Engine
from sqlmodel import create_engine

from db_testsets.config import DatabaseConfig


# Engine cache, keyed by connection string
_engines: dict[str, Engine] = {}


def create_sqlite_engine(db_path: Path) -> Engine:
    """Create a SQLite engine.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        SQLAlchemy Engine connected to the SQLite database.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return get_engine(f"sqlite:///{db_path}")


def get_engine(connection_string: str) -> Engine:
    """Return the cached engine for a connection string, creating it if needed.

    Args:
        connection_string: SQLAlchemy URL.

    Returns:
        SQLAlchemy Engine for that URL.
    """
    engine = _engines.get(connection_string)
    if engine is None:
        # pool_pre_ping: a test database may be recreated between runs
        engine = create_engine(connection_string, echo=False, pool_pre_ping=True)
        if engine.dialect.driver == "pysqlite":
            _use_explicit_sqlite_transactions(engine)
        _engines[connection_string] = engine
    return engine


def _use_explicit_sqlite_transactions(engine: Engine) -> None:
    """Make pysqlite honor SAVEPOINT inside a transaction.

    The driver normally starts transactions on its own, only before DML, so a
    SAVEPOINT issued first opens the transaction and releasing it commits.
    Here the driver stays in autocommit mode and SQLAlchemy emits BEGIN.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(connection: Connection) -> None:
        if connection.get_execution_options().get("isolation_level") != "AUTOCOMMIT":
            connection.exec_driver_sql("BEGIN")


def create_engine_from_config(config: DatabaseConfig) -> Engine:
    """Create a database engine based on configuration.

    Args:
        config: Database configuration.

    Returns:
        SQLAlchemy Engine for the configured database.

    Raises:
        ValueError: If the configuration is invalid.
    """
    config.validate()

    if config.db_type == "sqlite":
        return create_sqlite_engine(config.sqlite_path)
    return get_engine(config.connection_string())


def dispose_engines() -> None:
    """Dispose and forget all cached engines."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()
