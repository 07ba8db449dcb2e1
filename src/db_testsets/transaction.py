"""Transaction guards and verification queries for test sessions."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from db_testsets.exceptions import GuardReleaseError


logger = logging.getLogger(__name__)


class TransactionGuard:
    """Owns the encapsulating transaction of a connection and releases it once.

    Sessions opened with `guarded_session()` work on savepoints inside this
    transaction: their `commit()` releases a savepoint and their `rollback()`
    returns to one, so rolling the guard back undoes everything they wrote,
    committed or not.

    Leaving the `with` block, or calling `close()`, rolls back unless the
    guard was already released. A transaction that was committed or rolled
    back on the connection directly is no longer the guard's to release;
    that is logged and otherwise ignored.
    """

    def __init__(self, connection: Connection) -> None:
        self._connection = connection
        self._transaction = connection.begin()
        self._released = False

    @property
    def connection(self) -> Connection:
        return self._connection

    @property
    def released(self) -> bool:
        return self._released

    @property
    def is_active(self) -> bool:
        """True while the guarded transaction is open and not aborted."""
        return not self._released and self._transaction.is_active

    def rollback(self) -> None:
        self._release(commit=False)

    def commit(self) -> None:
        self._release(commit=True)

    def close(self) -> None:
        self._release(commit=False)

    def __enter__(self) -> TransactionGuard:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _release(self, *, commit: bool) -> None:
        if self._released:
            return
        self._released = True

        if self._connection.get_transaction() is not self._transaction:
            logger.warning(
                "Guarded transaction was already ended outside the guard; "
                "changes made in it are not rolled back"
            )
            return

        action = "commit" if commit else "rollback"
        try:
            if commit:
                self._transaction.commit()
            else:
                self._transaction.rollback()
        except SQLAlchemyError as exc:
            raise GuardReleaseError(f"Transaction guard {action} failed: {exc}") from exc


def guarded_session(guard: TransactionGuard) -> Session:
    """Open a session that joins the guard's transaction through a savepoint."""
    return Session(bind=guard.connection, join_transaction_mode="create_savepoint")


def detach_if_aborted(session: Session) -> bool:
    """Take a session out of its transaction if that transaction is aborted.

    After the code under test fails, the session refuses further statements
    until its transaction is rolled back. This rolls it back so read-only
    verification queries can run. It cannot be undone: unflushed and
    uncommitted work of the session is discarded. On a guarded session only
    the current savepoint is rolled back, so later writes are still undone
    by the guard; on any other session they are not covered by a cleanup
    rollback.

    Returns:
        True if the session was detached.
    """
    transaction = session.get_transaction()
    if transaction is None or transaction.is_active:
        return False

    logger.warning(
        "Session transaction is aborted; rolling the session back so it can run "
        "verification queries"
    )
    session.rollback()
    return True


def execute_scalar(session: Session, sql: str, params: dict[str, Any] | None = None) -> Any:
    """Execute SQL on the session and return the first column of the first row."""
    detach_if_aborted(session)
    return session.connection().execute(text(sql), params or {}).scalar()


def row_count(session: Session, table_name: str) -> int:
    """Return the current number of rows in a table."""
    preparer = session.get_bind().dialect.identifier_preparer
    return int(execute_scalar(session, f"SELECT COUNT(1) FROM {preparer.quote(table_name)}"))
