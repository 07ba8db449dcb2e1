from __future__ import annotations

import logging

import pytest
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from db_testsets.exceptions import GuardReleaseError
from db_testsets.registry import TestSetRegistry
from db_testsets.transaction import (
    TransactionGuard,
    detach_if_aborted,
    execute_scalar,
    guarded_session,
    row_count,
)

from sample_models import Product


@pytest.fixture
def connection(registry: TestSetRegistry, engine: Engine):
    registry.apply("Default")
    with engine.connect() as connection:
        yield connection


@pytest.fixture
def guard(connection: Connection) -> TransactionGuard:
    return TransactionGuard(connection)


@pytest.fixture
def session(guard: TransactionGuard):
    with guarded_session(guard) as session:
        yield session


def _committed_count(engine: Engine) -> int:
    with Session(engine) as other:
        return row_count(other, "product")


def test_rollback_undoes_flushed_changes(guard: TransactionGuard, session: Session, engine: Engine) -> None:
    session.add(Product(name="Kiwi", price=5))
    session.flush()
    assert row_count(session, "product") == 3

    guard.rollback()

    assert guard.released
    assert _committed_count(engine) == 2


def test_rollback_undoes_session_commits(guard: TransactionGuard, session: Session, engine: Engine) -> None:
    session.add(Product(name="Kiwi", price=5))
    session.commit()
    session.add(Product(name="Plum", price=3))
    session.commit()
    assert row_count(session, "product") == 4
    assert guard.is_active

    guard.rollback()

    assert _committed_count(engine) == 2


def test_session_rollback_stays_inside_guard(guard: TransactionGuard, session: Session) -> None:
    session.add(Product(name="Kiwi", price=5))
    session.commit()
    session.add(Product(name="Plum", price=3))
    session.flush()

    session.rollback()

    assert guard.is_active
    assert row_count(session, "product") == 3


def test_context_manager_rolls_back(connection: Connection, engine: Engine) -> None:
    with TransactionGuard(connection) as guard:
        assert guard.is_active
        with guarded_session(guard) as session:
            session.add(Product(name="Kiwi", price=5))
            session.commit()

    assert not guard.is_active
    assert _committed_count(engine) == 2


def test_commit_keeps_changes(guard: TransactionGuard, session: Session, engine: Engine) -> None:
    session.add(Product(name="Kiwi", price=5))
    session.commit()

    guard.commit()

    assert _committed_count(engine) == 3


def test_release_happens_once(guard: TransactionGuard, session: Session, engine: Engine) -> None:
    session.add(Product(name="Kiwi", price=5))
    session.commit()

    guard.rollback()
    guard.close()
    guard.commit()

    assert _committed_count(engine) == 2


def test_transaction_ended_on_the_connection(
    guard: TransactionGuard, connection: Connection, engine: Engine, caplog: pytest.LogCaptureFixture
) -> None:
    connection.exec_driver_sql("INSERT INTO product (id, name, price) VALUES (3, 'Kiwi', 5)")
    connection.commit()

    with caplog.at_level(logging.WARNING, logger="db_testsets.transaction"):
        guard.rollback()

    assert "already ended outside the guard" in caplog.text
    assert _committed_count(engine) == 3


def test_failed_release_raises_guard_release_error(
    guard: TransactionGuard, monkeypatch: pytest.MonkeyPatch
) -> None:
    def broken_rollback(self, *args, **kwargs) -> None:
        raise SQLAlchemyError("connection lost")

    monkeypatch.setattr(type(guard._transaction), "rollback", broken_rollback)

    with pytest.raises(GuardReleaseError, match="rollback failed") as excinfo:
        guard.rollback()

    assert isinstance(excinfo.value.__cause__, SQLAlchemyError)


def test_detach_is_noop_for_healthy_session(guard: TransactionGuard, session: Session) -> None:
    session.add(Product(name="Kiwi", price=5))
    session.flush()

    assert detach_if_aborted(session) is False
    assert row_count(session, "product") == 3


def test_query_after_failed_flush(guard: TransactionGuard, session: Session, engine: Engine) -> None:
    session.add(Product(name="Kiwi", price=5))
    session.flush()
    session.add(Product(name="Apple", price=1))
    with pytest.raises(IntegrityError):
        session.flush()
    assert not session.get_transaction().is_active

    assert row_count(session, "product") == 2
    assert execute_scalar(session, "SELECT name FROM product WHERE id = :id", {"id": 2}) == "Pear"
    assert guard.is_active

    session.add(Product(name="Plum", price=3))
    session.commit()
    guard.rollback()

    assert _committed_count(engine) == 2


def test_detach_on_unguarded_session(registry: TestSetRegistry, engine: Engine) -> None:
    registry.apply("Default")
    with Session(engine) as session:
        session.add(Product(name="Apple", price=1))
        with pytest.raises(IntegrityError):
            session.flush()

        assert detach_if_aborted(session) is True
        assert row_count(session, "product") == 2
