"""Per-test lifecycle: apply test sets, guard the test, clean up afterwards.

Before a test the controller resolves the test's settings, reapplies the
test set only when the database may not already be in that state, and opens
a transaction guard on a dedicated connection for tests cleaned up by
rollback; the test's session joins it through savepoints, so even the test's
own commits are undone. After the test it closes the session and rolls the
guard back.

Whether reapplication is needed depends on the previous test, so that memory
lives in a `TestSetCache` shared by all controllers of one test run.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy.engine import Connection
from sqlmodel import Session

from db_testsets.exceptions import GuardReleaseError, LifecycleStateError
from db_testsets.models import CleanupPolicy, EffectiveSettings, TestIdentity
from db_testsets.registry import TestSetRegistry
from db_testsets.resolver import SettingsResolver
from db_testsets.transaction import TransactionGuard, execute_scalar, guarded_session, row_count


logger = logging.getLogger(__name__)


@dataclass
class TestSetCache:
    """What the previous test left behind in the database.

    One instance per test run. It has no locking: tests running in parallel
    against one database each need their own database and their own cache.
    """

    __test__ = False

    previous_test_set_name: str | None = None
    previous_cleanup: CleanupPolicy = CleanupPolicy.NONE

    def needs_reapply(self, test_set_name: str) -> bool:
        """A test set must be applied unless the previous test used the same
        one and did not leave unreverted changes behind."""
        return (
            test_set_name != self.previous_test_set_name
            or self.previous_cleanup is CleanupPolicy.BY_REINITIALIZE
        )

    def remember(self, settings: EffectiveSettings) -> None:
        self.previous_test_set_name = settings.test_set_name
        self.previous_cleanup = settings.cleanup

    def invalidate(self) -> None:
        """Forget the database state so the next test always reapplies."""
        self.previous_test_set_name = None
        self.previous_cleanup = CleanupPolicy.BY_REINITIALIZE


class LifecycleState(str, Enum):
    IDLE = "idle"
    INITIALIZED = "initialized"
    CLEANED_UP = "cleaned_up"


class LifecycleController:
    """Drives one test through initialize and cleanup.

    Args:
        registry: Test sets of the database under test.
        resolver: Resolves a test identity to its effective settings.
        cache: Remembered state of the test run.
        output: Receives progress lines; defaults to the module logger.
    """

    def __init__(
        self,
        registry: TestSetRegistry,
        resolver: SettingsResolver,
        cache: TestSetCache,
        *,
        output: Callable[[str], None] | None = None,
    ) -> None:
        self._registry = registry
        self._resolver = resolver
        self._cache = cache
        self._output = output or logger.info

        self._state = LifecycleState.IDLE
        self._settings: EffectiveSettings | None = None
        self._session: Session | None = None
        self._connection: Connection | None = None
        self._guard: TransactionGuard | None = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def settings(self) -> EffectiveSettings | None:
        return self._settings

    @property
    def guard(self) -> TransactionGuard | None:
        return self._guard

    @property
    def session(self) -> Session:
        if self._session is None:
            raise LifecycleStateError("No test session; call initialize() first.")
        return self._session

    def initialize(self, identity: TestIdentity) -> Session:
        """Prepare the database for a test and return the test's session.

        Raises:
            LifecycleStateError: If the previous test was not cleaned up.
            ResolutionError: If the identity cannot be resolved.
            UnknownTestSetError: If the resolved test set was never defined.
        """
        if self._state is LifecycleState.INITIALIZED:
            raise LifecycleStateError(
                f"Cannot initialize {identity}: the previous test was not cleaned up."
            )

        settings = self._resolver.resolve(identity)

        if self._cache.needs_reapply(settings.test_set_name):
            self._output(f'Applying TestSet "{settings.test_set_name}"...')
            try:
                self._registry.apply(settings.test_set_name)
            except Exception:
                # The database is in an unknown state now.
                self._cache.invalidate()
                raise

        if settings.cleanup is CleanupPolicy.BY_ROLLBACK:
            self._output("Beginning encapsulating transaction...")
            connection = self._registry.engine.connect()
            try:
                guard = TransactionGuard(connection)
            except Exception:
                connection.close()
                raise
            session = guarded_session(guard)
        else:
            connection = guard = None
            session = Session(self._registry.engine)

        self._cache.remember(settings)
        self._settings = settings
        self._session = session
        self._connection = connection
        self._guard = guard
        self._state = LifecycleState.INITIALIZED
        return session

    def cleanup(self) -> None:
        """Undo the test's changes (rollback policy) and close its session.

        Safe to call more than once; only the first call after initialize()
        does anything.

        Raises:
            GuardReleaseError: If the rollback failed. The session and the
                guarded connection are closed regardless.
        """
        if self._state is not LifecycleState.INITIALIZED:
            return

        guard, session, connection = self._guard, self._session, self._connection
        self._guard = None
        self._session = None
        self._connection = None
        self._state = LifecycleState.CLEANED_UP

        try:
            if session is not None:
                session.close()
            if guard is not None:
                self._output("Rolling back encapsulating transaction...")
                guard.rollback()
        except GuardReleaseError:
            logger.exception("Cleanup rollback failed; the database may keep this test's changes")
            self._cache.invalidate()
            raise
        finally:
            if connection is not None:
                connection.close()

    @contextmanager
    def managed(self, identity: TestIdentity) -> Iterator[Session]:
        """Run initialize() and cleanup() around a block."""
        session = self.initialize(identity)
        try:
            yield session
        finally:
            self.cleanup()

    def execute_scalar(self, sql: str, params: dict[str, Any] | None = None) -> Any:
        """Run a verification query on the test's session.

        Works even after the code under test aborted the session's
        transaction, at the price of discarding the session's pending work.
        """
        return execute_scalar(self.session, sql, params)

    def row_count(self, table_name: str) -> int:
        return row_count(self.session, table_name)
