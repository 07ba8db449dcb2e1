"""Named collection of test sets for one database."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from sqlalchemy.engine import Connection, Engine

from db_testsets.builder import TestSetBuilder
from db_testsets.config import DatabaseConfig
from db_testsets.db import create_engine_from_config, get_engine
from db_testsets.exceptions import UnknownTestSetError
from db_testsets.testset import TestSet


logger = logging.getLogger(__name__)


class TestSetRegistry:
    """Defines test sets by name and applies them to the database.

    Names are case-insensitive. Defining a name twice replaces the earlier
    test set.

    Args:
        connection_string: SQLAlchemy URL of the test database.
        atomic_apply: When False (default) each batch is committed as it
            runs, so batches before a failing one stay applied. When True
            the whole apply is a single transaction, rolled back on failure.
        engine: Engine to use instead of the cached one for the URL.
    """

    __test__ = False

    def __init__(
        self,
        connection_string: str,
        *,
        atomic_apply: bool = False,
        engine: Engine | None = None,
    ) -> None:
        self._connection_string = connection_string
        self._atomic_apply = atomic_apply
        self._engine = engine
        # casefolded name -> (name as defined, test set)
        self._test_sets: dict[str, tuple[str, TestSet]] = {}

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> TestSetRegistry:
        return cls(
            config.connection_string(),
            atomic_apply=config.atomic_apply,
            engine=create_engine_from_config(config),
        )

    @property
    def connection_string(self) -> str:
        return self._connection_string

    @property
    def atomic_apply(self) -> bool:
        return self._atomic_apply

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_engine(self._connection_string)
        return self._engine

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self._test_sets.values()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.casefold() in self._test_sets

    def __len__(self) -> int:
        return len(self._test_sets)

    def define(self, name: str, setup: Callable[[TestSetBuilder], TestSet]) -> TestSet:
        """Build a test set and store it under `name`.

        Args:
            name: Test set name, matched case-insensitively.
            setup: Called with a `TestSetBuilder`; must return a built `TestSet`.

        Raises:
            TypeError: If `setup` returns something other than a `TestSet`,
                such as a builder whose `build()` was never called.
        """
        test_set = setup(TestSetBuilder())
        if not isinstance(test_set, TestSet):
            hint = " (did you forget to call build()?)" if hasattr(test_set, "build") else ""
            raise TypeError(
                f'Test set "{name}" setup returned {type(test_set).__name__}, not a TestSet{hint}'
            )

        key = name.casefold()
        if key in self._test_sets:
            logger.warning('Redefining test set "%s"; the previous definition is replaced', name)
        self._test_sets[key] = (name, test_set)
        return test_set

    def get(self, name: str) -> TestSet:
        """Return the test set defined under `name`.

        Raises:
            UnknownTestSetError: If no test set has that name.
        """
        try:
            return self._test_sets[name.casefold()][1]
        except KeyError:
            raise UnknownTestSetError(f'No test set found with name "{name}".') from None

    def apply(self, test_set: str | TestSet) -> None:
        """Apply a test set, given by name or directly, on a fresh connection.

        Raises:
            UnknownTestSetError: If a name is given that was never defined.
        """
        if isinstance(test_set, str):
            test_set = self.get(test_set)

        with self._connect() as connection:
            if self._atomic_apply:
                with connection.begin():
                    test_set.apply(connection)
            else:
                test_set.apply(connection)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        connection = self.engine.connect()
        try:
            if not self._atomic_apply:
                connection = connection.execution_options(isolation_level="AUTOCOMMIT")
            yield connection
        finally:
            connection.close()
