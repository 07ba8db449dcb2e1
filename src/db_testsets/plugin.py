"""pytest plugin: test set markers and per-test database fixtures.

Mark tests, classes or modules with the test set to start from and how to
clean up afterwards; the most specific mark wins, field by field:

    pytestmark = pytest.mark.database_test_set("Products")

    @pytest.mark.database_test_set(cleanup="by_reinitialize")
    def test_import_commits_its_own_transactions(db_session): ...

Define test sets by overriding the `db_test_sets` fixture.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from sqlmodel import Session

from db_testsets.config import DatabaseConfig
from db_testsets.lifecycle import LifecycleController, TestSetCache
from db_testsets.models import CleanupPolicy, Declaration, TestIdentity
from db_testsets.registry import TestSetRegistry
from db_testsets.resolver import DeclarationTable, SettingsResolver


MARKER = "database_test_set"

_declarations_key = pytest.StashKey[DeclarationTable]()


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        f"{MARKER}(name=None, cleanup=None): test set to apply before the test and how to "
        "undo its changes (none, by_rollback, by_reinitialize)",
    )
    config.stash[_declarations_key] = DeclarationTable()


def declaration_from_mark(mark: pytest.Mark) -> Declaration:
    """Read `database_test_set(name, cleanup)` arguments, positional or keyword."""
    args = list(mark.args)
    name = args.pop(0) if args else mark.kwargs.get("name")
    cleanup = args.pop(0) if args else mark.kwargs.get("cleanup")
    return Declaration(test_set_name=name, cleanup=CleanupPolicy.parse(cleanup))


def identity_for(item: pytest.Item) -> TestIdentity:
    """Build the stable identity of a collected test function."""
    callspec = getattr(item, "callspec", None)
    return TestIdentity(
        module=item.module.__name__,
        class_name=item.cls.__qualname__ if item.cls is not None else None,
        function=item.originalname,
        variant=callspec.id if callspec is not None else None,
    )


def register_item(table: DeclarationTable, item: pytest.Function) -> TestIdentity:
    """Record a test and the marks on its function, class and module."""
    identity = identity_for(item)
    method: list[Declaration] = []
    klass: list[Declaration] = []
    suite: list[Declaration] = []
    # Closest node first: function, class, module, package.
    for node, mark in item.iter_markers_with_node(name=MARKER):
        try:
            declaration = declaration_from_mark(mark)
        except ValueError as exc:
            raise pytest.UsageError(f"{item.nodeid}: {exc}") from exc
        if isinstance(node, pytest.Function):
            method.append(declaration)
        elif isinstance(node, pytest.Class):
            klass.append(declaration)
        else:
            suite.append(declaration)

    table.declare_method(identity, method)
    if identity.class_name:
        table.declare_class(identity.module, identity.class_name, klass)
    table.declare_suite(identity.module, suite)
    table.register_test(identity)
    return identity


def pytest_collection_modifyitems(
    session: pytest.Session, config: pytest.Config, items: list[pytest.Item]
) -> None:
    table = config.stash[_declarations_key]
    for item in items:
        if isinstance(item, pytest.Function):
            register_item(table, item)


@pytest.fixture(scope="session")
def db_state_cache() -> TestSetCache:
    """Remembers the test set and cleanup policy of the previous test."""
    return TestSetCache()


@pytest.fixture(scope="session")
def db_test_sets() -> TestSetRegistry:
    """Registry of test sets; override this fixture to define them."""
    return TestSetRegistry.from_config(DatabaseConfig.from_env())


@pytest.fixture
def db_lifecycle(
    request: pytest.FixtureRequest,
    db_test_sets: TestSetRegistry,
    db_state_cache: TestSetCache,
) -> Iterator[LifecycleController]:
    """Bring the database into the test's test set and clean up afterwards."""
    resolver = SettingsResolver(request.config.stash[_declarations_key])
    controller = LifecycleController(db_test_sets, resolver, db_state_cache)
    controller.initialize(identity_for(request.node))
    try:
        yield controller
    finally:
        controller.cleanup()


@pytest.fixture
def db_session(db_lifecycle: LifecycleController) -> Session:
    """The test's database session."""
    return db_lifecycle.session
