"""Resolve the effective test set settings for a test.

Declarations live on three scopes: the suite (a test module), the test class
and the test method. They are recorded explicitly in a `DeclarationTable` by
whatever drives the tests (the pytest plugin does so at collection time), and
merged by a pure function: the most specific declaration that sets a field
wins, and each field is resolved independently.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from db_testsets.exceptions import AmbiguousMethodError, MethodNotFoundError
from db_testsets.models import (
    DEFAULT_TEST_SET_NAME,
    CleanupPolicy,
    Declaration,
    EffectiveSettings,
    TestIdentity,
)


FALLBACK_DECLARATION = Declaration(
    test_set_name=DEFAULT_TEST_SET_NAME,
    cleanup=CleanupPolicy.BY_ROLLBACK,
)


def resolve_effective_settings(declarations: Iterable[Declaration]) -> EffectiveSettings:
    """Merge declarations ordered from most to least specific.

    Args:
        declarations: Method, then class, then suite declarations. Any scope
            may contribute zero or more entries.

    Returns:
        The first non-null test set name and, independently, the first
        non-INHERITED cleanup policy, falling back to ("Default", BY_ROLLBACK).
    """
    chain = [*declarations, FALLBACK_DECLARATION]
    test_set_name = next(d.test_set_name for d in chain if d.test_set_name is not None)
    cleanup = next(d.cleanup for d in chain if d.cleanup is not CleanupPolicy.INHERITED)
    return EffectiveSettings(test_set_name=test_set_name, cleanup=cleanup)


class DeclarationTable:
    """Registration table mapping tests to their layered declarations."""

    def __init__(self) -> None:
        self._suites: dict[str, tuple[Declaration, ...]] = {}
        self._classes: dict[tuple[str, str], tuple[Declaration, ...]] = {}
        self._methods: dict[TestIdentity, tuple[Declaration, ...]] = {}
        self._tests: set[TestIdentity] = set()

    def declare_suite(self, module: str, declarations: Sequence[Declaration]) -> None:
        self._suites[module] = tuple(declarations)

    def declare_class(
        self, module: str, class_name: str, declarations: Sequence[Declaration]
    ) -> None:
        self._classes[(module, class_name)] = tuple(declarations)

    def declare_method(self, identity: TestIdentity, declarations: Sequence[Declaration]) -> None:
        self._methods[identity] = tuple(declarations)

    def register_test(self, identity: TestIdentity) -> None:
        """Record that `identity` is a concrete, invocable test."""
        self._tests.add(identity)

    def is_registered(self, identity: TestIdentity) -> bool:
        return identity in self._tests

    def __len__(self) -> int:
        return len(self._tests)

    def declarations_for(self, identity: TestIdentity) -> list[Declaration]:
        """Return the declarations for a test, most specific first."""
        chain: list[Declaration] = list(self._methods.get(identity, ()))
        if identity.class_name:
            chain.extend(self._classes.get((identity.module, identity.class_name), ()))
        chain.extend(self._suites.get(identity.module, ()))
        return chain

    def find(self, qualified_class_name: str, method_name: str) -> TestIdentity:
        """Locate a registered test by runner-style names.

        Args:
            qualified_class_name: e.g. "tests.test_products.TestProducts".
            method_name: Test function name, without parametrization id.

        Raises:
            MethodNotFoundError: If no registered test matches.
            AmbiguousMethodError: If several parametrized variants match.
        """
        matches = [
            t
            for t in self._tests
            if t.qualified_class_name == qualified_class_name and t.function == method_name
        ]
        if not matches:
            raise MethodNotFoundError(
                f'Couldn\'t locate the method "{method_name}" on "{qualified_class_name}".'
            )
        if len(matches) > 1:
            variants = ", ".join(sorted(str(m) for m in matches))
            raise AmbiguousMethodError(
                f'"{qualified_class_name}.{method_name}" matches {len(matches)} tests: {variants}'
            )
        return matches[0]


class SettingsResolver:
    """Compute effective settings for registered tests."""

    def __init__(self, table: DeclarationTable) -> None:
        self._table = table

    @property
    def table(self) -> DeclarationTable:
        return self._table

    def resolve(self, identity: TestIdentity) -> EffectiveSettings:
        """Resolve the settings for a test identity supplied by the runner.

        Raises:
            MethodNotFoundError: If the identity was never registered.
        """
        if not self._table.is_registered(identity):
            raise MethodNotFoundError(f"No registered test matches {identity}.")
        return resolve_effective_settings(self._table.declarations_for(identity))

    def resolve_by_name(self, qualified_class_name: str, method_name: str) -> EffectiveSettings:
        """Resolve settings from a class name and method name.

        Raises:
            MethodNotFoundError: If no registered test matches.
            AmbiguousMethodError: If the name matches several variants.
        """
        return self.resolve(self._table.find(qualified_class_name, method_name))
