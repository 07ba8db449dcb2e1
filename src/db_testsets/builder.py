"""Builders that create test sets from SQL scripts.

A builder function passed to `TestSetRegistry.define` receives a
`TestSetBuilder` and must return a finished `TestSet`:

    registry.define("Products", lambda setup:
        setup.from_package_sql_scripts("tests.sql")
             .with_names_matching(lambda name: name.startswith("products/"))
             .build())
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from types import ModuleType

from sqlalchemy.engine import Connection

from db_testsets.exceptions import BuilderError, ScriptNotFoundError
from db_testsets.testset import CallableTestSet, SqlScriptTestSet


SQL_SUFFIX = ".sql"


def _walk_sql(root: Traversable, prefix: str = "") -> dict[str, Traversable]:
    """Map posix relative names to every `*.sql` file under root."""
    found: dict[str, Traversable] = {}
    for entry in root.iterdir():
        name = f"{prefix}{entry.name}"
        if entry.is_dir():
            found.update(_walk_sql(entry, f"{name}/"))
        elif entry.name.lower().endswith(SQL_SUFFIX):
            found[name] = entry
    return found


class SqlScriptTestSetBuilder:
    """Select SQL scripts from a resource tree and build a `SqlScriptTestSet`.

    Pick scripts with exactly one of `with_names_matching`, `use` or `all`,
    then call `build()`.
    """

    def __init__(self, scripts: dict[str, Traversable]) -> None:
        self._scripts = scripts
        self._selected: list[str] | None = None

    @classmethod
    def from_package(cls, package: str | ModuleType) -> SqlScriptTestSetBuilder:
        return cls(_walk_sql(resources.files(package)))

    @classmethod
    def from_directory(cls, directory: str | Path) -> SqlScriptTestSetBuilder:
        root = Path(directory)
        if not root.is_dir():
            raise ScriptNotFoundError(f"SQL script directory not found: {root}")
        return cls(_walk_sql(root))

    @property
    def available_names(self) -> list[str]:
        return sorted(self._scripts)

    def with_names_matching(self, predicate: Callable[[str], bool]) -> SqlScriptTestSetBuilder:
        """Use the scripts whose names match, in alphabetical order."""
        self._selected = [name for name in self.available_names if predicate(name)]
        return self

    def use(
        self, selector: Callable[[list[str]], Iterable[str]]
    ) -> SqlScriptTestSetBuilder:
        """Let the caller pick scripts, and their order, from all available names."""
        self._selected = list(selector(self.available_names))
        return self

    def all(self) -> SqlScriptTestSetBuilder:
        """Use every script, in alphabetical order."""
        self._selected = self.available_names
        return self

    def build(self) -> SqlScriptTestSet:
        """Read the selected scripts and build the test set.

        Raises:
            BuilderError: If no selection was made.
            ScriptNotFoundError: If a selected name does not exist.
        """
        if self._selected is None:
            raise BuilderError(
                "No scripts have been selected; call with_names_matching(), use() or all() first."
            )

        test_set = SqlScriptTestSet()
        for name in self._selected:
            script = self._scripts.get(name)
            if script is None:
                raise ScriptNotFoundError(f'No SQL script found named "{name}".')
            test_set.add_sql_script(name, script.read_text(encoding="utf-8"))
        return test_set


class TestSetBuilder:
    """Entry point handed to `TestSetRegistry.define` builder functions."""

    __test__ = False

    def from_package_sql_scripts(self, package: str | ModuleType) -> SqlScriptTestSetBuilder:
        """Start from the `*.sql` package data of `package`; a selection is still needed."""
        return SqlScriptTestSetBuilder.from_package(package)

    def from_all_package_sql_scripts(self, package: str | ModuleType) -> SqlScriptTestSetBuilder:
        return SqlScriptTestSetBuilder.from_package(package).all()

    def from_sql_scripts_in(self, directory: str | Path) -> SqlScriptTestSetBuilder:
        """Start from the `*.sql` files under `directory`; a selection is still needed."""
        return SqlScriptTestSetBuilder.from_directory(directory)

    def from_all_sql_scripts_in(self, directory: str | Path) -> SqlScriptTestSetBuilder:
        return SqlScriptTestSetBuilder.from_directory(directory).all()

    def from_sql(self, script_name: str, sql_script: str) -> SqlScriptTestSet:
        test_set = SqlScriptTestSet()
        test_set.add_sql_script(script_name, sql_script)
        return test_set

    def from_callable(self, fn: Callable[[Connection], None]) -> CallableTestSet:
        return CallableTestSet(fn)
