"""Test sets: reusable procedures that put a database into a known state."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

from sqlalchemy.engine import Connection

from db_testsets.models import SqlScriptPart


logger = logging.getLogger(__name__)

# "GO" on its own, surrounded by whitespace or the start/end of the script.
# GO is not SQL; it is the batch separator understood by SQL Server tooling.
_GO_SEPARATOR_RE = re.compile(r"(?:\A|\s+)GO(?=\s|\Z)", re.IGNORECASE)


def split_sql_script(sql_script: str) -> list[str]:
    """Split a SQL script into batches on standalone "GO" lines.

    Args:
        sql_script: Script text.

    Returns:
        Non-blank batches in script order.
    """
    return [part for part in _GO_SEPARATOR_RE.split(sql_script) if part.strip()]


class TestSet(ABC):
    """A named database initialization procedure.

    Applying a test set from a clean baseline always reaches the same state;
    applying it on top of un-cleaned state gives no such guarantee.
    """

    __test__ = False

    @abstractmethod
    def apply(self, connection: Connection) -> None:
        """Fill the database behind `connection` with this test set's data."""


class SqlScriptTestSet(TestSet):
    """A test set that executes one or more SQL scripts, batch by batch."""

    def __init__(self) -> None:
        self._parts: list[SqlScriptPart] = []

    @property
    def parts(self) -> Sequence[SqlScriptPart]:
        return tuple(self._parts)

    @property
    def script_names(self) -> list[str]:
        return list(dict.fromkeys(p.script_name for p in self._parts))

    def add_sql_script(self, script_name: str, sql_script: str) -> None:
        """Split a script and append its batches, numbered from 1."""
        self._parts.extend(
            SqlScriptPart(script_name=script_name, part_number=number, contents=contents)
            for number, contents in enumerate(split_sql_script(sql_script), start=1)
        )

    def apply(self, connection: Connection) -> None:
        """Execute every batch in order.

        The first failing batch stops the apply and its database error is
        re-raised as is. Nothing executed so far is undone here.
        """
        for part in self._parts:
            logger.debug("Executing %s", part.label())
            try:
                connection.exec_driver_sql(part.contents).close()
            except Exception:
                logger.error("Test set script part %s failed", part.label())
                raise

    def __repr__(self) -> str:
        return f"SqlScriptTestSet(scripts={self.script_names!r}, parts={len(self._parts)})"


class CallableTestSet(TestSet):
    """A test set implemented as a Python function taking a connection."""

    def __init__(self, fn: Callable[[Connection], None]) -> None:
        self._fn = fn

    def apply(self, connection: Connection) -> None:
        self._fn(connection)

    def __repr__(self) -> str:
        return f"CallableTestSet({getattr(self._fn, '__name__', self._fn)!r})"
