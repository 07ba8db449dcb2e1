"""Pydantic models for test set declarations and resolved settings."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_TEST_SET_NAME = "Default"


class CleanupPolicy(str, Enum):
    """How the database is returned to its initial state after a test.

    INHERITED is only meaningful in a declaration: it defers to the next,
    less specific declaration and never appears in resolved settings.
    """

    INHERITED = "inherited"
    NONE = "none"
    BY_ROLLBACK = "by_rollback"
    BY_REINITIALIZE = "by_reinitialize"

    @classmethod
    def parse(cls, value: CleanupPolicy | str | None) -> CleanupPolicy:
        """Convert user input to a policy.

        Accepts a member, its value, or a spelling like "ByRollback" or
        "BY_ROLLBACK". None means INHERITED.

        Raises:
            ValueError: If the value does not name a policy.
        """
        if value is None:
            return cls.INHERITED
        if isinstance(value, cls):
            return value
        key = str(value).replace("_", "").replace("-", "").strip().lower()
        for member in cls:
            if member.value.replace("_", "") == key:
                return member
        raise ValueError(f"Unknown cleanup policy: {value!r}")


class Declaration(BaseModel):
    """A test set declaration on a single scope (suite, class or method)."""

    model_config = ConfigDict(frozen=True)

    test_set_name: str | None = None
    cleanup: CleanupPolicy = CleanupPolicy.INHERITED

    @field_validator("cleanup", mode="before")
    @classmethod
    def _parse_cleanup(cls, value: object) -> CleanupPolicy:
        return CleanupPolicy.parse(value)  # type: ignore[arg-type]


class EffectiveSettings(BaseModel):
    """The resolved test set name and cleanup policy for one test."""

    model_config = ConfigDict(frozen=True)

    test_set_name: str = Field(..., min_length=1)
    cleanup: CleanupPolicy

    @field_validator("cleanup")
    @classmethod
    def _not_inherited(cls, value: CleanupPolicy) -> CleanupPolicy:
        if value is CleanupPolicy.INHERITED:
            raise ValueError("resolved cleanup policy cannot be INHERITED")
        return value


class TestIdentity(BaseModel):
    """Stable identity of one test, as supplied by the test runner.

    `variant` carries the parametrization id. Variants of the same function
    behave like overloads: looking them up by function name is ambiguous.
    """

    __test__ = False

    model_config = ConfigDict(frozen=True)

    module: str = Field(..., min_length=1)
    class_name: str | None = None
    function: str = Field(..., min_length=1)
    variant: str | None = None

    @property
    def qualified_class_name(self) -> str:
        """Return `module.Class`, or just the module for module-level tests."""
        if self.class_name:
            return f"{self.module}.{self.class_name}"
        return self.module

    def __str__(self) -> str:
        name = f"{self.qualified_class_name}.{self.function}"
        if self.variant:
            name += f"[{self.variant}]"
        return name


class SqlScriptPart(BaseModel):
    """One batch of a SQL script."""

    model_config = ConfigDict(frozen=True)

    script_name: str
    part_number: int = Field(..., ge=1)
    contents: str

    def label(self) -> str:
        """Return a user-facing label like `schema.sql#2`."""
        return f"{self.script_name}#{self.part_number}"
