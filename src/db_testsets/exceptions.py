"""Custom exceptions for db-testsets.

Errors raised by the database itself (constraint violations while applying a
test set, for example) are never wrapped in these classes; they propagate as
the SQLAlchemy exception the driver produced.
"""


class TestSetError(Exception):
    """Base exception for db-testsets."""

    __test__ = False


class ResolutionError(TestSetError):
    """Raised when a test identity cannot be mapped to a single test."""


class MethodNotFoundError(ResolutionError):
    """Raised when no registered test matches the given identity."""


class AmbiguousMethodError(ResolutionError):
    """Raised when more than one registered test matches the given name."""


class UnknownTestSetError(TestSetError, LookupError):
    """Raised when applying a test set name that was never defined."""


class GuardReleaseError(TestSetError):
    """Raised when rolling back or committing a transaction guard fails."""


class LifecycleStateError(TestSetError):
    """Raised when lifecycle hooks are called out of order."""


class BuilderError(TestSetError):
    """Raised when a test set builder is used incorrectly."""


class ScriptNotFoundError(BuilderError):
    """Raised when a selected SQL script does not exist."""
