"""
Exception taxonomy for the cleaning core.
"""


class CleaningError(Exception):
    """Base class for every error raised by the cleaning core."""


class IntegrityError(CleaningError):
    """A row, schema or projection violates a structural invariant."""


class ColumnNotFoundError(IntegrityError, KeyError):
    """A column was requested that the current schema does not contain."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class StoreUnavailable(CleaningError):
    """The relational store failed to connect or to execute a statement."""


class AssemblyError(CleaningError):
    """A rule's flow could not be assembled."""


class RecycledTableError(CleaningError):
    """A table was used after its owner released it."""


class FlowCancelled(CleaningError):
    """A flow was cancelled before all of its stages ran."""
