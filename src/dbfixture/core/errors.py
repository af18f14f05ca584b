"""
Custom exceptions for the fixture snapshot/diff/replay pipeline.
"""

from typing import Any, List, Optional, Sequence


class FixtureError(Exception):
    """Base exception for all dbfixture errors."""
    pass


class CaptureError(FixtureError):
    """
    Error capturing a snapshot from a live database.

    Raised when:
    - A consistent read cannot be guaranteed (open transaction, isolation level refused)
    - Schema introspection fails
    - A requested table does not exist
    """

    def __init__(self, message: str, table: Optional[str] = None):
        super().__init__(message)
        self.table = table


class DiffError(FixtureError):
    """Base exception for structural errors raised by the diff engine."""
    pass


class TableSetMismatch(DiffError):
    """
    The two snapshots do not contain the same set of tables.

    Attributes:
        missing: Tables present in the previous snapshot but not the current one
        extra: Tables present in the current snapshot but not the previous one
    """

    def __init__(self, missing: Sequence[str], extra: Sequence[str]):
        self.missing: List[str] = sorted(missing)
        self.extra: List[str] = sorted(extra)
        super().__init__(
            f"mismatch in tables: missing={self.missing} extra={self.extra}"
        )


class StructureMismatch(DiffError):
    """A shared table differs in columns, primary key or foreign keys."""

    def __init__(self, table: str, detail: str):
        self.table = table
        self.detail = detail
        super().__init__(f"mismatch in structure of table '{table}': {detail}")


class DuplicatePrimaryKey(DiffError):
    """A keyed table contains the same primary key value more than once."""

    def __init__(self, table: str, column: str, value: Any):
        self.table = table
        self.column = column
        self.value = value
        super().__init__(
            f"duplicate primary key in table '{table}': {column}={value!r}"
        )


class ReplayError(FixtureError):
    """
    Error applying a fixture to a target database.

    Carries the index and operation that failed so callers can report
    exactly where the replay stopped.
    """

    def __init__(self, message: str, op_index: Optional[int] = None, op: Any = None):
        super().__init__(message)
        self.op_index = op_index
        self.op = op


class FixtureFormatError(FixtureError):
    """A serialized snapshot or fixture is malformed."""
    pass
