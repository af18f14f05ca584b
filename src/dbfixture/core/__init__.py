"""
Core types of dbfixture: snapshots, fixtures, errors and the per-engine
TestSupport interface.
"""

from .models import ForeignKey, Row, Snapshot, Table, Value
from .fixture import Delete, Fixture, FixtureOp, Insert, Truncate, Update
from .errors import (
    CaptureError, DiffError, DuplicatePrimaryKey, FixtureError,
    FixtureFormatError, ReplayError, StructureMismatch, TableSetMismatch,
)
from .backend import DatabaseNamer, TestSupport, default_database_name

__all__ = [
    "ForeignKey",
    "Row",
    "Snapshot",
    "Table",
    "Value",
    "Delete",
    "Fixture",
    "FixtureOp",
    "Insert",
    "Truncate",
    "Update",
    "CaptureError",
    "DiffError",
    "DuplicatePrimaryKey",
    "FixtureError",
    "FixtureFormatError",
    "ReplayError",
    "StructureMismatch",
    "TableSetMismatch",
    "DatabaseNamer",
    "TestSupport",
    "default_database_name",
]
