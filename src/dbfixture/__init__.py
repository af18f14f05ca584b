"""
dbfixture: capture database snapshots, diff them into ordered fixtures and
replay those fixtures to reproduce a database state.
"""

from .core import (
    CaptureError, DiffError, Fixture, FixtureError, ReplayError, Snapshot, Table,
    TestSupport,
)
from .diff import DependencyGraph, DiffEngine
from .replay import FixtureReplayer, render_script

__version__ = "0.1.0"

__all__ = [
    "CaptureError",
    "DiffError",
    "Fixture",
    "FixtureError",
    "ReplayError",
    "Snapshot",
    "Table",
    "TestSupport",
    "DependencyGraph",
    "DiffEngine",
    "FixtureReplayer",
    "render_script",
]
