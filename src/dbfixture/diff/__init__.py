"""
Snapshot diffing and foreign key ordering.
"""

from .grapher import DependencyGraph
from .engine import DiffEngine, diff

__all__ = ["DependencyGraph", "DiffEngine", "diff"]
