"""
Test-time helpers for recording fixtures.
"""

from .recorder import FixtureRecorder, Recording

__all__ = ["FixtureRecorder", "Recording"]
