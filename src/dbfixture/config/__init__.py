"""
Configuration for dbfixture.
"""

from .config_loader import DEFAULT_CONFIG, FixtureConfig

__all__ = ["DEFAULT_CONFIG", "FixtureConfig"]
