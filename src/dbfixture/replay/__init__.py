"""
Rendering fixtures to SQL and replaying them against databases.
"""

from .sql_render import SQLITE, SQLSERVER, SqlDialect, Statement, get_dialect, render_script, render_statements
from .replayer import FixtureReplayer, ReplayJob, ReplayReport, ReplayResult, replay_many

__all__ = [
    "SQLITE",
    "SQLSERVER",
    "SqlDialect",
    "Statement",
    "get_dialect",
    "render_script",
    "render_statements",
    "FixtureReplayer",
    "ReplayJob",
    "ReplayReport",
    "ReplayResult",
    "replay_many",
]
