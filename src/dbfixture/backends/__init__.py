"""
Engine-specific TestSupport implementations.

Supported backends:
    - sqlite: per-test database files (standard library sqlite3)
    - sqlserver: per-test databases on a SQL Server instance (requires pyodbc)
"""

import logging
from typing import Optional

from ..config.config_loader import FixtureConfig
from ..core.backend import DatabaseNamer, TestSupport
from .sqlite_backend import SqliteConnectOptions, SqliteTestSupport


logger = logging.getLogger(__name__)


# Lazy import so sqlite-only installs work without pyodbc
def _get_sqlserver_support():
    from .sqlserver_backend import SqlServerTestSupport
    return SqlServerTestSupport


def create_backend(
    config: Optional[FixtureConfig] = None,
    backend: Optional[str] = None,
    namer: Optional[DatabaseNamer] = None,
) -> TestSupport:
    """
    Factory function to create the TestSupport for the configured engine.

    Args:
        config: Loaded configuration (default: built-in defaults plus env overrides)
        backend: Backend name overriding ``config.backend`` ('sqlite' or 'sqlserver')
        namer: Database naming strategy (default: default_database_name)

    Returns:
        TestSupport instance

    Raises:
        ValueError: If backend is not recognized
        ImportError: If required dependencies are missing
    """
    config = config or FixtureConfig()
    backend = (backend or config.backend).lower()
    section = config.get_backend_config(backend)

    if backend == "sqlite":
        return SqliteTestSupport(
            base_dir=section.get("base_dir", ".dbfixture/databases"),
            options=SqliteConnectOptions.from_config(section),
            namer=namer,
            max_databases=int(section.get("max_databases", 16)),
        )

    elif backend == "sqlserver":
        SqlServerTestSupport = _get_sqlserver_support()
        logger.debug(f"Using SQL Server test support at {section.get('host')}:{section.get('port')}")
        return SqlServerTestSupport(
            host=section.get("host", "localhost"),
            port=int(section.get("port", 1433)),
            database=section.get("database", "master"),
            username=section.get("username", "sa"),
            password=section.get("password"),
            driver=section.get("driver", "ODBC Driver 18 for SQL Server"),
            schema=section.get("schema", "dbo"),
            isolation_level=section.get("isolation_level", "SNAPSHOT"),
            namer=namer,
            max_databases=int(section.get("max_databases", 8)),
        )

    else:
        raise ValueError(
            f"Unknown backend: {backend}. "
            "Supported backends: 'sqlite', 'sqlserver'"
        )


__all__ = ["SqliteConnectOptions", "SqliteTestSupport", "create_backend"]
