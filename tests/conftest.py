"""
Shared test fixtures and configuration for pytest.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


logger = logging.getLogger(__name__)


SHOP_SCHEMA = """
CREATE TABLE customers (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT
);
CREATE TABLE orders (
    id INTEGER PRIMARY KEY,
    customer_id INTEGER NOT NULL REFERENCES customers(id),
    total TEXT
);
CREATE TABLE tags (
    label TEXT,
    note TEXT
);
"""


# ============================================================================
# Environment detection
# ============================================================================

def _sqlserver_password() -> Optional[str]:
    return os.environ.get("DBFIXTURE_SQLSERVER_PASSWORD") or os.environ.get("MSSQL_SA_PASSWORD")


def is_sqlserver_available() -> bool:
    """Check if SQL Server is available for testing."""
    password = _sqlserver_password()
    if not password:
        return False

    try:
        import pyodbc

        from dbfixture.backends.sqlserver_backend import build_connection_string

        conn_str = build_connection_string(
            "master",
            host=os.environ.get("DBFIXTURE_SQLSERVER_HOST", "localhost"),
            port=int(os.environ.get("DBFIXTURE_SQLSERVER_PORT", "1433")),
            username=os.environ.get("DBFIXTURE_SQLSERVER_USER", "sa"),
            password=password,
            driver=os.environ.get("DBFIXTURE_SQLSERVER_DRIVER", "ODBC Driver 18 for SQL Server"),
        )
        conn = pyodbc.connect(conn_str, timeout=5)
        conn.close()
        return True

    except Exception as e:
        logger.debug(f"SQL Server not available: {e}")
        return False


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (requires SQL Server)")
    config.addinivalue_line("markers", "slow: Tests that take a long time to run")


def pytest_collection_modifyitems(config, items):
    """Automatically skip integration tests if SQL Server is not available."""
    if not any("integration" in item.keywords for item in items):
        return
    if is_sqlserver_available():
        return

    skip_sqlserver = pytest.mark.skip(
        reason="SQL Server not available (set MSSQL_SA_PASSWORD and ensure SQL Server is running)"
    )

    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_sqlserver)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(scope="session")
def sqlserver_config() -> dict:
    """Session-scoped fixture providing SQL Server connection configuration."""
    return {
        "host": os.environ.get("DBFIXTURE_SQLSERVER_HOST", "localhost"),
        "port": int(os.environ.get("DBFIXTURE_SQLSERVER_PORT", "1433")),
        "username": os.environ.get("DBFIXTURE_SQLSERVER_USER", "sa"),
        "password": _sqlserver_password(),
        "driver": os.environ.get("DBFIXTURE_SQLSERVER_DRIVER", "ODBC Driver 18 for SQL Server"),
    }


@pytest.fixture
def clean_env(monkeypatch):
    """Remove DBFIXTURE_* and MSSQL_* variables so config defaults apply."""
    for name in list(os.environ):
        if name.startswith("DBFIXTURE_") or name.startswith("MSSQL_"):
            monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def sqlite_support(tmp_path):
    """SQLite TestSupport writing databases under a temporary directory."""
    from dbfixture.backends.sqlite_backend import SqliteTestSupport

    support = SqliteTestSupport(tmp_path / "databases", max_databases=4)
    yield support
    support.close()


def create_shop_schema(conn) -> None:
    """Create the shop schema on a fresh connection."""
    conn.executescript(SHOP_SCHEMA)
    conn.commit()


@pytest.fixture
def shop_setup():
    """Callable creating the shop schema, for recorder setup hooks."""
    return create_shop_schema
