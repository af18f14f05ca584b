"""
Integration tests for the SQL Server backend.

These tests verify that:
1. Per-test databases are created and dropped on the server
2. Capture introspects columns, primary keys and foreign keys
3. Replaying diff(A, B) on a database in state A yields B
"""

import pytest

from dbfixture.core.errors import CaptureError
from dbfixture.core.models import ForeignKey
from dbfixture.diff.engine import diff
from dbfixture.replay.replayer import FixtureReplayer
from dbfixture.replay.sql_render import SQLSERVER


SCHEMA = [
    """
    CREATE TABLE accounts (
        id INT PRIMARY KEY,
        name NVARCHAR(100) NOT NULL,
        email NVARCHAR(200) NULL
    )
    """,
    """
    CREATE TABLE orders (
        id INT PRIMARY KEY,
        account_id INT NOT NULL REFERENCES accounts(id),
        total DECIMAL(10, 2) NULL
    )
    """,
    "CREATE TABLE tags (label NVARCHAR(50) NULL)",
]


@pytest.fixture
def sqlserver_support(sqlserver_config):
    from dbfixture.backends.sqlserver_backend import SqlServerTestSupport

    support = SqlServerTestSupport(
        host=sqlserver_config["host"],
        port=sqlserver_config["port"],
        username=sqlserver_config["username"],
        password=sqlserver_config["password"],
        driver=sqlserver_config["driver"],
        max_databases=2,
    )
    yield support
    support.close()


def create_schema(conn):
    cursor = conn.cursor()
    for statement in SCHEMA:
        cursor.execute(statement)
    conn.commit()
    cursor.close()


@pytest.mark.integration
class TestSqlServerTestSupport:
    """Tests against a live SQL Server instance."""

    def test_capture_structure(self, sqlserver_support):
        conn = sqlserver_support.acquire("tests/integration::structure")
        create_schema(conn)

        snapshot = sqlserver_support.snapshot(conn)

        assert snapshot.table_names == ["accounts", "orders", "tags"]
        assert snapshot["accounts"].columns == ("id", "name", "email")
        assert snapshot["accounts"].primary_key == "id"
        assert snapshot["tags"].primary_key is None
        assert snapshot["orders"].foreign_keys == (ForeignKey("account_id", "accounts", "id"),)

    def test_capture_values(self, sqlserver_support):
        conn = sqlserver_support.acquire("tests/integration::values")
        create_schema(conn)
        cursor = conn.cursor()
        cursor.execute("INSERT INTO accounts VALUES (1, N'Zoë', NULL)")
        cursor.execute("INSERT INTO orders VALUES (10, 1, 5.00)")
        conn.commit()

        snapshot = sqlserver_support.snapshot(conn)

        assert snapshot["accounts"].rows == (("1", "Zoë", None),)
        assert snapshot["orders"].rows == (("10", "1", "5.00"),)

    def test_open_transaction_refused(self, sqlserver_support):
        conn = sqlserver_support.acquire("tests/integration::open_tx")
        create_schema(conn)
        conn.cursor().execute("INSERT INTO tags VALUES (N'x')")

        with pytest.raises(CaptureError):
            sqlserver_support.snapshot(conn)

        conn.rollback()

    def test_round_trip(self, sqlserver_support):
        source = sqlserver_support.acquire("tests/integration::source")
        create_schema(source)
        cursor = source.cursor()
        cursor.execute("INSERT INTO accounts VALUES (1, N'Acme', NULL), (2, N'Globex', N'g@example.com')")
        cursor.execute("INSERT INTO orders VALUES (10, 1, 5.00), (11, 2, NULL)")
        cursor.execute("INSERT INTO tags VALUES (N'x'), (N'x'), (N'y')")
        source.commit()
        state_a = sqlserver_support.snapshot(source)

        cursor.execute("DELETE FROM orders WHERE id = 11")
        cursor.execute("DELETE FROM accounts WHERE id = 2")
        cursor.execute("UPDATE accounts SET email = N'acme@example.com' WHERE id = 1")
        cursor.execute("INSERT INTO accounts VALUES (3, N'Initech', NULL)")
        cursor.execute("INSERT INTO orders VALUES (12, 3, 7.25)")
        cursor.execute("DELETE TOP (1) FROM tags WHERE label = N'x'")
        cursor.execute("INSERT INTO tags VALUES (N'y')")
        source.commit()
        state_b = sqlserver_support.snapshot(source)

        target = sqlserver_support.acquire("tests/integration::target")
        create_schema(target)
        FixtureReplayer(target, SQLSERVER).replay(diff(sqlserver_support.snapshot(target), state_a))
        FixtureReplayer(target, SQLSERVER).replay(diff(state_a, state_b))

        assert sqlserver_support.snapshot(target) == state_b

    def test_release_drops_database(self, sqlserver_support):
        path = "tests/integration::drop"
        sqlserver_support.acquire(path)
        name = sqlserver_support.database_name(path)

        sqlserver_support.release(path)

        admin = sqlserver_support._admin_connect()
        try:
            row = admin.cursor().execute("SELECT DB_ID(?)", (name,)).fetchone()
            assert row[0] is None
        finally:
            admin.close()
