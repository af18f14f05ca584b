"""
SQL Server test support over pyodbc.

Per-test databases are created and dropped through an autocommit connection
to ``master``. Capture reads one schema inside a single transaction at the
configured isolation level (SNAPSHOT by default, which the created test
databases enable).
"""

import logging
import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

try:
    import pyodbc
except ImportError:
    pyodbc = None

from ..core.backend import DatabaseNamer, TestSupport
from ..core.errors import CaptureError
from ..core.models import ForeignKey, Snapshot, Table
from ..replay.sql_render import SQLSERVER
from ..serialization.canonical import canonical_value

logger = logging.getLogger(__name__)


ISOLATION_LEVELS = {
    "READ UNCOMMITTED",
    "READ COMMITTED",
    "REPEATABLE READ",
    "SNAPSHOT",
    "SERIALIZABLE",
}

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,127}$")


_TABLES_QUERY = """
SELECT TABLE_NAME
FROM INFORMATION_SCHEMA.TABLES
WHERE TABLE_SCHEMA = ? AND TABLE_TYPE = 'BASE TABLE'
ORDER BY TABLE_NAME
"""

_COLUMNS_QUERY = """
SELECT TABLE_NAME, COLUMN_NAME
FROM INFORMATION_SCHEMA.COLUMNS
WHERE TABLE_SCHEMA = ?
ORDER BY TABLE_NAME, ORDINAL_POSITION
"""

_PRIMARY_KEYS_QUERY = """
SELECT kcu.TABLE_NAME, kcu.COLUMN_NAME
FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
  ON tc.CONSTRAINT_NAME = kcu.CONSTRAINT_NAME
 AND tc.TABLE_SCHEMA = kcu.TABLE_SCHEMA
WHERE tc.CONSTRAINT_TYPE = 'PRIMARY KEY' AND tc.TABLE_SCHEMA = ?
ORDER BY kcu.TABLE_NAME, kcu.ORDINAL_POSITION
"""

_FOREIGN_KEYS_QUERY = """
SELECT
    fk.name AS constraint_name,
    tp.name AS table_name,
    cp.name AS column_name,
    tr.name AS ref_table,
    cr.name AS ref_column
FROM sys.foreign_key_columns fkc
JOIN sys.foreign_keys fk ON fk.object_id = fkc.constraint_object_id
JOIN sys.tables tp ON tp.object_id = fkc.parent_object_id
JOIN sys.schemas s ON s.schema_id = tp.schema_id
JOIN sys.columns cp ON cp.object_id = fkc.parent_object_id AND cp.column_id = fkc.parent_column_id
JOIN sys.tables tr ON tr.object_id = fkc.referenced_object_id
JOIN sys.columns cr ON cr.object_id = fkc.referenced_object_id AND cr.column_id = fkc.referenced_column_id
WHERE s.name = ?
ORDER BY tp.name, fk.name, fkc.constraint_column_id
"""


def build_connection_string(
    database: str,
    host: str = "localhost",
    port: int = 1433,
    username: str = "sa",
    password: Optional[str] = None,
    driver: str = "ODBC Driver 18 for SQL Server",
    trust_server_certificate: bool = True,
) -> str:
    """Build an ODBC connection string for one database."""
    trust_cert = "yes" if trust_server_certificate else "no"
    return (
        f"Driver={{{driver}}};"
        f"Server={host},{port};"
        f"Database={database};"
        f"UID={username};"
        f"PWD={password};"
        f"TrustServerCertificate={trust_cert}"
    )


class SqlServerTestSupport(TestSupport):
    """
    SQL Server implementation of TestSupport.

    Test databases are created on the configured server, one per test path,
    and dropped on release.
    """

    dialect = SQLSERVER

    def __init__(
        self,
        host: str = "localhost",
        port: int = 1433,
        database: str = "master",
        username: str = "sa",
        password: Optional[str] = None,
        driver: str = "ODBC Driver 18 for SQL Server",
        schema: str = "dbo",
        isolation_level: str = "SNAPSHOT",
        trust_server_certificate: bool = True,
        namer: Optional[DatabaseNamer] = None,
        max_databases: int = 8,
    ):
        """
        Initialize SQL Server test support.

        Args:
            host: SQL Server host
            port: SQL Server port
            database: Administrative database used to create and drop test databases
            username: Database username
            password: Database password
            driver: ODBC driver name
            schema: Schema captured by snapshot()
            isolation_level: Isolation level of the capture transaction
            trust_server_certificate: Whether to trust self-signed certificates (for local Docker)
            namer: Strategy mapping a test path to a database name
            max_databases: Maximum number of test databases held concurrently
        """
        if pyodbc is None:
            raise ImportError(
                "pyodbc is required for SqlServerTestSupport. "
                "Install with: pip install pyodbc"
            )

        if not _IDENTIFIER.match(schema):
            raise ValueError(f"Invalid schema name: {schema}")

        isolation_level = isolation_level.upper()
        if isolation_level not in ISOLATION_LEVELS:
            raise ValueError(
                f"Invalid isolation level: {isolation_level}. "
                f"Supported levels: {', '.join(sorted(ISOLATION_LEVELS))}"
            )

        super().__init__(namer=namer, max_databases=max_databases)
        self.schema = schema
        self.isolation_level = isolation_level
        self.admin_database = database
        self._server = dict(
            host=host,
            port=port,
            username=username,
            password=password,
            driver=driver,
            trust_server_certificate=trust_server_certificate,
        )

    def connection_string(self, database: str) -> str:
        return build_connection_string(database, **self._server)

    def _admin_connect(self):
        return pyodbc.connect(self.connection_string(self.admin_database), autocommit=True)

    @staticmethod
    def _validate_name(name: str) -> None:
        if not _IDENTIFIER.match(name):
            raise ValueError(f"Invalid database name: {name}")

    def create_database(self, name: str):
        self._validate_name(name)
        conn = self._admin_connect()
        try:
            cursor = conn.cursor()
            self._drop_if_exists(cursor, name)
            cursor.execute(f"CREATE DATABASE [{name}]")
            if self.isolation_level == "SNAPSHOT":
                cursor.execute(f"ALTER DATABASE [{name}] SET ALLOW_SNAPSHOT_ISOLATION ON")
            cursor.close()
        finally:
            conn.close()

        logger.info(f"Created test database {name}")
        return self.connect(name)

    def drop_database(self, name: str) -> None:
        self._validate_name(name)
        conn = self._admin_connect()
        try:
            cursor = conn.cursor()
            self._drop_if_exists(cursor, name)
            cursor.close()
        finally:
            conn.close()
        logger.info(f"Dropped test database {name}")

    @staticmethod
    def _drop_if_exists(cursor, name: str) -> None:
        cursor.execute("SELECT DB_ID(?)", (name,))
        if cursor.fetchone()[0] is None:
            return
        cursor.execute(f"ALTER DATABASE [{name}] SET SINGLE_USER WITH ROLLBACK IMMEDIATE")
        cursor.execute(f"DROP DATABASE [{name}]")

    def connect(self, name: str):
        self._validate_name(name)
        return pyodbc.connect(self.connection_string(name), autocommit=False)

    def snapshot(self, conn, tables: Optional[Iterable[str]] = None) -> Snapshot:
        """
        Capture the configured schema of a pyodbc connection.

        Raises:
            CaptureError: The connection has an open transaction, a requested
                table does not exist, or a query fails
        """
        try:
            captured = self._capture(conn, tables)
        except pyodbc.Error as e:
            logger.error(f"SQL Server capture failed: {e}")
            raise CaptureError(f"SQL Server capture failed: {e}") from e

        snapshot = Snapshot(captured, captured_at=datetime.now(timezone.utc))
        logger.info(
            f"Captured {len(snapshot)} tables ({snapshot.row_count} rows) "
            f"from SQL Server schema {self.schema}"
        )
        return snapshot

    def _capture(self, conn, tables: Optional[Iterable[str]]) -> List[Table]:
        cursor = conn.cursor()
        try:
            cursor.execute("SELECT @@TRANCOUNT")
            if cursor.fetchone()[0] > 0:
                raise CaptureError(
                    "Connection has an open transaction; commit or roll back before capturing"
                )

            cursor.execute(f"SET TRANSACTION ISOLATION LEVEL {self.isolation_level}")
            if conn.autocommit:
                cursor.execute("BEGIN TRANSACTION")

            try:
                captured = self._read_schema(cursor, tables)
            finally:
                if conn.autocommit:
                    cursor.execute("COMMIT TRANSACTION")
                else:
                    conn.commit()
                cursor.execute("SET TRANSACTION ISOLATION LEVEL READ COMMITTED")
        finally:
            cursor.close()

        return captured

    def _read_schema(self, cursor, tables: Optional[Iterable[str]]) -> List[Table]:
        cursor.execute(_TABLES_QUERY, (self.schema,))
        names = [row[0] for row in cursor.fetchall()]

        if tables is not None:
            requested = set(tables)
            unknown = sorted(requested - set(names))
            if unknown:
                raise CaptureError(
                    f"Tables not found in schema {self.schema}: {unknown}",
                    table=unknown[0],
                )
            names = [n for n in names if n in requested]

        columns: Dict[str, List[str]] = {}
        cursor.execute(_COLUMNS_QUERY, (self.schema,))
        for table_name, column_name in cursor.fetchall():
            columns.setdefault(table_name, []).append(column_name)

        primary_keys: Dict[str, List[str]] = {}
        cursor.execute(_PRIMARY_KEYS_QUERY, (self.schema,))
        for table_name, column_name in cursor.fetchall():
            primary_keys.setdefault(table_name, []).append(column_name)

        foreign_keys = self._read_foreign_keys(cursor)

        captured = []
        for name in names:
            pk_columns = primary_keys.get(name, [])
            if len(pk_columns) > 1:
                logger.debug(f"Table {name} has a composite primary key; comparing it as key-less")
            primary_key = pk_columns[0] if len(pk_columns) == 1 else None
            captured.append(
                self._read_table(
                    cursor, name, columns[name], primary_key, foreign_keys.get(name, []),
                    unique_rows=len(pk_columns) > 1,
                )
            )
        return captured

    def _read_foreign_keys(self, cursor) -> Dict[str, List[ForeignKey]]:
        grouped: Dict[Tuple[str, str], List[Tuple[str, str, str]]] = {}
        cursor.execute(_FOREIGN_KEYS_QUERY, (self.schema,))
        for constraint, table_name, column, ref_table, ref_column in cursor.fetchall():
            grouped.setdefault((table_name, constraint), []).append((column, ref_table, ref_column))

        result: Dict[str, List[ForeignKey]] = {}
        for (table_name, constraint), parts in grouped.items():
            if len(parts) > 1:
                logger.warning(f"Skipping composite foreign key {constraint} on {table_name}")
                continue
            column, ref_table, ref_column = parts[0]
            existing = result.setdefault(table_name, [])
            if any(fk.column == column for fk in existing):
                logger.warning(f"Skipping additional foreign key {constraint} on {table_name}.{column}")
                continue
            existing.append(ForeignKey(column=column, ref_table=ref_table, ref_column=ref_column))
        return result

    def _read_table(
        self,
        cursor,
        name: str,
        columns: List[str],
        primary_key: Optional[str],
        foreign_keys: List[ForeignKey],
        unique_rows: bool = False,
    ) -> Table:
        quote = SQLSERVER.quote
        select_list = ", ".join(quote(c) for c in columns)
        if primary_key is not None:
            order_by = quote(primary_key)
        else:
            order_by = ", ".join(str(i) for i in range(1, len(columns) + 1))

        cursor.execute(
            f"SELECT {select_list} FROM {quote(self.schema)}.{quote(name)} ORDER BY {order_by}"
        )
        rows = tuple(
            tuple(canonical_value(value) for value in row)
            for row in cursor.fetchall()
        )

        logger.debug(f"Captured {self.schema}.{name}: {len(columns)} columns, {len(rows)} rows")
        return Table(
            name=name,
            columns=tuple(columns),
            rows=rows,
            primary_key=primary_key,
            foreign_keys=tuple(foreign_keys),
            unique_rows=unique_rows,
        )
