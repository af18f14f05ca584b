"""
SQLite test support: connect options, per-test databases and snapshot capture.

Test databases are files under a base directory, one per test path, named by
the injected naming strategy. Connections are opened from a
SqliteConnectOptions template whose pragmas are applied in insertion order.
"""

import copy
import logging
import re
import sqlite3
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from urllib.parse import quote

from ..core.backend import DatabaseNamer, TestSupport
from ..core.errors import CaptureError
from ..core.models import ForeignKey, Snapshot, Table
from ..replay.sql_render import SQLITE
from ..serialization.canonical import canonical_value

logger = logging.getLogger(__name__)


class SqliteJournalMode(str, Enum):
    """Values for the journal_mode pragma."""
    DELETE = "DELETE"
    TRUNCATE = "TRUNCATE"
    PERSIST = "PERSIST"
    MEMORY = "MEMORY"
    WAL = "WAL"
    OFF = "OFF"


class SqliteSynchronous(str, Enum):
    """Values for the synchronous pragma."""
    OFF = "OFF"
    NORMAL = "NORMAL"
    FULL = "FULL"
    EXTRA = "EXTRA"


class SqliteLockingMode(str, Enum):
    """Values for the locking_mode pragma."""
    NORMAL = "NORMAL"
    EXCLUSIVE = "EXCLUSIVE"


class SqliteAutoVacuum(str, Enum):
    """Values for the auto_vacuum pragma."""
    NONE = "NONE"
    FULL = "FULL"
    INCREMENTAL = "INCREMENTAL"


_PRAGMA_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SqliteConnectOptions:
    """
    Builder for SQLite connections.

    Pragmas live in an insertion-ordered dict and are executed in that order
    on every new connection; a pragma whose value is None is skipped. The
    ``key`` pragma (SQLCipher) is registered first so it always runs before
    anything that touches the database file.

    Usage:
        options = (
            SqliteConnectOptions()
            .filename("local/test.db")
            .create_if_missing(True)
            .journal_mode(SqliteJournalMode.WAL)
        )
        conn = options.connect()
    """

    def __init__(self):
        self._filename: str = ":memory:"
        self._read_only = False
        self._create_if_missing = False
        self._shared_cache = False
        self._immutable = False
        self._busy_timeout = 5.0
        self._statement_cache_capacity = 100
        self._collations: Dict[str, Callable[[str, str], int]] = {}
        self.pragmas: Dict[str, Optional[str]] = {
            "key": None,
            "page_size": None,
            "locking_mode": None,
            "journal_mode": None,
            "foreign_keys": "ON",
            "synchronous": None,
            "auto_vacuum": None,
        }

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SqliteConnectOptions":
        """Create from the ``sqlite`` section of a FixtureConfig."""
        options = cls()
        if config.get("busy_timeout") is not None:
            options.busy_timeout(float(config["busy_timeout"]))
        if config.get("statement_cache_capacity") is not None:
            options.statement_cache_capacity(int(config["statement_cache_capacity"]))
        for name, value in (config.get("pragmas") or {}).items():
            options.pragma(name, value)
        return options

    def copy(self) -> "SqliteConnectOptions":
        """Independent copy of these options."""
        return copy.deepcopy(self)

    def filename(self, filename: Union[str, Path]) -> "SqliteConnectOptions":
        self._filename = str(filename)
        return self

    def foreign_keys(self, on: bool) -> "SqliteConnectOptions":
        """Set enforcement of foreign key constraints."""
        return self.pragma("foreign_keys", "ON" if on else "OFF")

    def journal_mode(self, mode: SqliteJournalMode) -> "SqliteConnectOptions":
        return self.pragma("journal_mode", SqliteJournalMode(mode).value)

    def locking_mode(self, mode: SqliteLockingMode) -> "SqliteConnectOptions":
        return self.pragma("locking_mode", SqliteLockingMode(mode).value)

    def synchronous(self, synchronous: SqliteSynchronous) -> "SqliteConnectOptions":
        return self.pragma("synchronous", SqliteSynchronous(synchronous).value)

    def auto_vacuum(self, auto_vacuum: SqliteAutoVacuum) -> "SqliteConnectOptions":
        return self.pragma("auto_vacuum", SqliteAutoVacuum(auto_vacuum).value)

    def page_size(self, page_size: int) -> "SqliteConnectOptions":
        return self.pragma("page_size", str(int(page_size)))

    def read_only(self, read_only: bool) -> "SqliteConnectOptions":
        self._read_only = read_only
        return self

    def create_if_missing(self, create: bool) -> "SqliteConnectOptions":
        self._create_if_missing = create
        return self

    def shared_cache(self, on: bool) -> "SqliteConnectOptions":
        self._shared_cache = on
        return self

    def immutable(self, immutable: bool) -> "SqliteConnectOptions":
        """Open the file as immutable (no locking, no change detection)."""
        self._immutable = immutable
        return self

    def busy_timeout(self, seconds: float) -> "SqliteConnectOptions":
        self._busy_timeout = seconds
        return self

    def statement_cache_capacity(self, capacity: int) -> "SqliteConnectOptions":
        """Number of prepared statements kept per connection."""
        if capacity < 0:
            raise ValueError(f"Statement cache capacity must not be negative: {capacity}")
        self._statement_cache_capacity = capacity
        return self

    def collation(self, name: str, compare: Callable[[str, str], int]) -> "SqliteConnectOptions":
        """
        Register a collating sequence on every new connection.

        ``compare`` returns a negative, zero or positive int, like the
        comparator passed to sqlite3.Connection.create_collation().
        """
        self._collations[name] = compare
        return self

    def pragma(self, name: str, value: Any) -> "SqliteConnectOptions":
        """
        Set a pragma executed on connect.

        Existing pragmas keep their position; new ones are appended.
        """
        if not _PRAGMA_NAME.match(name):
            raise ValueError(f"Invalid pragma name: {name}")
        self.pragmas[name] = None if value is None else str(value)
        return self

    def uri(self) -> str:
        """SQLite URI for the configured file and open flags."""
        if self._read_only:
            mode = "ro"
        elif self._create_if_missing:
            mode = "rwc"
        else:
            mode = "rw"

        params = [f"mode={mode}"]
        if self._shared_cache:
            params.append("cache=shared")
        if self._immutable:
            params.append("immutable=1")

        return f"file:{quote(Path(self._filename).as_posix())}?{'&'.join(params)}"

    def connect(self) -> sqlite3.Connection:
        """Open a connection and apply the pragmas in order."""
        if self._filename == ":memory:":
            conn = sqlite3.connect(
                ":memory:",
                timeout=self._busy_timeout,
                check_same_thread=False,
                cached_statements=self._statement_cache_capacity,
            )
        else:
            if self._create_if_missing:
                Path(self._filename).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self.uri(),
                uri=True,
                timeout=self._busy_timeout,
                check_same_thread=False,
                cached_statements=self._statement_cache_capacity,
            )

        for name, compare in self._collations.items():
            conn.create_collation(name, compare)

        for name, value in self.pragmas.items():
            if value is None:
                continue
            conn.execute(f"PRAGMA {name} = {value}")
            logger.debug(f"PRAGMA {name} = {value}")

        return conn


class SqliteTestSupport(TestSupport):
    """
    SQLite implementation of TestSupport.

    Each test path gets its own database file under ``base_dir``; acquiring a
    path always starts from an empty file.
    """

    dialect = SQLITE

    def __init__(
        self,
        base_dir: Union[str, Path],
        options: Optional[SqliteConnectOptions] = None,
        namer: Optional[DatabaseNamer] = None,
        max_databases: int = 16,
    ):
        """
        Initialize SQLite test support.

        Args:
            base_dir: Directory holding the per-test database files
            options: Connection template (filename is replaced per database)
            namer: Strategy mapping a test path to a database name
            max_databases: Maximum number of test databases held concurrently
        """
        super().__init__(namer=namer, max_databases=max_databases)
        self.base_dir = Path(base_dir)
        self.options = options or SqliteConnectOptions()

    def database_path(self, name: str) -> Path:
        return self.base_dir / f"{name}.db"

    def create_database(self, name: str) -> sqlite3.Connection:
        path = self.database_path(name)
        self._remove_files(path)
        return self.options.copy().filename(path).create_if_missing(True).connect()

    def connect(self, name: str) -> sqlite3.Connection:
        path = self.database_path(name)
        if not path.exists():
            raise FileNotFoundError(f"Test database not found: {path}")
        return self.options.copy().filename(path).create_if_missing(False).connect()

    def drop_database(self, name: str) -> None:
        self._remove_files(self.database_path(name))

    @staticmethod
    def _remove_files(path: Path) -> None:
        for suffix in ("", "-wal", "-shm", "-journal"):
            candidate = Path(f"{path}{suffix}")
            if candidate.exists():
                candidate.unlink()

    def snapshot(self, conn: sqlite3.Connection, tables: Optional[Iterable[str]] = None) -> Snapshot:
        return capture_sqlite(conn, tables)


def capture_sqlite(conn: sqlite3.Connection, tables: Optional[Iterable[str]] = None) -> Snapshot:
    """
    Capture the committed data of a SQLite connection.

    The read runs inside a single read transaction so every table is seen at
    the same point in time.

    Raises:
        CaptureError: The connection has uncommitted changes, a requested
            table does not exist, or introspection fails
    """
    if conn.in_transaction:
        raise CaptureError(
            "Connection has an open transaction; commit or roll back before capturing"
        )

    cursor = conn.cursor()
    try:
        cursor.execute("BEGIN")
        try:
            names = _list_tables(cursor)
            if tables is not None:
                requested = list(tables)
                unknown = sorted(set(requested) - set(names))
                if unknown:
                    raise CaptureError(f"Tables not found: {unknown}", table=unknown[0])
                names = [n for n in names if n in set(requested)]

            captured = [_capture_table(cursor, name) for name in names]
        finally:
            cursor.execute("ROLLBACK")
    except sqlite3.Error as e:
        logger.error(f"SQLite capture failed: {e}")
        raise CaptureError(f"SQLite capture failed: {e}") from e
    finally:
        cursor.close()

    snapshot = Snapshot(captured, captured_at=datetime.now(timezone.utc))
    logger.info(f"Captured {len(snapshot)} tables ({snapshot.row_count} rows) from SQLite")
    return snapshot


def _quote(identifier: str) -> str:
    return SQLITE.quote(identifier)


def _list_tables(cursor: sqlite3.Cursor) -> List[str]:
    cursor.execute(
        "SELECT name FROM sqlite_master "
        "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' "
        "ORDER BY name"
    )
    return [row[0] for row in cursor.fetchall()]


def _table_info(cursor: sqlite3.Cursor, table: str):
    """Return (columns, primary key column or None, composite primary key flag)."""
    cursor.execute(f"PRAGMA table_info({_quote(table)})")
    info = cursor.fetchall()
    columns = [row[1] for row in info]
    pk_columns = sorted((row[5], row[1]) for row in info if row[5])

    if len(pk_columns) == 1:
        return columns, pk_columns[0][1], False
    if len(pk_columns) > 1:
        logger.debug(
            f"Table {table} has a composite primary key; comparing it as key-less"
        )
        return columns, None, True
    return columns, None, False


def _foreign_keys(cursor: sqlite3.Cursor, table: str) -> List[ForeignKey]:
    cursor.execute(f"PRAGMA foreign_key_list({_quote(table)})")
    grouped: Dict[int, List[Any]] = {}
    for row in cursor.fetchall():
        grouped.setdefault(row[0], []).append(row)

    foreign_keys: List[ForeignKey] = []
    seen_columns = set()
    # foreign_key_list reports the most recently declared key first
    for fk_id in sorted(grouped, reverse=True):
        parts = grouped[fk_id]
        if len(parts) > 1:
            logger.warning(
                f"Skipping composite foreign key on {table} -> {parts[0][2]} "
                f"({', '.join(p[3] for p in parts)})"
            )
            continue

        _, _, ref_table, column, ref_column = parts[0][:5]
        if ref_column is None:
            _, ref_column, _ = _table_info(cursor, ref_table)
            if ref_column is None:
                logger.warning(
                    f"Skipping foreign key {table}.{column} -> {ref_table}: "
                    f"referenced table has no single-column primary key"
                )
                continue

        if column in seen_columns:
            logger.warning(f"Skipping additional foreign key on {table}.{column}")
            continue
        seen_columns.add(column)
        foreign_keys.append(ForeignKey(column=column, ref_table=ref_table, ref_column=ref_column))

    return foreign_keys


def _capture_table(cursor: sqlite3.Cursor, table: str) -> Table:
    columns, primary_key, unique_rows = _table_info(cursor, table)
    foreign_keys = _foreign_keys(cursor, table)

    select_list = ", ".join(_quote(c) for c in columns)
    if primary_key is not None:
        order_by = _quote(primary_key)
    else:
        order_by = ", ".join(str(i) for i in range(1, len(columns) + 1))

    cursor.execute(f"SELECT {select_list} FROM {_quote(table)} ORDER BY {order_by}")
    rows = tuple(
        tuple(canonical_value(value) for value in row)
        for row in cursor.fetchall()
    )

    logger.debug(f"Captured {table}: {len(columns)} columns, {len(rows)} rows")
    return Table(
        name=table,
        columns=tuple(columns),
        rows=rows,
        primary_key=primary_key,
        foreign_keys=tuple(foreign_keys),
        unique_rows=unique_rows,
    )
