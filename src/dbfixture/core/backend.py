"""
Per-engine test support interface.

Each supported database engine provides two capabilities:
- a shared pool of isolated test databases, one per test path
- snapshot capture of a connection's committed data

The diff engine itself is engine-agnostic and never touches this module.
"""

import hashlib
import logging
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

from .models import Snapshot

logger = logging.getLogger(__name__)


DatabaseNamer = Callable[[str], str]


def default_database_name(test_path: str) -> str:
    """
    Derive a database name from a test path.

    The path is reduced to identifier characters and suffixed with a short
    hash of the original, so distinct paths never collide after sanitizing,
    e.g. ``tests/test_users.py::test_rename`` becomes
    ``dbfixture_tests_test_users_py_test_rename_<8 hex chars>``.
    """
    digest = hashlib.sha1(test_path.encode("utf-8")).hexdigest()[:8]
    slug = re.sub(r"[^A-Za-z0-9]+", "_", test_path).strip("_").lower()
    return f"dbfixture_{slug[:80]}_{digest}"


@dataclass
class TestDatabase:
    """A database held by the pool on behalf of one test path."""
    __test__ = False

    test_path: str
    name: str
    conn: Any


class TestSupport(ABC):
    """
    Abstract base class for engine-specific test support.

    Subclasses implement database creation/removal and snapshot capture;
    this class keeps the registry keyed by test path and bounds the number of
    databases held at once.
    """
    __test__ = False

    dialect = None

    def __init__(self, namer: Optional[DatabaseNamer] = None, max_databases: int = 8):
        """
        Args:
            namer: Strategy mapping a test path to a database name
            max_databases: Maximum number of test databases held concurrently
        """
        self.namer: DatabaseNamer = namer or default_database_name
        self.max_databases = max_databases
        self._slots = threading.BoundedSemaphore(max_databases)
        self._lock = threading.Lock()
        self._held: Dict[str, TestDatabase] = {}
        # Paths whose database is being created; other callers wait on the event
        self._creating: Dict[str, threading.Event] = {}

    @abstractmethod
    def snapshot(self, conn, tables: Optional[Iterable[str]] = None) -> Snapshot:
        """
        Capture the committed data of a connection.

        Args:
            conn: Open connection to the database to capture
            tables: Optional table filter (default: all user tables)

        Returns:
            Snapshot of the selected tables

        Raises:
            CaptureError: Consistency cannot be guaranteed or introspection failed
        """
        pass

    @abstractmethod
    def create_database(self, name: str) -> Any:
        """Create a fresh, empty database and return an open connection to it."""
        pass

    @abstractmethod
    def drop_database(self, name: str) -> None:
        """Remove a database created by create_database()."""
        pass

    @abstractmethod
    def connect(self, name: str) -> Any:
        """Open an additional connection to an existing test database."""
        pass

    def acquire(self, test_path: str) -> Any:
        """
        Get the isolated database connection for a test path.

        Repeated calls with the same path return the same connection until
        release() is called. Concurrent callers for the same path share one
        database. Blocks while ``max_databases`` are held.
        """
        while True:
            with self._lock:
                held = self._held.get(test_path)
                if held is not None:
                    return held.conn
                creating = self._creating.get(test_path)
                if creating is None:
                    creating = threading.Event()
                    self._creating[test_path] = creating
                    break
            creating.wait()

        try:
            name = self.namer(test_path)
            self._slots.acquire()
            try:
                conn = self.create_database(name)
            except Exception:
                self._slots.release()
                raise

            with self._lock:
                self._held[test_path] = TestDatabase(test_path=test_path, name=name, conn=conn)
        finally:
            with self._lock:
                self._creating.pop(test_path, None)
            creating.set()

        logger.debug(f"Acquired test database {name} for {test_path}")
        return conn

    def database_name(self, test_path: str) -> Optional[str]:
        """Name of the database currently held for a test path, if any."""
        with self._lock:
            held = self._held.get(test_path)
        return held.name if held else None

    def release(self, test_path: str, drop: bool = True) -> None:
        """Close and (by default) drop the database held for a test path."""
        with self._lock:
            held = self._held.pop(test_path, None)
        if held is None:
            return

        try:
            held.conn.close()
            if drop:
                self.drop_database(held.name)
        finally:
            self._slots.release()
        logger.debug(f"Released test database {held.name} for {test_path}")

    def close(self) -> None:
        """Release every held database."""
        with self._lock:
            paths = list(self._held)
        for path in paths:
            self.release(path)
