"""
Fixture replay against DB-API connections.

A single fixture is applied strictly in order on one connection. Distinct
fixtures destined for distinct databases can be replayed concurrently with
replay_many(), which spreads jobs over a ThreadPoolExecutor; each job opens
its own connection so nothing is shared between workers.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..core.errors import ReplayError
from ..core.fixture import Fixture
from .sql_render import SqlDialect, render_statements

logger = logging.getLogger(__name__)


@dataclass
class ReplayReport:
    """Report of a replay operation."""
    dialect: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    operations_applied: int = 0
    statements_executed: int = 0
    rows_affected: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.completed_at is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "dialect": self.dialect,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "operations_applied": self.operations_applied,
            "statements_executed": self.statements_executed,
            "rows_affected": self.rows_affected,
            "error": self.error,
        }

    def summary(self) -> str:
        """Get a human-readable summary."""
        lines = [
            f"Replay Report ({self.dialect})",
            f"  Duration: {(self.completed_at - self.started_at).total_seconds():.1f}s" if self.completed_at else "",
            f"  Operations applied: {self.operations_applied}",
            f"  Statements executed: {self.statements_executed}",
            f"  Rows affected: {self.rows_affected}",
        ]
        if self.error:
            lines.append(f"  Error: {self.error}")
        return "\n".join(lines)


class FixtureReplayer:
    """
    Applies a fixture to one target connection.

    Args:
        conn: DB-API connection (sqlite3 or pyodbc)
        dialect: SQL dialect of the target
        strict: Fail when a statement affects a different number of rows than
            its operation implies (a missing row to delete or update)
        commit: Commit once after the last operation
    """

    def __init__(self, conn, dialect: SqlDialect, strict: bool = True, commit: bool = True):
        self.conn = conn
        self.dialect = dialect
        self.strict = strict
        self.commit = commit

    def replay(self, fixture: Fixture) -> ReplayReport:
        """
        Apply every operation of ``fixture`` in order.

        Raises:
            ReplayError: A statement failed or (in strict mode) affected an
                unexpected number of rows. Nothing is rolled back; the caller
                owns the transaction.
        """
        report = ReplayReport(dialect=self.dialect.name, started_at=datetime.now(timezone.utc))
        statements = render_statements(fixture, self.dialect)

        cursor = self.conn.cursor()
        try:
            last_op = -1
            for statement in statements:
                op = fixture[statement.op_index]
                try:
                    cursor.execute(statement.sql, statement.params)
                except Exception as e:
                    message = f"Operation {statement.op_index} ({op.kind} on {op.table}) failed: {e}"
                    logger.error(message)
                    report.error = message
                    raise ReplayError(message, op_index=statement.op_index, op=op) from e

                affected = cursor.rowcount if cursor.rowcount is not None else -1
                if (
                    self.strict
                    and statement.expected_rows is not None
                    and affected >= 0
                    and affected != statement.expected_rows
                ):
                    message = (
                        f"Operation {statement.op_index} ({op.kind} on {op.table}) affected "
                        f"{affected} rows, expected {statement.expected_rows}"
                    )
                    logger.error(message)
                    report.error = message
                    raise ReplayError(message, op_index=statement.op_index, op=op)

                report.statements_executed += 1
                if affected > 0:
                    report.rows_affected += affected
                if statement.op_index != last_op:
                    report.operations_applied += 1
                    last_op = statement.op_index
        finally:
            cursor.close()

        if self.commit:
            self.conn.commit()

        report.completed_at = datetime.now(timezone.utc)
        logger.info(
            f"Replayed {report.operations_applied} operations "
            f"({report.statements_executed} statements) on {self.dialect.name}"
        )
        return report


@dataclass
class ReplayJob:
    """
    One fixture destined for one database.

    Attributes:
        name: Label used in logs and results
        fixture: Fixture to apply
        connect: Opens the target connection; called on the worker thread
        dialect: SQL dialect of the target
    """
    name: str
    fixture: Fixture
    connect: Callable[[], Any]
    dialect: SqlDialect
    strict: bool = True


@dataclass
class ReplayResult:
    """Outcome of one ReplayJob."""
    name: str
    report: Optional[ReplayReport] = None
    error: Optional[str] = None
    failed_op_index: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.error is None


def _run_job(job: ReplayJob) -> ReplayResult:
    conn = job.connect()
    try:
        report = FixtureReplayer(conn, job.dialect, strict=job.strict).replay(job.fixture)
        return ReplayResult(name=job.name, report=report)
    except ReplayError as e:
        return ReplayResult(name=job.name, error=str(e), failed_op_index=e.op_index)
    finally:
        conn.close()


def replay_many(jobs: List[ReplayJob], max_workers: int = 4) -> List[ReplayResult]:
    """
    Replay independent fixtures concurrently, one database per job.

    Results are returned in job order. A failed job does not stop the others.
    """
    if not jobs:
        return []

    names = [job.name for job in jobs]
    if len(set(names)) != len(names):
        raise ValueError("Replay job names must be unique")

    logger.info(f"Replaying {len(jobs)} fixtures with {max_workers} workers")

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="dbfixture-replay") as executor:
        futures: List[Future] = [executor.submit(_run_job, job) for job in jobs]

    results: List[ReplayResult] = []
    for job, future in zip(jobs, futures):
        try:
            results.append(future.result())
        except Exception as e:
            logger.exception(f"Replay job {job.name} crashed")
            results.append(ReplayResult(name=job.name, error=f"{type(e).__name__}: {e}"))

    failed = [r.name for r in results if not r.success]
    if failed:
        logger.warning(f"{len(failed)} of {len(results)} replay jobs failed: {failed}")
    return results
