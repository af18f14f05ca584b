"""
Rendering of fixture operations to SQL.

Each operation becomes one or more parameterized statements (for replay
through a DB-API cursor) or literal SQL (for a checked-in script). Values
are passed as strings; type coercion is left to the target engine.

Delete operations remove exactly one matching row, because key-less tables
can hold duplicate rows that a value condition cannot tell apart. A Delete
marked unique renders as a plain DELETE, which also works on SQLite tables
declared WITHOUT ROWID. Truncate is rendered as an unqualified DELETE so
that it behaves the same on every engine and under foreign key enforcement.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..core.fixture import Delete, Fixture, FixtureOp, Insert, Truncate, Update
from ..core.models import Value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Statement:
    """
    One parameterized statement derived from a fixture operation.

    Attributes:
        sql: SQL text with ``?`` placeholders
        params: Positional parameters
        op_index: Index of the originating operation in the fixture
        expected_rows: Rows the statement must affect (None = any)
    """
    sql: str
    params: Tuple[Value, ...]
    op_index: int
    expected_rows: Optional[int] = None


@dataclass(frozen=True)
class SqlDialect:
    """Identifier quoting and single-row delete syntax for one engine."""
    name: str
    quote_open: str
    quote_close: str
    unicode_prefix: str = ""

    def quote(self, identifier: str) -> str:
        """Quote an identifier, doubling any embedded closing quote."""
        escaped = identifier.replace(self.quote_close, self.quote_close * 2)
        return f"{self.quote_open}{escaped}{self.quote_close}"

    def literal(self, value: Value) -> str:
        """Render a value as an SQL literal."""
        if value is None:
            return "NULL"
        escaped = value.replace("'", "''")
        return f"{self.unicode_prefix}'{escaped}'"

    def delete_one(self, table: str, where: str) -> str:
        """DELETE removing at most one row matching ``where``."""
        quoted = self.quote(table)
        if self.name == "sqlserver":
            return f"DELETE TOP (1) FROM {quoted} WHERE {where}"
        return (
            f"DELETE FROM {quoted} WHERE rowid IN "
            f"(SELECT rowid FROM {quoted} WHERE {where} LIMIT 1)"
        )


SQLITE = SqlDialect(name="sqlite", quote_open='"', quote_close='"')
SQLSERVER = SqlDialect(name="sqlserver", quote_open="[", quote_close="]", unicode_prefix="N")

DIALECTS: Dict[str, SqlDialect] = {d.name: d for d in (SQLITE, SQLSERVER)}


def get_dialect(name: str) -> SqlDialect:
    """Look up a dialect by name."""
    try:
        return DIALECTS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown dialect: {name}. Supported dialects: {', '.join(sorted(DIALECTS))}"
        )


def _where(dialect: SqlDialect, cond: Dict[str, Value]) -> Tuple[str, List[Value]]:
    """Build a WHERE clause; NULL conditions use IS NULL."""
    parts = []
    params: List[Value] = []
    for column, value in cond.items():
        if value is None:
            parts.append(f"{dialect.quote(column)} IS NULL")
        else:
            parts.append(f"{dialect.quote(column)} = ?")
            params.append(value)
    return " AND ".join(parts), params


def render_op(op: FixtureOp, dialect: SqlDialect, op_index: int = 0) -> List[Statement]:
    """Render one operation to parameterized statements."""
    table = dialect.quote(op.table)

    if isinstance(op, Truncate):
        return [Statement(f"DELETE FROM {table}", (), op_index)]

    if isinstance(op, Insert):
        columns = ", ".join(dialect.quote(c) for c in op.columns)
        placeholders = ", ".join("?" for _ in op.columns)
        sql = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"
        return [Statement(sql, tuple(row), op_index, expected_rows=1) for row in op.rows]

    if isinstance(op, Update):
        set_sql = ", ".join(f"{dialect.quote(c)} = ?" for c in op.set)
        where, params = _where(dialect, op.cond)
        sql = f"UPDATE {table} SET {set_sql} WHERE {where}"
        return [Statement(sql, tuple(op.set.values()) + tuple(params), op_index, expected_rows=1)]

    if isinstance(op, Delete):
        where, params = _where(dialect, op.cond)
        if op.unique:
            return [Statement(f"DELETE FROM {table} WHERE {where}", tuple(params), op_index, expected_rows=1)]
        return [Statement(dialect.delete_one(op.table, where), tuple(params), op_index, expected_rows=1)]

    raise TypeError(f"Unsupported fixture operation: {op!r}")


def render_statements(fixture: Fixture, dialect: SqlDialect) -> List[Statement]:
    """Render a whole fixture, preserving operation order."""
    statements: List[Statement] = []
    for index, op in enumerate(fixture):
        statements.extend(render_op(op, dialect, index))
    return statements


def _inline(statement: Statement, dialect: SqlDialect) -> str:
    """Substitute literals for placeholders."""
    pieces = statement.sql.split("?")
    if len(pieces) - 1 != len(statement.params):
        raise ValueError(
            f"Cannot inline statement for operation {statement.op_index}: "
            f"placeholder count does not match parameters"
        )
    out = [pieces[0]]
    for value, piece in zip(statement.params, pieces[1:]):
        out.append(dialect.literal(value))
        out.append(piece)
    return "".join(out)


def render_script(fixture: Fixture, dialect: SqlDialect) -> str:
    """
    Render a fixture as a standalone SQL script with literal values.

    Identifiers containing ``?`` cannot be inlined and raise ValueError.
    """
    lines = [f"-- dbfixture: {len(fixture)} operations ({dialect.name})"]
    for diagnostic in fixture.diagnostics:
        lines.append(f"-- WARNING: {diagnostic}")

    for statement in render_statements(fixture, dialect):
        lines.append(_inline(statement, dialect) + ";")

    return "\n".join(lines) + "\n"
