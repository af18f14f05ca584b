"""
Core data models for captured database state.

A Snapshot is an immutable, deterministically ordered mapping of table name to
Table. Cells are canonical strings (or None for SQL NULL); any type coercion
happens once, at capture time.
"""

import json
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from .errors import FixtureFormatError

logger = logging.getLogger(__name__)


Value = Optional[str]
Row = Tuple[Value, ...]


@dataclass(frozen=True)
class ForeignKey:
    """A single-column foreign key: ``column`` references ``ref_table.ref_column``."""
    column: str
    ref_table: str
    ref_column: str

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary."""
        return {
            "column": self.column,
            "references_table": self.ref_table,
            "references_column": self.ref_column,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ForeignKey":
        """Create from dictionary."""
        return cls(
            column=data["column"],
            ref_table=data["references_table"],
            ref_column=data["references_column"],
        )


@dataclass(frozen=True)
class Table:
    """
    Captured contents and structure of one table.

    Attributes:
        name: Table name
        columns: Column names in declaration order (unique)
        rows: Rows positionally aligned with ``columns``
        primary_key: Single primary key column, or None for key-less tables
        foreign_keys: Foreign keys in declaration order
        unique_rows: Rows are distinct (a composite primary key covers them).
            Only meaningful for key-less tables.
    """
    name: str
    columns: Tuple[str, ...]
    rows: Tuple[Row, ...] = ()
    primary_key: Optional[str] = None
    foreign_keys: Tuple[ForeignKey, ...] = ()
    unique_rows: bool = False

    def __post_init__(self):
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "rows", tuple(tuple(r) for r in self.rows))
        object.__setattr__(self, "foreign_keys", tuple(self.foreign_keys))

        if len(set(self.columns)) != len(self.columns):
            raise ValueError(f"Duplicate column names in table '{self.name}': {self.columns}")

        if self.primary_key is not None and self.primary_key not in self.columns:
            raise ValueError(
                f"Primary key '{self.primary_key}' is not a column of table '{self.name}'"
            )

        seen_fk_columns = set()
        for fk in self.foreign_keys:
            if fk.column not in self.columns:
                raise ValueError(
                    f"Foreign key column '{fk.column}' is not a column of table '{self.name}'"
                )
            if fk.column in seen_fk_columns:
                raise ValueError(
                    f"Column '{fk.column}' of table '{self.name}' has more than one foreign key"
                )
            seen_fk_columns.add(fk.column)

        width = len(self.columns)
        for i, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(
                    f"Row {i} of table '{self.name}' has {len(row)} values, expected {width}"
                )
            for value in row:
                if value is not None and not isinstance(value, str):
                    raise ValueError(
                        f"Row {i} of table '{self.name}' contains a non-canonical value {value!r}"
                    )

        if self.unique_rows and len(set(self.rows)) != len(self.rows):
            raise ValueError(f"Table '{self.name}' declares unique rows but holds duplicates")

    @property
    def is_keyed(self) -> bool:
        """True if the table has a single-column primary key."""
        return self.primary_key is not None

    @property
    def primary_key_index(self) -> Optional[int]:
        """Position of the primary key column, if any."""
        if self.primary_key is None:
            return None
        return self.columns.index(self.primary_key)

    @property
    def foreign_key_map(self) -> Dict[str, Tuple[str, str]]:
        """Foreign keys as ``{column: (ref_table, ref_column)}`` in declaration order."""
        return {fk.column: (fk.ref_table, fk.ref_column) for fk in self.foreign_keys}

    @property
    def referenced_tables(self) -> List[str]:
        """Tables referenced by this table's foreign keys (declaration order, unique)."""
        seen: Dict[str, None] = {}
        for fk in self.foreign_keys:
            seen.setdefault(fk.ref_table, None)
        return list(seen)

    def row_dict(self, row: Row) -> Dict[str, Value]:
        """Map a row onto the column names."""
        return dict(zip(self.columns, row))

    def same_structure(self, other: "Table") -> bool:
        """Columns (ordered), primary key and foreign keys all match."""
        return (
            self.columns == other.columns
            and self.primary_key == other.primary_key
            and self.foreign_key_map == other.foreign_key_map
        )

    def same_data(self, other: "Table") -> bool:
        """Same structure and the same multiset of rows, regardless of row order."""
        return self.same_structure(other) and Counter(self.rows) == Counter(other.rows)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {
            "columns": list(self.columns),
            "primary_key": self.primary_key,
            "foreign_keys": [fk.to_dict() for fk in self.foreign_keys],
            "rows": [list(row) for row in self.rows],
        }
        if self.unique_rows:
            data["unique_rows"] = True
        return data

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "Table":
        """Create from dictionary."""
        return cls(
            name=name,
            columns=tuple(data["columns"]),
            rows=tuple(tuple(row) for row in data.get("rows", [])),
            primary_key=data.get("primary_key"),
            foreign_keys=tuple(ForeignKey.from_dict(fk) for fk in data.get("foreign_keys", [])),
            unique_rows=bool(data.get("unique_rows", False)),
        )


class Snapshot(Mapping):
    """
    Immutable captured state of a set of tables.

    Tables are iterated in lexicographic order of their names. ``captured_at``
    is informational and does not take part in equality.
    """

    def __init__(
        self,
        tables: Union[Iterable[Table], Mapping[str, Table]] = (),
        captured_at: Optional[datetime] = None,
    ):
        if isinstance(tables, Mapping):
            tables = tables.values()

        by_name: Dict[str, Table] = {}
        for table in tables:
            if table.name in by_name:
                raise ValueError(f"Duplicate table in snapshot: {table.name}")
            by_name[table.name] = table

        self._tables = MappingProxyType({name: by_name[name] for name in sorted(by_name)})
        self.captured_at = captured_at

    def __getitem__(self, name: str) -> Table:
        return self._tables[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tables)

    def __len__(self) -> int:
        return len(self._tables)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Snapshot):
            return NotImplemented
        return dict(self._tables) == dict(other._tables)

    def __ne__(self, other: object) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    __hash__ = None

    def __repr__(self) -> str:
        summary = ", ".join(f"{name}({len(t.rows)})" for name, t in self._tables.items())
        return f"Snapshot({summary})"

    @property
    def tables(self) -> Mapping[str, Table]:
        """Read-only view of the tables."""
        return self._tables

    @property
    def table_names(self) -> List[str]:
        """Table names in iteration order."""
        return list(self._tables)

    @property
    def row_count(self) -> int:
        """Total number of rows across all tables."""
        return sum(len(t.rows) for t in self._tables.values())

    def equivalent(self, other: "Snapshot") -> bool:
        """
        Compare contents ignoring row order.

        Two captures of the same data may list rows in a different order
        (engine-dependent sort), so this is the comparison to use after a replay.
        """
        if set(self._tables) != set(other.tables):
            return False
        return all(t.same_data(other[name]) for name, t in self._tables.items())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "captured_at": self.captured_at.isoformat() if self.captured_at else None,
            "tables": {name: table.to_dict() for name, table in self._tables.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        """Create from dictionary."""
        if not isinstance(data, dict) or not isinstance(data.get("tables"), dict):
            raise FixtureFormatError("Snapshot document must contain a 'tables' object")

        captured_at = data.get("captured_at")
        if isinstance(captured_at, str):
            captured_at = datetime.fromisoformat(captured_at.replace("Z", "+00:00"))

        try:
            tables = [Table.from_dict(name, tdata) for name, tdata in data["tables"].items()]
        except (KeyError, TypeError, ValueError) as e:
            raise FixtureFormatError(f"Invalid table in snapshot document: {e}") from e

        return cls(tables, captured_at=captured_at)

    def save(self, path: Path) -> None:
        """Save snapshot to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
        logger.info(f"Saved snapshot ({len(self)} tables, {self.row_count} rows) to: {path}")

    @classmethod
    def load(cls, path: Path) -> "Snapshot":
        """Load snapshot from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise FixtureFormatError(f"Invalid JSON in {path}: {e}") from e

        snapshot = cls.from_dict(data)
        logger.debug(f"Loaded snapshot from: {path}")
        return snapshot
