"""
Fixture operations and the Fixture artifact.

A Fixture is the ordered sequence of row mutations that turns one Snapshot's
data into another's. Order is significant and is preserved exactly through
serialization.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, ClassVar, Dict, Iterable, Iterator, List, Mapping, Tuple, Type, Union

from .errors import FixtureFormatError
from .models import Row, Value

logger = logging.getLogger(__name__)


FORMAT_VERSION = 1


def _check_values(table: str, values: Iterable[Any], where: str) -> None:
    for value in values:
        if value is not None and not isinstance(value, str):
            raise ValueError(f"{where} of '{table}' contains a non-canonical value {value!r}")


@dataclass(frozen=True)
class Truncate:
    """Remove every row of a table."""
    table: str

    kind: ClassVar[str] = "truncate"

    def to_dict(self) -> Dict[str, Any]:
        return {"op": self.kind, "table": self.table}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Truncate":
        return cls(table=data["table"])


@dataclass(frozen=True)
class Insert:
    """Insert a batch of rows, positionally aligned with ``columns``."""
    table: str
    columns: Tuple[str, ...]
    rows: Tuple[Row, ...]

    kind: ClassVar[str] = "insert"

    def __post_init__(self):
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "rows", tuple(tuple(r) for r in self.rows))

        width = len(self.columns)
        for i, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(
                    f"Insert row {i} into '{self.table}' has {len(row)} values, expected {width}"
                )
            _check_values(self.table, row, f"Insert row {i}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "op": self.kind,
            "table": self.table,
            "columns": list(self.columns),
            "rows": [list(row) for row in self.rows],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Insert":
        return cls(table=data["table"], columns=data["columns"], rows=data["rows"])


@dataclass(frozen=True)
class Update:
    """Set ``set`` columns on the row(s) matching ``cond``."""
    table: str
    set: Mapping[str, Value]
    cond: Mapping[str, Value]

    kind: ClassVar[str] = "update"

    def __post_init__(self):
        object.__setattr__(self, "set", MappingProxyType(dict(self.set)))
        object.__setattr__(self, "cond", MappingProxyType(dict(self.cond)))
        _check_values(self.table, self.set.values(), "Update")
        _check_values(self.table, self.cond.values(), "Update condition")

    def __hash__(self) -> int:
        return hash((self.table, frozenset(self.set.items()), frozenset(self.cond.items())))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "op": self.kind,
            "table": self.table,
            "set": dict(self.set),
            "cond": dict(self.cond),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Update":
        return cls(table=data["table"], set=dict(data["set"]), cond=dict(data["cond"]))


@dataclass(frozen=True)
class Delete:
    """
    Delete one row matching ``cond``.

    For keyed tables ``cond`` is the primary key. For key-less tables it lists
    every column; duplicate rows produce one Delete per removed occurrence.
    ``unique`` marks a condition that can match at most one row, which lets
    the statement skip single-row selection.
    """
    table: str
    cond: Mapping[str, Value]
    unique: bool = False

    kind: ClassVar[str] = "delete"

    def __post_init__(self):
        object.__setattr__(self, "cond", MappingProxyType(dict(self.cond)))
        _check_values(self.table, self.cond.values(), "Delete condition")

    def __hash__(self) -> int:
        return hash((self.table, frozenset(self.cond.items()), self.unique))

    def to_dict(self) -> Dict[str, Any]:
        data = {"op": self.kind, "table": self.table, "cond": dict(self.cond)}
        if self.unique:
            data["unique"] = True
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Delete":
        return cls(table=data["table"], cond=dict(data["cond"]), unique=bool(data.get("unique", False)))


FixtureOp = Union[Truncate, Insert, Update, Delete]

OP_TYPES: Dict[str, Type] = {
    op_type.kind: op_type for op_type in (Truncate, Insert, Update, Delete)
}


def op_from_dict(data: Dict[str, Any]) -> FixtureOp:
    """Decode one tagged operation."""
    if not isinstance(data, dict):
        raise FixtureFormatError(f"Operation must be an object, got {type(data).__name__}")

    op_type = OP_TYPES.get(data.get("op"))
    if op_type is None:
        raise FixtureFormatError(f"Unknown fixture operation: {data.get('op')!r}")

    try:
        return op_type.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise FixtureFormatError(f"Malformed '{data.get('op')}' operation: {e}") from e


@dataclass(frozen=True)
class Fixture:
    """
    Ordered, replayable sequence of FixtureOps.

    ``diagnostics`` carries non-fatal notes from the diff (e.g. foreign key
    cycles) and does not take part in equality.
    """
    ops: Tuple[FixtureOp, ...] = ()
    diagnostics: Tuple[str, ...] = field(default=(), compare=False)

    def __post_init__(self):
        object.__setattr__(self, "ops", tuple(self.ops))
        object.__setattr__(self, "diagnostics", tuple(self.diagnostics))

    def __iter__(self) -> Iterator[FixtureOp]:
        return iter(self.ops)

    def __len__(self) -> int:
        return len(self.ops)

    def __getitem__(self, index: int) -> FixtureOp:
        return self.ops[index]

    @property
    def is_empty(self) -> bool:
        return not self.ops

    def of_kind(self, op_type: Type) -> List[FixtureOp]:
        """All operations of one type, in fixture order."""
        return [op for op in self.ops if isinstance(op, op_type)]

    def tables(self) -> List[str]:
        """Tables touched by this fixture, in order of first appearance."""
        seen: Dict[str, None] = {}
        for op in self.ops:
            seen.setdefault(op.table, None)
        return list(seen)

    def summary(self) -> str:
        """Get a human-readable summary."""
        counts = {kind: 0 for kind in OP_TYPES}
        inserted_rows = 0
        for op in self.ops:
            counts[op.kind] += 1
            if isinstance(op, Insert):
                inserted_rows += len(op.rows)

        lines = [
            f"Fixture ({len(self.ops)} operations)",
            f"  Truncates: {counts['truncate']}",
            f"  Deletes: {counts['delete']}",
            f"  Updates: {counts['update']}",
            f"  Inserts: {counts['insert']} ({inserted_rows} rows)",
        ]
        if self.diagnostics:
            lines.append(f"  Diagnostics: {len(self.diagnostics)}")
            lines.extend(f"    - {d}" for d in self.diagnostics)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "format_version": FORMAT_VERSION,
            "operations": [op.to_dict() for op in self.ops],
            "diagnostics": list(self.diagnostics),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Fixture":
        """Create from dictionary."""
        if not isinstance(data, dict):
            raise FixtureFormatError("Fixture document must be an object")

        version = data.get("format_version", FORMAT_VERSION)
        if version != FORMAT_VERSION:
            raise FixtureFormatError(f"Unsupported fixture format version: {version}")

        operations = data.get("operations")
        if not isinstance(operations, list):
            raise FixtureFormatError("'operations' must be an array")

        return cls(
            ops=tuple(op_from_dict(op) for op in operations),
            diagnostics=tuple(data.get("diagnostics", [])),
        )

    def fingerprint(self) -> str:
        """SHA-256 of the canonical serialized form (operation order included)."""
        from ..serialization.canonical import fingerprint

        return fingerprint(self.to_dict()["operations"])

    def save(self, path: Path) -> None:
        """Save fixture to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
        logger.info(f"Saved fixture ({len(self.ops)} operations) to: {path}")

    @classmethod
    def load(cls, path: Path) -> "Fixture":
        """Load fixture from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise FixtureFormatError(f"Invalid JSON in {path}: {e}") from e

        fixture = cls.from_dict(data)
        logger.debug(f"Loaded fixture from: {path}")
        return fixture
