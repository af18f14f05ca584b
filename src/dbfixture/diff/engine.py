"""
Diff engine: computes the Fixture that turns one Snapshot into another.

The computation is pure and synchronous. It either returns a complete,
referentially ordered Fixture or raises a DiffError; it never returns a
partial result.

Ordering of the produced Fixture:
    1. Deletes/Truncates, tables in delete order (dependents first)
    2. Updates, tables in insert order
    3. Inserts, tables in insert order (parents first)

Updates that change a foreign key column are not re-ordered against the
deletes and inserts around them.
"""

import logging
from collections import Counter
from typing import Dict, List, Optional

from ..core.errors import DuplicatePrimaryKey, StructureMismatch, TableSetMismatch
from ..core.fixture import Delete, Fixture, FixtureOp, Insert, Truncate, Update
from ..core.models import Row, Snapshot, Table
from .grapher import DependencyGraph

logger = logging.getLogger(__name__)


class TableDiff:
    """Row-level changes for one table, before global ordering."""

    def __init__(self, table: str):
        self.table = table
        self.deletes: List[FixtureOp] = []
        self.updates: List[Update] = []
        self.inserts: List[Insert] = []

    @property
    def is_empty(self) -> bool:
        return not (self.deletes or self.updates or self.inserts)


class DiffEngine:
    """
    Computes fixtures between snapshots that share structure.

    Args:
        truncate_disjoint: Emit a single Truncate instead of per-row deletes
            when no row of the previous table survives into the current one
    """

    def __init__(self, truncate_disjoint: bool = False):
        self.truncate_disjoint = truncate_disjoint

    def diff(self, previous: Snapshot, current: Snapshot) -> Fixture:
        """
        Compute the fixture transforming ``previous`` into ``current``.

        Raises:
            TableSetMismatch: The snapshots do not hold the same tables
            StructureMismatch: A shared table differs in columns, primary key or foreign keys
            DuplicatePrimaryKey: A keyed table repeats a primary key value
        """
        self.assert_structure(previous, current)

        table_diffs: Dict[str, TableDiff] = {}
        for name in current:
            table_diffs[name] = self.diff_table(previous[name], current[name])

        graph = DependencyGraph.from_snapshot(current)

        ops: List[FixtureOp] = []
        for name in graph.delete_order:
            ops.extend(table_diffs[name].deletes)
        for name in graph.insert_order:
            ops.extend(table_diffs[name].updates)
        for name in graph.insert_order:
            ops.extend(table_diffs[name].inserts)

        changed = [name for name, d in table_diffs.items() if not d.is_empty]
        logger.debug(
            f"Diff produced {len(ops)} operations across {len(changed)} changed tables"
        )

        return Fixture(ops=tuple(ops), diagnostics=tuple(graph.diagnostics))

    def assert_structure(self, previous: Snapshot, current: Snapshot) -> None:
        """Validate that the snapshots are diffable."""
        prev_names = set(previous)
        curr_names = set(current)
        if prev_names != curr_names:
            raise TableSetMismatch(
                missing=prev_names - curr_names,
                extra=curr_names - prev_names,
            )

        for name in current:
            self.assert_table_structure(previous[name], current[name])

        for snapshot in (previous, current):
            for table in snapshot.values():
                if table.is_keyed:
                    self._index_by_key(table)

    @staticmethod
    def assert_table_structure(previous: Table, current: Table) -> None:
        """Validate that two versions of a table share columns, primary key and foreign keys."""
        if previous.columns != current.columns:
            raise StructureMismatch(
                current.name,
                f"columns {list(previous.columns)} vs {list(current.columns)}",
            )
        if previous.primary_key != current.primary_key:
            raise StructureMismatch(
                current.name,
                f"primary_key {previous.primary_key!r} vs {current.primary_key!r}",
            )
        if previous.foreign_key_map != current.foreign_key_map:
            raise StructureMismatch(
                current.name,
                f"foreign_keys {previous.foreign_key_map} vs {current.foreign_key_map}",
            )

    def diff_table(self, previous: Table, current: Table) -> TableDiff:
        """Compute the unordered changes for one table."""
        if current.is_keyed:
            result = self._diff_keyed(previous, current)
        else:
            result = self._diff_keyless(previous, current)

        if not result.is_empty:
            logger.debug(
                f"{current.name}: {len(result.deletes)} deletes, "
                f"{len(result.updates)} updates, "
                f"{sum(len(i.rows) for i in result.inserts)} inserted rows"
            )
        return result

    def _diff_keyed(self, previous: Table, current: Table) -> TableDiff:
        result = TableDiff(current.name)
        pk = current.primary_key
        pk_index = current.primary_key_index

        prev_rows = self._index_by_key(previous)
        curr_rows = self._index_by_key(current)

        survivors = [key for key in prev_rows if key in curr_rows]
        if self._should_truncate(previous, survivors):
            result.deletes.append(Truncate(current.name))
        else:
            for key in prev_rows:
                if key not in curr_rows:
                    result.deletes.append(Delete(current.name, {pk: key}, unique=True))

        inserted: List[Row] = []
        for key, row in curr_rows.items():
            old = prev_rows.get(key)
            if old is None:
                inserted.append(row)
                continue

            changed = {
                column: new_value
                for i, (column, old_value, new_value) in enumerate(zip(current.columns, old, row))
                if i != pk_index and old_value != new_value
            }
            if changed:
                result.updates.append(Update(current.name, set=changed, cond={pk: key}))

        if inserted:
            result.inserts.append(Insert(current.name, current.columns, tuple(inserted)))

        return result

    def _diff_keyless(self, previous: Table, current: Table) -> TableDiff:
        result = TableDiff(current.name)

        prev_counts = Counter(previous.rows)
        curr_counts = Counter(current.rows)

        survivors = [row for row in prev_counts if row in curr_counts]
        if self._should_truncate(previous, survivors):
            result.deletes.append(Truncate(current.name))
        else:
            # Counter preserves first-seen order, so deletes follow the previous snapshot
            for row, count in prev_counts.items():
                removed = max(0, count - curr_counts.get(row, 0))
                for _ in range(removed):
                    result.deletes.append(
                        Delete(current.name, current.row_dict(row), unique=current.unique_rows)
                    )

        # Added occurrences, in current-snapshot order
        pending = Counter({
            row: max(0, count - prev_counts.get(row, 0))
            for row, count in curr_counts.items()
        })
        inserted: List[Row] = []
        for row in current.rows:
            if pending[row] > 0:
                pending[row] -= 1
                inserted.append(row)

        if inserted:
            result.inserts.append(Insert(current.name, current.columns, tuple(inserted)))

        return result

    def _should_truncate(self, previous: Table, survivors: List) -> bool:
        return self.truncate_disjoint and len(previous.rows) > 0 and not survivors

    @staticmethod
    def _index_by_key(table: Table) -> Dict[Optional[str], Row]:
        """Map primary key value -> row, failing on repeated keys."""
        pk_index = table.primary_key_index
        index: Dict[Optional[str], Row] = {}
        for row in table.rows:
            key = row[pk_index]
            if key in index:
                raise DuplicatePrimaryKey(table.name, table.primary_key, key)
            index[key] = row
        return index


def diff(previous: Snapshot, current: Snapshot, truncate_disjoint: bool = False) -> Fixture:
    """Compute the fixture transforming ``previous`` into ``current``."""
    return DiffEngine(truncate_disjoint=truncate_disjoint).diff(previous, current)
