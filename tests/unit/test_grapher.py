"""
Unit tests for the foreign key dependency graph.
"""

import logging

from dbfixture.core.models import ForeignKey, Snapshot, Table
from dbfixture.diff.grapher import DependencyGraph


def table(name, refs=()):
    """Keyed table with one foreign key column per referenced table."""
    columns = ["id"] + [f"{ref}_id" for ref in refs]
    return Table(
        name=name,
        columns=tuple(columns),
        primary_key="id",
        foreign_keys=tuple(ForeignKey(f"{ref}_id", ref, "id") for ref in refs),
    )


class TestDependencyGraph:
    """Tests for insert/delete ordering and cycle detection."""

    def test_independent_tables_keep_declared_order(self):
        graph = DependencyGraph.from_snapshot(Snapshot([table("b"), table("a"), table("c")]))

        assert graph.insert_order == ["a", "b", "c"]
        assert graph.delete_order == ["c", "b", "a"]
        assert not graph.has_cycles
        assert graph.diagnostics == []

    def test_parents_inserted_first(self):
        snapshot = Snapshot([
            table("accounts"),
            table("orders", refs=("accounts",)),
            table("line_items", refs=("orders", "products")),
            table("products"),
        ])

        graph = DependencyGraph.from_snapshot(snapshot)
        order = graph.insert_order

        assert order.index("accounts") < order.index("orders")
        assert order.index("orders") < order.index("line_items")
        assert order.index("products") < order.index("line_items")
        assert graph.delete_order == list(reversed(order))

    def test_ties_broken_by_declared_order(self):
        # "z_parent" must precede "a_child" even though it sorts later
        snapshot = Snapshot([table("a_child", refs=("z_parent",)), table("m"), table("z_parent")])

        graph = DependencyGraph.from_snapshot(snapshot)

        assert graph.insert_order == ["m", "z_parent", "a_child"]

    def test_deterministic(self):
        snapshot = Snapshot([
            table("c", refs=("a",)),
            table("b", refs=("a",)),
            table("a"),
        ])

        orders = {tuple(DependencyGraph.from_snapshot(snapshot).insert_order) for _ in range(5)}

        assert orders == {("a", "b", "c")}

    def test_foreign_key_outside_snapshot_ignored(self):
        graph = DependencyGraph.from_snapshot(Snapshot([table("orders", refs=("accounts",))]))

        assert graph.insert_order == ["orders"]
        assert graph.dependencies("orders") == []

    def test_dependency_queries(self):
        graph = DependencyGraph.from_snapshot(Snapshot([
            table("accounts"),
            table("orders", refs=("accounts",)),
            table("invoices", refs=("accounts",)),
        ]))

        assert graph.dependencies("orders") == ["accounts"]
        assert graph.dependents("accounts") == ["invoices", "orders"]
        assert graph.dependents("orders") == []

    def test_cycle_yields_diagnostic(self, caplog):
        snapshot = Snapshot([
            table("a", refs=("b",)),
            table("b", refs=("a",)),
            table("c", refs=("a",)),
        ])

        with caplog.at_level(logging.WARNING, logger="dbfixture.diff.grapher"):
            graph = DependencyGraph.from_snapshot(snapshot)

        assert graph.has_cycles
        assert graph.cycles == [["a", "b"]]
        assert len(graph.diagnostics) == 1
        assert "cycle" in graph.diagnostics[0]
        assert graph.insert_order == ["a", "b", "c"]
        assert any("cycle" in record.message for record in caplog.records)

    def test_self_reference_is_cycle(self):
        snapshot = Snapshot([table("employees", refs=("employees",))])

        graph = DependencyGraph.from_snapshot(snapshot)

        assert graph.cycles == [["employees"]]
        assert graph.insert_order == ["employees"]

    def test_long_chain(self):
        names = [f"t{i:03d}" for i in range(300)]
        tables = [table(names[0])] + [
            table(name, refs=(names[i - 1],)) for i, name in enumerate(names) if i > 0
        ]

        graph = DependencyGraph.from_snapshot(Snapshot(tables))

        assert graph.insert_order == names
