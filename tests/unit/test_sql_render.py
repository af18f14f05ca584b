"""
Unit tests for SQL rendering.
"""

import pytest

from dbfixture.core.fixture import Delete, Fixture, Insert, Truncate, Update
from dbfixture.replay.sql_render import (
    SQLITE, SQLSERVER, get_dialect, render_op, render_script, render_statements,
)


class TestSqlDialect:
    """Tests for quoting and literals."""

    def test_quote(self):
        assert SQLITE.quote("order") == '"order"'
        assert SQLITE.quote('we"ird') == '"we""ird"'
        assert SQLSERVER.quote("order") == "[order]"
        assert SQLSERVER.quote("we]ird") == "[we]]ird]"

    def test_literal(self):
        assert SQLITE.literal(None) == "NULL"
        assert SQLITE.literal("O'Brien") == "'O''Brien'"
        assert SQLSERVER.literal("O'Brien") == "N'O''Brien'"

    def test_get_dialect(self):
        assert get_dialect("sqlite") is SQLITE
        assert get_dialect("SQLServer") is SQLSERVER

        with pytest.raises(ValueError, match="Unknown dialect"):
            get_dialect("oracle")


class TestRenderOp:
    """Tests for rendering single operations."""

    def test_truncate(self):
        (statement,) = render_op(Truncate("users"), SQLITE, 3)

        assert statement.sql == 'DELETE FROM "users"'
        assert statement.params == ()
        assert statement.op_index == 3
        assert statement.expected_rows is None

    def test_insert_one_statement_per_row(self):
        op = Insert("users", ("id", "name"), (("1", "a"), ("2", None)))

        statements = render_op(op, SQLITE)

        assert [s.sql for s in statements] == ['INSERT INTO "users" ("id", "name") VALUES (?, ?)'] * 2
        assert [s.params for s in statements] == [("1", "a"), ("2", None)]
        assert all(s.expected_rows == 1 for s in statements)

    def test_update(self):
        op = Update("users", set={"name": "b", "email": None}, cond={"id": "1"})

        (statement,) = render_op(op, SQLSERVER)

        assert statement.sql == "UPDATE [users] SET [name] = ?, [email] = ? WHERE [id] = ?"
        assert statement.params == ("b", None, "1")
        assert statement.expected_rows == 1

    def test_delete_sqlite_single_row(self):
        op = Delete("tags", {"tag": "x", "note": None})

        (statement,) = render_op(op, SQLITE)

        assert statement.sql == (
            'DELETE FROM "tags" WHERE rowid IN '
            '(SELECT rowid FROM "tags" WHERE "tag" = ? AND "note" IS NULL LIMIT 1)'
        )
        assert statement.params == ("x",)

    def test_delete_sqlserver_single_row(self):
        (statement,) = render_op(Delete("tags", {"tag": "x"}), SQLSERVER)

        assert statement.sql == "DELETE TOP (1) FROM [tags] WHERE [tag] = ?"

    @pytest.mark.parametrize("dialect, expected", [
        (SQLITE, 'DELETE FROM "links" WHERE "a" = ? AND "b" = ?'),
        (SQLSERVER, "DELETE FROM [links] WHERE [a] = ? AND [b] = ?"),
    ])
    def test_unique_delete_is_plain(self, dialect, expected):
        op = Delete("links", {"a": "1", "b": "2"}, unique=True)

        (statement,) = render_op(op, dialect)

        assert statement.sql == expected
        assert statement.params == ("1", "2")
        assert statement.expected_rows == 1

    def test_unsupported_op(self):
        with pytest.raises(TypeError):
            render_op(object(), SQLITE)


class TestRenderFixture:
    """Tests for whole-fixture rendering."""

    def test_statements_keep_operation_order(self):
        fixture = Fixture(ops=(
            Delete("orders", {"id": "1"}),
            Insert("users", ("id",), (("1",), ("2",))),
            Update("users", set={"id": "3"}, cond={"id": "2"}),
        ))

        statements = render_statements(fixture, SQLITE)

        assert [s.op_index for s in statements] == [0, 1, 1, 2]

    def test_script(self):
        fixture = Fixture(
            ops=(
                Delete("users", {"id": "2"}),
                Insert("users", ("id", "name"), (("3", "O'Hara"),)),
            ),
            diagnostics=("cycle between a and b",),
        )

        script = render_script(fixture, SQLSERVER)

        assert script == (
            "-- dbfixture: 2 operations (sqlserver)\n"
            "-- WARNING: cycle between a and b\n"
            "DELETE TOP (1) FROM [users] WHERE [id] = N'2';\n"
            "INSERT INTO [users] ([id], [name]) VALUES (N'3', N'O''Hara');\n"
        )

    def test_script_with_null(self):
        fixture = Fixture(ops=(Update("users", set={"name": None}, cond={"id": "1"}),))

        script = render_script(fixture, SQLITE)

        assert 'UPDATE "users" SET "name" = NULL WHERE "id" = \'1\';' in script

    def test_question_mark_in_value_is_inlined(self):
        fixture = Fixture(ops=(Insert("t", ("q",), (("why?",),)),))

        assert "VALUES ('why?');" in render_script(fixture, SQLITE)
