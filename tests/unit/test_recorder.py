"""
Unit tests for FixtureRecorder using the SQLite backend.
"""

import pytest

from dbfixture.core.errors import CaptureError
from dbfixture.core.fixture import Delete, Fixture, Insert, Update
from dbfixture.testing.recorder import FixtureRecorder


SEED = Fixture(ops=(
    Insert("customers", ("id", "name", "email"), (("1", "Alice", None), ("2", "Bob", None))),
))


class TestFixtureRecorder:
    """Tests for recording the fixture of a test body."""

    def test_records_changes(self, sqlite_support, shop_setup):
        recorder = FixtureRecorder(sqlite_support, setup=shop_setup)

        with recorder.record("tests/test_shop.py::test_rename", seed=SEED) as rec:
            rec.conn.execute("UPDATE customers SET name = 'Alicia' WHERE id = 1")
            rec.conn.execute("DELETE FROM customers WHERE id = 2")
            rec.conn.execute("INSERT INTO customers VALUES (3, 'Carol', 'c@example.com')")
            rec.conn.commit()

        assert list(rec.fixture) == [
            Delete("customers", {"id": "2"}, unique=True),
            Update("customers", set={"name": "Alicia"}, cond={"id": "1"}),
            Insert("customers", ("id", "name", "email"), (("3", "Carol", "c@example.com"),)),
        ]
        assert rec.before.row_count == 2
        assert rec.after.row_count == 2

    def test_database_released_after_recording(self, sqlite_support, shop_setup):
        recorder = FixtureRecorder(sqlite_support, setup=shop_setup)

        with recorder.record("tests/test_shop.py::test_release") as rec:
            path = sqlite_support.database_path(rec.database)
            assert path.exists()

        assert sqlite_support.database_name("tests/test_shop.py::test_release") is None
        assert not path.exists()

    def test_saves_fixture(self, sqlite_support, shop_setup, tmp_path):
        recorder = FixtureRecorder(sqlite_support, output_dir=tmp_path / "fixtures", setup=shop_setup)

        with recorder.record("tests/test_shop.py::test_save") as rec:
            rec.conn.execute("INSERT INTO tags VALUES ('x', NULL)")
            rec.conn.commit()

        assert rec.path == tmp_path / "fixtures" / f"{rec.database}.json"
        assert Fixture.load(rec.path) == rec.fixture

    def test_no_changes_gives_empty_fixture(self, sqlite_support, shop_setup):
        recorder = FixtureRecorder(sqlite_support, setup=shop_setup)

        with recorder.record("tests/test_shop.py::test_noop", seed=SEED) as rec:
            pass

        assert rec.fixture.is_empty

    def test_table_filter(self, sqlite_support, shop_setup):
        recorder = FixtureRecorder(sqlite_support, setup=shop_setup, tables=["tags"])

        with recorder.record("tests/test_shop.py::test_filter") as rec:
            rec.conn.execute("INSERT INTO customers VALUES (9, 'Zed', NULL)")
            rec.conn.commit()

        assert rec.after.table_names == ["tags"]
        assert rec.fixture.is_empty

    def test_body_error_propagates_and_releases(self, sqlite_support, shop_setup):
        recorder = FixtureRecorder(sqlite_support, setup=shop_setup)

        with pytest.raises(RuntimeError):
            with recorder.record("tests/test_shop.py::test_error") as rec:
                raise RuntimeError("test failed")

        assert rec.fixture is None
        assert sqlite_support.database_name("tests/test_shop.py::test_error") is None

    def test_uncommitted_changes_refused(self, sqlite_support, shop_setup):
        recorder = FixtureRecorder(sqlite_support, setup=shop_setup)

        with pytest.raises(CaptureError):
            with recorder.record("tests/test_shop.py::test_uncommitted") as rec:
                rec.conn.execute("INSERT INTO tags VALUES ('x', NULL)")

        assert sqlite_support.database_name("tests/test_shop.py::test_uncommitted") is None
