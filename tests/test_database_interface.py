"""
Tests for the shared database adapter behaviour.
"""
import sqlite3

import pytest

from local_data_prune.database_interface import (
    DBSchemaError,
    ObjectRow,
    StageAccessError,
    chunked,
    placeholders,
)
from local_data_prune.stage_01_mark import database_stage_01_mark
from local_data_prune.stage_01_mark.database_stage_01_mark import Stage01MarkDatabaseInterface
from local_data_prune.stage_02_sweep import database_stage_02_sweep
from local_data_prune.stage_02_sweep.database_stage_02_sweep import Stage02SweepDatabaseInterface
from local_data_prune.stage_03_anonymize import database_stage_03_anonymize


class TestHelpers:
    """SQL helpers."""

    def test_placeholders(self):
        assert placeholders(3) == "?, ?, ?"
        with pytest.raises(ValueError):
            placeholders(0)

    def test_chunked(self):
        assert [list(c) for c in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]
        assert list(chunked([], 2)) == []

    def test_object_row_normalizes_zero_parent(self):
        row = ObjectRow(id=1, type="post", parent_id=0, created_at="2026-01-01 10:00:00")
        assert row.parent_id is None
        assert row.created_at.year == 2026


class TestStageIsolation:
    """READS/WRITES enforcement."""

    def test_mark_stage_cannot_delete_objects(self, mark_db):
        with pytest.raises(StageAccessError):
            mark_db._check_write_access("objects")

    def test_sweep_stage_cannot_write_retain_set(self, sweep_db):
        with pytest.raises(StageAccessError):
            sweep_db._check_write_access("retained_objects")
        sweep_db._check_read_access("retained_objects")

    def test_access_errors_name_the_stage(self, mark_db, sweep_db, anonymize_db):
        assert mark_db.stage_name == database_stage_01_mark.STAGE_NAME == "stage_01_mark"
        assert sweep_db.stage_name == database_stage_02_sweep.STAGE_NAME == "stage_02_sweep"
        assert anonymize_db.stage_name == database_stage_03_anonymize.STAGE_NAME == "stage_03_anonymize"
        with pytest.raises(StageAccessError, match="stage_03_anonymize"):
            anonymize_db._check_write_access("objects")


class TestSchema:
    """Opening adapters against existing stores."""

    def test_missing_tables_are_reported(self, tmp_path):
        path = tmp_path / "partial.db"
        conn = sqlite3.connect(str(path))
        conn.execute("CREATE TABLE objects (id INTEGER PRIMARY KEY)")
        conn.commit()
        conn.close()

        with pytest.raises(DBSchemaError, match="object_meta"):
            with Stage02SweepDatabaseInterface(path):
                pass

    def test_fresh_file_gets_schema(self, tmp_path):
        with Stage01MarkDatabaseInterface(tmp_path / "new.db") as db:
            assert db.prepare_retained_table(fresh=True) == 0
            assert db.get_objects([1, 2]) == []


class TestSharedReads:
    """Batched reads shared by all stages."""

    def test_get_objects_skips_missing(self, store, mark_db):
        a = store.add_object("post")
        b = store.add_object("page", parent=a)

        rows = mark_db.get_objects([b, a, 999])

        assert [(r.id, r.type, r.parent_id) for r in rows] == [(a, "post", None), (b, "page", a)]

    def test_get_meta_values_first_row_wins(self, store, mark_db):
        a = store.add_object("post")
        store.add_meta(a, "_thumbnail_id", "5")
        store.add_meta(a, "_thumbnail_id", "6")

        assert mark_db.get_meta_values([a], "_thumbnail_id") == {a: "5"}

    def test_query_log_records_normalized_statements(self, store, mark_db):
        mark_db.get_object(1)

        sql, params = mark_db.query_log[-1]
        assert sql == "SELECT * FROM objects WHERE id = ?"
        assert params == (1,)

        mark_db.reset_query_log()
        assert mark_db.query_log == []
