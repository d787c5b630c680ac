"""
Tests for Stage 02: the sweep/delete engine.
"""
import logging
import sqlite3

import pytest

from local_data_prune.config_interface import SweepSettings
from local_data_prune.database_interface import DBError
from local_data_prune.stage_02_sweep import database_stage_02_sweep
from local_data_prune.stage_02_sweep.stage_02_sweep import SweepEngine, SweepPlan


def _deleted_object_batches(db) -> list[tuple]:
    return [
        params for sql, params in db.query_log
        if sql.startswith("DELETE FROM objects ")
    ]


class TestSweepPlan:
    """Expected batch count and safety valve trip point."""

    def test_trip_point_truncates(self):
        plan = SweepPlan.compute(total_objects=10000, retained=9000, batch_size=500, safety_factor=1.25)
        assert plan.expected_batches == 2
        assert plan.max_iterations == 2

    def test_partial_batch_rounds_up(self):
        plan = SweepPlan.compute(total_objects=1001, retained=0, batch_size=500, safety_factor=1.25)
        assert plan.expected_batches == 3
        assert plan.max_iterations == 3

    def test_nothing_to_delete(self):
        plan = SweepPlan.compute(total_objects=10, retained=10, batch_size=500, safety_factor=1.25)
        assert plan.expected_batches == 0
        assert plan.max_iterations == 0


class TestSweep:
    """Full sweep runs."""

    def test_only_retained_objects_survive(self, store, sweep_db):
        keep = store.add_objects("post", 3)
        drop = store.add_objects("post", 7)
        store.retain(keep)

        stats = SweepEngine(sweep_db, SweepSettings(batch_size=2)).sweep()

        assert store.object_ids() == set(keep)
        assert store.retained_ids() == set(keep)
        assert stats.objects_deleted == len(drop)
        assert stats.batches == 4
        assert not stats.aborted

    def test_revisions_of_retained_objects_are_kept(self, store, sweep_db):
        post = store.add_object("post")
        revision = store.add_object("revision", parent=post)
        store.retain([post])

        stats = SweepEngine(sweep_db, SweepSettings()).sweep()

        assert store.object_ids() == {post, revision}
        assert stats.batches == 0

    def test_free_resources_after_every_batch(self, store, sweep_db):
        store.add_objects("post", 4)
        calls = []
        engine = SweepEngine(sweep_db, SweepSettings(batch_size=2), reset_hooks=[lambda: calls.append(1)])

        stats = engine.sweep()

        assert stats.batches == 2
        assert len(calls) == stats.batches + 1
        assert len(engine.cache) == 0

    def test_safety_valve_stops_a_loop_that_deletes_nothing(self, store, sweep_db, monkeypatch, caplog):
        store.add_objects("post", 4)
        engine = SweepEngine(sweep_db, SweepSettings(batch_size=2))
        monkeypatch.setattr(engine, "delete_objects", lambda ids, stats=None: stats)

        with caplog.at_level(logging.WARNING, logger="local_data_prune"):
            stats = engine.sweep()

        assert stats.plan.expected_batches == 2
        assert stats.plan.max_iterations == 2
        assert stats.batches == 3
        assert stats.aborted
        assert stats.remaining_estimate == 4
        assert any("Infinite loop detected" in r.getMessage() for r in caplog.records)
        assert len(store.object_ids()) == 4

    def test_interrupted_sweep_finishes_on_rerun(self, store, sweep_db, monkeypatch):
        kept = store.add_object("post")
        doomed = store.add_object("post")
        revision = store.add_object("revision", parent=doomed)
        tag = store.add_term("Live", "post_tag")
        for object_id in (doomed, revision):
            store.add_meta(object_id, "views", "10")
            store.add_comment_meta(store.add_comment(object_id))
        store.relate(doomed, tag)
        store.relate(kept, tag)
        store.retain([kept])

        delete_object_meta = sweep_db.delete_object_meta
        calls = []

        def fail_once(object_ids):
            calls.append(list(object_ids))
            if len(calls) == 1:
                raise DBError("connection lost")
            return delete_object_meta(object_ids)

        monkeypatch.setattr(sweep_db, "delete_object_meta", fail_once)

        with pytest.raises(DBError):
            SweepEngine(sweep_db, SweepSettings()).sweep()
        assert doomed in store.object_ids()

        stats = SweepEngine(sweep_db, SweepSettings()).sweep()

        assert store.object_ids() == {kept}
        for object_id in (doomed, revision):
            assert store.count("object_meta", "object_id = ?", (object_id,)) == 0
            assert store.count("comments", "object_id = ?", (object_id,)) == 0
            assert store.count("term_relationships", "object_id = ?", (object_id,)) == 0
        assert store.count("comment_meta") == 0
        assert store.count("term_relationships", "object_id = ?", (kept,)) == 1
        assert stats.objects_deleted == 1
        assert stats.revisions_deleted == 1


class TestReparenting:
    """Children are moved one generation up."""

    def test_attachment_moves_to_grandparent(self, store, sweep_db):
        grandparent = store.add_object("post")
        parent = store.add_object("post", parent=grandparent)
        attachment = store.add_object("attachment", parent=parent)
        store.retain([grandparent])

        stats = SweepEngine(sweep_db, SweepSettings()).delete_objects([parent])

        assert store.parent_of(attachment) == grandparent
        assert parent not in store.object_ids()
        assert stats.reparented == 1

    def test_missing_grandparent_leaves_children_alone(self, store, sweep_db):
        parent = store.add_object("post", parent=424242)
        attachment = store.add_object("attachment", parent=parent)

        stats = SweepEngine(sweep_db, SweepSettings()).delete_objects([parent])

        assert store.parent_of(attachment) == parent
        assert stats.reparented == 0
        assert stats.reparent_skipped == 1

    def test_top_level_parent_leaves_children_alone(self, store, sweep_db):
        parent = store.add_object("post")
        attachment = store.add_object("attachment", parent=parent)

        stats = SweepEngine(sweep_db, SweepSettings()).delete_objects([parent])

        assert store.parent_of(attachment) == parent
        assert stats.reparent_skipped == 1

    def test_children_of_other_types_are_not_moved(self, store, sweep_db):
        grandparent = store.add_object("post")
        parent = store.add_object("page", parent=grandparent)
        menu_item = store.add_object("nav_menu_item", parent=parent)
        child_page = store.add_object("page", parent=parent)

        SweepEngine(sweep_db, SweepSettings()).delete_objects([parent])

        assert store.parent_of(menu_item) == parent
        assert store.parent_of(child_page) == grandparent

    def test_many_children_and_comments_fit_the_variable_limit(self, store, sweep_db, monkeypatch):
        monkeypatch.setattr(database_stage_02_sweep, "MAX_SQL_VARIABLES", 10)
        sweep_db._conn.setlimit(sqlite3.SQLITE_LIMIT_VARIABLE_NUMBER, 10)
        grandparent = store.add_object("post")
        post = store.add_object("post", parent=grandparent)
        attachments = [store.add_object("attachment", parent=post) for _ in range(25)]
        for _ in range(25):
            store.add_comment_meta(store.add_comment(post))
        store.retain([grandparent])

        stats = SweepEngine(sweep_db, SweepSettings()).delete_objects([post])

        assert post not in store.object_ids()
        assert all(store.parent_of(a) == grandparent for a in attachments)
        assert store.count("comments") == 0
        assert store.count("comment_meta") == 0
        assert stats.reparented == 25
        assert stats.comment_meta_deleted == 25


class TestCascade:
    """Dependent records are removed with their object."""

    def test_all_dependents_are_removed(self, store, sweep_db):
        kept = store.add_object("post")
        doomed = store.add_object("post")
        category = store.add_term("News", "category")
        genre = store.add_term("Jazz", "genre")
        for object_id in (kept, doomed):
            store.add_meta(object_id, "views", "10")
            comment = store.add_comment(object_id)
            store.add_comment_meta(comment)
            store.relate(object_id, category)
            store.relate(object_id, genre)
        store.retain([kept])

        stats = SweepEngine(sweep_db, SweepSettings()).sweep()

        assert store.object_ids() == {kept}
        assert store.count("object_meta", "object_id = ?", (doomed,)) == 0
        assert store.count("comments", "object_id = ?", (doomed,)) == 0
        assert store.count("comment_meta") == 1
        assert store.count("term_relationships", "object_id = ?", (doomed,)) == 0
        assert store.count("term_relationships", "object_id = ?", (kept,)) == 2
        assert stats.term_relationships_deleted == 2
        assert stats.comments_deleted == 1
        assert stats.comment_meta_deleted == 1
        assert stats.meta_deleted == 1

    def test_term_counts_are_recomputed(self, store, sweep_db):
        kept = store.add_object("post")
        doomed = store.add_object("post")
        tag = store.add_term("Live", "post_tag")
        store.relate(kept, tag)
        store.relate(doomed, tag)
        store.retain([kept])

        SweepEngine(sweep_db, SweepSettings()).sweep()
        sweep_db.recount_terms()

        assert store.scalar("SELECT count FROM term_taxonomy WHERE term_taxonomy_id = ?", (tag,)) == 1


class TestRevisions:
    """Revisions are deleted before their parent, recursively."""

    def test_revisions_are_deleted_before_the_parent(self, store, sweep_db):
        post = store.add_object("post")
        first = store.add_object("revision", parent=post)
        second = store.add_object("revision", parent=post)
        store.add_meta(first, "_edit_lock", "1")

        stats = SweepEngine(sweep_db, SweepSettings()).delete_objects([post])

        assert _deleted_object_batches(sweep_db) == [(first, second), (post,)]
        assert store.object_ids() == set()
        assert store.count("object_meta") == 0
        assert stats.revisions_deleted == 2
        assert stats.objects_deleted == 1

    def test_nested_revisions_go_first(self, store, sweep_db):
        post = store.add_object("post")
        revision = store.add_object("revision", parent=post)
        nested = store.add_object("revision", parent=revision)

        SweepEngine(sweep_db, SweepSettings()).delete_objects([post])

        assert _deleted_object_batches(sweep_db) == [(nested,), (revision,), (post,)]

    def test_revisions_are_not_reparented(self, store, sweep_db):
        grandparent = store.add_object("post")
        post = store.add_object("post", parent=grandparent)
        revision = store.add_object("revision", parent=post)
        store.retain([grandparent])

        stats = SweepEngine(sweep_db, SweepSettings()).delete_objects([post])

        assert revision not in store.object_ids()
        assert stats.reparented == 0

    def test_retained_revision_follows_its_deleted_parent(self, store, sweep_db):
        post = store.add_object("post")
        revision = store.add_object("revision", parent=post)
        store.retain([revision])

        stats = SweepEngine(sweep_db, SweepSettings()).sweep()

        assert store.object_ids() == set()
        assert store.retained_ids() == {revision}
        assert stats.objects_deleted == 1
        assert stats.revisions_deleted == 1

    def test_relationships_go_before_rows(self, store, sweep_db):
        post = store.add_object("post")
        tag = store.add_term("Live", "post_tag")
        store.relate(post, tag)

        SweepEngine(sweep_db, SweepSettings()).delete_objects([post])

        statements = [sql for sql, _ in sweep_db.query_log]
        relationships = next(i for i, s in enumerate(statements) if s.startswith("DELETE FROM term_relationships"))
        rows = next(i for i, s in enumerate(statements) if s.startswith("DELETE FROM objects "))
        assert relationships < rows
        assert statements[-1].startswith("DELETE FROM objects ")
