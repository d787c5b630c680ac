"""
Stage 02: Sweep.

Deletes every object that is not in the retain-set, batch by batch, together
with the records that only exist because of it.

**Batch selection:** a left anti-join of ``objects`` against the retain-set,
ordered by id, limited to the batch size. Transient types (revisions) are
never selected directly; they go with their parent. Because each batch is
deleted before the next one is selected, the query always starts from the
current state of the store and a re-run after a crash simply continues.

**Safety valve:** the expected batch count ``E = ceil((T - R) / B)`` is
computed once. If the loop is still receiving batches after ``int(E * 1.25)``
iterations, deletions are not shrinking the anti-join and the loop stops with
a warning. The store is left valid, only incompletely swept.

**Cascade order for one batch** (later steps rely on rows the earlier ones
still need):

    1. fetch the rows through the object cache
    2. delete taxonomy relationships (batch taxonomies + base taxonomies)
    3. collect re-parentable children grouped by parent
    4. move each group to its grandparent, if the grandparent exists;
       otherwise leave it alone (one generation, never further)
    5. cascade revision children through steps 1-8 before going on
    6. delete comment meta, then comments
    7. delete object meta
    8. delete the object rows

There is no transaction around a batch. A failed statement propagates and
aborts the job; the next run's anti-join picks up whatever is left.
"""
import math
from dataclasses import dataclass
from typing import Callable, Sequence

from local_data_prune.config_interface import SweepSettings
from local_data_prune.database_interface import ObjectRow, chunked
from local_data_prune.logger import get_logger
from local_data_prune.object_cache import ObjectCache
from local_data_prune.stage_02_sweep.database_stage_02_sweep import Stage02SweepDatabaseInterface

logger = get_logger(__name__)


@dataclass(frozen=True)
class SweepPlan:
    """Batch estimate that sizes the safety valve."""

    total_objects: int
    retained: int
    batch_size: int
    expected_batches: int
    max_iterations: int

    @classmethod
    def compute(
        cls,
        total_objects: int,
        retained: int,
        batch_size: int,
        safety_factor: float,
    ) -> "SweepPlan":
        """
        Derive the expected batch count and the iteration trip point.

        :param total_objects: Objects of non-transient type (``T``).
        :param retained: Retain-set size (``R``).
        :param batch_size: Ids per batch (``B``).
        :param safety_factor: Multiplier applied to the expected batch count.
        """
        expected = max(math.ceil((total_objects - retained) / batch_size), 0)
        return cls(
            total_objects=total_objects,
            retained=retained,
            batch_size=batch_size,
            expected_batches=expected,
            max_iterations=int(expected * safety_factor),
        )


@dataclass
class SweepStats:
    """Counters collected during the sweep."""

    batches: int = 0
    objects_deleted: int = 0
    revisions_deleted: int = 0
    reparented: int = 0
    reparent_skipped: int = 0
    term_relationships_deleted: int = 0
    comments_deleted: int = 0
    comment_meta_deleted: int = 0
    meta_deleted: int = 0
    aborted: bool = False
    remaining_estimate: int = 0
    plan: SweepPlan | None = None


@dataclass
class _Frame:
    """One pending cascade: ids to delete and whether steps 1-5 ran."""

    ids: list[int]
    is_revision: bool = False
    expanded: bool = False


class SweepEngine:
    """Deletes deletion candidates in bounded batches."""

    def __init__(
        self,
        db: Stage02SweepDatabaseInterface,
        settings: SweepSettings,
        reset_hooks: Sequence[Callable[[], None]] = (),
    ) -> None:
        self._db = db
        self._settings = settings
        self._reset_hooks = list(reset_hooks)
        self._cache = ObjectCache(db)

    @property
    def cache(self) -> ObjectCache:
        return self._cache

    def plan(self) -> SweepPlan:
        return SweepPlan.compute(
            total_objects=self._db.count_sweepable_objects(self._settings.transient_types),
            retained=self._db.count_retained(),
            batch_size=self._settings.batch_size,
            safety_factor=self._settings.safety_factor,
        )

    def sweep(self) -> SweepStats:
        """
        Delete every deletion candidate.

        :return: Counters; ``aborted`` is set when the safety valve fired.
        """
        stats = SweepStats(plan=self.plan())
        plan = stats.plan
        logger.info(" * Starting object deletion. This will take a while...")
        logger.info(
            "   Expecting %d batches (%d total IDs; %d to keep; deleting %d per batch)",
            plan.expected_batches,
            plan.total_objects,
            plan.retained,
            plan.batch_size,
        )

        iteration = 0
        while ids := self._db.next_deletion_batch(
            self._settings.batch_size, self._settings.transient_types
        ):
            if iteration > plan.max_iterations:
                stats.aborted = True
                stats.remaining_estimate = max(
                    len(ids),
                    self._db.count_sweepable_objects(self._settings.transient_types)
                    - self._db.count_retained(),
                )
                logger.warning(
                    "   > Infinite loop detected, terminating deletion with at least %d IDs left to delete!",
                    stats.remaining_estimate,
                )
                break

            logger.info(
                "   > Processing batch %d (%d%%)",
                iteration + 1,
                round((iteration + 1) / max(plan.expected_batches, 1) * 100),
            )
            self.delete_objects(ids, stats)
            stats.batches += 1
            self._free_resources()
            iteration += 1

        self._free_resources()
        logger.info(
            " * Finished deleting objects: %d objects, %d revisions in %d batches.",
            stats.objects_deleted,
            stats.revisions_deleted,
            stats.batches,
        )
        return stats

    def delete_objects(self, object_ids: Sequence[int], stats: SweepStats | None = None) -> SweepStats:
        """
        Cascade-delete one batch of deletion candidates.

        Revisions are processed through an explicit stack of frames: a
        frame's revisions are pushed on top of it and fully deleted before
        the frame's own rows go. Ids are de-duplicated across frames.
        """
        stats = stats if stats is not None else SweepStats()
        root_ids = sorted(set(object_ids))
        if not root_ids:
            return stats

        stack = [_Frame(ids=root_ids)]
        seen: set[int] = set(root_ids)

        while stack:
            frame = stack[-1]
            if frame.expanded:
                self._delete_rows(frame, stats)
                stack.pop()
                continue

            frame.expanded = True
            objects = self._cache.get_many(frame.ids)
            frame.ids = list(objects)
            if not frame.ids:
                stack.pop()
                continue

            self._delete_term_relationships(frame.ids, stats)
            self._reparent_children(objects, stats)

            revisions = [
                i for i in self._db.get_child_ids_of_type(frame.ids, self._settings.revision_type)
                if i not in seen
            ]
            seen.update(revisions)
            for chunk in chunked(revisions, self._settings.batch_size):
                stack.append(_Frame(ids=list(chunk), is_revision=True))

        return stats

    def _delete_term_relationships(self, ids: list[int], stats: SweepStats) -> None:
        taxonomies = set(self._db.get_object_taxonomies(ids))
        taxonomies.update(self._settings.base_taxonomies)
        stats.term_relationships_deleted += self._db.delete_term_relationships(
            ids, sorted(taxonomies)
        )

    def _reparent_children(self, objects: dict[int, ObjectRow], stats: SweepStats) -> None:
        batch_types = {o.type for o in objects.values()}
        # Revisions are never re-parented; they are deleted with their parent.
        child_types = sorted(
            (batch_types | set(self._settings.reparentable_types))
            - set(self._settings.transient_types)
        )
        children = self._db.get_children_by_parent(list(objects), child_types)
        if not children:
            return

        grandparent_ids = {
            objects[parent_id].parent_id
            for parent_id in children
            if objects[parent_id].parent_id is not None
        }
        live_grandparents = self._cache.get_many(grandparent_ids) if grandparent_ids else {}

        for parent_id, child_ids in children.items():
            grandparent_id = objects[parent_id].parent_id
            if grandparent_id is None or grandparent_id not in live_grandparents:
                stats.reparent_skipped += len(child_ids)
                logger.debug(
                    "Children %s of %d keep their parent: no live grandparent",
                    child_ids,
                    parent_id,
                )
                continue
            stats.reparented += self._db.reparent(child_ids, grandparent_id)

    def _delete_rows(self, frame: _Frame, stats: SweepStats) -> None:
        comment_ids = self._db.get_comment_ids(frame.ids)
        stats.comment_meta_deleted += self._db.delete_comment_meta(comment_ids)
        stats.comments_deleted += self._db.delete_comments(frame.ids)
        stats.meta_deleted += self._db.delete_object_meta(frame.ids)

        deleted = self._db.delete_objects(frame.ids)
        self._cache.discard(frame.ids)
        if frame.is_revision:
            stats.revisions_deleted += deleted
        else:
            stats.objects_deleted += deleted

    def _free_resources(self) -> None:
        self._cache.clear()
        for hook in self._reset_hooks:
            hook()
