"""
Stage 01: Retention marking.

Runs every root strategy over the object store and records the objects to
keep in the retain-set.

Per strategy, in declaration order, the primary filter is paged by id
ascending until a page comes back shorter than the page size. For each page:

    1. fetch the page's objects through the object cache
    2. follow embedded block references in their content
    3. ask the strategy for linked objects (when ``find_linked_ids``)
    4. insert the union as ``(id, type)`` pairs, ignoring duplicates

Once every primary pass is done, strategies that do not ``skip_backfill`` run
a second pass over ids that are already retained, so that links discovered
from objects retained by *other* strategies are followed too.

The retain-set only grows here; its size is recorded after every page.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from local_data_prune.block_references import extract_many
from local_data_prune.config_interface import MarkSettings
from local_data_prune.database_interface import DBError, ObjectRow
from local_data_prune.logger import get_logger
from local_data_prune.object_cache import ObjectCache
from local_data_prune.stage_01_mark.database_stage_01_mark import Stage01MarkDatabaseInterface
from local_data_prune.strategies.base import RootStrategy
from local_data_prune.strategies.object_filter import ObjectFilter

logger = get_logger(__name__)


@dataclass
class PassStats:
    """Counters for one strategy pass (primary or backfill)."""

    strategy: str
    backfill: bool
    estimated_rows: int = 0
    page_sizes: list[int] = field(default_factory=list)
    roots: int = 0
    embedded: int = 0
    linked: int = 0
    inserted: int = 0

    @property
    def pages(self) -> int:
        return len(self.page_sizes)


@dataclass
class MarkStats:
    """Outcome of the whole mark stage."""

    passes: list[PassStats] = field(default_factory=list)
    retained_sizes: list[int] = field(default_factory=list)
    retained_start: int = 0

    @property
    def retained_total(self) -> int:
        return self.retained_sizes[-1] if self.retained_sizes else self.retained_start


class RetentionMarker:
    """Drives root strategies through pagination and fills the retain-set."""

    def __init__(
        self,
        db: Stage01MarkDatabaseInterface,
        settings: MarkSettings,
        now: datetime | None = None,
    ) -> None:
        self._db = db
        self._settings = settings
        self._now = now
        self._last_size = 0

    def mark(self, strategies: Sequence[RootStrategy]) -> MarkStats:
        """
        Run every primary pass, then every backfill pass.

        :param strategies: Validated strategies in declaration order.
        :return: Per-pass counters and the retain-set size after each page.
        """
        stats = MarkStats(retained_start=self._db.count_retained())
        self._last_size = stats.retained_start

        for strategy in strategies:
            logger.info(" * Gathering IDs using `%s`.", strategy.name)
            stats.passes.append(
                self.run_pass(strategy, strategy.primary_query(), backfill=False, stats=stats)
            )

        for strategy in strategies:
            backfill = strategy.backfill_query()
            if backfill is None:
                logger.debug("Backfill skipped for `%s`", strategy.name)
                continue
            logger.info(" * Backfilling IDs using `%s` query args.", strategy.name)
            stats.passes.append(
                self.run_pass(strategy, backfill, backfill=True, stats=stats)
            )

        logger.info(" * Finished marking: %d IDs retained.", stats.retained_total)
        return stats

    def run_pass(
        self,
        strategy: RootStrategy,
        query_filter: ObjectFilter,
        backfill: bool,
        stats: MarkStats,
    ) -> PassStats:
        """Page through one filter and mark every page."""
        page_size = self._settings.page_size
        pass_stats = PassStats(strategy=strategy.name, backfill=backfill)
        pass_stats.estimated_rows = self._db.count_matching(query_filter, self._now)
        expected_pages = max(math.ceil(pass_stats.estimated_rows / page_size), 1)
        logger.info(
            "   Expecting about %d matching IDs (%d pages of %d)",
            pass_stats.estimated_rows,
            expected_pages,
            page_size,
        )

        cache = ObjectCache(self._db)
        after_id = 0
        while True:
            ids = self._db.fetch_page_ids(query_filter, after_id, page_size, self._now)
            if not ids:
                break

            self._mark_page(strategy, ids, cache, pass_stats)
            stats.retained_sizes.append(self._record_size())
            logger.info(
                "   > %s page %d/%d: %d IDs (retain-set now %d)",
                strategy.name,
                pass_stats.pages,
                expected_pages,
                len(ids),
                self._last_size,
            )

            if self._settings.clear_cache_every_page:
                cache.clear()
            if len(ids) < page_size:
                break
            after_id = ids[-1]

        cache.clear()
        return pass_stats

    def _mark_page(
        self,
        strategy: RootStrategy,
        ids: list[int],
        cache: ObjectCache,
        pass_stats: PassStats,
    ) -> None:
        objects = list(cache.get_many(ids).values())

        embedded: list[ObjectRow] = []
        embedded_ids = extract_many(o.content for o in objects) - set(ids)
        if embedded_ids:
            embedded = list(cache.get_many(embedded_ids).values())

        linked: list[ObjectRow] = []
        if strategy.find_linked_ids:
            linked = strategy.resolve_linked(objects, cache)

        keep: dict[int, ObjectRow] = {}
        for obj in (*objects, *embedded, *linked):
            keep.setdefault(obj.id, obj)

        pass_stats.page_sizes.append(len(ids))
        pass_stats.roots += len(objects)
        pass_stats.embedded += len(embedded)
        pass_stats.linked += len(linked)
        pass_stats.inserted += self._db.insert_retained(list(keep.values()))

    def _record_size(self) -> int:
        size = self._db.count_retained()
        if size < self._last_size:
            raise DBError(
                f"Retain-set shrank during marking ({self._last_size} -> {size})"
            )
        self._last_size = size
        return size
