"""Retain recent objects of given types and the objects their meta links to."""
from typing import Sequence

from local_data_prune.config_interface import RecentObjectsConfig
from local_data_prune.database_interface import ObjectRow
from local_data_prune.object_cache import ObjectCache
from local_data_prune.strategies.base import RootStrategy
from local_data_prune.strategies.object_filter import ObjectFilter


class RecentObjects(RootStrategy):
    """
    Keep objects of the configured types created within the recency window.

    Linked resolution is enabled only when ``linked_meta_keys`` is set (for
    example ``_thumbnail_id`` to keep featured images).
    """

    def __init__(self, config: RecentObjectsConfig) -> None:
        types = config.types if isinstance(config.types, str) else "_".join(config.types)
        super().__init__(config.name or f"recent_{types}")
        self._config = config
        self.find_linked_ids = bool(config.linked_meta_keys)
        self.skip_backfill = config.skip_backfill
        self.backfill_parents = config.backfill_parents

    def primary_query(self) -> ObjectFilter:
        return ObjectFilter(
            types=self._config.types,
            statuses=self._config.statuses,
            newer_than_days=self._config.newer_than_days,
        )

    def resolve_linked(self, objects: Sequence[ObjectRow], cache: ObjectCache) -> list[ObjectRow]:
        return self.objects_from_meta(objects, cache, self._config.linked_meta_keys)
