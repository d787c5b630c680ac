"""Retain recent objects whose content contains a phrase, e.g. a block name."""
from local_data_prune.config_interface import ContentSearchConfig
from local_data_prune.strategies.base import RootStrategy
from local_data_prune.strategies.object_filter import ObjectFilter


class ContentSearch(RootStrategy):
    """Keep objects of any type matching a free-text search."""

    skip_backfill = True

    def __init__(self, config: ContentSearchConfig) -> None:
        super().__init__(config.name or "content_search")
        self._config = config

    def primary_query(self) -> ObjectFilter:
        return ObjectFilter(
            types=self._config.types,
            newer_than_days=self._config.newer_than_days,
            search=self._config.search,
        )
