"""Retain recent objects that carry a non-empty meta field."""
from local_data_prune.config_interface import MetaExistsConfig
from local_data_prune.strategies.base import RootStrategy
from local_data_prune.strategies.object_filter import ObjectFilter


class MetaExists(RootStrategy):
    """
    Keep objects of any type whose meta carries ``meta_key``.

    These objects have no dependents, and a filter over any type cannot be
    backfilled, so both follow-up steps are skipped.
    """

    skip_backfill = True

    def __init__(self, config: MetaExistsConfig) -> None:
        super().__init__(config.name or f"meta_{config.meta_key.strip('_')}")
        self._config = config

    def primary_query(self) -> ObjectFilter:
        return ObjectFilter(
            types=self._config.types,
            newer_than_days=self._config.newer_than_days,
            meta_key=self._config.meta_key,
            meta_value_not=self._config.exclude_value,
        )
