"""
Root strategy contract.

A root strategy names a starting set of objects to retain. It exposes four
capabilities to the mark stage:

- ``primary_query()``: the declarative filter run during the primary pass
- ``backfill_query()``: a filter over already-retained ids, or ``None``
- ``find_linked_ids`` / ``resolve_linked()``: optional resolution of objects
  that must be retained alongside one page of roots

Strategies are read-only producers; they only see the store through the
:class:`~local_data_prune.object_cache.ObjectCache` they are handed.
"""
from abc import ABC, abstractmethod
from typing import Iterable, Sequence

from local_data_prune.config_interface import ConfigurationError
from local_data_prune.database_interface import ObjectRow
from local_data_prune.object_cache import ObjectCache
from local_data_prune.strategies.object_filter import ObjectFilter


def _parse_ids(values: Iterable[str]) -> list[int]:
    ids: list[int] = []
    for value in values:
        value = (value or "").strip()
        if value.isdigit() and int(value) > 0:
            ids.append(int(value))
    return ids


class RootStrategy(ABC):
    """Base class for root strategies."""

    # Strategies with no dependents skip linked-id resolution entirely.
    find_linked_ids: bool = False
    skip_backfill: bool = False
    # Whether the backfill pass also retains direct parents of retained ids.
    backfill_parents: bool = False

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"

    @abstractmethod
    def primary_query(self) -> ObjectFilter:
        """Filter selecting this strategy's root objects."""

    def backfill_query(self) -> ObjectFilter | None:
        """Filter for the backfill pass, or ``None`` when it is skipped."""
        if self.skip_backfill:
            return None
        return self.primary_query().for_backfill(include_parents=self.backfill_parents)

    def resolve_linked(self, objects: Sequence[ObjectRow], cache: ObjectCache) -> list[ObjectRow]:
        """Return additional objects to retain for one page of roots."""
        return []

    def validate(self) -> None:
        """
        Check that the strategy can run.

        :raises ConfigurationError: If the filters cannot be built.
        """
        primary = self.primary_query()
        if not self.skip_backfill and primary.matches_any_type:
            raise ConfigurationError(
                f"Strategy '{self.name}' matches any object type and must set "
                "skip_backfill"
            )
        self.backfill_query()

    @staticmethod
    def objects_from_meta(
        objects: Sequence[ObjectRow],
        cache: ObjectCache,
        meta_keys: Sequence[str],
    ) -> list[ObjectRow]:
        """Resolve objects whose ids are stored in *meta_keys* of *objects*."""
        linked: set[int] = set()
        for key in meta_keys:
            linked.update(_parse_ids(cache.get_meta(objects, key).values()))
        if not linked:
            return []
        return list(cache.get_many(linked).values())
