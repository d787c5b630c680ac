"""Retain navigation menu items and the objects they point at."""
from typing import Sequence

from local_data_prune.config_interface import NavMenuItemConfig
from local_data_prune.database_interface import ObjectRow
from local_data_prune.object_cache import ObjectCache
from local_data_prune.strategies.base import RootStrategy, _parse_ids
from local_data_prune.strategies.object_filter import ObjectFilter


class NavMenuItem(RootStrategy):
    """
    Keep every menu item regardless of age.

    Menu items whose ``_menu_item_type`` is ``post_type`` reference another
    object through ``_menu_item_object_id``; those targets are retained too.
    Custom links and taxonomy items have no object target.
    """

    find_linked_ids = True

    def __init__(self, config: NavMenuItemConfig) -> None:
        super().__init__(config.name or "nav_menu_item")
        self._config = config

    def primary_query(self) -> ObjectFilter:
        return ObjectFilter(types=[self._config.menu_item_type])

    def resolve_linked(self, objects: Sequence[ObjectRow], cache: ObjectCache) -> list[ObjectRow]:
        item_types = cache.get_meta(objects, self._config.item_type_meta_key)
        linkable = [
            o for o in objects
            if item_types.get(o.id) == self._config.linkable_item_type
        ]
        if not linkable:
            return []

        targets = _parse_ids(
            cache.get_meta(linkable, self._config.item_object_meta_key).values()
        )
        if not targets:
            return []
        return list(cache.get_many(targets).values())
