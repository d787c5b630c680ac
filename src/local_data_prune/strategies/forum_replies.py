"""Retain recent forum replies, along with their topics and forums."""
from typing import Sequence

from local_data_prune.config_interface import ForumRepliesConfig
from local_data_prune.database_interface import ObjectRow
from local_data_prune.object_cache import ObjectCache
from local_data_prune.strategies.base import RootStrategy
from local_data_prune.strategies.object_filter import ObjectFilter


class ForumReplies(RootStrategy):
    """
    Keep replies from the recency window.

    Backfill is not required: the topic and forum are captured from each
    reply's meta during the primary pass.
    """

    find_linked_ids = True
    skip_backfill = True

    def __init__(self, config: ForumRepliesConfig) -> None:
        super().__init__(config.name or "forum_replies")
        self._config = config

    def primary_query(self) -> ObjectFilter:
        return ObjectFilter(
            types=[self._config.reply_type],
            newer_than_days=self._config.newer_than_days,
        )

    def resolve_linked(self, objects: Sequence[ObjectRow], cache: ObjectCache) -> list[ObjectRow]:
        return self.objects_from_meta(
            objects,
            cache,
            [self._config.topic_meta_key, self._config.forum_meta_key],
        )
