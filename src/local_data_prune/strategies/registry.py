"""Build root strategies from configuration, in declaration order."""
from typing import Callable, Sequence

from local_data_prune.config_interface import ConfigurationError, StrategyConfig
from local_data_prune.logger import get_logger
from local_data_prune.strategies.base import RootStrategy
from local_data_prune.strategies.content_search import ContentSearch
from local_data_prune.strategies.forum_replies import ForumReplies
from local_data_prune.strategies.meta_exists import MetaExists
from local_data_prune.strategies.nav_menu_item import NavMenuItem
from local_data_prune.strategies.recent_objects import RecentObjects

logger = get_logger(__name__)

STRATEGY_KINDS: dict[str, Callable[..., RootStrategy]] = {
    "recent_objects": RecentObjects,
    "nav_menu_item": NavMenuItem,
    "forum_replies": ForumReplies,
    "meta_exists": MetaExists,
    "content_search": ContentSearch,
}


def build_strategies(configs: Sequence[StrategyConfig]) -> list[RootStrategy]:
    """
    Instantiate and validate every configured strategy.

    :param configs: Strategy definitions from the config file.
    :return: Strategies in declaration order.
    :raises ConfigurationError: On an unknown kind, a duplicate name, or a
        strategy whose filters cannot be built.
    """
    strategies: list[RootStrategy] = []
    seen_names: set[str] = set()

    for config in configs:
        factory = STRATEGY_KINDS.get(config.kind)
        if factory is None:
            raise ConfigurationError(f"Unknown strategy kind: {config.kind!r}")

        strategy = factory(config)
        if strategy.name in seen_names:
            raise ConfigurationError(f"Duplicate strategy name: {strategy.name!r}")
        seen_names.add(strategy.name)

        strategy.validate()
        strategies.append(strategy)
        logger.debug(
            "Strategy %s: find_linked_ids=%s skip_backfill=%s",
            strategy.name,
            strategy.find_linked_ids,
            strategy.skip_backfill,
        )

    return strategies
