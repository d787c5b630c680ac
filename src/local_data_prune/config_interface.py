"""
Configuration Interface for the local data pruning job.

This module provides Pydantic models for loading, validating, and accessing
the configuration defined in ``prune.yaml``. All models use strict validation
(forbid unknown keys) and provide sensible defaults where appropriate.

Key features:
- Strategy definitions are a discriminated union on ``kind``
- Required strategy fields have no defaults, so an incomplete strategy fails
  at load time, before the job touches the store
- Full validation of configuration structure at load time

Usage:
    from local_data_prune.config_interface import load_config

    config = load_config("config/prune.yaml")

    config.database.path
    config.mark.page_size
    config.sweep.batch_size
    config.strategies
"""
import hashlib
from pathlib import Path
from typing import Annotated, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Value of ``types`` that matches every non-transient object type.
ANY_TYPE = "any"

TypeSelector = Union[list[str], Literal["any"]]


class ConfigurationError(Exception):
    """Raised when a configuration is structurally valid but cannot be run."""

# BASE CONFIGURATION CLASSES

class StrictModel(BaseModel):
    """Base model with strict validation - forbids unknown keys."""

    model_config = ConfigDict(extra="forbid", validate_default=True)

# SECTION 1: DATABASE

class DatabaseSettings(StrictModel):
    """Location of the object store."""

    path: Path
    log_queries: bool = False

# SECTION 2: MARK PHASE

class MarkSettings(StrictModel):
    """Retention marker tuning."""

    page_size: int = Field(default=500, gt=0)
    # Holding the cache for a whole strategy pass avoids re-reading objects
    # that later pages link to again; clearing per page bounds memory.
    clear_cache_every_page: bool = False
    fresh_run: bool = True

# SECTION 3: SWEEP PHASE

class SweepSettings(StrictModel):
    """Sweep/delete engine tuning."""

    batch_size: int = Field(default=500, gt=0)
    safety_factor: float = Field(default=1.25, ge=1.0)
    transient_types: list[str] = Field(default_factory=lambda: ["revision"])
    revision_type: str = "revision"
    reparentable_types: list[str] = Field(default_factory=lambda: ["attachment"])
    base_taxonomies: list[str] = Field(default_factory=lambda: ["category", "post_tag"])

# SECTION 4: ANONYMIZATION

class AnonymizeSettings(StrictModel):
    """Field-level PII rewrite applied after the sweep."""

    enabled: bool = True
    local_domain: str = "example.test"
    session_meta_key: str = "session_tokens"
    admin_email_option: str = "admin_email"
    pending_admin_email_option: str = "new_admin_email"

# SECTION 5: ROOT STRATEGIES

class _StrategyConfig(StrictModel):
    """Fields shared by every strategy definition."""

    name: Optional[str] = None


class RecentObjectsConfig(_StrategyConfig):
    """Keep recent objects of the given types."""

    kind: Literal["recent_objects"]
    types: TypeSelector
    statuses: Optional[list[str]] = None
    newer_than_days: Optional[int] = Field(default=None, gt=0)
    linked_meta_keys: list[str] = Field(default_factory=list)
    skip_backfill: bool = False
    backfill_parents: bool = False


class NavMenuItemConfig(_StrategyConfig):
    """Keep every navigation menu item and the objects it points to."""

    kind: Literal["nav_menu_item"]
    menu_item_type: str = "nav_menu_item"
    item_type_meta_key: str = "_menu_item_type"
    item_object_meta_key: str = "_menu_item_object_id"
    linkable_item_type: str = "post_type"


class ForumRepliesConfig(_StrategyConfig):
    """Keep recent forum replies together with their topics and forums."""

    kind: Literal["forum_replies"]
    reply_type: str = "reply"
    newer_than_days: int = Field(default=30, gt=0)
    topic_meta_key: str = "_bbp_topic_id"
    forum_meta_key: str = "_bbp_forum_id"


class MetaExistsConfig(_StrategyConfig):
    """Keep recent objects carrying a non-empty meta field."""

    kind: Literal["meta_exists"]
    meta_key: str
    exclude_value: Optional[str] = None
    types: TypeSelector = ANY_TYPE
    newer_than_days: Optional[int] = Field(default=None, gt=0)


class ContentSearchConfig(_StrategyConfig):
    """Keep recent objects whose title or content contains a phrase."""

    kind: Literal["content_search"]
    search: str = Field(min_length=1)
    types: TypeSelector = ANY_TYPE
    newer_than_days: Optional[int] = Field(default=None, gt=0)


StrategyConfig = Annotated[
    Union[
        RecentObjectsConfig,
        NavMenuItemConfig,
        ForumRepliesConfig,
        MetaExistsConfig,
        ContentSearchConfig,
    ],
    Field(discriminator="kind"),
]

# ROOT CONFIGURATION

class Config(BaseModel):
    """
    Root configuration for the pruning job.

    Strategies run in declaration order; at least one is required, otherwise
    the sweep would delete every object in the store.
    """

    model_config = ConfigDict(extra="forbid", validate_default=True)

    database: DatabaseSettings
    mark: MarkSettings = Field(default_factory=MarkSettings)
    sweep: SweepSettings = Field(default_factory=SweepSettings)
    anonymize: AnonymizeSettings = Field(default_factory=AnonymizeSettings)
    strategies: list[StrategyConfig] = Field(min_length=1)

    @field_validator("sweep")
    @classmethod
    def validate_revision_is_transient(cls, v: SweepSettings) -> SweepSettings:
        """Revisions are never swept directly, only through their parent."""
        if v.revision_type not in v.transient_types:
            raise ValueError(
                f"revision_type {v.revision_type!r} must be listed in transient_types"
            )
        return v


def load_config(config_path: Union[str, Path]) -> Config:
    """Load and validate configuration from a YAML file."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw_config = yaml.safe_load(f)

    config = Config.model_validate(raw_config)
    if not config.database.path.is_absolute():
        # Relative store paths are resolved against the config file.
        config.database.path = (config_path.parent / config.database.path).resolve()
    return config


def get_config_version(config: Config) -> str:
    """Generate a hash-based version string for the configuration."""
    config_json = config.model_dump_json(exclude_none=True)
    return hashlib.sha256(config_json.encode()).hexdigest()[:16]
