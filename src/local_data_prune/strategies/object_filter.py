"""
Declarative object filters used by root strategies.

An :class:`ObjectFilter` describes *which* objects a strategy selects; the
mark stage owns pagination (keyset on ``id``, ascending) and never asks for a
total row count per page.
"""
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from local_data_prune.config_interface import ANY_TYPE, ConfigurationError, TypeSelector
from local_data_prune.database_interface import RETAINED_TABLE, format_timestamp, placeholders

# Table alias the compiled clause refers to.
OBJECT_ALIAS = "o"


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ObjectFilter(BaseModel):
    """Filter over the objects table, compiled to a parameterized WHERE clause."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    types: TypeSelector
    statuses: list[str] | None = None
    newer_than_days: int | None = Field(default=None, gt=0)
    search: str | None = None
    meta_key: str | None = None
    meta_value_not: str | None = None
    retained_only: bool = False
    include_retained_parents: bool = False
    exclude_types: list[str] = Field(default_factory=lambda: ["revision"])

    @field_validator("types")
    @classmethod
    def validate_types(cls, v: Any) -> Any:
        """An empty type list would select nothing; reject it."""
        if isinstance(v, list) and not v:
            raise ValueError("types must name at least one object type or be 'any'")
        return v

    @model_validator(mode="after")
    def validate_combinations(self) -> "ObjectFilter":
        """Reject option combinations that have no meaning."""
        if self.meta_value_not is not None and self.meta_key is None:
            raise ValueError("meta_value_not requires meta_key")
        if self.include_retained_parents and not self.retained_only:
            raise ValueError("include_retained_parents requires retained_only")
        return self

    @property
    def matches_any_type(self) -> bool:
        return self.types == ANY_TYPE

    def to_sql(self, now: datetime | None = None) -> tuple[str, list[Any]]:
        """
        Compile to a WHERE clause body and its parameters.

        :param now: Reference time for ``newer_than_days`` (UTC, defaults to now).
        :return: ``(clause, params)``; the clause references ``objects`` as ``o``.
        """
        a = OBJECT_ALIAS
        clauses: list[str] = []
        params: list[Any] = []

        if self.matches_any_type:
            if self.exclude_types:
                clauses.append(f"{a}.type NOT IN ({placeholders(len(self.exclude_types))})")
                params.extend(self.exclude_types)
        else:
            clauses.append(f"{a}.type IN ({placeholders(len(self.types))})")
            params.extend(self.types)

        if self.statuses:
            clauses.append(f"{a}.status IN ({placeholders(len(self.statuses))})")
            params.extend(self.statuses)

        if self.newer_than_days is not None:
            reference = now or datetime.now(timezone.utc)
            clauses.append(f"{a}.created_at >= ?")
            params.append(format_timestamp(reference - timedelta(days=self.newer_than_days)))

        if self.search:
            pattern = f"%{_escape_like(self.search)}%"
            clauses.append(
                f"({a}.title LIKE ? ESCAPE '\\' OR {a}.content LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern])

        if self.meta_key is not None:
            meta_clause = (
                "EXISTS (SELECT 1 FROM object_meta m "
                f"WHERE m.object_id = {a}.id AND m.meta_key = ?"
            )
            params.append(self.meta_key)
            if self.meta_value_not is not None:
                meta_clause += " AND m.meta_value IS NOT NULL AND m.meta_value != ?"
                params.append(self.meta_value_not)
            clauses.append(meta_clause + ")")

        if self.retained_only:
            retained = f"{a}.id IN (SELECT id FROM {RETAINED_TABLE})"
            if self.include_retained_parents:
                retained = (
                    f"({retained} OR {a}.id IN ("
                    f"SELECT c.parent_id FROM objects c "
                    f"JOIN {RETAINED_TABLE} r ON r.id = c.id "
                    f"WHERE c.parent_id IS NOT NULL))"
                )
            clauses.append(retained)

        return " AND ".join(clauses), params

    def for_backfill(self, include_parents: bool = False) -> "ObjectFilter":
        """
        Derive the backfill variant: same types, restricted to retained ids.

        :raises ConfigurationError: If the filter matches any type.
        """
        if self.matches_any_type:
            raise ConfigurationError(
                "Backfill cannot be applied to a filter matching any type; "
                "declare skip_backfill for this strategy"
            )
        return ObjectFilter(
            types=self.types,
            retained_only=True,
            include_retained_parents=include_parents,
            exclude_types=self.exclude_types,
        )
