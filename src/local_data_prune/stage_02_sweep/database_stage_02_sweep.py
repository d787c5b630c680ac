from collections import defaultdict
from pathlib import Path
from typing import ClassVar, Sequence

from local_data_prune.database_interface import (
    MAX_SQL_VARIABLES,
    RETAINED_TABLE,
    DatabaseInterface,
    chunked,
    placeholders,
)
from local_data_prune.logger import get_logger

logger = get_logger(__name__)

STAGE_NAME = "stage_02_sweep"


class Stage02SweepDatabaseInterface(DatabaseInterface):
    """
    Database interface for the sweep stage.

    Reads the retain-set but never writes it. Every cascade step is one
    statement in autocommit mode; a batch is never wrapped in a transaction.
    """

    READS: ClassVar[set[str]] = {RETAINED_TABLE}
    WRITES: ClassVar[set[str]] = {
        "objects",
        "object_meta",
        "comments",
        "comment_meta",
        "term_relationships",
        "term_taxonomy",
    }

    def __init__(self, db_path: Path, log_queries: bool = False) -> None:
        """Initialize."""
        super().__init__(
            db_path=db_path,
            stage_name=STAGE_NAME,
            log_queries=log_queries,
        )

    # Batch selection

    def count_sweepable_objects(self, transient_types: Sequence[str]) -> int:
        """Count objects whose type is not transient."""
        self._check_read_access("objects")
        if not transient_types:
            row = self._fetchone("SELECT COUNT(*) FROM objects")
        else:
            row = self._fetchone(
                f"SELECT COUNT(*) FROM objects WHERE type NOT IN ({placeholders(len(transient_types))})",
                tuple(transient_types),
            )
        return int(row[0]) if row else 0

    def next_deletion_batch(self, limit: int, transient_types: Sequence[str]) -> list[int]:
        """
        Select up to *limit* ids absent from the retain-set, ascending.

        Transient types are excluded; they are deleted through their parent.
        """
        self._check_read_access("objects")
        self._check_read_access(RETAINED_TABLE)
        type_clause = ""
        params: list = []
        if transient_types:
            type_clause = f"AND o.type NOT IN ({placeholders(len(transient_types))})"
            params.extend(transient_types)
        rows = self._fetchall(
            f"""SELECT o.id FROM objects AS o
                LEFT JOIN {RETAINED_TABLE} AS retained ON o.id = retained.id
                WHERE retained.id IS NULL {type_clause}
                ORDER BY o.id ASC
                LIMIT ?""",
            (*params, limit),
        )
        return [r[0] for r in rows]

    # Taxonomy relationships

    def get_object_taxonomies(self, object_ids: Sequence[int]) -> list[str]:
        """Return the distinct taxonomies linked to any of *object_ids*."""
        self._check_read_access("term_relationships")
        if not object_ids:
            return []
        rows = self._fetchall(
            f"""SELECT DISTINCT tt.taxonomy FROM term_relationships AS tr
                INNER JOIN term_taxonomy AS tt ON tr.term_taxonomy_id = tt.term_taxonomy_id
                WHERE tr.object_id IN ({placeholders(len(object_ids))})
                ORDER BY tt.taxonomy""",
            tuple(object_ids),
        )
        return [r[0] for r in rows]

    def delete_term_relationships(self, object_ids: Sequence[int], taxonomies: Sequence[str]) -> int:
        """Delete relationship rows joining *object_ids* to terms of *taxonomies*."""
        self._check_write_access("term_relationships")
        if not object_ids or not taxonomies:
            return 0
        cursor = self._execute(
            f"""DELETE FROM term_relationships
                WHERE object_id IN ({placeholders(len(object_ids))})
                AND term_taxonomy_id IN (
                    SELECT term_taxonomy_id FROM term_taxonomy
                    WHERE taxonomy IN ({placeholders(len(taxonomies))})
                )""",
            (*object_ids, *taxonomies),
        )
        return cursor.rowcount

    def recount_terms(self) -> int:
        """Recompute ``term_taxonomy.count`` from the remaining relationships."""
        self._check_write_access("term_taxonomy")
        cursor = self._execute(
            """UPDATE term_taxonomy
               SET count = (
                   SELECT COUNT(*) FROM term_relationships AS tr
                   WHERE tr.term_taxonomy_id = term_taxonomy.term_taxonomy_id
               )"""
        )
        return cursor.rowcount

    # Hierarchy

    def get_children_by_parent(
        self,
        parent_ids: Sequence[int],
        child_types: Sequence[str],
    ) -> dict[int, list[int]]:
        """Return ``parent_id -> [child ids]`` for children of the given types."""
        self._check_read_access("objects")
        if not parent_ids or not child_types:
            return {}
        rows = self._fetchall(
            f"""SELECT parent_id, id FROM objects
                WHERE parent_id IN ({placeholders(len(parent_ids))})
                AND type IN ({placeholders(len(child_types))})
                ORDER BY id""",
            (*parent_ids, *child_types),
        )
        children: dict[int, list[int]] = defaultdict(list)
        for row in rows:
            children[row["parent_id"]].append(row["id"])
        return dict(children)

    def get_child_ids_of_type(self, parent_ids: Sequence[int], child_type: str) -> list[int]:
        """Return ids of children of *parent_ids* whose type is *child_type*."""
        self._check_read_access("objects")
        if not parent_ids:
            return []
        rows = self._fetchall(
            f"""SELECT id FROM objects
                WHERE parent_id IN ({placeholders(len(parent_ids))}) AND type = ?
                ORDER BY id""",
            (*parent_ids, child_type),
        )
        return [r[0] for r in rows]

    def reparent(self, child_ids: Sequence[int], new_parent_id: int) -> int:
        """Point every child in *child_ids* at *new_parent_id*, one UPDATE per chunk."""
        self._check_write_access("objects")
        updated = 0
        for chunk in chunked(child_ids, MAX_SQL_VARIABLES - 1):
            cursor = self._execute(
                f"UPDATE objects SET parent_id = ? WHERE id IN ({placeholders(len(chunk))})",
                (new_parent_id, *chunk),
            )
            updated += cursor.rowcount
        if updated:
            logger.debug("Re-parented %d children to %d", updated, new_parent_id)
        return updated

    # Dependent records

    def get_comment_ids(self, object_ids: Sequence[int]) -> list[int]:
        self._check_read_access("comments")
        if not object_ids:
            return []
        rows = self._fetchall(
            f"SELECT comment_id FROM comments WHERE object_id IN ({placeholders(len(object_ids))})",
            tuple(object_ids),
        )
        return [r[0] for r in rows]

    def delete_comment_meta(self, comment_ids: Sequence[int]) -> int:
        """Delete meta of *comment_ids*; a popular post can exceed one statement's variables."""
        self._check_write_access("comment_meta")
        deleted = 0
        for chunk in chunked(comment_ids, MAX_SQL_VARIABLES):
            cursor = self._execute(
                f"DELETE FROM comment_meta WHERE comment_id IN ({placeholders(len(chunk))})",
                tuple(chunk),
            )
            deleted += cursor.rowcount
        return deleted

    def delete_comments(self, object_ids: Sequence[int]) -> int:
        self._check_write_access("comments")
        if not object_ids:
            return 0
        cursor = self._execute(
            f"DELETE FROM comments WHERE object_id IN ({placeholders(len(object_ids))})",
            tuple(object_ids),
        )
        return cursor.rowcount

    def delete_object_meta(self, object_ids: Sequence[int]) -> int:
        self._check_write_access("object_meta")
        if not object_ids:
            return 0
        cursor = self._execute(
            f"DELETE FROM object_meta WHERE object_id IN ({placeholders(len(object_ids))})",
            tuple(object_ids),
        )
        return cursor.rowcount

    def delete_objects(self, object_ids: Sequence[int]) -> int:
        self._check_write_access("objects")
        if not object_ids:
            return 0
        cursor = self._execute(
            f"DELETE FROM objects WHERE id IN ({placeholders(len(object_ids))})",
            tuple(object_ids),
        )
        return cursor.rowcount
