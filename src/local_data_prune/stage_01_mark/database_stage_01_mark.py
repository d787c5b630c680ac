from datetime import datetime
from pathlib import Path
from typing import ClassVar, Sequence

from local_data_prune.database_interface import RETAINED_TABLE, DatabaseInterface, ObjectRow
from local_data_prune.logger import get_logger
from local_data_prune.strategies.object_filter import ObjectFilter

logger = get_logger(__name__)

STAGE_NAME = "stage_01_mark"


class Stage01MarkDatabaseInterface(DatabaseInterface):
    """
    Database interface for the mark stage.

    Reads objects and their meta, and appends to the retain-set. There is no
    method that removes a retained row other than the fresh-run reset, which
    runs before any strategy.
    """

    READS: ClassVar[set[str]] = {"objects", "object_meta"}
    WRITES: ClassVar[set[str]] = {RETAINED_TABLE}

    def __init__(self, db_path: Path, log_queries: bool = False) -> None:
        """Initialize."""
        super().__init__(
            db_path=db_path,
            stage_name=STAGE_NAME,
            log_queries=log_queries,
        )

    # Retain-set lifecycle

    def prepare_retained_table(self, fresh: bool) -> int:
        """
        Create the retain-set if needed, emptying it for a fresh run.

        :param fresh: Truncate an existing retain-set.
        :return: Retain-set size after preparation.
        """
        self._check_write_access(RETAINED_TABLE)
        self._execute(
            f"""CREATE TABLE IF NOT EXISTS {RETAINED_TABLE} (
                   id   INTEGER PRIMARY KEY,
                   type TEXT NOT NULL
               )"""
        )
        if fresh:
            self._execute(f"DELETE FROM {RETAINED_TABLE}")
            logger.info("Retain-set %s emptied for a fresh run", RETAINED_TABLE)
        return self.count_retained()

    def insert_retained(self, objects: Sequence[ObjectRow]) -> int:
        """
        Add ``(id, type)`` pairs to the retain-set, ignoring duplicates.

        :return: Number of pairs that were not already present.
        """
        self._check_write_access(RETAINED_TABLE)
        if not objects:
            return 0
        cursor = self._executemany(
            f"INSERT OR IGNORE INTO {RETAINED_TABLE} (id, type) VALUES (?, ?)",
            [(o.id, o.type) for o in objects],
        )
        return max(cursor.rowcount, 0)

    # Strategy queries

    def count_matching(self, query_filter: ObjectFilter, now: datetime | None = None) -> int:
        """Estimate a filter's result size once, for progress display."""
        self._check_read_access("objects")
        clause, params = query_filter.to_sql(now)
        row = self._fetchone(f"SELECT COUNT(*) FROM objects o WHERE {clause}", params)
        return int(row[0]) if row else 0

    def fetch_page_ids(
        self,
        query_filter: ObjectFilter,
        after_id: int,
        limit: int,
        now: datetime | None = None,
    ) -> list[int]:
        """
        Return the next page of matching ids, ordered ascending.

        :param after_id: Largest id of the previous page (0 for the first).
        :param limit: Page size.
        """
        self._check_read_access("objects")
        clause, params = query_filter.to_sql(now)
        rows = self._fetchall(
            f"""SELECT o.id FROM objects o
                WHERE {clause} AND o.id > ?
                ORDER BY o.id ASC
                LIMIT ?""",
            (*params, after_id, limit),
        )
        return [r[0] for r in rows]
