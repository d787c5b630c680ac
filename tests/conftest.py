"""
Pytest fixtures for the pruning job tests.

Every test works on a throwaway SQLite object store created from the package
schema and seeded through :class:`StoreBuilder`.
"""
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator, Iterable

import pytest

from local_data_prune.database_interface import SCHEMA_PATH, format_timestamp
from local_data_prune.stage_01_mark.database_stage_01_mark import Stage01MarkDatabaseInterface
from local_data_prune.stage_02_sweep.database_stage_02_sweep import Stage02SweepDatabaseInterface
from local_data_prune.stage_03_anonymize.database_stage_03_anonymize import Stage03AnonymizeDatabaseInterface

# Reference time for recency windows in tests.
NOW = datetime.now(timezone.utc).replace(microsecond=0)
RECENT = format_timestamp(NOW - timedelta(days=2))
OLD = "2024-01-01 08:00:00"


class StoreBuilder:
    """Seeds and inspects a test object store over a raw sqlite3 connection."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.conn = sqlite3.connect(str(path), isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))

    def close(self) -> None:
        self.conn.close()

    # Seeding

    def add_object(
        self,
        type: str = "post",
        parent: int | None = None,
        created_at: str = RECENT,
        content: str = "",
        title: str = "",
        status: str = "publish",
    ) -> int:
        cursor = self.conn.execute(
            """INSERT INTO objects (type, parent_id, title, content, status, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (type, parent or 0, title, content, status, created_at),
        )
        return cursor.lastrowid

    def add_objects(self, type: str, count: int, created_at: str = RECENT) -> list[int]:
        ids: list[int] = []
        self.conn.execute("BEGIN")
        for _ in range(count):
            ids.append(self.add_object(type=type, created_at=created_at))
        self.conn.execute("COMMIT")
        return ids

    def add_meta(self, object_id: int, key: str, value: str | None) -> None:
        self.conn.execute(
            "INSERT INTO object_meta (object_id, meta_key, meta_value) VALUES (?, ?, ?)",
            (object_id, key, value),
        )

    def add_term(self, name: str, taxonomy: str) -> int:
        term_id = self.conn.execute(
            "INSERT INTO terms (name, slug) VALUES (?, ?)", (name, name.lower())
        ).lastrowid
        return self.conn.execute(
            "INSERT INTO term_taxonomy (term_id, taxonomy, count) VALUES (?, ?, 0)",
            (term_id, taxonomy),
        ).lastrowid

    def relate(self, object_id: int, term_taxonomy_id: int) -> None:
        self.conn.execute(
            "INSERT INTO term_relationships (object_id, term_taxonomy_id) VALUES (?, ?)",
            (object_id, term_taxonomy_id),
        )

    def add_comment(self, object_id: int, email: str = "reader@mail.test", ip: str = "10.0.0.1") -> int:
        return self.conn.execute(
            """INSERT INTO comments (object_id, author, author_email, author_ip, agent, content)
               VALUES (?, 'Reader', ?, ?, 'Mozilla/5.0', 'Nice')""",
            (object_id, email, ip),
        ).lastrowid

    def add_comment_meta(self, comment_id: int, key: str = "rating", value: str = "5") -> None:
        self.conn.execute(
            "INSERT INTO comment_meta (comment_id, meta_key, meta_value) VALUES (?, ?, ?)",
            (comment_id, key, value),
        )

    def add_user(self, login: str, email: str) -> int:
        return self.conn.execute(
            "INSERT INTO users (login, email) VALUES (?, ?)", (login, email)
        ).lastrowid

    def add_user_meta(self, user_id: int, key: str, value: str) -> None:
        self.conn.execute(
            "INSERT INTO user_meta (user_id, meta_key, meta_value) VALUES (?, ?, ?)",
            (user_id, key, value),
        )

    def set_option(self, name: str, value: str) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO options (option_name, option_value) VALUES (?, ?)",
            (name, value),
        )

    def retain(self, object_ids: Iterable[int]) -> None:
        self.conn.executemany(
            """INSERT OR IGNORE INTO retained_objects (id, type)
               SELECT id, type FROM objects WHERE id = ?""",
            [(i,) for i in object_ids],
        )

    # Inspection

    def object_ids(self) -> set[int]:
        return {r[0] for r in self.conn.execute("SELECT id FROM objects")}

    def retained_ids(self) -> set[int]:
        return {r[0] for r in self.conn.execute("SELECT id FROM retained_objects")}

    def parent_of(self, object_id: int) -> int | None:
        row = self.conn.execute("SELECT parent_id FROM objects WHERE id = ?", (object_id,)).fetchone()
        return row[0] if row else None

    def count(self, table: str, where: str = "1", params: tuple = ()) -> int:
        return self.conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", params).fetchone()[0]

    def scalar(self, sql: str, params: tuple = ()):
        row = self.conn.execute(sql, params).fetchone()
        return row[0] if row else None


@pytest.fixture
def store(tmp_path: Path) -> Generator[StoreBuilder, None, None]:
    """Empty object store with the full schema."""
    builder = StoreBuilder(tmp_path / "store.db")
    yield builder
    builder.close()


@pytest.fixture
def mark_db(store: StoreBuilder) -> Generator[Stage01MarkDatabaseInterface, None, None]:
    """Mark-stage adapter with statement logging."""
    db = Stage01MarkDatabaseInterface(store.path, log_queries=True)
    db.open()
    yield db
    db.close()


@pytest.fixture
def sweep_db(store: StoreBuilder) -> Generator[Stage02SweepDatabaseInterface, None, None]:
    """Sweep-stage adapter with statement logging."""
    db = Stage02SweepDatabaseInterface(store.path, log_queries=True)
    db.open()
    yield db
    db.close()


@pytest.fixture
def anonymize_db(store: StoreBuilder) -> Generator[Stage03AnonymizeDatabaseInterface, None, None]:
    """Anonymize-stage adapter."""
    db = Stage03AnonymizeDatabaseInterface(store.path)
    db.open()
    yield db
    db.close()
