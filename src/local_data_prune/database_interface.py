"""
Database interface for the pruning job.

Provides Pydantic models for the object store rows and a DatabaseInterface
base class for stage-specific adapters with stage isolation, statement
logging and batched ``IN (...)`` helpers.

The adapters are the store client: each stage constructs one and hands it to
the components that need it (cache, marker, sweep engine). Statements run in
autocommit mode; the only multi-statement transaction is the explicit
:meth:`DatabaseInterface.transaction` helper, which the cascade never uses.
"""
import sqlite3
from abc import ABC
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar, Iterable, Iterator, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict, field_validator

from local_data_prune.logger import get_logger

SCHEMA_PATH = Path(__file__).resolve().parent / "database_schema.sql"

# Well below SQLITE_MAX_VARIABLE_NUMBER (32766 since SQLite 3.32).
MAX_SQL_VARIABLES = 30000

RETAINED_TABLE = "retained_objects"

logger = get_logger(__name__)

T = TypeVar("T")

# ==== DATA MODELS ====

class _BaseRowModel(BaseModel):
    """Base model for database rows with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        validate_assignment=True,
        extra="forbid",
    )


class ObjectRow(_BaseRowModel):
    """Row from the objects table."""

    id: int
    type: str
    parent_id: int | None = None
    title: str = ""
    content: str = ""
    status: str = "publish"
    created_at: datetime

    @field_validator("parent_id", mode="before")
    @classmethod
    def normalize_parent_id(cls, v: Any) -> int | None:
        """Treat a zero parent as no parent."""
        if v in (None, 0, "0", ""):
            return None
        return int(v)

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created_at(cls, v: Any) -> datetime:
        """Accept ``YYYY-MM-DD HH:MM:SS`` strings as stored by SQLite."""
        if isinstance(v, datetime):
            return v
        return datetime.fromisoformat(str(v))


class UserRow(_BaseRowModel):
    """Row from the users table."""

    id: int
    login: str
    email: str = ""

# --- DATABASE ERRORS

class DBError(Exception):
    """Base exception for database operations."""


class DBConstraintError(DBError):
    """Raised when a database constraint is violated."""


class DBSchemaError(DBError):
    """Raised when schema validation fails."""


class StageAccessError(DBError):
    """Raised when a stage attempts unauthorized table access."""


def placeholders(count: int) -> str:
    """Return ``?, ?, ...`` for *count* bound parameters."""
    if count <= 0:
        raise ValueError("placeholders() needs at least one parameter")
    return ", ".join("?" for _ in range(count))


def chunked(items: Sequence[T], size: int = MAX_SQL_VARIABLES) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of *items* no longer than *size*."""
    for start in range(0, len(items), size):
        yield items[start:start + size]


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way ``objects.created_at`` stores it."""
    return value.strftime("%Y-%m-%d %H:%M:%S")

# DATABASE INTERFACE

class DatabaseInterface(ABC):
    """
    Base class for stage-specific database adapters.

    Manages the connection to the object store, enforces stage isolation via
    READS/WRITES sets, records executed statements when asked to, and provides
    the batched object/meta reads shared by every stage.
    """

    READS: ClassVar[set[str]] = set()
    WRITES: ClassVar[set[str]] = set()

    def __init__(
        self,
        db_path: Path,
        stage_name: str = "unknown",
        log_queries: bool = False,
    ) -> None:
        """Initialize the database adapter."""
        self._db_path = db_path
        self._stage_name = stage_name
        self._log_queries = log_queries
        self._conn: sqlite3.Connection | None = None
        self._in_transaction = False
        self._query_log: list[tuple[str, tuple]] = []

    def open(self) -> None:
        """Open the connection and ensure schema."""
        self._conn = sqlite3.connect(
            str(self._db_path), timeout=30.0, isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 30000")
        if self._is_fresh_db():
            self._create_schema()
        else:
            self._validate_schema()

    def close(self) -> None:
        """Close the connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "DatabaseInterface":
        """Enter context manager."""
        self.open()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit context manager."""
        self.close()

    @property
    def stage_name(self) -> str:
        return self._stage_name

    @property
    def query_log(self) -> list[tuple[str, tuple]]:
        """Statements executed since the last reset (only when logging is on)."""
        return list(self._query_log)

    def reset_query_log(self) -> None:
        """Drop recorded statements; invoked between sweep batches."""
        self._query_log.clear()

    def _is_fresh_db(self) -> bool:
        assert self._conn is not None
        result = self._conn.execute(
            "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
        ).fetchone()
        return result[0] == 0

    def _create_schema(self) -> None:
        assert self._conn is not None
        logger.info("Fresh database at %s; creating schema", self._db_path)
        schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")
        self._conn.executescript(schema_sql)

    def _validate_schema(self) -> None:
        assert self._conn is not None
        existing = {
            row[0] for row in self._conn.execute(
                "SELECT name FROM sqlite_master WHERE type IN ('table', 'view')"
            )
        }
        # The retain-set is created by the mark stage itself.
        required_tables = (self.READS | self.WRITES) - {RETAINED_TABLE}
        missing = required_tables - existing

        if missing:
            raise DBSchemaError(f"Schema validation failed for stage '{self._stage_name}'. Missing tables: {sorted(missing)}. This stage requires: {sorted(required_tables)}")

    def _check_read_access(self, table: str) -> None:
        if table not in self.READS and table not in self.WRITES:
            raise StageAccessError(
                f"Stage '{self._stage_name}' cannot READ from '{table}'."
            )

    def _check_write_access(self, table: str) -> None:
        if table not in self.WRITES:
            raise StageAccessError(
                f"Stage '{self._stage_name}' cannot WRITE to '{table}'."
            )

    @contextmanager
    def transaction(self, immediate: bool = True) -> Iterator[None]:
        """Context manager for a database transaction."""
        assert self._conn is not None
        if self._in_transaction:
            yield
            return
        begin_stmt = "BEGIN IMMEDIATE" if immediate else "BEGIN"
        self._conn.execute(begin_stmt)
        self._in_transaction = True
        try:
            yield
            self._conn.execute("COMMIT")
        except Exception:
            self._conn.execute("ROLLBACK")
            raise
        finally:
            self._in_transaction = False

    def _record(self, sql: str, params: Any) -> None:
        if self._log_queries:
            self._query_log.append((" ".join(sql.split()), tuple(params or ())))

    def _execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        assert self._conn is not None
        self._record(sql, params)
        try:
            return self._conn.execute(sql, tuple(params or ()))
        except sqlite3.IntegrityError as e:
            raise DBConstraintError(str(e)) from e

    def _executemany(self, sql: str, rows: Iterable[Sequence[Any]]) -> sqlite3.Cursor:
        assert self._conn is not None
        rows = [tuple(r) for r in rows]
        self._record(sql, (len(rows),))
        try:
            return self._conn.executemany(sql, rows)
        except sqlite3.IntegrityError as e:
            raise DBConstraintError(str(e)) from e

    def _fetchone(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Row | None:
        return self._execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: Sequence[Any] | None = None) -> list[sqlite3.Row]:
        return self._execute(sql, params).fetchall()

    # Shared reads

    def get_object(self, object_id: int) -> ObjectRow | None:
        """Fetch a single object row."""
        self._check_read_access("objects")
        row = self._fetchone("SELECT * FROM objects WHERE id = ?", (object_id,))
        return ObjectRow.model_validate(dict(row)) if row else None

    def get_objects(self, object_ids: Sequence[int]) -> list[ObjectRow]:
        """
        Fetch object rows for *object_ids* in one batched read.

        Ids that do not exist are silently absent from the result.

        :param object_ids: Ids to fetch.
        :return: Rows ordered by id ascending.
        """
        self._check_read_access("objects")
        ids = sorted(set(object_ids))
        rows: list[ObjectRow] = []
        for chunk in chunked(ids):
            rows.extend(
                ObjectRow.model_validate(dict(r))
                for r in self._fetchall(
                    f"SELECT * FROM objects WHERE id IN ({placeholders(len(chunk))}) ORDER BY id",
                    chunk,
                )
            )
        return rows

    def get_meta_values(self, object_ids: Sequence[int], meta_key: str) -> dict[int, str]:
        """
        Return ``object_id -> meta_value`` for one meta key.

        When an object carries the key several times the first row wins.
        """
        self._check_read_access("object_meta")
        ids = sorted(set(object_ids))
        values: dict[int, str] = {}
        for chunk in chunked(ids, MAX_SQL_VARIABLES - 1):
            for row in self._fetchall(
                f"""SELECT object_id, meta_value FROM object_meta
                    WHERE meta_key = ? AND object_id IN ({placeholders(len(chunk))})
                    ORDER BY meta_id""",
                (meta_key, *chunk),
            ):
                values.setdefault(row["object_id"], row["meta_value"])
        return values

    def count_retained(self) -> int:
        """Return the retain-set size."""
        self._check_read_access(RETAINED_TABLE)
        row = self._fetchone(f"SELECT COUNT(*) FROM {RETAINED_TABLE}")
        return int(row[0]) if row else 0
