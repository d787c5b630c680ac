from pathlib import Path
from typing import ClassVar

from local_data_prune.database_interface import DatabaseInterface, UserRow

STAGE_NAME = "stage_03_anonymize"


class Stage03AnonymizeDatabaseInterface(DatabaseInterface):
    """Database interface for the PII rewrite run after the sweep."""

    READS: ClassVar[set[str]] = set()
    WRITES: ClassVar[set[str]] = {"users", "user_meta", "comments", "options"}

    def __init__(self, db_path: Path, log_queries: bool = False) -> None:
        """Initialize."""
        super().__init__(
            db_path=db_path,
            stage_name=STAGE_NAME,
            log_queries=log_queries,
        )

    def list_users(self) -> list[UserRow]:
        self._check_read_access("users")
        return [
            UserRow.model_validate(dict(r))
            for r in self._fetchall("SELECT id, login, email FROM users ORDER BY id")
        ]

    def update_user_email(self, user_id: int, email: str) -> None:
        self._check_write_access("users")
        self._execute("UPDATE users SET email = ? WHERE id = ?", (email, user_id))

    def delete_user_meta(self, meta_key: str) -> int:
        self._check_write_access("user_meta")
        cursor = self._execute("DELETE FROM user_meta WHERE meta_key = ?", (meta_key,))
        return cursor.rowcount

    def scrub_comment_authors(self, email: str) -> int:
        """Replace commenter email and drop IP and user agent on every comment."""
        self._check_write_access("comments")
        cursor = self._execute(
            "UPDATE comments SET author_email = ?, author_ip = '', agent = ''",
            (email,),
        )
        return cursor.rowcount

    def set_option(self, name: str, value: str) -> None:
        self._check_write_access("options")
        self._execute(
            """INSERT INTO options (option_name, option_value) VALUES (?, ?)
               ON CONFLICT(option_name) DO UPDATE SET option_value = excluded.option_value""",
            (name, value),
        )

    def delete_option(self, name: str) -> int:
        self._check_write_access("options")
        cursor = self._execute("DELETE FROM options WHERE option_name = ?", (name,))
        return cursor.rowcount
