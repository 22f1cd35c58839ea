"""SQLite database storage backend for users and checklist check state.

This module provides a core repository that keeps the two partitions as
ordered key/value tables in a single SQLite database. Writes run under
BEGIN IMMEDIATE, so SQLite admits one writer at a time; WAL mode lets readers
keep working against a consistent snapshot while a write is in progress.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

from checkstore import codec
from checkstore.errors import NotFoundError, StoreUnavailableError
from checkstore.protocol import ChecklistRef, Checks, GitHubUser

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 1.0

# SQL schema for the SQLite database
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL
) WITHOUT ROWID;

CREATE TABLE IF NOT EXISTS checks (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL
) WITHOUT ROWID;
"""


class SQLiteCoreRepository:
    """SQLite-backed core repository.

    Every operation uses a fresh connection and one explicit transaction that is
    committed on success and rolled back on any exception. lock_timeout bounds
    how long an operation waits for another writer before failing.

    Attributes:
        db_path: The Path to the SQLite database file.
        read_only: Whether writes are rejected.

    Example:
        repo = SQLiteCoreRepository(Path("/var/lib/prchecklist/prchecklist.sqlite"))
        repo.add_check(ChecklistRef("octocat", "hello", 1), "deploy", user)
        checks = repo.fetch_checks(ChecklistRef("octocat", "hello", 1))
    """

    def __init__(
        self,
        db_path: Path,
        *,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        read_only: bool = False,
    ) -> None:
        """Initialize the SQLite core repository.

        Creates the database file and both tables if they don't exist, unless
        read_only is set.

        Args:
            db_path: The path to the SQLite database file.
            lock_timeout: Seconds to wait for a competing writer.
            read_only: Open for reading only; the file must already exist.

        Raises:
            StoreUnavailableError: If the database cannot be created, opened
                or locked within lock_timeout.
        """
        self.db_path = Path(db_path)
        self.lock_timeout = lock_timeout
        self.read_only = read_only
        self._closed = False

        if read_only:
            # Fail now rather than on the first read.
            with self._transaction("open", str(self.db_path)):
                pass
        else:
            self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        """Create and configure a database connection.

        Uses autocommit mode so transactions are begun explicitly, and sets
        the busy timeout to lock_timeout. Read-only repositories get a
        query_only connection to an existing file.

        Returns:
            A configured sqlite3.Connection object.

        Raises:
            sqlite3.Error: If there's an error connecting to the database.
        """
        if self.read_only:
            if not self.db_path.is_file():
                raise sqlite3.OperationalError(f"no database at {self.db_path}")
        else:
            # Ensure parent directory exists
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.lock_timeout,
            isolation_level=None,
            check_same_thread=False,  # Safe: each operation uses fresh connection
        )
        if self.read_only:
            conn.execute("PRAGMA query_only=ON")
        return conn

    def _ensure_schema(self) -> None:
        """Switch the database to WAL mode and create tables if missing.

        Raises:
            StoreUnavailableError: If there's an error executing schema creation.
        """
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(
                f"cannot open store: {exc}", operation="open", key=str(self.db_path)
            ) from exc
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("BEGIN IMMEDIATE")
            for statement in SCHEMA_SQL.split(";"):
                if statement.strip():
                    conn.execute(statement)
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            _rollback(conn)
            raise StoreUnavailableError(
                f"cannot create schema: {exc}", operation="open", key=str(self.db_path)
            ) from exc
        finally:
            conn.close()

        logger.info("Opened SQLite store %s", self.db_path)

    def close(self) -> None:
        """Mark the repository closed; later operations fail."""
        self._closed = True

    def __enter__(self) -> SQLiteCoreRepository:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextlib.contextmanager
    def _transaction(
        self, operation: str, key: str | None, *, write: bool = False
    ) -> Iterator[sqlite3.Connection]:
        """Run the block in one transaction on a fresh connection.

        Write transactions take the database write lock up front, so the read
        that precedes a write already excludes other writers.
        """
        if self._closed:
            raise StoreUnavailableError("store is closed", operation=operation, key=key)
        if write and self.read_only:
            raise StoreUnavailableError(
                "store is opened read-only", operation=operation, key=key
            )

        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(str(exc), operation=operation, key=key) from exc

        try:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            _rollback(conn)
            raise StoreUnavailableError(str(exc), operation=operation, key=key) from exc
        except BaseException:
            _rollback(conn)
            raise
        finally:
            conn.close()

    def upsert_user(self, user: GitHubUser) -> None:
        """Insert or overwrite the record for user["id"]."""
        key = codec.user_key(codec.require_user_id(user))
        data = codec.encode_user(user)

        with self._transaction("upsert_user", key, write=True) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO users (key, value) VALUES (?, ?)", (key, data)
            )

        logger.debug("Stored user %s", key)

    def fetch_users(self, user_ids: Iterable[int]) -> dict[int, GitHubUser]:
        """Fetch users by id from one read snapshot.

        Raises:
            NotFoundError: On the first id that has no record.
            CorruptionError: If a record cannot be decoded.
        """
        users: dict[int, GitHubUser] = {}

        with self._transaction("fetch_users", None) as conn:
            for user_id in user_ids:
                key = codec.user_key(user_id)
                data = _get(conn, "users", key)
                if data is None:
                    raise NotFoundError(
                        f"user id={user_id} not found",
                        operation="fetch_users",
                        key=key,
                    )
                users[user_id] = codec.decode_user(
                    data, operation="fetch_users", key=key
                )

        return users

    def fetch_checks(self, ref: ChecklistRef) -> Checks:
        """Fetch the check state of ref; never-written checklists are empty."""
        key = codec.checks_key(ref, operation="fetch_checks")

        with self._transaction("fetch_checks", key) as conn:
            data = _get(conn, "checks", key)

        return codec.decode_checks(data, operation="fetch_checks", key=key)

    def add_check(self, ref: ChecklistRef, key: str, user: GitHubUser) -> bool:
        """Mark item key of ref as checked by user. Returns True if changed."""
        db_key = codec.checks_key(ref, operation="add_check")
        user_id = codec.require_user_id(user)
        return self._update_checks(
            "add_check", db_key, lambda checks: checks.add(key, user_id)
        )

    def remove_check(self, ref: ChecklistRef, key: str, user: GitHubUser) -> bool:
        """Clear user's check on item key of ref. Returns True if changed."""
        db_key = codec.checks_key(ref, operation="remove_check")
        user_id = codec.require_user_id(user)
        return self._update_checks(
            "remove_check", db_key, lambda checks: checks.remove(key, user_id)
        )

    def _update_checks(
        self, operation: str, db_key: str, mutate: Callable[[Checks], bool]
    ) -> bool:
        with self._transaction(operation, db_key, write=True) as conn:
            checks = codec.decode_checks(
                _get(conn, "checks", db_key), operation=operation, key=db_key
            )
            if not mutate(checks):
                return False
            conn.execute(
                "INSERT OR REPLACE INTO checks (key, value) VALUES (?, ?)",
                (db_key, codec.encode_checks(checks)),
            )

        logger.debug("%s updated %s", operation, db_key)
        return True


def _get(conn: sqlite3.Connection, table: str, key: str) -> bytes | None:
    """Return the value stored under key in table, or None."""
    row = conn.execute(f"SELECT value FROM {table} WHERE key = ?", (key,)).fetchone()
    return None if row is None else row[0]


def _rollback(conn: sqlite3.Connection) -> None:
    try:
        conn.rollback()
    except sqlite3.Error:
        pass  # Connection may be in bad state after commit failure
