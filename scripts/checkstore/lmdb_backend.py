"""LMDB storage backend for users and checklist check state.

This module provides the default core repository. All data lives in one LMDB
file with two named sub-databases ("users" and "checks"). LMDB allows one
writer at a time across the whole file and gives every reader a consistent
snapshot, which is what keeps read-modify-write updates of a checklist free
of lost updates.
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import time
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

import lmdb

from checkstore import codec
from checkstore.errors import NotFoundError, StoreUnavailableError
from checkstore.protocol import ChecklistRef, Checks, GitHubUser

logger = logging.getLogger(__name__)

USERS_BUCKET = b"users"
CHECKS_BUCKET = b"checks"

DEFAULT_LOCK_TIMEOUT = 1.0
DEFAULT_MAP_SIZE = 1024**3  # 1GB, sparse on disk
LOCK_POLL_INTERVAL = 0.05


def _acquire_file_lock(lock_path: Path, *, exclusive: bool, timeout: float) -> int:
    """Take an flock on lock_path, polling until timeout seconds have passed.

    Returns:
        The open file descriptor holding the lock.

    Raises:
        StoreUnavailableError: If the lock is still held elsewhere at the
            deadline, or the lock file cannot be opened.
    """
    try:
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o600)
    except OSError as exc:
        raise StoreUnavailableError(
            f"cannot open lock file: {exc}", operation="open", key=str(lock_path)
        ) from exc

    mode = (fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH) | fcntl.LOCK_NB
    deadline = time.monotonic() + timeout
    warned = False
    while True:
        try:
            fcntl.flock(fd, mode)
            return fd
        except BlockingIOError:
            if time.monotonic() >= deadline:
                os.close(fd)
                raise StoreUnavailableError(
                    f"store is locked by another process (waited {timeout}s)",
                    operation="open",
                    key=str(lock_path),
                ) from None
            if not warned:
                logger.warning("Waiting for lock on %s", lock_path)
                warned = True
            time.sleep(LOCK_POLL_INTERVAL)


class LMDBCoreRepository:
    """LMDB-backed core repository.

    Opening takes an exclusive flock on "<db_path>.flock" (shared when
    read_only), so a second writer fails within lock_timeout seconds instead of
    sharing the file. Each operation runs in its own LMDB transaction, which
    is committed on success and aborted on any exception.

    Attributes:
        db_path: The Path to the LMDB data file.
        read_only: Whether writes are rejected.

    Example:
        with LMDBCoreRepository(Path("/var/lib/prchecklist/prchecklist.db")) as repo:
            repo.upsert_user({"id": 1, "login": "octocat", "avatar_url": ""})
            repo.add_check(ChecklistRef("octocat", "hello", 1), "deploy", user)
            checks = repo.fetch_checks(ChecklistRef("octocat", "hello", 1))
    """

    def __init__(
        self,
        db_path: Path,
        *,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        map_size: int = DEFAULT_MAP_SIZE,
        read_only: bool = False,
    ) -> None:
        """Open the store, creating the file and both sub-databases if needed.

        Args:
            db_path: The path to the LMDB data file.
            lock_timeout: Seconds to wait for another process's lock.
            map_size: Maximum size of the data file in bytes.
            read_only: Open for reading only; the file must already exist.

        Raises:
            StoreUnavailableError: If the file is locked, missing (read_only),
                or cannot be opened.
        """
        self.db_path = Path(db_path)
        self.read_only = read_only

        if not read_only:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        lock_path = self.db_path.with_name(self.db_path.name + ".flock")
        self._lock_fd: int | None = _acquire_file_lock(
            lock_path, exclusive=not read_only, timeout=lock_timeout
        )
        try:
            self._env = lmdb.open(
                str(self.db_path),
                subdir=False,
                map_size=map_size,
                max_dbs=2,
                readonly=read_only,
            )
        except lmdb.Error as exc:
            self._release_lock()
            raise StoreUnavailableError(
                f"cannot open store: {exc}", operation="open", key=str(self.db_path)
            ) from exc

        try:
            self._users = self._env.open_db(USERS_BUCKET, create=not read_only)
            self._checks = self._env.open_db(CHECKS_BUCKET, create=not read_only)
        except lmdb.Error as exc:
            self._env.close()
            self._release_lock()
            raise StoreUnavailableError(
                f"cannot open buckets: {exc}", operation="open", key=str(self.db_path)
            ) from exc

        logger.info(
            "Opened LMDB store %s (%s)",
            self.db_path,
            "read-only" if read_only else "read-write",
        )

    def _release_lock(self) -> None:
        if self._lock_fd is None:
            return
        try:
            fcntl.flock(self._lock_fd, fcntl.LOCK_UN)
        finally:
            os.close(self._lock_fd)
            self._lock_fd = None

    def close(self) -> None:
        """Close the LMDB environment and release the file lock.

        Calling close more than once is a no-op.
        """
        if self._lock_fd is None:
            return
        self._env.close()
        self._release_lock()
        logger.debug("Closed LMDB store %s", self.db_path)

    def __enter__(self) -> LMDBCoreRepository:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextlib.contextmanager
    def _transaction(
        self, operation: str, key: str | None, *, write: bool = False
    ) -> Iterator[lmdb.Transaction]:
        """Run the block in one transaction, translating engine errors.

        The transaction commits when the block finishes and aborts if it
        raises.
        """
        if self._lock_fd is None:
            raise StoreUnavailableError("store is closed", operation=operation, key=key)
        if write and self.read_only:
            raise StoreUnavailableError(
                "store is opened read-only", operation=operation, key=key
            )
        try:
            with self._env.begin(write=write) as txn:
                yield txn
        except lmdb.Error as exc:
            raise StoreUnavailableError(str(exc), operation=operation, key=key) from exc

    def upsert_user(self, user: GitHubUser) -> None:
        """Insert or overwrite the record for user["id"]."""
        key = codec.user_key(codec.require_user_id(user))
        data = codec.encode_user(user)

        with self._transaction("upsert_user", key, write=True) as txn:
            txn.put(key.encode("utf-8"), data, db=self._users)

        logger.debug("Stored user %s", key)

    def fetch_users(self, user_ids: Iterable[int]) -> dict[int, GitHubUser]:
        """Fetch users by id from one read snapshot.

        Raises:
            NotFoundError: On the first id that has no record.
            CorruptionError: If a record cannot be decoded.
        """
        users: dict[int, GitHubUser] = {}

        with self._transaction("fetch_users", None) as txn:
            for user_id in user_ids:
                key = codec.user_key(user_id)
                data = txn.get(key.encode("utf-8"), db=self._users)
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

        with self._transaction("fetch_checks", key) as txn:
            data = txn.get(key.encode("utf-8"), db=self._checks)

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
        """Read, mutate and write back the checks under db_key in one write
        transaction.

        The value is only written when mutate reports a change.
        """
        raw_key = db_key.encode("utf-8")

        with self._transaction(operation, db_key, write=True) as txn:
            checks = codec.decode_checks(
                txn.get(raw_key, db=self._checks), operation=operation, key=db_key
            )
            if not mutate(checks):
                return False
            txn.put(raw_key, codec.encode_checks(checks), db=self._checks)

        logger.debug("%s updated %s", operation, db_key)
        return True
