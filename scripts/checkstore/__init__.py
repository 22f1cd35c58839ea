"""Core repository factory and exports for prchecklist-store.

This module maps datasource strings of the form "<scheme>:<path>" to core
repository implementations, and provides get_core_repository to build one
from environment configuration.

Supported schemes:
    - "bolt" (default) / "lmdb": single-file LMDB store
    - "sqlite": SQLite database

Environment Variables:
    PRCHECKLIST_DATASOURCE: "<scheme>:<path>", default "bolt:prchecklist.db".
                            Relative paths are resolved against base_dir.
    PRCHECKLIST_LOCK_TIMEOUT: Seconds to wait for another writer (default 1.0)
    PRCHECKLIST_MAP_SIZE: Maximum LMDB file size in bytes (default 1GB)

Example:
    from checkstore import get_core_repository
    from checkstore.protocol import ChecklistRef
    from pathlib import Path

    repo = get_core_repository(Path("/var/lib/prchecklist"))
    repo.add_check(ChecklistRef("octocat", "hello", 1), "deploy", user)
    checks = repo.fetch_checks(ChecklistRef("octocat", "hello", 1))
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path

from checkstore.errors import (
    CorruptionError,
    InvalidReferenceError,
    NotFoundError,
    StoreError,
    StoreUnavailableError,
)
from checkstore.lmdb_backend import DEFAULT_MAP_SIZE, LMDBCoreRepository
from checkstore.protocol import ChecklistRef, Checks, CoreRepository, GitHubUser
from checkstore.sqlite_backend import SQLiteCoreRepository

__all__ = [
    "ChecklistRef",
    "Checks",
    "CoreRepository",
    "CorruptionError",
    "GitHubUser",
    "InvalidReferenceError",
    "LMDBCoreRepository",
    "NotFoundError",
    "SQLiteCoreRepository",
    "StoreError",
    "StoreUnavailableError",
    "get_core_repository",
    "open_core_repository",
    "parse_datasource",
    "register_core_repository",
]

logger = logging.getLogger(__name__)

DEFAULT_DATASOURCE = "bolt:prchecklist.db"
DEFAULT_LOCK_TIMEOUT = 1.0

CoreRepositoryBuilder = Callable[..., CoreRepository]

_builders: dict[str, CoreRepositoryBuilder] = {}


def register_core_repository(scheme: str, builder: CoreRepositoryBuilder) -> None:
    """Register builder for datasources starting with "<scheme>:".

    The builder is called with the datasource path and the keyword options
    lock_timeout, map_size and read_only.
    """
    _builders[scheme] = builder


def _build_lmdb(
    path: Path, *, lock_timeout: float, map_size: int, read_only: bool
) -> CoreRepository:
    return LMDBCoreRepository(
        path, lock_timeout=lock_timeout, map_size=map_size, read_only=read_only
    )


def _build_sqlite(
    path: Path, *, lock_timeout: float, map_size: int, read_only: bool
) -> CoreRepository:
    return SQLiteCoreRepository(path, lock_timeout=lock_timeout, read_only=read_only)


register_core_repository("bolt", _build_lmdb)
register_core_repository("lmdb", _build_lmdb)
register_core_repository("sqlite", _build_sqlite)


def parse_datasource(datasource: str) -> tuple[str, str]:
    """Split "<scheme>:<path>" into its parts.

    Raises:
        ValueError: If there is no scheme separator, the path is empty, or
            the scheme is not registered.
    """
    scheme, sep, path = datasource.partition(":")
    if not sep or not path:
        raise ValueError(
            f"Invalid datasource: {datasource!r}. Expected '<scheme>:<path>'."
        )
    if scheme not in _builders:
        raise ValueError(
            f"Unknown datasource scheme: {scheme!r}. "
            f"Expected one of {', '.join(repr(s) for s in sorted(_builders))}."
        )
    return scheme, path


def open_core_repository(
    datasource: str,
    *,
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    map_size: int = DEFAULT_MAP_SIZE,
    read_only: bool = False,
) -> CoreRepository:
    """Open the core repository described by datasource.

    Args:
        datasource: "<scheme>:<path>", e.g. "bolt:/var/lib/prchecklist.db".
        lock_timeout: Seconds to wait for another writer.
        map_size: Maximum store size in bytes (LMDB only).
        read_only: Reject writes and skip partition creation.

    Returns:
        An open core repository. The caller owns it and must close it.

    Raises:
        ValueError: If the datasource is malformed or its scheme is unknown.
        StoreUnavailableError: If the store cannot be opened or locked.
    """
    scheme, path = parse_datasource(datasource)
    logger.debug("Opening %s core repository at %s", scheme, path)
    return _builders[scheme](
        Path(path), lock_timeout=lock_timeout, map_size=map_size, read_only=read_only
    )


def _get_datasource(base_dir: Path) -> str:
    """Get the datasource from environment or default.

    Relative paths are resolved against base_dir.

    Raises:
        ValueError: If PRCHECKLIST_DATASOURCE is malformed.
    """
    datasource = os.environ.get("PRCHECKLIST_DATASOURCE", "").strip() or DEFAULT_DATASOURCE
    scheme, path = parse_datasource(datasource)

    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = base_dir / candidate

    return f"{scheme}:{candidate}"


def _get_lock_timeout() -> float:
    """Get the lock timeout in seconds from environment or default.

    Raises:
        ValueError: If PRCHECKLIST_LOCK_TIMEOUT is not a non-negative number.
    """
    raw = os.environ.get("PRCHECKLIST_LOCK_TIMEOUT", "").strip()
    if not raw:
        return DEFAULT_LOCK_TIMEOUT
    try:
        timeout = float(raw)
    except ValueError:
        raise ValueError(f"PRCHECKLIST_LOCK_TIMEOUT '{raw}' is not a number") from None
    if timeout < 0:
        raise ValueError(f"PRCHECKLIST_LOCK_TIMEOUT '{raw}' must not be negative")
    return timeout


def _get_map_size() -> int:
    """Get the LMDB map size in bytes from environment or default.

    Raises:
        ValueError: If PRCHECKLIST_MAP_SIZE is not a positive integer.
    """
    raw = os.environ.get("PRCHECKLIST_MAP_SIZE", "").strip()
    if not raw:
        return DEFAULT_MAP_SIZE
    try:
        map_size = int(raw)
    except ValueError:
        raise ValueError(f"PRCHECKLIST_MAP_SIZE '{raw}' is not an integer") from None
    if map_size <= 0:
        raise ValueError(f"PRCHECKLIST_MAP_SIZE '{raw}' must be positive")
    return map_size


def get_core_repository(base_dir: Path, *, read_only: bool = False) -> CoreRepository:
    """Get the configured core repository.

    Reads PRCHECKLIST_DATASOURCE, PRCHECKLIST_LOCK_TIMEOUT and
    PRCHECKLIST_MAP_SIZE. Call this once at process start and pass the
    repository to whatever needs it.

    Args:
        base_dir: Directory that relative datasource paths are resolved against.
        read_only: Open the repository read-only.

    Returns:
        An open core repository.

    Raises:
        ValueError: If the configuration is invalid.
        StoreUnavailableError: If the store cannot be opened or locked.
    """
    return open_core_repository(
        _get_datasource(base_dir),
        lock_timeout=_get_lock_timeout(),
        map_size=_get_map_size(),
        read_only=read_only,
    )
