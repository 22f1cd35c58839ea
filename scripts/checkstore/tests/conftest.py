"""Shared fixtures and utilities for core repository tests.

This module provides common test fixtures used across all core repository
tests, including sample users and checklist references, temporary
directories, and parameterized repository instances.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from checkstore.lmdb_backend import LMDBCoreRepository
from checkstore.protocol import ChecklistRef, CoreRepository, GitHubUser
from checkstore.sqlite_backend import SQLiteCoreRepository

TEST_MAP_SIZE = 16 * 1024**2


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """Create a temporary project directory for testing.

    Returns:
        Path to a clean temporary directory.
    """
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def sample_user() -> GitHubUser:
    """Create a sample user for testing.

    Returns:
        A valid GitHubUser with all fields set.
    """
    return {
        "id": 1,
        "login": "octocat",
        "avatar_url": "https://avatars.githubusercontent.com/u/1",
    }


@pytest.fixture
def sample_users() -> list[GitHubUser]:
    """Create a list of distinct users for testing.

    Returns:
        Three GitHubUser records with ids 1, 2 and 3.
    """
    return [
        {"id": 1, "login": "octocat", "avatar_url": "https://example.com/1.png"},
        {"id": 2, "login": "hubot", "avatar_url": "https://example.com/2.png"},
        {"id": 3, "login": "monalisa", "avatar_url": "https://example.com/3.png"},
    ]


@pytest.fixture
def sample_ref() -> ChecklistRef:
    """Create a valid checklist reference for testing."""
    return ChecklistRef(owner="motemen", repo="test-repository", number=2, stage="default")


@pytest.fixture
def other_ref() -> ChecklistRef:
    """Create a second valid reference that differs only by stage."""
    return ChecklistRef(owner="motemen", repo="test-repository", number=2, stage="qa")


@pytest.fixture(params=["lmdb", "sqlite"])
def repository(request, tmp_project: Path) -> Iterator[CoreRepository]:
    """Parameterized fixture providing both core repository types.

    This fixture enables cross-backend compliance testing by running
    the same tests against both LMDB and SQLite implementations.

    Args:
        request: Pytest request object with param.
        tmp_project: Temporary project directory.

    Yields:
        An open LMDBCoreRepository or SQLiteCoreRepository.
    """
    if request.param == "lmdb":
        repo: CoreRepository = LMDBCoreRepository(
            tmp_project / "prchecklist.db", map_size=TEST_MAP_SIZE
        )
    else:
        repo = SQLiteCoreRepository(tmp_project / "prchecklist.sqlite")
    yield repo
    repo.close()


@pytest.fixture
def lmdb_repository(tmp_project: Path) -> Iterator[LMDBCoreRepository]:
    """Create an LMDB core repository for LMDB-specific tests."""
    repo = LMDBCoreRepository(tmp_project / "prchecklist.db", map_size=TEST_MAP_SIZE)
    yield repo
    repo.close()


@pytest.fixture
def sqlite_repository(tmp_project: Path) -> Iterator[SQLiteCoreRepository]:
    """Create a SQLite core repository for SQLite-specific tests."""
    repo = SQLiteCoreRepository(tmp_project / "prchecklist.sqlite")
    yield repo
    repo.close()
