"""Protocols and type definitions for core repositories.

This module defines the records stored by core repositories and the interface
every backend implements. All backends must implement the CoreRepository
protocol.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Protocol, TypedDict

from checkstore.errors import InvalidReferenceError

DEFAULT_STAGE = "default"

# Characters that delimit fields in the canonical reference string.
_REFERENCE_SEPARATORS = frozenset("/#@")


class GitHubUser(TypedDict):
    """Structure for a known user.

    Attributes:
        id: Numeric GitHub user id (primary key, never zero).
        login: GitHub login name.
        avatar_url: URL of the user's avatar image.
    """

    id: int
    login: str
    avatar_url: str


@dataclass(frozen=True)
class ChecklistRef:
    """Identifies one checklist: a pull request at a given stage.

    Attributes:
        owner: Repository owner (user or organization).
        repo: Repository name.
        number: Pull request number.
        stage: Checklist stage, e.g. "default" or "production".

    Example:
        ref = ChecklistRef("motemen", "test-repository", 2, "qa")
        ref.validate()
        str(ref)  # "motemen/test-repository#2@qa"
    """

    owner: str
    repo: str
    number: int
    stage: str = DEFAULT_STAGE

    def validate(self) -> None:
        """Check that the reference can be used as a storage key.

        Raises:
            InvalidReferenceError: If a required field is empty, owner or repo
                contain a separator character, or number is not a positive
                integer.
        """
        for field_name in ("owner", "repo", "stage"):
            value = getattr(self, field_name)
            if not isinstance(value, str) or not value:
                raise InvalidReferenceError(
                    f"{field_name} must be a non-empty string", key=repr(self)
                )

        for field_name in ("owner", "repo"):
            if _REFERENCE_SEPARATORS.intersection(getattr(self, field_name)):
                raise InvalidReferenceError(
                    f"{field_name} must not contain any of '/', '#', '@'",
                    key=repr(self),
                )

        # bool is an int subclass but never a pull request number
        if (
            not isinstance(self.number, int)
            or isinstance(self.number, bool)
            or self.number <= 0
        ):
            raise InvalidReferenceError(
                "number must be a positive integer", key=repr(self)
            )

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}#{self.number}@{self.stage}"


class Checks(dict[str, list[int]]):
    """Check state of one checklist: item key -> ids of users who checked it.

    Each item lists a user at most once. Items without users are removed, so an
    emptied Checks compares equal to a fresh one. Initial contents are
    normalised the same way: duplicate ids collapse and empty items are
    dropped.
    """

    def __init__(self, items: Mapping[str, Iterable[int]] | None = None) -> None:
        super().__init__()
        for key, user_ids in (items or {}).items():
            for user_id in user_ids:
                self.add(key, user_id)

    def add(self, key: str, user_id: int) -> bool:
        """Mark key as checked by user_id. Returns False if already checked."""
        user_ids = self.get(key)
        if user_ids is None:
            self[key] = [user_id]
            return True
        if user_id in user_ids:
            return False
        user_ids.append(user_id)
        return True

    def remove(self, key: str, user_id: int) -> bool:
        """Clear user_id's check on key. Returns False if it was not checked."""
        user_ids = self.get(key)
        if not user_ids or user_id not in user_ids:
            return False
        user_ids.remove(user_id)
        if not user_ids:
            del self[key]
        return True

    def is_checked(self, key: str, user_id: int) -> bool:
        return user_id in self.get(key, ())


class CoreRepository(Protocol):
    """Protocol for core repositories.

    All repositories must implement these methods to be usable by the
    checklist service layer. Each method runs in its own engine transaction.
    """

    def upsert_user(self, user: GitHubUser) -> None:
        """Insert or overwrite a user record keyed by its id.

        Raises:
            ValueError: If the user has no id or a zero id.
            StoreUnavailableError: If the write cannot be committed.
        """
        ...

    def fetch_users(self, user_ids: Iterable[int]) -> dict[int, GitHubUser]:
        """Fetch users by id from one consistent snapshot.

        Returns:
            A mapping containing exactly the requested ids.

        Raises:
            NotFoundError: As soon as any requested id is missing.
            CorruptionError: If a stored record cannot be decoded.
        """
        ...

    def fetch_checks(self, ref: ChecklistRef) -> Checks:
        """Fetch the check state of a checklist.

        Returns:
            The decoded Checks, empty if the checklist was never written.

        Raises:
            InvalidReferenceError: If ref fails validation.
            CorruptionError: If the stored value cannot be decoded.
        """
        ...

    def add_check(self, ref: ChecklistRef, key: str, user: GitHubUser) -> bool:
        """Mark item key of ref as checked by user.

        Returns:
            True if the state changed, False if the user had already checked it.

        Raises:
            InvalidReferenceError: If ref fails validation.
            CorruptionError: If the stored value cannot be decoded.
        """
        ...

    def remove_check(self, ref: ChecklistRef, key: str, user: GitHubUser) -> bool:
        """Clear user's check on item key of ref.

        Returns:
            True if the state changed, False if the user had not checked it.

        Raises:
            InvalidReferenceError: If ref fails validation.
            CorruptionError: If the stored value cannot be decoded.
        """
        ...

    def close(self) -> None:
        """Release the engine handle and any file locks."""
        ...

    def __enter__(self) -> CoreRepository:
        ...

    def __exit__(self, *exc_info: object) -> None:
        """Close the repository on leaving a with block."""
        ...
