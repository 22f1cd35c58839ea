"""JSON codec and key derivation shared by the core repository backends.

Values are compact UTF-8 JSON objects. Field names are kept in the stored
bytes so records written by older versions stay readable when optional fields
are added; unknown fields are ignored when decoding.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from checkstore.errors import CorruptionError, InvalidReferenceError
from checkstore.protocol import ChecklistRef, Checks, GitHubUser

logger = logging.getLogger(__name__)


def user_key(user_id: int) -> str:
    """Return the users partition key for user_id (its decimal form).

    Raises:
        ValueError: If user_id is not an integer. Booleans are rejected too.
    """
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise ValueError(f"user id must be an integer, got {user_id!r}")
    return str(user_id)


def require_user_id(user: GitHubUser) -> int:
    """Return the id of user.

    Raises:
        ValueError: If the id is missing, not an integer, or zero.
    """
    user_id = user.get("id")
    if not isinstance(user_id, int) or isinstance(user_id, bool) or user_id == 0:
        raise ValueError(f"user id must be a non-zero integer, got {user_id!r}")
    return user_id


def checks_key(ref: ChecklistRef, *, operation: str) -> str:
    """Validate ref and return its checks partition key.

    Raises:
        InvalidReferenceError: If ref fails validation. The error carries
            operation for context.
    """
    try:
        ref.validate()
    except InvalidReferenceError as exc:
        exc.operation = operation
        raise
    return str(ref)


def _dumps(value: Any) -> bytes:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def _loads(data: bytes, *, operation: str | None, key: str | None) -> Any:
    try:
        return json.loads(bytes(data).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Undecodable record for %s (key=%r): %s", operation, key, exc)
        raise CorruptionError(
            f"stored value is not valid JSON: {exc}", operation=operation, key=key
        ) from exc


def encode_user(user: GitHubUser) -> bytes:
    """Encode a user record.

    Raises:
        ValueError: If the record holds values JSON cannot represent.
    """
    record = {
        "id": user["id"],
        "login": user.get("login", ""),
        "avatar_url": user.get("avatar_url", ""),
    }
    try:
        return _dumps(record)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"cannot encode user {user.get('id')!r}: {exc}") from exc


def decode_user(
    data: bytes, *, operation: str | None = None, key: str | None = None
) -> GitHubUser:
    """Decode a user record written by encode_user.

    Raises:
        CorruptionError: If data is not a JSON object with an integer id and
            string login/avatar_url fields.
    """
    raw = _loads(data, operation=operation, key=key)
    if not isinstance(raw, dict):
        raise CorruptionError(
            "stored user is not a JSON object", operation=operation, key=key
        )

    user_id = raw.get("id")
    login = raw.get("login", "")
    avatar_url = raw.get("avatar_url", "")
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise CorruptionError(
            "stored user has no integer id", operation=operation, key=key
        )
    if not isinstance(login, str) or not isinstance(avatar_url, str):
        raise CorruptionError(
            "stored user has non-string login or avatar_url",
            operation=operation,
            key=key,
        )

    return {"id": user_id, "login": login, "avatar_url": avatar_url}


def encode_checks(checks: Checks) -> bytes:
    """Encode check state as {"item key": [user ids...]}.

    Raises:
        ValueError: If checks holds values JSON cannot represent.
    """
    try:
        return _dumps(checks)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"cannot encode checks: {exc}") from exc


def decode_checks(
    data: bytes | None, *, operation: str | None = None, key: str | None = None
) -> Checks:
    """Decode check state written by encode_checks.

    None (no stored value) decodes to an empty Checks. Items keep their stored
    order; duplicate ids collapse to the first occurrence and empty items are
    dropped.

    Raises:
        CorruptionError: If data is not a JSON object mapping strings to lists
            of integers.
    """
    checks = Checks()
    if data is None:
        return checks

    raw = _loads(data, operation=operation, key=key)
    if not isinstance(raw, dict):
        raise CorruptionError(
            "stored checks is not a JSON object", operation=operation, key=key
        )

    for item_key, user_ids in raw.items():
        if not isinstance(user_ids, list) or not all(
            isinstance(uid, int) and not isinstance(uid, bool) for uid in user_ids
        ):
            raise CorruptionError(
                f"stored checks for item {item_key!r} is not a list of user ids",
                operation=operation,
                key=key,
            )
        for user_id in user_ids:
            checks.add(item_key, user_id)

    return checks
