"""Tests for the JSON codec and key derivation."""

from __future__ import annotations

import json

import pytest

from checkstore import codec
from checkstore.errors import CorruptionError, InvalidReferenceError
from checkstore.protocol import ChecklistRef, Checks, GitHubUser


class TestKeys:
    """Tests for storage key derivation."""

    def test_user_key_should_be_decimal(self) -> None:
        assert codec.user_key(42) == "42"
        assert codec.user_key(-7) == "-7"

    @pytest.mark.parametrize("user_id", [1.7, 1.0, True, "1", None])
    def test_user_key_should_reject_non_integers(self, user_id) -> None:
        """Verify ids are never truncated or coerced into another key."""
        with pytest.raises(ValueError):
            codec.user_key(user_id)

    def test_checks_key_should_be_canonical_string(
        self, sample_ref: ChecklistRef
    ) -> None:
        assert codec.checks_key(sample_ref, operation="x") == str(sample_ref)

    def test_checks_key_should_attach_operation_to_error(self) -> None:
        """Verify validation errors name the operation that hit them."""
        with pytest.raises(InvalidReferenceError) as excinfo:
            codec.checks_key(ChecklistRef("", "repo", 1), operation="add_check")
        assert excinfo.value.operation == "add_check"
        assert str(excinfo.value).startswith("add_check: owner")

    @pytest.mark.parametrize("user", [{}, {"id": 0}, {"id": "1"}, {"id": True}])
    def test_require_user_id_should_reject_missing_or_zero(self, user) -> None:
        with pytest.raises(ValueError):
            codec.require_user_id(user)


class TestUserCodec:
    """Tests for encode_user/decode_user."""

    def test_should_round_trip(self, sample_user: GitHubUser) -> None:
        assert codec.decode_user(codec.encode_user(sample_user)) == sample_user

    def test_should_keep_field_names(self, sample_user: GitHubUser) -> None:
        """Verify the stored JSON is self-describing."""
        stored = json.loads(codec.encode_user(sample_user))
        assert stored == {
            "id": 1,
            "login": "octocat",
            "avatar_url": "https://avatars.githubusercontent.com/u/1",
        }

    def test_should_ignore_unknown_fields(self) -> None:
        """Verify records with fields added later still decode."""
        data = b'{"id":5,"login":"x","avatar_url":"y","name":"Someone"}'
        assert codec.decode_user(data) == {"id": 5, "login": "x", "avatar_url": "y"}

    def test_should_default_missing_optional_fields(self) -> None:
        assert codec.decode_user(b'{"id":5}') == {"id": 5, "login": "", "avatar_url": ""}

    def test_should_preserve_unicode(self) -> None:
        user: GitHubUser = {"id": 9, "login": "ユーザー", "avatar_url": ""}
        data = codec.encode_user(user)
        assert "ユーザー".encode("utf-8") in data
        assert codec.decode_user(data) == user

    @pytest.mark.parametrize(
        "data",
        [
            b"not json",
            b"\xff\xfe",
            b"[1, 2]",
            b'{"login": "x"}',
            b'{"id": "1"}',
            b'{"id": 1, "login": 3}',
        ],
    )
    def test_should_raise_corruption_error(self, data: bytes) -> None:
        with pytest.raises(CorruptionError) as excinfo:
            codec.decode_user(data, operation="fetch_users", key="1")
        assert excinfo.value.operation == "fetch_users"
        assert excinfo.value.key == "1"


class TestChecksCodec:
    """Tests for encode_checks/decode_checks."""

    def test_none_should_decode_to_empty(self) -> None:
        checks = codec.decode_checks(None)
        assert isinstance(checks, Checks)
        assert checks == {}

    def test_should_round_trip_preserving_order(self) -> None:
        checks = Checks()
        checks.add("zeta", 3)
        checks.add("alpha", 1)
        checks.add("zeta", 1)
        decoded = codec.decode_checks(codec.encode_checks(checks))
        assert decoded == checks
        assert list(decoded) == ["zeta", "alpha"]
        assert decoded["zeta"] == [3, 1]

    def test_should_encode_as_object_of_id_lists(self) -> None:
        checks = Checks({"deploy": [1, 2]})
        assert json.loads(codec.encode_checks(checks)) == {"deploy": [1, 2]}

    def test_should_collapse_duplicates_and_drop_empty_items(self) -> None:
        decoded = codec.decode_checks(b'{"a":[1,1,2],"b":[]}')
        assert decoded == {"a": [1, 2]}

    def test_constructed_checks_should_round_trip(self) -> None:
        """Verify Checks built from a mapping survive encode and decode."""
        checks = Checks({"a": [], "b": [2, 2]})
        assert codec.decode_checks(codec.encode_checks(checks)) == checks

    @pytest.mark.parametrize(
        "data",
        [b"{", b"[]", b'{"a": 1}', b'{"a": ["1"]}', b'{"a": [true]}', b"null"],
    )
    def test_should_raise_corruption_error(self, data: bytes) -> None:
        with pytest.raises(CorruptionError):
            codec.decode_checks(data, operation="fetch_checks", key="k")
