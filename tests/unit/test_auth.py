"""Tests for bearer credential helpers."""

import pytest

from wideevent.core.auth import (
    KEY_PREFIX,
    display_prefix,
    generate_api_key,
    hash_api_key,
    parse_bearer,
)


class TestApiKeys:
    """Tests for key generation and hashing."""

    @pytest.mark.core
    def test_generated_keys_are_prefixed_and_unique(self) -> None:
        first, second = generate_api_key(), generate_api_key()

        assert first.startswith(KEY_PREFIX)
        assert first != second

    @pytest.mark.core
    def test_hash_is_stable_sha256_hex(self) -> None:
        digest = hash_api_key("we_abc")

        assert digest == hash_api_key("we_abc")
        assert len(digest) == 64
        assert digest != hash_api_key("we_abd")

    @pytest.mark.core
    def test_display_prefix(self) -> None:
        assert display_prefix("we_0123456789") == "we_01234"


class TestParseBearer:
    """Tests for parse_bearer()."""

    @pytest.mark.core
    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("Bearer we_abc", "we_abc"),
            ("bearer   we_abc ", "we_abc"),
            ("Basic dXNlcg==", None),
            ("Bearer", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse(self, header: str | None, expected: str | None) -> None:
        assert parse_bearer(header) == expected
