"""Unit tests for URL resolution and query merging."""

import pytest

from fetchkit.exceptions import InvalidURLError
from fetchkit.utils.http import merge_query, resolve_url


class TestMergeQuery:
    def test_override_wins(self):
        merged = merge_query({"locale": "en"}, {"locale": "fr"})
        assert merged == {"locale": "fr"}

    def test_defaults_come_first(self):
        merged = merge_query({"a": "1", "b": "2"}, {"c": "3", "a": "x"})
        assert list(merged) == ["a", "b", "c"]
        assert merged["a"] == "x"

    def test_handles_missing_maps(self):
        assert merge_query(None, None) == {}
        assert merge_query({"a": "1"}) == {"a": "1"}


class TestResolveUrl:
    def test_relative_path_with_query(self):
        url = resolve_url("/users", "https://api.example.com", {"page": "1"})
        assert url == "https://api.example.com/users?page=1"

    def test_leading_slash_is_optional(self):
        assert resolve_url("users", "https://api.example.com") == (
            "https://api.example.com/users"
        )

    def test_base_path_is_kept(self):
        assert resolve_url("/users", "https://api.example.com/v1") == (
            "https://api.example.com/v1/users"
        )
        assert resolve_url("/users", "https://api.example.com/v1/") == (
            "https://api.example.com/v1/users"
        )

    def test_absolute_url_ignores_base(self):
        url = resolve_url("https://other.example.com/x", "https://api.example.com")
        assert url == "https://other.example.com/x"

    def test_absolute_url_without_base(self):
        assert resolve_url("https://api.example.com/x") == "https://api.example.com/x"

    def test_existing_query_is_preserved(self):
        url = resolve_url("/search?q=cats", "https://api.example.com", {"page": "2"})
        assert url == "https://api.example.com/search?q=cats&page=2"

    def test_duplicate_keys_are_not_collapsed(self):
        url = resolve_url("/search?page=1", "https://api.example.com", {"page": "2"})
        assert url == "https://api.example.com/search?page=1&page=2"

    def test_query_values_are_percent_encoded(self):
        url = resolve_url("/s", "https://api.example.com", {"q": "a b&c"})
        assert url == "https://api.example.com/s?q=a%20b%26c"

    def test_relative_without_base_fails(self):
        with pytest.raises(InvalidURLError) as exc_info:
            resolve_url("/users")
        assert exc_info.value.url == "/users"
        assert exc_info.value.code == "INVALID_URL"

    def test_relative_base_fails(self):
        with pytest.raises(InvalidURLError):
            resolve_url("/users", "api.example.com")

    def test_bad_port_fails(self):
        with pytest.raises(InvalidURLError):
            resolve_url("http://example.com:notaport/")
