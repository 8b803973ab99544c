"""
Unit tests for built-in matcher predicates.
"""

import pytest

from enforcement.expression.builtins import (
    BUILTIN_FUNCTIONS, get_builtin_functions, glob_match, ip_match, key_match, key_match2, key_match3, regex_match
)
from shared.errors import EvalError


class TestBuiltins:
    """Test cases for the predicate registry."""

    @pytest.mark.parametrize("key1,key2,expected", [
        ("/foo/bar", "/foo/*", True),
        ("/foo", "/foo/*", False),
        ("/foo", "/foo", True),
        ("/foobar", "/foo", False),
    ])
    def test_key_match(self, key1, key2, expected):
        """Test prefix matching with a trailing wildcard."""
        assert key_match(key1, key2) is expected

    @pytest.mark.parametrize("key1,key2,expected", [
        ("/resource1", "/:resource", True),
        ("/alice/orders", "/:user/orders", True),
        ("/alice/orders/1", "/:user/orders", False),
        ("/api/anything/here", "/api/*", True),
    ])
    def test_key_match2(self, key1, key2, expected):
        """Test ':param' segments."""
        assert key_match2(key1, key2) is expected

    @pytest.mark.parametrize("key1,key2,expected", [
        ("/resource1", "/{resource}", True),
        ("/alice/orders", "/{user}/orders", True),
        ("/alice/bob/orders", "/{user}/orders", False),
    ])
    def test_key_match3(self, key1, key2, expected):
        """Test '{param}' segments."""
        assert key_match3(key1, key2) is expected

    def test_regex_match(self):
        """Test regex search semantics."""
        assert regex_match("read", "^(read|write)$") is True
        assert regex_match("/topic/create", "create") is True
        assert regex_match("delete", "^(read|write)$") is False

    def test_regex_match_malformed(self):
        """Test malformed patterns raise EvalError."""
        with pytest.raises(EvalError):
            regex_match("read", "(unclosed")

    @pytest.mark.parametrize("ip1,ip2,expected", [
        ("192.168.2.123", "192.168.2.0/24", True),
        ("192.168.3.1", "192.168.2.0/24", False),
        ("10.0.0.1", "10.0.0.1", True),
        ("::1", "::1/128", True),
    ])
    def test_ip_match(self, ip1, ip2, expected):
        """Test CIDR and exact address matching."""
        assert ip_match(ip1, ip2) is expected

    @pytest.mark.parametrize("ip1,ip2", [
        ("not-an-ip", "10.0.0.0/8"),
        ("10.0.0.1", "10.0.0.0/99"),
    ])
    def test_ip_match_malformed(self, ip1, ip2):
        """Test malformed IP literals raise EvalError."""
        with pytest.raises(EvalError):
            ip_match(ip1, ip2)

    def test_glob_match(self):
        """Test glob patterns."""
        assert glob_match("/api/users", "/api/*") is True
        assert glob_match("/admin/users", "/api/*") is False
        assert glob_match("tenant:acme", "tenant:*") is True

    def test_non_string_arguments(self):
        """Test predicates reject non-string input."""
        with pytest.raises(EvalError):
            key_match(1, "/foo")

    def test_registry_copy(self):
        """Test the registry exposes fixed names and returns copies."""
        functions = get_builtin_functions()
        functions["custom"] = lambda a, b: True

        assert set(BUILTIN_FUNCTIONS) == {
            "keyMatch", "keyMatch2", "keyMatch3", "regexMatch", "ipMatch", "globMatch"
        }
        assert "custom" not in BUILTIN_FUNCTIONS
