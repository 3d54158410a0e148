"""
Unit tests for the Headers multimap.
"""

import pytest

from embedhttp.errors import HeadersFrozenError
from embedhttp.http.headers import Headers


class TestLookup:
    """Case-insensitive reads."""

    def test_get_is_case_insensitive(self):
        headers = Headers({"Content-Type": "text/plain"})

        assert headers.get("content-type") == "text/plain"
        assert headers.get("CONTENT-TYPE") == "text/plain"
        assert headers["Content-Type"] == "text/plain"
        assert "content-TYPE" in headers

    def test_get_default(self):
        headers = Headers()

        assert headers.get("missing") is None
        assert headers.get("missing", "fallback") == "fallback"
        with pytest.raises(KeyError):
            headers["missing"]

    def test_repeated_fields_stay_separate(self):
        headers = Headers()
        headers.add("Set-Cookie", "a=1")
        headers.add("set-cookie", "b=2")

        assert headers.get("SET-COOKIE") == "a=1"
        assert headers.get_all("Set-Cookie") == ["a=1", "b=2"]
        assert len(headers) == 2
        assert headers.names() == ["Set-Cookie"]

    def test_items_preserve_case_and_order(self):
        headers = Headers()
        headers.add("X-Zulu", "1")
        headers.add("x-alpha", "2")
        headers.add("X-ZULU", "3")

        assert list(headers.items()) == [("X-Zulu", "1"), ("x-alpha", "2"), ("X-ZULU", "3")]

    @pytest.mark.parametrize("value,token,expected", [
        ("keep-alive, Upgrade", "upgrade", True),
        ("close", "close", True),
        ("CLOSE", "close", True),
        ("keep-alive", "close", False),
        ("closed", "close", False),
    ])
    def test_has_token(self, value, token, expected):
        headers = Headers({"Connection": value})
        assert headers.has_token("connection", token) is expected

    def test_has_token_spans_repeated_fields(self):
        headers = Headers([("Transfer-Encoding", "gzip"), ("Transfer-Encoding", "chunked")])
        assert headers.has_token("transfer-encoding", "chunked")


class TestMutation:
    """Writes, validation and freezing."""

    def test_set_replaces_all_values_in_first_position(self):
        headers = Headers([("A", "1"), ("B", "2"), ("a", "3")])
        headers.set("A", "new")

        assert list(headers.items()) == [("A", "new"), ("B", "2")]

    def test_set_appends_when_absent(self):
        headers = Headers({"A": "1"})
        headers.set("B", 2)

        assert list(headers.items()) == [("A", "1"), ("B", "2")]

    def test_remove_returns_count(self):
        headers = Headers([("A", "1"), ("a", "2"), ("B", "3")])

        assert headers.remove("A") == 2
        assert headers.remove("A") == 0
        assert list(headers.items()) == [("B", "3")]

    def test_setdefault(self):
        headers = Headers({"A": "1"})

        assert headers.setdefault("A", "2") == "1"
        assert headers.setdefault("B", "3") == "3"
        assert headers.get("B") == "3"

    def test_values_are_stripped(self):
        headers = Headers()
        headers.add("A", "  padded  ")
        assert headers.get("A") == "padded"

    @pytest.mark.parametrize("name", ["", "Bad Name", "Bad:Name", "Bad\r\nName"])
    def test_invalid_name_rejected(self, name):
        with pytest.raises(ValueError):
            Headers().add(name, "x")

    @pytest.mark.parametrize("value", ["a\r\nInjected: yes", "a\nb", "a\x00b"])
    def test_header_injection_rejected(self, value):
        with pytest.raises(ValueError):
            Headers().add("X-Test", value)

    def test_frozen_headers_reject_mutation(self):
        headers = Headers({"A": "1"})
        headers.freeze()

        assert headers.frozen
        for mutate in (
            lambda: headers.add("B", "2"),
            lambda: headers.set("A", "2"),
            lambda: headers.remove("A"),
        ):
            with pytest.raises(HeadersFrozenError):
                mutate()
        assert headers.get("A") == "1"

    def test_clear_unfreezes(self):
        headers = Headers({"A": "1"})
        headers.freeze()
        headers.clear()

        assert not headers.frozen
        assert len(headers) == 0
        headers.add("B", "2")

    def test_copy_is_independent_and_unfrozen(self):
        headers = Headers({"A": "1"})
        headers.freeze()
        clone = headers.copy()
        clone.add("B", "2")

        assert clone == Headers([("A", "1"), ("B", "2")])
        assert len(headers) == 1
