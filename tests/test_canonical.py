from __future__ import annotations

import hashlib
from datetime import datetime

import pytest

from vccore.canonical import canonicalize, content_hash
from vccore.errors import CanonicalizationError


class TestDeterminism:
    def test_key_order_does_not_matter(self):
        a = {"b": 1, "a": {"y": [1, 2], "x": "v"}}
        b = {"a": {"x": "v", "y": [1, 2]}, "b": 1}
        assert canonicalize(a) == canonicalize(b)
        assert content_hash(a) == content_hash(b)

    def test_compact_sorted_output(self):
        assert canonicalize({"b": 1, "a": [True, None]}) == b'{"a":[true,null],"b":1}'

    def test_sequence_order_is_kept(self):
        assert canonicalize([2, 1]) != canonicalize([1, 2])

    def test_unicode_is_not_escaped(self):
        assert canonicalize({"name": "आरव"}) == '{"name":"आरव"}'.encode("utf-8")

    def test_tuple_matches_list(self):
        assert canonicalize((1, "a")) == canonicalize([1, "a"])

    def test_content_hash_is_sha256_of_bytes(self):
        value = {"childName": "Aarav"}
        assert content_hash(value) == hashlib.sha256(canonicalize(value)).hexdigest()


class TestRejections:
    @pytest.mark.parametrize("value", [
        {"when": datetime(2024, 1, 1)},
        {"raw": b"bytes"},
        {"s": {1, 2}},
        {"n": float("nan")},
        {"n": float("inf")},
    ])
    def test_non_json_values_rejected(self, value):
        with pytest.raises(CanonicalizationError):
            canonicalize(value)

    def test_non_string_key_rejected(self):
        with pytest.raises(CanonicalizationError, match="not a string"):
            canonicalize({1: "a"})

    def test_error_names_path(self):
        with pytest.raises(CanonicalizationError) as exc_info:
            canonicalize({"outer": [{"inner": object()}]})
        assert exc_info.value.path == "$.outer[0].inner"

    def test_is_a_value_error(self):
        with pytest.raises(ValueError):
            canonicalize({"x": object()})
