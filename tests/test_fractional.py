"""Tests for fractional.py - Order keys between siblings.

Tests:
- Keys land strictly between their bounds
- Nested generation stays inside the outer range
- Random suffixes keep concurrent inserts apart
- Invalid ranges are rejected
"""

from __future__ import annotations

import pytest

from affine_docs.errors import InvalidRangeError, ValidationError
from affine_docs.fractional import SUFFIX_LENGTH, index_between, random_suffix, subkey


class TestIndexBetween:
    """Test key generation between bounds."""

    def test_unbounded(self) -> None:
        """With no bounds a key is still produced, carrying a suffix."""
        key = index_between(None, None)

        assert key.startswith("a0")
        assert len(key) == 2 + 1 + SUFFIX_LENGTH

    def test_between_plain_keys(self) -> None:
        """A key generated between two plain keys sorts between them."""
        key = index_between("a0", "a1")

        assert "a0" < key < "a1"

    def test_after_last(self) -> None:
        """An upper-unbounded key sorts after the lower bound."""
        first = index_between(None, None)
        second = index_between(first, None)

        assert first < second

    def test_before_first(self) -> None:
        """A lower-unbounded key sorts before the upper bound."""
        first = index_between(None, None)
        earlier = index_between(None, first)

        assert earlier < first

    def test_nested_generation_stays_in_range(self) -> None:
        """Keys generated against a midpoint stay inside the outer bounds."""
        a = index_between(None, None)
        b = index_between(a, None)
        mid = index_between(a, b)

        left = index_between(a, mid)
        right = index_between(mid, b)

        assert a < left < mid < right < b

    def test_repeated_inserts_at_same_position(self) -> None:
        """Two inserts at the same position get distinct keys, both in range."""
        a = index_between(None, None)
        b = index_between(a, None)

        first = index_between(a, b)
        second = index_between(a, b)

        assert first != second
        assert a < first < b
        assert a < second < b

    def test_many_appends_stay_ordered(self) -> None:
        """Appending repeatedly yields a strictly increasing sequence."""
        keys = [index_between(None, None)]
        for _ in range(30):
            keys.append(index_between(keys[-1], None))

        assert keys == sorted(keys)
        assert len(set(keys)) == len(keys)


class TestInvalidRange:
    """Test bound validation."""

    def test_equal_bounds(self) -> None:
        """Equal bounds are rejected."""
        with pytest.raises(InvalidRangeError):
            index_between("a1", "a1")

    def test_reversed_bounds(self) -> None:
        """A lower bound above the upper bound is rejected."""
        with pytest.raises(InvalidRangeError) as exc_info:
            index_between("a2", "a1")

        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.context["lower"] == "a2"


class TestSuffix:
    """Test suffix helpers."""

    def test_random_suffix_alphabet(self) -> None:
        """Suffixes have fixed length and never contain the separator."""
        suffix = random_suffix()

        assert len(suffix) == SUFFIX_LENGTH
        assert "0" not in suffix

    def test_subkey_strips_suffix(self) -> None:
        """subkey removes the separator and suffix."""
        key = index_between(None, None)

        assert subkey(key) == "a0"

    def test_subkey_short_key_unchanged(self) -> None:
        """Keys without a suffix pass through."""
        assert subkey("a0") == "a0"
        assert subkey(None) is None
