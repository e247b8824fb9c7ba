"""Fractional order keys for flat sibling lists.

Keys produced here are a standard fractional-index midpoint followed by a
``"0"`` separator and a fixed-length random suffix. The suffix keeps two
independent inserts at the same position from producing equal keys, and
matches the convention the AFFiNE server already uses for its organize
tree, so keys created elsewhere sort correctly against ours.
"""

from __future__ import annotations

import secrets

from fractional_indexing import generate_key_between

from .errors import InvalidRangeError

SUFFIX_LENGTH = 32
_SUFFIX_ALPHABET = "123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"


def random_suffix(length: int = SUFFIX_LENGTH) -> str:
    values = secrets.token_bytes(length)
    return "".join(_SUFFIX_ALPHABET[b % len(_SUFFIX_ALPHABET)] for b in values)


def subkey(key: str | None) -> str | None:
    """Strip the separator and random suffix from a key, if it carries one."""
    if key is None:
        return None
    if len(key) <= SUFFIX_LENGTH + 1:
        return key
    return key[: len(key) - SUFFIX_LENGTH - 1]


def _shares_prefix(a: str, b: str) -> bool:
    return a.startswith(b) or b.startswith(a)


def index_between(a: str | None, b: str | None) -> str:
    """Return a key strictly between ``a`` and ``b``.

    Either bound may be None to mean unbounded on that side.

    Raises:
        InvalidRangeError: If both bounds are given and ``a >= b``.
    """
    if a is not None and b is not None and a >= b:
        raise InvalidRangeError(a, b)

    lower = subkey(a)
    upper = subkey(b)
    if lower is not None and upper is not None and _shares_prefix(lower, upper):
        # Stripped keys collide; only the full keys still order correctly.
        lower, upper = a, b
    return generate_key_between(lower, upper) + "0" + random_suffix()
