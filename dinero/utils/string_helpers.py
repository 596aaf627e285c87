"""
Key and filter-string helpers.

Older clients stored records with camelCase keys (``walletId``,
``isDefault``, ``needsSync``).  Models run incoming dicts through
:func:`normalize_keys` so both spellings validate.
"""

from __future__ import annotations

import re
from typing import Any

__all__ = [
    "to_snake_case",
    "normalize_keys",
    "sanitize_postgrest_value",
]

# A lowercase letter or digit followed by an uppercase one, or the last
# capital of an acronym followed by a lowercase letter ("URLPath").
_WORD_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")

# Kept: letters and digits, whitespace, hyphens, Latin accents (U+00C0..U+024F).
# Dropped among others: , . ( ) which PostgREST reads as filter syntax,
# and % _ \ which ILIKE reads as wildcards or escapes.
_FILTER_UNSAFE = re.compile(r"[^a-zA-Z0-9\s\-À-ɏ]")


def to_snake_case(name: str) -> str:
    """``"parentTransactionId"`` -> ``"parent_transaction_id"``; snake_case passes through."""
    return re.sub(r"_+", "_", _WORD_BOUNDARY.sub("_", name)).lower()


def normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Snake-case the top-level keys only.

    Nested dicts such as a transaction's ``metadata`` are user data and
    keep their keys as written.
    """
    return {to_snake_case(key): value for key, value in data.items()}


def sanitize_postgrest_value(value: str) -> str:
    """Make a free-text search term safe to embed in an ``ilike`` filter."""
    return _FILTER_UNSAFE.sub("", value)
