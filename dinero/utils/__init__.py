"""Helpers shared by models, storage and repositories."""

from dinero.utils.general import (
    convert_to_json_safe,
    ensure_utc,
    new_id,
    parse_timestamp,
    to_iso,
    utc_now,
)
from dinero.utils.string_helpers import (
    normalize_keys,
    sanitize_postgrest_value,
    to_snake_case,
)

__all__ = [
    "convert_to_json_safe",
    "ensure_utc",
    "new_id",
    "normalize_keys",
    "parse_timestamp",
    "sanitize_postgrest_value",
    "to_iso",
    "to_snake_case",
    "utc_now",
]
