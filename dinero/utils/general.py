"""Ids, UTC timestamps and JSON conversion for wallet and transaction records."""

from __future__ import annotations

import math
import uuid
from collections.abc import Mapping
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel

__all__ = [
    "convert_to_json_safe",
    "ensure_utc",
    "new_id",
    "parse_timestamp",
    "to_iso",
    "utc_now",
]


def new_id() -> str:
    """Client-generated record id.  Records keep it after they reach the server."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Read naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    return ensure_utc(value).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from storage or PostgREST.

    Accepts the ``Z`` suffix written by JavaScript clients.  Anything
    missing or malformed gives ``None``.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    return ensure_utc(parsed)


def convert_to_json_safe(data: Any) -> Any:
    """Turn a record payload into values PostgREST and ``json`` accept.

    Amounts stay exact: a ``Decimal`` becomes its string form.
    Datetimes become ISO-8601 UTC strings.  NaN and infinite floats
    become ``None``.  Models are dumped first, and any other unknown
    object falls back to ``str``.
    """
    if data is None or isinstance(data, (str, bool, int)):
        return data
    if isinstance(data, float):
        return data if math.isfinite(data) else None
    if isinstance(data, Decimal):
        return str(data)
    # datetime is a subclass of date.
    if isinstance(data, datetime):
        return to_iso(data)
    if isinstance(data, date):
        return data.isoformat()
    if isinstance(data, BaseModel):
        return convert_to_json_safe(data.model_dump())
    if isinstance(data, Mapping):
        return {str(key): convert_to_json_safe(value) for key, value in data.items()}
    if isinstance(data, (list, tuple, set, frozenset)):
        return [convert_to_json_safe(item) for item in data]
    return str(data)
