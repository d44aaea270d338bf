"""
Boundary validators shared by the value types and from_dict parsers.

Each validator returns the checked value or raises InvalidInputError; nothing
is coerced silently (a string amount is rejected, not parsed).
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any

from backend_chainrisk.core.exceptions import InvalidInputError

# Solana-style base58 address, 32-44 chars (no 0, O, I, l).
BASE58_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def validate_address(field: str, value: Any, *, strict: bool = False) -> str:
    """Non-empty string without whitespace; base58 32-44 chars when strict."""
    if not isinstance(value, str):
        raise InvalidInputError(field, value, "address must be a string")
    if not value or value.strip() != value or any(c.isspace() for c in value):
        raise InvalidInputError(field, value, "address must be non-empty and contain no whitespace")
    if strict and not BASE58_ADDRESS_RE.match(value):
        raise InvalidInputError(field, value, "address is not a 32-44 char base58 string")
    return value


def validate_amount(field: str, value: Any) -> float:
    """Finite, non-negative number. bool is rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInputError(field, value, "must be a number")
    if math.isnan(value) or math.isinf(value):
        raise InvalidInputError(field, value, "must be finite")
    if value < 0:
        raise InvalidInputError(field, value, "must be non-negative")
    return float(value)


def validate_score(field: str, value: Any) -> float:
    """Risk score in [0, 100]."""
    score = validate_amount(field, value)
    if score > 100.0:
        raise InvalidInputError(field, value, "must be within [0, 100]")
    return score


def validate_fraction(field: str, value: Any, upper: float = 1.0) -> float:
    """Confidence / similarity in [0, upper]."""
    frac = validate_amount(field, value)
    if frac > upper:
        raise InvalidInputError(field, value, f"must be within [0, {upper}]")
    return frac


def validate_timestamp(field: str, value: Any) -> datetime:
    if not isinstance(value, datetime):
        raise InvalidInputError(field, value, "must be a datetime")
    return value


def parse_timestamp(field: str, value: Any) -> datetime:
    """Parse an ISO-8601 string (or pass through a datetime); unix seconds are read as UTC."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if math.isnan(value) or math.isinf(value):
            raise InvalidInputError(field, value, "must be finite")
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise InvalidInputError(field, value, f"not an ISO-8601 timestamp ({e})") from e
    raise InvalidInputError(field, value, "must be an ISO-8601 string, unix seconds or datetime")


def parse_duration(field: str, value: Any) -> timedelta:
    """Duration from seconds (number) or a timedelta."""
    if isinstance(value, timedelta):
        if value.total_seconds() < 0:
            raise InvalidInputError(field, value, "must be non-negative")
        return value
    seconds = validate_amount(field, value)
    return timedelta(seconds=seconds)


def require_mapping(field: str, value: Any) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise InvalidInputError(field, value, "must be an object")
    return value


def require_key(data: dict[str, Any], key: str, context: str) -> Any:
    if key not in data:
        raise InvalidInputError(f"{context}.{key}", None, "missing required field")
    return data[key]
