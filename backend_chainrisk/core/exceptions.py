"""
Engine-level exceptions.

InvalidInputError is raised at the boundary (value-type construction and
from_dict parsing) for malformed addresses and negative/NaN values. Empty
inputs and missing node references are not errors.
"""

from __future__ import annotations

from typing import Any


class ChainRiskError(Exception):
    """Base class for all engine errors."""


class InvalidInputError(ChainRiskError, ValueError):
    """Input rejected at the boundary; carries the offending field and value."""

    def __init__(self, field: str, value: Any, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"invalid {field}={value!r}: {reason}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "invalid_input",
            "field": self.field,
            "value": repr(self.value),
            "reason": self.reason,
        }
