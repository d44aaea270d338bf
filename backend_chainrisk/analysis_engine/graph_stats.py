"""
Mean / population standard deviation over edge values.

Used as a relative-scale heuristic for unusual-edge flagging, not for
statistical inference. Empty input yields (0, 0).
"""

from __future__ import annotations

import statistics
from dataclasses import dataclass
from typing import Any, Iterable

from backend_chainrisk.analysis_engine.models import TransactionEdge
from backend_chainrisk.core.validation import require_key, require_mapping, validate_amount


@dataclass(frozen=True)
class ValueStatistics:
    mean: float = 0.0
    stddev: float = 0.0

    @property
    def unusual_threshold(self) -> float:
        """Values strictly above this are more than 2 stddev above the mean."""
        return self.mean + 2 * self.stddev

    def to_dict(self) -> dict[str, Any]:
        return {"mean": self.mean, "stddev": self.stddev}

    @classmethod
    def from_dict(cls, data: Any) -> "ValueStatistics":
        data = require_mapping("statistics", data)
        return cls(
            mean=float(require_key(data, "mean", "statistics")),
            stddev=float(require_key(data, "stddev", "statistics")),
        )


def compute_value_statistics(values: Iterable[float]) -> ValueStatistics:
    values = [validate_amount("value", v) for v in values]
    if not values:
        return ValueStatistics(0.0, 0.0)
    return ValueStatistics(mean=statistics.fmean(values), stddev=statistics.pstdev(values))


def edge_value_statistics(edges: Iterable[TransactionEdge]) -> ValueStatistics:
    return compute_value_statistics(e.value for e in edges)
