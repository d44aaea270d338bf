"""
Rule-based anomaly detection and pattern classification over a wallet's transactions.

Anomalies: large transactions (> 5x mean amount) and high frequency (tx/day
above 3x the historical average). Patterns: automated regular intervals,
trading-heavy, large transfers, multi-hop. Fully explainable; no ML.
"""

from __future__ import annotations

import re
import statistics
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from backend_chainrisk.analysis_engine.models import TransactionEdge
from backend_chainrisk.chainrisk_logging import get_logger
from backend_chainrisk.core.exceptions import InvalidInputError
from backend_chainrisk.core.validation import require_key, require_mapping, validate_amount, validate_fraction

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400.0

LARGE_TRANSACTION_MULTIPLIER = 5
LARGE_TRANSACTION_HIGH_COUNT = 3
LARGE_TRANSACTION_CONFIDENCE = 0.85
LARGE_TRANSACTION_SCORE_EACH = 5
HIGH_FREQUENCY_MULTIPLIER = 3
HIGH_FREQUENCY_CONFIDENCE = 0.75
HIGH_FREQUENCY_SCORE = 15
MAX_ANOMALY_SCORE = 100

REGULARITY_THRESHOLD = 0.2
REGULARITY_MIN_GAPS = 5
TRADING_SHARE = 0.4
LARGE_TRANSFER_MULTIPLIER = 3
MULTI_HOP_MIN_HOPS = 2
PATTERN_EXAMPLES = 3

_TRADING_TYPES = ("swap", "trade")
_TRADING_RE = re.compile(r"swap|trade|exchange", re.IGNORECASE)
_MULTI_HOP_RE = re.compile(r"multi|hop|mixing", re.IGNORECASE)


class AnomalySeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AnomalyType(str, Enum):
    LARGE_TRANSACTION = "large_transaction"
    HIGH_FREQUENCY = "high_frequency"


class PatternType(str, Enum):
    AUTOMATED_REGULAR = "automated_regular"
    TRADING = "trading"
    LARGE_TRANSFERS = "large_transfers"
    MULTI_HOP = "multi_hop"


@dataclass(frozen=True)
class Anomaly:
    type: AnomalyType
    description: str
    severity: AnomalySeverity
    confidence: float
    related_edges: tuple[TransactionEdge, ...] = ()

    def __post_init__(self) -> None:
        validate_fraction("confidence", self.confidence)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "description": self.description,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "related_edges": [e.to_dict() for e in self.related_edges],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Anomaly":
        data = require_mapping("anomaly", data)
        try:
            atype = AnomalyType(require_key(data, "type", "anomaly"))
            severity = AnomalySeverity(require_key(data, "severity", "anomaly"))
        except ValueError as e:
            raise InvalidInputError("anomaly", data.get("type"), str(e)) from e
        return cls(
            type=atype,
            description=data.get("description", ""),
            severity=severity,
            confidence=require_key(data, "confidence", "anomaly"),
            related_edges=tuple(TransactionEdge.from_dict(e) for e in data.get("related_edges", [])),
        )


@dataclass(frozen=True)
class AnomalyReport:
    anomalies: tuple[Anomaly, ...] = ()
    anomaly_score: float = 0.0

    @property
    def is_anomalous(self) -> bool:
        return bool(self.anomalies)

    def to_dict(self) -> dict[str, Any]:
        return {
            "anomalies": [a.to_dict() for a in self.anomalies],
            "anomaly_score": self.anomaly_score,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "AnomalyReport":
        data = require_mapping("anomaly_report", data)
        return cls(
            anomalies=tuple(Anomaly.from_dict(a) for a in data.get("anomalies", [])),
            anomaly_score=float(data.get("anomaly_score", 0.0)),
        )


def transactions_per_day(transactions: list[TransactionEdge]) -> float:
    """Count over the covered time span in days; a zero span counts as one day."""
    if not transactions:
        return 0.0
    times = [t.epoch_seconds for t in transactions]
    span_days = (max(times) - min(times)) / SECONDS_PER_DAY
    if span_days <= 0:
        span_days = 1.0
    return len(transactions) / span_days


def detect_anomalies(
    transactions: Iterable[TransactionEdge],
    historical_average_per_day: float | None = None,
) -> AnomalyReport:
    """
    Flag large-transaction and high-frequency anomalies.

    The frequency check runs only when a historical average is supplied.
    Score: +5 per large transaction, +15 for high frequency, capped at 100.
    """
    transactions = list(transactions)
    if historical_average_per_day is not None:
        historical_average_per_day = validate_amount("historical_average_per_day", historical_average_per_day)
    if not transactions:
        return AnomalyReport()

    anomalies: list[Anomaly] = []
    score = 0.0

    mean_amount = statistics.fmean(t.value for t in transactions)
    large = [t for t in transactions if t.value > mean_amount * LARGE_TRANSACTION_MULTIPLIER]
    if large:
        anomalies.append(
            Anomaly(
                type=AnomalyType.LARGE_TRANSACTION,
                description=f"{len(large)} unusually large transactions detected",
                severity=AnomalySeverity.HIGH if len(large) > LARGE_TRANSACTION_HIGH_COUNT else AnomalySeverity.MEDIUM,
                confidence=LARGE_TRANSACTION_CONFIDENCE,
                related_edges=tuple(large),
            )
        )
        score += len(large) * LARGE_TRANSACTION_SCORE_EACH

    if historical_average_per_day:
        tx_per_day = transactions_per_day(transactions)
        if tx_per_day > historical_average_per_day * HIGH_FREQUENCY_MULTIPLIER:
            anomalies.append(
                Anomaly(
                    type=AnomalyType.HIGH_FREQUENCY,
                    description="Unusually high transaction frequency",
                    severity=AnomalySeverity.MEDIUM,
                    confidence=HIGH_FREQUENCY_CONFIDENCE,
                )
            )
            score += HIGH_FREQUENCY_SCORE

    report = AnomalyReport(anomalies=tuple(anomalies), anomaly_score=min(MAX_ANOMALY_SCORE, score))
    if anomalies:
        logger.info(
            "anomalies_detected",
            tx_count=len(transactions),
            anomalies=[a.type.value for a in anomalies],
            anomaly_score=report.anomaly_score,
        )
    return report


@dataclass(frozen=True)
class DetectedPattern:
    type: PatternType
    description: str
    frequency: float
    confidence: float
    examples: tuple[str, ...] = ()

    @property
    def weight(self) -> float:
        return self.frequency * self.confidence

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "description": self.description,
            "frequency": self.frequency,
            "confidence": self.confidence,
            "examples": list(self.examples),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "DetectedPattern":
        data = require_mapping("pattern", data)
        try:
            ptype = PatternType(require_key(data, "type", "pattern"))
        except ValueError as e:
            raise InvalidInputError("pattern.type", data.get("type"), "unknown pattern type") from e
        return cls(
            type=ptype,
            description=data.get("description", ""),
            frequency=float(require_key(data, "frequency", "pattern")),
            confidence=float(require_key(data, "confidence", "pattern")),
            examples=tuple(data.get("examples", [])),
        )


@dataclass(frozen=True)
class PatternReport:
    patterns: tuple[DetectedPattern, ...] = ()
    dominant_pattern: str = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "patterns": [p.to_dict() for p in self.patterns],
            "dominant_pattern": self.dominant_pattern,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "PatternReport":
        data = require_mapping("pattern_report", data)
        return cls(
            patterns=tuple(DetectedPattern.from_dict(p) for p in data.get("patterns", [])),
            dominant_pattern=data.get("dominant_pattern", "unknown"),
        )


def _examples(edges: list[TransactionEdge]) -> tuple[str, ...]:
    return tuple(e.edge_id for e in edges[:PATTERN_EXAMPLES])


def regularity_coefficient(transactions: list[TransactionEdge]) -> float | None:
    """stddev / mean of inter-transaction gaps; None with < 2 transactions or a zero mean gap."""
    times = sorted(t.epoch_seconds for t in transactions)
    gaps = [b - a for a, b in zip(times, times[1:])]
    if not gaps:
        return None
    mean_gap = statistics.fmean(gaps)
    if mean_gap <= 0:
        return None
    return statistics.pstdev(gaps) / mean_gap


def _is_trading(t: TransactionEdge) -> bool:
    return t.tx_type.lower() in _TRADING_TYPES or bool(_TRADING_RE.search(t.description))


def _is_multi_hop(t: TransactionEdge) -> bool:
    return t.hops > MULTI_HOP_MIN_HOPS or bool(_MULTI_HOP_RE.search(t.description))


def classify_transaction_patterns(transactions: Iterable[TransactionEdge]) -> PatternReport:
    """
    Classify behaviour patterns; dominant = highest frequency * confidence.

    Patterns are returned in that order (ties keep detection order). No
    transactions gives dominant "unknown"; no pattern gives "normal".
    """
    transactions = list(transactions)
    if not transactions:
        return PatternReport(patterns=(), dominant_pattern="unknown")
    n = len(transactions)
    patterns: list[DetectedPattern] = []

    gap_count = n - 1
    coefficient = regularity_coefficient(transactions)
    if coefficient is not None and coefficient < REGULARITY_THRESHOLD and gap_count >= REGULARITY_MIN_GAPS:
        patterns.append(
            DetectedPattern(
                type=PatternType.AUTOMATED_REGULAR,
                description="Regular automated transactions at fixed intervals",
                frequency=gap_count / n,
                confidence=0.9,
                examples=_examples(transactions),
            )
        )

    trading = [t for t in transactions if _is_trading(t)]
    if len(trading) > n * TRADING_SHARE:
        patterns.append(
            DetectedPattern(
                type=PatternType.TRADING,
                description="Frequent trading activity",
                frequency=len(trading) / n,
                confidence=0.85,
                examples=_examples(trading),
            )
        )

    mean_amount = statistics.fmean(t.value for t in transactions)
    large = [t for t in transactions if t.value > mean_amount * LARGE_TRANSFER_MULTIPLIER]
    if large:
        patterns.append(
            DetectedPattern(
                type=PatternType.LARGE_TRANSFERS,
                description="Pattern of large value transfers",
                frequency=len(large) / n,
                confidence=0.8,
                examples=_examples(large),
            )
        )

    multi_hop = [t for t in transactions if _is_multi_hop(t)]
    if multi_hop:
        patterns.append(
            DetectedPattern(
                type=PatternType.MULTI_HOP,
                description="Multi-hop transactions potentially indicating mixing activity",
                frequency=len(multi_hop) / n,
                confidence=0.75,
                examples=_examples(multi_hop),
            )
        )

    patterns.sort(key=lambda p: p.weight, reverse=True)
    dominant = patterns[0].type.value if patterns else "normal"
    logger.debug("transaction_patterns_classified", tx_count=n, patterns=[p.type.value for p in patterns])
    return PatternReport(patterns=tuple(patterns), dominant_pattern=dominant)
