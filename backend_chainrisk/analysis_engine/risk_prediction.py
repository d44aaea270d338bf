"""
Heuristic risk trend prediction.

predict_future_risk: fixed additive adjustments per present risk factor plus
transaction growth (first vs second half inter-transaction gap), giving a
predicted score, trend direction and confidence over a horizon.

forecast_from_anomalies: short-term outlook from detected anomalies and
recent (7 day) activity, with predicted factors for presentation.

No ML; every adjustment is named in contributing_factors.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable

from backend_chainrisk.analysis_engine.anomaly import AnomalySeverity, detect_anomalies
from backend_chainrisk.analysis_engine.models import TransactionEdge, timestamp_seconds
from backend_chainrisk.analysis_engine.scorer import RiskFactor, RiskScore
from backend_chainrisk.chainrisk_logging import get_logger
from backend_chainrisk.core.exceptions import InvalidInputError
from backend_chainrisk.core.validation import (
    parse_duration,
    require_key,
    require_mapping,
    validate_fraction,
    validate_score,
)

logger = get_logger(__name__)

DEFAULT_HORIZON = timedelta(days=30)
BASE_CONFIDENCE = 0.7
MAX_CONFIDENCE = 0.95
TREND_OVERRIDE_DELTA = 20
GROWTH_MIN_TIMESTAMPS = 10
ACCELERATING_RATIO = 0.7
DECELERATING_RATIO = 1.3
HIGH_VELOCITY_SCORE = 50
NO_CHANGE_FACTOR = "No significant risk change factors identified"

RECENT_ACTIVITY = timedelta(days=7)
OUTLOOK_ANOMALY_SCORE = 30
OUTLOOK_INACTIVE_SCORE = 30

# Factor names the predictor reacts to.
FACTOR_HIGH_RISK = "High-Risk Connections"
FACTOR_MIXER = "Mixer Connections"
FACTOR_CIRCULAR = "Circular Transactions"
FACTOR_ANOMALOUS = "Anomalous Patterns"
FACTOR_VELOCITY = "Transaction Velocity"


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class TransactionGrowth(str, Enum):
    ACCELERATING = "accelerating"
    DECELERATING = "decelerating"
    STABLE = "stable"


# (flag factor name, score delta, confidence delta, contributing factor text)
_FACTOR_ADJUSTMENTS = (
    (FACTOR_HIGH_RISK, 10, 0.05, "Increasing connections to high-risk entities"),
    (FACTOR_MIXER, 15, 0.1, "Use of mixer services indicates ongoing privacy concerns"),
    (FACTOR_CIRCULAR, 10, 0.05, "Circular transaction patterns likely to continue"),
    (FACTOR_ANOMALOUS, 15, 0.1, "Anomalous behavior patterns detected"),
)
ACCELERATING_ADJUSTMENT = 20
ACCELERATING_CONFIDENCE = 0.05
DECELERATING_ADJUSTMENT = -10


@dataclass(frozen=True)
class RiskPrediction:
    trend_direction: TrendDirection
    predicted_score: float
    confidence: float
    timeframe: timedelta
    contributing_factors: tuple[str, ...]

    def __post_init__(self) -> None:
        validate_score("predicted_score", self.predicted_score)
        validate_fraction("confidence", self.confidence, upper=MAX_CONFIDENCE)

    def to_dict(self) -> dict[str, Any]:
        return {
            "trend_direction": self.trend_direction.value,
            "predicted_score": self.predicted_score,
            "confidence": self.confidence,
            "timeframe": self.timeframe.total_seconds(),
            "contributing_factors": list(self.contributing_factors),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "RiskPrediction":
        data = require_mapping("risk_prediction", data)
        try:
            trend = TrendDirection(require_key(data, "trend_direction", "risk_prediction"))
        except ValueError as e:
            raise InvalidInputError("risk_prediction.trend_direction", data.get("trend_direction"), str(e)) from e
        return cls(
            trend_direction=trend,
            predicted_score=require_key(data, "predicted_score", "risk_prediction"),
            confidence=require_key(data, "confidence", "risk_prediction"),
            timeframe=parse_duration("risk_prediction.timeframe", require_key(data, "timeframe", "risk_prediction")),
            contributing_factors=tuple(data.get("contributing_factors", [])),
        )


def transaction_growth(timestamps: Iterable[datetime]) -> TransactionGrowth:
    """
    Compare the mean gap of the first half of the series with the second half.

    Second half gaps below 70% of the first mean accelerating, above 130%
    decelerating. Needs at least 10 timestamps.
    """
    times = sorted(timestamp_seconds(t) for t in timestamps)
    if len(times) < GROWTH_MIN_TIMESTAMPS:
        return TransactionGrowth.STABLE
    mid = len(times) // 2
    first, second = times[:mid], times[mid:]
    first_gap = (first[-1] - first[0]) / (len(first) - 1)
    second_gap = (second[-1] - second[0]) / (len(second) - 1)
    if second_gap < first_gap * ACCELERATING_RATIO:
        return TransactionGrowth.ACCELERATING
    if second_gap > first_gap * DECELERATING_RATIO:
        return TransactionGrowth.DECELERATING
    return TransactionGrowth.STABLE


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def predict_future_risk(
    factors: Iterable[RiskFactor],
    timestamps: Iterable[datetime],
    *,
    current_score: float | None = None,
    horizon: timedelta | float = DEFAULT_HORIZON,
) -> RiskPrediction:
    """
    Predict where a risk score is heading.

    current_score defaults to the sum of factor impacts clamped to [0, 100].
    Adjustments apply in a fixed order; the trend is then forced to
    increasing/decreasing when the prediction moves more than 20 points.
    """
    factors = list(factors)
    horizon = parse_duration("horizon", horizon)
    if current_score is None:
        current = _clamp(sum(f.impact for f in factors))
    else:
        current = validate_score("current_score", current_score)

    names = {f.name for f in factors}
    velocity = next((f for f in factors if f.name == FACTOR_VELOCITY), None)
    high_velocity = velocity is not None and velocity.score is not None and velocity.score > HIGH_VELOCITY_SCORE
    growth = transaction_growth(timestamps)

    predicted = current
    trend = TrendDirection.STABLE
    confidence = BASE_CONFIDENCE
    contributing: list[str] = []

    for name, delta, conf_delta, text in _FACTOR_ADJUSTMENTS:
        if name in names:
            predicted += delta
            trend = TrendDirection.INCREASING
            contributing.append(text)
            confidence += conf_delta

    if high_velocity:
        if growth is TransactionGrowth.ACCELERATING:
            predicted += ACCELERATING_ADJUSTMENT
            trend = TrendDirection.INCREASING
            contributing.append("Rapidly accelerating transaction velocity")
            confidence += ACCELERATING_CONFIDENCE
        elif growth is TransactionGrowth.DECELERATING:
            predicted += DECELERATING_ADJUSTMENT
            trend = TrendDirection.STABLE if trend is TrendDirection.INCREASING else TrendDirection.DECREASING
            contributing.append("Decreasing transaction velocity")

    predicted = _clamp(predicted)
    confidence = min(MAX_CONFIDENCE, confidence)

    if not contributing:
        contributing.append(NO_CHANGE_FACTOR)
        trend = TrendDirection.STABLE

    if predicted > current + TREND_OVERRIDE_DELTA:
        trend = TrendDirection.INCREASING
    elif predicted < current - TREND_OVERRIDE_DELTA:
        trend = TrendDirection.DECREASING

    prediction = RiskPrediction(
        trend_direction=trend,
        predicted_score=predicted,
        confidence=confidence,
        timeframe=horizon,
        contributing_factors=tuple(contributing),
    )
    logger.info(
        "risk_prediction_made",
        current_score=current,
        predicted_score=predicted,
        trend=trend.value,
        growth=growth.value,
        confidence=round(confidence, 2),
    )
    return prediction


@dataclass(frozen=True)
class RiskOutlook:
    predicted_trend: TrendDirection
    confidence: float
    description: str
    predicted_factors: tuple[RiskFactor, ...] = ()
    anomaly_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "predicted_trend": self.predicted_trend.value,
            "confidence": self.confidence,
            "description": self.description,
            "predicted_factors": [f.to_dict() for f in self.predicted_factors],
            "anomaly_score": self.anomaly_score,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "RiskOutlook":
        data = require_mapping("risk_outlook", data)
        try:
            trend = TrendDirection(require_key(data, "predicted_trend", "risk_outlook"))
        except ValueError as e:
            raise InvalidInputError("risk_outlook.predicted_trend", data.get("predicted_trend"), str(e)) from e
        return cls(
            predicted_trend=trend,
            confidence=float(require_key(data, "confidence", "risk_outlook")),
            description=data.get("description", ""),
            predicted_factors=tuple(RiskFactor.from_dict(f) for f in data.get("predicted_factors", [])),
            anomaly_score=float(data.get("anomaly_score", 0.0)),
        )


# severity -> (impact, score) of the predicted factor
_PREDICTED_FACTOR_WEIGHTS = {
    AnomalySeverity.HIGH: (20, 85),
    AnomalySeverity.MEDIUM: (12, 65),
    AnomalySeverity.LOW: (5, 35),
}


def forecast_from_anomalies(
    current: RiskScore | float,
    transactions: Iterable[TransactionEdge],
    *,
    now: datetime,
    historical_average_per_day: float | None = None,
) -> RiskOutlook:
    """
    Outlook from anomalies and recency.

    - anomaly score > 30 with activity in the last 7 days: increasing,
      confidence 0.65 + score / 200 (at most 0.95).
    - no activity in the last 7 days and current score > 30: decreasing (0.6).
    - otherwise stable (0.7).
    """
    transactions = list(transactions)
    current_score = current.score if isinstance(current, RiskScore) else validate_score("current", current)
    report = detect_anomalies(transactions, historical_average_per_day)
    now_s = timestamp_seconds(now)
    recent_s = RECENT_ACTIVITY.total_seconds()
    recent = [t for t in transactions if now_s - t.epoch_seconds < recent_s]

    trend = TrendDirection.STABLE
    confidence = BASE_CONFIDENCE
    description = "Risk level is predicted to remain stable based on consistent transaction patterns."
    if report.anomaly_score > OUTLOOK_ANOMALY_SCORE and recent:
        trend = TrendDirection.INCREASING
        confidence = min(MAX_CONFIDENCE, 0.65 + report.anomaly_score / 200)
        description = "Risk level is predicted to increase due to recent unusual transaction patterns."
    elif not recent and current_score > OUTLOOK_INACTIVE_SCORE:
        trend = TrendDirection.DECREASING
        confidence = 0.6
        description = "Risk level may decrease due to recent inactivity."

    predicted: list[RiskFactor] = []
    for anomaly in report.anomalies:
        impact, score = _PREDICTED_FACTOR_WEIGHTS[anomaly.severity]
        predicted.append(
            RiskFactor(
                name=f"Predicted {anomaly.type.value.replace('_', ' ', 1)}",
                description=f"{anomaly.description} may continue or increase",
                impact=impact,
                score=score,
            )
        )
    if trend is TrendDirection.INCREASING:
        predicted.append(
            RiskFactor(
                name="Increasing activity pattern",
                description="Transaction frequency is predicted to increase",
                impact=10,
                score=60,
            )
        )
    return RiskOutlook(
        predicted_trend=trend,
        confidence=confidence,
        description=description,
        predicted_factors=tuple(predicted),
        anomaly_score=report.anomaly_score,
    )
