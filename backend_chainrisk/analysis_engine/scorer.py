"""
Risk score computation for wallets and single transactions.

Responsibilities:
- Wallet score: classify counterparties via the known-entity directory, derive
  velocity / pattern / cluster sub-scores and a weighted overall score.
- Transaction score: sum independent additive factors from a fixed weight table.
- Output a RiskScore with explainable factors; level is derived from score.

No ML; fully explainable. Pattern membership and hop counting are injected by
the caller; absent an injection the corresponding factor never fires.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Any, Callable, Iterable, Mapping

from backend_chainrisk.analysis_engine.entities import CounterpartyClass, KnownEntityDirectory
from backend_chainrisk.analysis_engine.models import (
    RiskLevel,
    TransactionEdge,
    TransactionGraph,
    timestamp_seconds,
)
from backend_chainrisk.chainrisk_logging import bind_subject
from backend_chainrisk.core.exceptions import InvalidInputError
from backend_chainrisk.core.validation import (
    parse_timestamp,
    require_key,
    require_mapping,
    validate_address,
    validate_score,
)

PatternMatcher = Callable[[TransactionEdge, TransactionGraph], "str | None"]
HopCounter = Callable[[TransactionEdge, TransactionGraph], int]

SECONDS_PER_DAY = 86400.0


class SubjectKind(str, Enum):
    WALLET = "wallet"
    TRANSACTION = "transaction"


# (high, medium) lower bounds, inclusive
LEVEL_THRESHOLDS = {
    SubjectKind.WALLET: (75.0, 40.0),
    SubjectKind.TRANSACTION: (70.0, 40.0),
}

# Wallet explainability factors; fixed impacts, not summed into the score.
WALLET_FACTOR_IMPACTS = {
    "Mixer Connections": 25,
    "High-Risk Connections": 20,
    "Large Transaction": 15,
    "New Wallet": 5,
}
LARGE_TRANSACTION_VALUE = 1_000_000
NEW_WALLET_DAYS = 7

TRANSACTION_RISK_WEIGHTS = {
    "LARGE_AMOUNT": 20,
    "UNUSUAL_HOUR": 10,
    "ROUND_NUMBER": 15,
    "KNOWN_PATTERN": 25,
    "MULTI_HOP": 15,
    "PRIVACY_TOOL": 15,
}

# (value strictly above, fraction of LARGE_AMOUNT weight)
LARGE_AMOUNT_TIERS = (
    (1000, 1.0),
    (500, 0.75),
    (100, 0.5),
    (50, 0.25),
)
UNUSUAL_HOURS = range(1, 6)
HOP_IMPACT_PER_HOP = 5


def risk_level_for_score(score: float, kind: SubjectKind = SubjectKind.WALLET) -> RiskLevel:
    high, medium = LEVEL_THRESHOLDS[kind]
    if score >= high:
        return RiskLevel.HIGH
    if score >= medium:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


@dataclass(frozen=True)
class RiskFactor:
    """A named contribution; impact is the weight actually applied."""

    name: str
    description: str
    impact: float
    score: float | None = None

    def __post_init__(self) -> None:
        if isinstance(self.impact, bool) or not isinstance(self.impact, (int, float)) or not math.isfinite(self.impact):
            raise InvalidInputError("impact", self.impact, "must be a finite number")

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name, "description": self.description, "impact": self.impact}
        if self.score is not None:
            out["score"] = self.score
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "RiskFactor":
        data = require_mapping("risk_factor", data)
        return cls(
            name=require_key(data, "name", "risk_factor"),
            description=data.get("description", ""),
            impact=require_key(data, "impact", "risk_factor"),
            score=data.get("score"),
        )


@dataclass(frozen=True)
class RiskScore:
    subject_id: str
    score: float
    factors: tuple[RiskFactor, ...]
    computed_at: datetime
    kind: SubjectKind = SubjectKind.WALLET
    sample_size: int | None = None
    """Transactions the score was computed from. An explicit 0 means no data (level Unknown)."""
    components: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "score", validate_score("score", self.score))
        object.__setattr__(self, "factors", tuple(self.factors))
        if self.sample_size is not None and self.sample_size < 0:
            raise InvalidInputError("sample_size", self.sample_size, "must be non-negative")

    @property
    def level(self) -> RiskLevel:
        if self.sample_size == 0:
            return RiskLevel.UNKNOWN
        return risk_level_for_score(self.score, self.kind)

    def factor(self, name: str) -> RiskFactor | None:
        for f in self.factors:
            if f.name == name:
                return f
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "score": self.score,
            "level": self.level.value,
            "factors": [f.to_dict() for f in self.factors],
            "computed_at": self.computed_at.isoformat(),
            "kind": self.kind.value,
            "sample_size": self.sample_size,
            "components": dict(self.components),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "RiskScore":
        data = require_mapping("risk_score", data)
        try:
            kind = SubjectKind(data.get("kind", SubjectKind.WALLET.value))
        except ValueError as e:
            raise InvalidInputError("risk_score.kind", data.get("kind"), "unknown subject kind") from e
        return cls(
            subject_id=require_key(data, "subject_id", "risk_score"),
            score=require_key(data, "score", "risk_score"),
            factors=tuple(RiskFactor.from_dict(f) for f in data.get("factors", [])),
            computed_at=parse_timestamp("risk_score.computed_at", require_key(data, "computed_at", "risk_score")),
            kind=kind,
            sample_size=_optional_int(data.get("sample_size")),
            components=dict(data.get("components", {})),
        )


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# --- wallet ---


def score_wallet(
    address: str,
    history: Iterable[TransactionEdge],
    directory: KnownEntityDirectory | None = None,
    *,
    as_of: datetime | None = None,
    computed_at: datetime | None = None,
) -> RiskScore:
    """
    Score a wallet from its transaction history.

    Each transaction's counterparty is classified through the directory (no
    directory means every counterparty is unknown). Age runs from the earliest
    transaction to as_of (default: the latest transaction).

        velocity = min(tx_per_day * 10, 100), tx_per_day = n / max(age_days, 1)
        pattern  = min(mixer*30 + high_risk*20 + unknown*5, 100)
        cluster  = min(mixer*25 + high_risk*15 + exchange*5, 100)
        overall  = velocity*0.2 + pattern*0.4 + cluster*0.4

    Empty history gives score 0 with level Unknown.
    """
    validate_address("address", address)
    computed_at = computed_at or _now()
    history = list(history)
    log = bind_subject(address)
    if not history:
        log.info("wallet_risk_scored", score=0.0, level=RiskLevel.UNKNOWN.value, tx_count=0)
        return RiskScore(subject_id=address, score=0.0, factors=(), computed_at=computed_at)

    directory = directory or KnownEntityDirectory()
    counts = {c: 0 for c in CounterpartyClass}
    for edge in history:
        counts[directory.classify(edge.counterparty(address))] += 1
    mixer = counts[CounterpartyClass.MIXER]
    exchange = counts[CounterpartyClass.EXCHANGE]
    high_risk = counts[CounterpartyClass.HIGH_RISK]
    unknown = counts[CounterpartyClass.UNKNOWN]

    times = [e.epoch_seconds for e in history]
    end = timestamp_seconds(as_of) if as_of is not None else max(times)
    age_days = max(0.0, (end - min(times)) / SECONDS_PER_DAY)
    tx_per_day = len(history) / max(age_days, 1.0)

    velocity_score = min(tx_per_day * 10, 100.0)
    pattern_score = min(mixer * 30 + high_risk * 20 + unknown * 5, 100.0)
    cluster_score = min(mixer * 25 + high_risk * 15 + exchange * 5, 100.0)
    overall = min(100.0, velocity_score * 0.2 + pattern_score * 0.4 + cluster_score * 0.4)

    factors: list[RiskFactor] = []
    if mixer > 0:
        factors.append(
            RiskFactor(
                "Mixer Connections",
                f"{mixer} transactions with known mixer or privacy services",
                WALLET_FACTOR_IMPACTS["Mixer Connections"],
            )
        )
    if high_risk > 0:
        factors.append(
            RiskFactor(
                "High-Risk Connections",
                f"{high_risk} transactions with high-risk entities",
                WALLET_FACTOR_IMPACTS["High-Risk Connections"],
            )
        )
    largest = max(e.value for e in history)
    if largest > LARGE_TRANSACTION_VALUE:
        factors.append(
            RiskFactor(
                "Large Transaction",
                f"Single transaction of {largest:g} exceeds {LARGE_TRANSACTION_VALUE:,}",
                WALLET_FACTOR_IMPACTS["Large Transaction"],
            )
        )
    if age_days < NEW_WALLET_DAYS:
        factors.append(
            RiskFactor(
                "New Wallet",
                f"Wallet first seen {age_days:.1f} days ago",
                WALLET_FACTOR_IMPACTS["New Wallet"],
            )
        )

    score = RiskScore(
        subject_id=address,
        score=overall,
        factors=tuple(factors),
        computed_at=computed_at,
        kind=SubjectKind.WALLET,
        sample_size=len(history),
        components={
            "velocity_score": velocity_score,
            "pattern_score": pattern_score,
            "cluster_score": cluster_score,
            "tx_per_day": tx_per_day,
            "age_days": age_days,
            "mixer_interactions": mixer,
            "exchange_interactions": exchange,
            "high_risk_interactions": high_risk,
            "unknown_interactions": unknown,
        },
    )
    log.info(
        "wallet_risk_scored",
        score=round(overall, 2),
        level=score.level.value,
        tx_count=len(history),
        mixer_interactions=mixer,
        high_risk_interactions=high_risk,
        factors=[f.name for f in factors],
    )
    return score


# --- transaction ---


def _large_amount_fraction(value: float) -> float:
    for floor, fraction in LARGE_AMOUNT_TIERS:
        if value > floor:
            return fraction
    return 0.0


def _local_hour(ts: datetime, local_tz: tzinfo | None) -> int:
    if local_tz is None:
        return ts.hour
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(local_tz).hour


def is_round_number(value: float) -> bool:
    """Integer, or exactly one decimal digit in the shortest representation."""
    if math.isfinite(value) and float(value).is_integer():
        return True
    text = repr(float(value))
    if "e" in text or "." not in text:
        return False
    return len(text.split(".", 1)[1]) == 1


def score_transaction(
    edge: TransactionEdge,
    graph: TransactionGraph,
    directory: KnownEntityDirectory | None = None,
    *,
    pattern_matcher: PatternMatcher | None = None,
    hop_counter: HopCounter | None = None,
    local_tz: tzinfo | None = None,
    computed_at: datetime | None = None,
) -> RiskScore:
    """
    Score one edge within its enclosing graph.

    Factors (impact capped by TRANSACTION_RISK_WEIGHTS): large amount (tiered),
    unusual hour (1-5 in local_tz, or the timestamp's own zone), round number,
    known pattern (pattern_matcher returns a name), multi-hop (hop_counter > 1),
    privacy tool at either endpoint. Factors are sorted by impact, descending.
    """
    weights = TRANSACTION_RISK_WEIGHTS
    factors: list[RiskFactor] = []

    fraction = _large_amount_fraction(edge.value)
    if fraction > 0:
        factors.append(
            RiskFactor(
                "Large Amount",
                f"Transaction amount ({edge.value:g}) is unusually large",
                weights["LARGE_AMOUNT"] * fraction,
                score=fraction * 100,
            )
        )

    if _local_hour(edge.timestamp, local_tz) in UNUSUAL_HOURS:
        factors.append(
            RiskFactor("Unusual Hour", "Transaction occurred during unusual hours", weights["UNUSUAL_HOUR"], 100.0)
        )

    if is_round_number(edge.value):
        factors.append(
            RiskFactor(
                "Round Number",
                "Transaction amount is a suspiciously round number",
                weights["ROUND_NUMBER"],
                100.0,
            )
        )

    if pattern_matcher is not None:
        pattern = pattern_matcher(edge, graph)
        if pattern:
            factors.append(
                RiskFactor(
                    "Known Pattern",
                    f"Part of a known suspicious pattern: {pattern}",
                    weights["KNOWN_PATTERN"],
                    100.0,
                )
            )

    if hop_counter is not None:
        hops = hop_counter(edge, graph)
        if hops > 1:
            factors.append(
                RiskFactor(
                    "Multi-Hop Transaction",
                    f"Part of a {hops}-hop transaction chain",
                    min(weights["MULTI_HOP"], hops * HOP_IMPACT_PER_HOP),
                    min(100.0, hops * 10.0),
                )
            )

    if directory is not None:
        tool = directory.privacy_tool_name(edge.source) or directory.privacy_tool_name(edge.target)
        if tool:
            factors.append(
                RiskFactor(
                    "Privacy Tool",
                    f"Transaction involves a known privacy tool: {tool}",
                    weights["PRIVACY_TOOL"],
                    100.0,
                )
            )

    factors.sort(key=lambda f: f.impact, reverse=True)
    total = min(100.0, float(sum(f.impact for f in factors)))
    score = RiskScore(
        subject_id=edge.edge_id,
        score=total,
        factors=tuple(factors),
        computed_at=computed_at or _now(),
        kind=SubjectKind.TRANSACTION,
        sample_size=1,
    )
    bind_subject(edge.edge_id).debug(
        "transaction_risk_scored",
        score=total,
        level=score.level.value,
        factors=[f.name for f in factors],
    )
    return score


# --- dashboard metrics ---


@dataclass(frozen=True)
class RiskMetrics:
    total_risk_score: float = 0.0
    high_risk_factors: int = 0
    medium_risk_factors: int = 0
    low_risk_factors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_risk_score": self.total_risk_score,
            "high_risk_factors": self.high_risk_factors,
            "medium_risk_factors": self.medium_risk_factors,
            "low_risk_factors": self.low_risk_factors,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "RiskMetrics":
        data = require_mapping("risk_metrics", data)
        return cls(
            total_risk_score=float(data.get("total_risk_score", 0.0)),
            high_risk_factors=int(data.get("high_risk_factors", 0)),
            medium_risk_factors=int(data.get("medium_risk_factors", 0)),
            low_risk_factors=int(data.get("low_risk_factors", 0)),
        )


def summarize_risk_metrics(scores: Iterable[RiskScore]) -> RiskMetrics:
    """Mean score plus factor counts by impact: >= 15 high, [10, 15) medium, < 10 low."""
    scores = list(scores)
    factors = [f for s in scores for f in s.factors]
    return RiskMetrics(
        total_risk_score=sum(s.score for s in scores) / max(1, len(scores)),
        high_risk_factors=sum(1 for f in factors if f.impact >= 15),
        medium_risk_factors=sum(1 for f in factors if 10 <= f.impact < 15),
        low_risk_factors=sum(1 for f in factors if f.impact < 10),
    )
