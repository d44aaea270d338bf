"""
Scored suspicious-pattern library over one wallet's transactions.

Detectors fall into four categories: time-based (rapid succession, periodic,
unusual hours, activity bursts), amount-based (round, structured and
repeating amounts, splitting), flow-based (circular, layering, funnel,
fan-out) and behavioral (wash trading, smurfing, automated intervals,
activity spikes). Every hit is a PatternResult with a 0-100 score, a
severity and the ids of the transactions involved.

Calendar buckets (day, hour) are taken in UTC; naive timestamps are read as UTC.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from backend_chainrisk.analysis_engine.anomaly import AnomalySeverity
from backend_chainrisk.analysis_engine.graph_stats import compute_value_statistics
from backend_chainrisk.analysis_engine.models import TransactionEdge
from backend_chainrisk.chainrisk_logging import get_logger
from backend_chainrisk.core.exceptions import InvalidInputError
from backend_chainrisk.core.validation import require_key, require_mapping, validate_address, validate_score

logger = get_logger(__name__)

SECONDS_PER_HOUR = 3600.0
SECONDS_PER_DAY = 86400.0

# time-based
RAPID_SUCCESSION_SECONDS = 30
RAPID_SUCCESSION_MIN_COUNT = 3
RAPID_SUCCESSION_HIGH_COUNT = 5
PERIODIC_MIN_COUNT = 5
PERIODIC_MAX_VARIANCE_RATIO = 0.2
UNUSUAL_HOUR_MIN_TRANSACTIONS = 5
UNUSUAL_HOUR_START = 1
UNUSUAL_HOUR_END = 5
UNUSUAL_HOUR_MIN_RATIO = 0.4
UNUSUAL_HOUR_MIN_COUNT = 3
UNUSUAL_HOUR_HIGH_RATIO = 0.7
BURST_MIN_COUNT = 10
BURST_STDDEVS = 2
BURST_HIGH_DAYS = 2

# amount-based
ROUND_AMOUNT_TOLERANCE = 0.001
ROUND_AMOUNTS = (1, 5, 10, 50, 100, 500, 1000, 5000, 10000)
ROUND_AMOUNT_MIN_COUNT = 3
ROUND_AMOUNT_HIGH_RATIO = 0.7
REPORTING_THRESHOLDS = (1000, 3000, 5000, 10000)
STRUCTURED_MARGIN = 0.05
STRUCTURED_MIN_COUNT = 2
STRUCTURED_HIGH_COUNT = 4
REPEATING_DECIMALS = 4
REPEATING_MIN_COUNT = 3
REPEATING_HIGH_RATIO = 0.5
SPLITTING_MIN_AMOUNT = 100
SPLITTING_WINDOW_SECONDS = 24 * SECONDS_PER_HOUR
SPLITTING_PART_RATIO = 0.5
SPLITTING_MIN_OUTPUTS = 3
SPLITTING_SUM_LOW = 0.8
SPLITTING_SUM_HIGH = 1.2

# flow-based
MAX_PATH_DEPTH = 10
CIRCULAR_MIN_HOPS = 3
LAYERING_MIN_HOPS = 4
LAYERING_HIGH_LENGTH = 6
FUNNEL_MIN_INPUTS = 3
FUNNEL_WINDOW_SECONDS = 7 * SECONDS_PER_DAY
FAN_OUT_MIN_OUTPUTS = 3
FAN_OUT_WINDOW_SECONDS = 24 * SECONDS_PER_HOUR
FLOW_HIGH_COUNT = 10

# behavioral
BEHAVIORAL_MIN_COUNT = 5
WASH_TRADING_MIN_CYCLES = 2
WASH_TRADING_MIN_BALANCE = 0.8
WASH_TRADING_HIGH_CYCLES = 5
SMURFING_MIN_DAILY = 5
SMURFING_MAX_VARIANCE_RATIO = 0.3
SMURFING_MAX_AVERAGE = 100
SMURFING_HIGH_COUNT = 10
AUTOMATED_INTERVAL_TOLERANCE = 0.01
AUTOMATED_MIN_MATCHES = 3
AUTOMATED_HIGH_COUNT = 10
SPIKE_MIN_COUNT = 10
SPIKE_STDDEVS = 3
SPIKE_HIGH_HOURS = 1

MIN_TRANSACTIONS = 3
MAX_PATTERN_SCORE = 100.0


class PatternCategory(str, Enum):
    TIME_BASED = "time_based"
    AMOUNT_BASED = "amount_based"
    FLOW_BASED = "flow_based"
    BEHAVIORAL = "behavioral"


class PatternKind(str, Enum):
    RAPID_SUCCESSION = "rapid_succession"
    PERIODIC = "periodic_transactions"
    UNUSUAL_HOURS = "unusual_hours"
    ACTIVITY_BURSTS = "activity_bursts"
    ROUND_AMOUNTS = "round_amounts"
    STRUCTURED_AMOUNTS = "structured_amounts"
    REPEATING_AMOUNTS = "repeating_amounts"
    SPLITTING = "splitting_pattern"
    CIRCULAR = "circular_transactions"
    LAYERING = "layering_pattern"
    FUNNEL = "funnel_pattern"
    FAN_OUT = "fan_out_pattern"
    WASH_TRADING = "wash_trading"
    SMURFING = "smurfing_pattern"
    AUTOMATED = "automated_transactions"
    ACTIVITY_SPIKE = "activity_spike"


@dataclass(frozen=True)
class PatternResult:
    kind: PatternKind
    name: str
    description: str
    severity: AnomalySeverity
    score: float
    transaction_ids: tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "score", validate_score("score", self.score))
        object.__setattr__(self, "transaction_ids", tuple(self.transaction_ids))

    @property
    def is_high_severity(self) -> bool:
        return self.severity is AnomalySeverity.HIGH

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "description": self.description,
            "severity": self.severity.value,
            "score": self.score,
            "transaction_ids": list(self.transaction_ids),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "PatternResult":
        data = require_mapping("pattern_result", data)
        try:
            kind = PatternKind(require_key(data, "kind", "pattern_result"))
            severity = AnomalySeverity(require_key(data, "severity", "pattern_result"))
        except ValueError as e:
            raise InvalidInputError("pattern_result", data.get("kind"), str(e)) from e
        return cls(
            kind=kind,
            name=data.get("name", ""),
            description=data.get("description", ""),
            severity=severity,
            score=require_key(data, "score", "pattern_result"),
            transaction_ids=tuple(data.get("transaction_ids", [])),
            metadata=dict(data.get("metadata", {})),
        )


@dataclass(frozen=True)
class PatternGroup:
    """All hits of one category with summary counts."""

    category: PatternCategory
    patterns: tuple[PatternResult, ...] = ()

    @property
    def pattern_count(self) -> int:
        return len(self.patterns)

    @property
    def risk_score(self) -> float:
        """Mean pattern score; 0 with no patterns."""
        return sum(p.score for p in self.patterns) / (len(self.patterns) or 1)

    @property
    def affected_transactions(self) -> int:
        return len({tx for p in self.patterns for tx in p.transaction_ids})

    @property
    def high_severity_count(self) -> int:
        return sum(1 for p in self.patterns if p.is_high_severity)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "pattern_count": self.pattern_count,
            "risk_score": self.risk_score,
            "affected_transactions": self.affected_transactions,
            "high_severity_count": self.high_severity_count,
            "patterns": [p.to_dict() for p in self.patterns],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "PatternGroup":
        data = require_mapping("pattern_group", data)
        try:
            category = PatternCategory(require_key(data, "category", "pattern_group"))
        except ValueError as e:
            raise InvalidInputError("pattern_group.category", data.get("category"), "unknown category") from e
        return cls(
            category=category,
            patterns=tuple(PatternResult.from_dict(p) for p in data.get("patterns", [])),
        )


@dataclass(frozen=True)
class PatternAnalysis:
    address: str
    groups: tuple[PatternGroup, ...] = ()

    @property
    def patterns(self) -> list[PatternResult]:
        return [p for g in self.groups for p in g.patterns]

    def group(self, category: PatternCategory) -> PatternGroup:
        for g in self.groups:
            if g.category is category:
                return g
        return PatternGroup(category)

    def kinds(self) -> list[PatternKind]:
        return [p.kind for p in self.patterns]

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "groups": [g.to_dict() for g in self.groups]}

    @classmethod
    def from_dict(cls, data: Any) -> "PatternAnalysis":
        data = require_mapping("pattern_analysis", data)
        return cls(
            address=require_key(data, "address", "pattern_analysis"),
            groups=tuple(PatternGroup.from_dict(g) for g in data.get("groups", [])),
        )


def _capped(value: float) -> float:
    return min(MAX_PATTERN_SCORE, value)


def _ids(edges: Iterable[TransactionEdge]) -> tuple[str, ...]:
    return tuple(e.edge_id for e in edges)


def _by_time(edges: Iterable[TransactionEdge]) -> list[TransactionEdge]:
    return sorted(edges, key=lambda e: e.epoch_seconds)


def _utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _day_key(edge: TransactionEdge) -> str:
    return _utc(edge.timestamp).strftime("%Y-%m-%d")


def _hour_key(edge: TransactionEdge) -> str:
    return _utc(edge.timestamp).strftime("%Y-%m-%dT%H")


def _bucket(edges: Iterable[TransactionEdge], key) -> dict[str, list[TransactionEdge]]:
    buckets: dict[str, list[TransactionEdge]] = {}
    for e in edges:
        buckets.setdefault(key(e), []).append(e)
    return buckets


def _gaps(ordered: Sequence[TransactionEdge]) -> list[float]:
    return [b.epoch_seconds - a.epoch_seconds for a, b in zip(ordered, ordered[1:])]


# --- time-based ---


def detect_rapid_succession(transactions: Iterable[TransactionEdge]) -> list[PatternResult]:
    """Runs of >= 3 transactions within 30 seconds of the run's first; runs do not overlap."""
    ordered = _by_time(transactions)
    found: list[PatternResult] = []
    i = 0
    while i <= len(ordered) - RAPID_SUCCESSION_MIN_COUNT:
        start = ordered[i].epoch_seconds
        run = [ordered[i]]
        for e in ordered[i + 1:]:
            if e.epoch_seconds - start > RAPID_SUCCESSION_SECONDS:
                break
            run.append(e)
        if len(run) >= RAPID_SUCCESSION_MIN_COUNT:
            found.append(
                PatternResult(
                    kind=PatternKind.RAPID_SUCCESSION,
                    name="Rapid Succession Transactions",
                    description=f"{len(run)} transactions within {RAPID_SUCCESSION_SECONDS} seconds",
                    severity=AnomalySeverity.HIGH if len(run) > RAPID_SUCCESSION_HIGH_COUNT else AnomalySeverity.MEDIUM,
                    score=_capped(len(run) * 10),
                    transaction_ids=_ids(run),
                    metadata={"timespan_seconds": RAPID_SUCCESSION_SECONDS, "count": len(run)},
                )
            )
            i += len(run)
        else:
            i += 1
    return found


def detect_periodic(transactions: Iterable[TransactionEdge]) -> list[PatternResult]:
    """Gaps with stddev/mean <= 0.2 over at least 5 transactions."""
    ordered = _by_time(transactions)
    if len(ordered) < PERIODIC_MIN_COUNT:
        return []
    stats = compute_value_statistics(_gaps(ordered))
    if stats.mean <= 0:
        return []
    ratio = stats.stddev / stats.mean
    if ratio > PERIODIC_MAX_VARIANCE_RATIO:
        return []
    return [
        PatternResult(
            kind=PatternKind.PERIODIC,
            name="Periodic Transactions",
            description=(
                f"{len(ordered)} transactions at regular intervals of ~{round(stats.mean / 60)} minutes"
            ),
            severity=AnomalySeverity.MEDIUM,
            score=_capped(50 + (1 - ratio) * 50),
            transaction_ids=_ids(ordered),
            metadata={"average_interval_seconds": stats.mean, "variance_ratio": ratio},
        )
    ]


def detect_unusual_hours(transactions: Iterable[TransactionEdge]) -> list[PatternResult]:
    """At least 40% (and 3) of transactions between 01:00 and 05:59 UTC."""
    transactions = _by_time(transactions)
    if len(transactions) < UNUSUAL_HOUR_MIN_TRANSACTIONS:
        return []
    unusual = [e for e in transactions if UNUSUAL_HOUR_START <= _utc(e.timestamp).hour <= UNUSUAL_HOUR_END]
    ratio = len(unusual) / len(transactions)
    if ratio < UNUSUAL_HOUR_MIN_RATIO or len(unusual) < UNUSUAL_HOUR_MIN_COUNT:
        return []
    return [
        PatternResult(
            kind=PatternKind.UNUSUAL_HOURS,
            name="Unusual Hour Transactions",
            description=(
                f"{len(unusual)} transactions ({round(ratio * 100)}%) during unusual hours "
                f"({UNUSUAL_HOUR_START}-{UNUSUAL_HOUR_END} AM UTC)"
            ),
            severity=AnomalySeverity.HIGH if ratio > UNUSUAL_HOUR_HIGH_RATIO else AnomalySeverity.MEDIUM,
            score=_capped(ratio * 100),
            transaction_ids=_ids(unusual),
            metadata={"unusual_hour_count": len(unusual), "total_count": len(transactions), "ratio": ratio},
        )
    ]


def detect_activity_bursts(transactions: Iterable[TransactionEdge]) -> list[PatternResult]:
    """UTC days whose count exceeds mean + 2 stddev of daily counts (needs 10 transactions)."""
    transactions = list(transactions)
    if len(transactions) < BURST_MIN_COUNT:
        return []
    by_day = _bucket(transactions, _day_key)
    stats = compute_value_statistics(len(txs) for txs in by_day.values())
    burst_days = sorted(day for day, txs in by_day.items() if len(txs) > stats.mean + BURST_STDDEVS * stats.stddev)
    if not burst_days:
        return []
    return [
        PatternResult(
            kind=PatternKind.ACTIVITY_BURSTS,
            name="Activity Burst Pattern",
            description=f"{len(burst_days)} days with abnormally high transaction activity",
            severity=AnomalySeverity.HIGH if len(burst_days) > BURST_HIGH_DAYS else AnomalySeverity.MEDIUM,
            score=_capped(50 + len(burst_days) * 10),
            transaction_ids=_ids(e for day in burst_days for e in by_day[day]),
            metadata={"burst_days": burst_days, "average_daily_count": stats.mean, "stddev": stats.stddev},
        )
    ]


# --- amount-based ---


def is_round_amount(amount: float) -> bool:
    """Whole number, or within 0.001 of 1/5/10/.../10000 or a tenth or hundredth of one."""
    if abs(amount - round(amount)) < ROUND_AMOUNT_TOLERANCE:
        return True
    return any(
        abs(amount - n * scale) < ROUND_AMOUNT_TOLERANCE for n in ROUND_AMOUNTS for scale in (1, 0.1, 0.01)
    )


def detect_round_amounts(transactions: Iterable[TransactionEdge]) -> list[PatternResult]:
    transactions = list(transactions)
    if not transactions:
        return []
    rounded = [e for e in transactions if is_round_amount(e.value)]
    if len(rounded) < ROUND_AMOUNT_MIN_COUNT:
        return []
    ratio = len(rounded) / len(transactions)
    return [
        PatternResult(
            kind=PatternKind.ROUND_AMOUNTS,
            name="Round Amount Transactions",
            description=f"{len(rounded)} transactions ({round(ratio * 100)}%) with round amounts",
            severity=AnomalySeverity.HIGH if ratio > ROUND_AMOUNT_HIGH_RATIO else AnomalySeverity.MEDIUM,
            score=_capped(40 + len(rounded) * 5),
            transaction_ids=_ids(rounded),
            metadata={"round_amount_count": len(rounded), "total_count": len(transactions), "ratio": ratio},
        )
    ]


def _just_below_threshold(amount: float) -> bool:
    return any(0 < t - amount < t * STRUCTURED_MARGIN for t in REPORTING_THRESHOLDS)


def detect_structured_amounts(transactions: Iterable[TransactionEdge]) -> list[PatternResult]:
    """At least 2 amounts within 5% below a reporting threshold."""
    transactions = list(transactions)
    structured = [e for e in transactions if _just_below_threshold(e.value)]
    if len(structured) < STRUCTURED_MIN_COUNT:
        return []
    return [
        PatternResult(
            kind=PatternKind.STRUCTURED_AMOUNTS,
            name="Structured Amounts",
            description=f"{len(structured)} transactions with amounts just below reporting thresholds",
            severity=AnomalySeverity.HIGH if len(structured) > STRUCTURED_HIGH_COUNT else AnomalySeverity.MEDIUM,
            score=_capped(60 + len(structured) * 10),
            transaction_ids=_ids(structured),
            metadata={"structured_count": len(structured), "total_count": len(transactions)},
        )
    ]


def detect_repeating_amounts(transactions: Iterable[TransactionEdge]) -> list[PatternResult]:
    """The most repeated amount (4 decimals), when it occurs at least 3 times."""
    transactions = list(transactions)
    by_amount: dict[float, list[TransactionEdge]] = {}
    for e in transactions:
        by_amount.setdefault(round(e.value, REPEATING_DECIMALS), []).append(e)
    repeating = [(amount, txs) for amount, txs in by_amount.items() if len(txs) >= REPEATING_MIN_COUNT]
    if not repeating:
        return []
    amount, txs = max(repeating, key=lambda item: len(item[1]))
    ratio = len(txs) / len(transactions)
    return [
        PatternResult(
            kind=PatternKind.REPEATING_AMOUNTS,
            name="Repeating Amount Pattern",
            description=f"{len(txs)} transactions with identical amount of {amount}",
            severity=AnomalySeverity.HIGH if ratio > REPEATING_HIGH_RATIO else AnomalySeverity.MEDIUM,
            score=_capped(40 + len(txs) * 5),
            transaction_ids=_ids(txs),
            metadata={"amount": amount, "count": len(txs), "total_count": len(transactions), "ratio": ratio},
        )
    ]


def detect_splitting(transactions: Iterable[TransactionEdge]) -> list[PatternResult]:
    """
    A transfer of >= 100 followed within 24 hours by >= 3 transfers under half
    its size that together sum to 80-120% of it.
    """
    ordered = _by_time(transactions)
    found: list[PatternResult] = []
    i = 0
    while i < len(ordered):
        large = ordered[i]
        if large.value < SPLITTING_MIN_AMOUNT:
            i += 1
            continue
        parts = [
            e
            for e in ordered[i + 1:]
            if e.epoch_seconds - large.epoch_seconds <= SPLITTING_WINDOW_SECONDS
            and e.value < large.value * SPLITTING_PART_RATIO
        ]
        total = sum(e.value for e in parts)
        ratio = total / large.value
        if len(parts) >= SPLITTING_MIN_OUTPUTS and SPLITTING_SUM_LOW < ratio < SPLITTING_SUM_HIGH:
            found.append(
                PatternResult(
                    kind=PatternKind.SPLITTING,
                    name="Transaction Splitting",
                    description=f"Large transaction of {large.value} split into {len(parts)} smaller transactions",
                    severity=AnomalySeverity.HIGH,
                    score=_capped(70 + len(parts) * 2),
                    transaction_ids=_ids([large, *parts]),
                    metadata={
                        "large_amount": large.value,
                        "split_count": len(parts),
                        "split_sum": total,
                        "ratio": ratio,
                    },
                )
            )
            i += len(parts) + 1
        else:
            i += 1
    return found


# --- flow-based ---


def _successors(transactions: Sequence[TransactionEdge]) -> dict[str, list[str]]:
    successors: dict[str, list[str]] = {}
    for e in transactions:
        targets = successors.setdefault(e.source, [])
        if e.target not in targets:
            targets.append(e.target)
    return successors


def _path_edges(path: Sequence[str], transactions: Sequence[TransactionEdge], *, last: bool) -> list[TransactionEdge]:
    """Edge for each hop of path: the first (or last) transaction between the pair."""
    edges: list[TransactionEdge] = []
    for a, b in zip(path, path[1:]):
        matches = [e for e in transactions if e.source == a and e.target == b]
        if matches:
            edges.append(matches[-1] if last else matches[0])
    return edges


def detect_circular_flows(transactions: Iterable[TransactionEdge], address: str) -> list[PatternResult]:
    """Simple cycles of at least 3 hops that start and end at address (depth capped at 10)."""
    transactions = list(transactions)
    successors = _successors(transactions)
    cycles: list[list[str]] = []
    path: list[str] = []
    on_path: set[str] = set()

    def visit(current: str, depth: int) -> None:
        if depth > MAX_PATH_DEPTH:
            return
        path.append(current)
        on_path.add(current)
        for nxt in successors.get(current, ()):
            if nxt == address and len(path) >= CIRCULAR_MIN_HOPS:
                cycles.append(path + [address])
            elif nxt not in on_path:
                visit(nxt, depth + 1)
        path.pop()
        on_path.discard(current)

    if address in successors:
        visit(address, 0)

    found: list[PatternResult] = []
    for cycle in cycles:
        edges = _path_edges(cycle, transactions, last=False)
        if len(edges) < CIRCULAR_MIN_HOPS:
            continue
        found.append(
            PatternResult(
                kind=PatternKind.CIRCULAR,
                name="Circular Transaction Pattern",
                description=f"Circular flow of funds through {len(cycle)} addresses",
                severity=AnomalySeverity.HIGH,
                score=_capped(70 + len(cycle) * 5),
                transaction_ids=_ids(edges),
                metadata={"path": cycle, "hop_count": len(cycle)},
            )
        )
    return found


def detect_layering_paths(transactions: Iterable[TransactionEdge], address: str) -> list[PatternResult]:
    """Paths from address to an address with no outgoing transfer, at least 4 addresses long."""
    transactions = list(transactions)
    successors = _successors(transactions)
    paths: list[list[str]] = []
    path: list[str] = []
    on_path: set[str] = set()

    def visit(current: str, depth: int) -> None:
        if depth > MAX_PATH_DEPTH:
            return
        path.append(current)
        on_path.add(current)
        nexts = successors.get(current, [])
        if not nexts and len(path) >= LAYERING_MIN_HOPS:
            paths.append(list(path))
        else:
            for nxt in nexts:
                if nxt not in on_path:
                    visit(nxt, depth + 1)
        path.pop()
        on_path.discard(current)

    if address in successors:
        visit(address, 0)

    found: list[PatternResult] = []
    for p in paths:
        edges = _path_edges(p, transactions, last=True)
        if len(edges) < LAYERING_MIN_HOPS - 1:
            continue
        found.append(
            PatternResult(
                kind=PatternKind.LAYERING,
                name="Transaction Layering",
                description=f"Funds moved through {len(p)} addresses in sequence",
                severity=AnomalySeverity.HIGH if len(p) > LAYERING_HIGH_LENGTH else AnomalySeverity.MEDIUM,
                score=_capped(60 + len(p) * 5),
                transaction_ids=_ids(edges),
                metadata={"path": p, "hop_count": len(p)},
            )
        )
    return found


def _span_seconds(edges: Sequence[TransactionEdge]) -> float:
    times = [e.epoch_seconds for e in edges]
    return max(times) - min(times)


def detect_funnels(transactions: Iterable[TransactionEdge]) -> list[PatternResult]:
    """Destinations receiving >= 3 transfers within 7 days."""
    found: list[PatternResult] = []
    for destination, txs in _bucket(transactions, lambda e: e.target).items():
        if len(txs) < FUNNEL_MIN_INPUTS:
            continue
        span = _span_seconds(txs)
        if span > FUNNEL_WINDOW_SECONDS:
            continue
        found.append(
            PatternResult(
                kind=PatternKind.FUNNEL,
                name="Transaction Funnel",
                description=f"{len(txs)} transactions from different sources to the same destination",
                severity=AnomalySeverity.HIGH if len(txs) > FLOW_HIGH_COUNT else AnomalySeverity.MEDIUM,
                score=_capped(50 + len(txs) * 5),
                transaction_ids=_ids(txs),
                metadata={
                    "destination": destination,
                    "source_count": len(txs),
                    "total_amount": sum(e.value for e in txs),
                    "timespan_days": span / SECONDS_PER_DAY,
                },
            )
        )
    return found


def detect_fan_outs(transactions: Iterable[TransactionEdge]) -> list[PatternResult]:
    """Sources sending to >= 3 distinct destinations within 24 hours."""
    found: list[PatternResult] = []
    for source, txs in _bucket(transactions, lambda e: e.source).items():
        if len(txs) < FAN_OUT_MIN_OUTPUTS:
            continue
        span = _span_seconds(txs)
        if span > FAN_OUT_WINDOW_SECONDS:
            continue
        destinations = {e.target for e in txs}
        if len(destinations) < FAN_OUT_MIN_OUTPUTS:
            continue
        found.append(
            PatternResult(
                kind=PatternKind.FAN_OUT,
                name="Transaction Fan-Out",
                description=(
                    f"{len(txs)} transactions from the same source to {len(destinations)} different destinations"
                ),
                severity=AnomalySeverity.HIGH if len(destinations) > FLOW_HIGH_COUNT else AnomalySeverity.MEDIUM,
                score=_capped(50 + len(destinations) * 5),
                transaction_ids=_ids(txs),
                metadata={
                    "source": source,
                    "destination_count": len(destinations),
                    "total_amount": sum(e.value for e in txs),
                    "timespan_hours": span / SECONDS_PER_HOUR,
                },
            )
        )
    return found


# --- behavioral ---


def detect_wash_trading(transactions: Iterable[TransactionEdge], address: str) -> list[PatternResult]:
    """Counterparties with >= 2 transfers each way and totals within 20% of each other."""
    sent: dict[str, list[TransactionEdge]] = {}
    received: dict[str, list[TransactionEdge]] = {}
    order: list[str] = []
    for e in transactions:
        if not e.touches(address):
            continue
        other = e.counterparty(address)
        if other not in sent:
            order.append(other)
            sent[other], received[other] = [], []
        (sent if e.source == address else received)[other].append(e)

    found: list[PatternResult] = []
    for other in order:
        cycles = min(len(sent[other]), len(received[other]))
        if cycles < WASH_TRADING_MIN_CYCLES:
            continue
        out_total = sum(e.value for e in sent[other])
        in_total = sum(e.value for e in received[other])
        larger = max(out_total, in_total)
        if larger <= 0:
            continue
        balance = min(out_total, in_total) / larger
        if balance <= WASH_TRADING_MIN_BALANCE:
            continue
        found.append(
            PatternResult(
                kind=PatternKind.WASH_TRADING,
                name="Wash Trading Pattern",
                description=f"{cycles} cycles of funds between the same two addresses",
                severity=AnomalySeverity.HIGH if cycles > WASH_TRADING_HIGH_CYCLES else AnomalySeverity.MEDIUM,
                score=_capped(70 + cycles * 5),
                transaction_ids=_ids(_by_time(sent[other] + received[other])),
                metadata={
                    "counterparty": other,
                    "cycle_count": cycles,
                    "sent_amount": out_total,
                    "received_amount": in_total,
                    "ratio": balance,
                },
            )
        )
    return found


def detect_daily_smurfing(transactions: Iterable[TransactionEdge], address: str) -> list[PatternResult]:
    """UTC days with >= 5 outgoing transfers of similar (stddev/mean < 0.3) small (mean < 100) amounts."""
    outgoing = [e for e in _by_time(transactions) if e.source == address]
    found: list[PatternResult] = []
    for day, txs in _bucket(outgoing, _day_key).items():
        if len(txs) < SMURFING_MIN_DAILY:
            continue
        stats = compute_value_statistics(e.value for e in txs)
        if stats.mean <= 0:
            continue
        ratio = stats.stddev / stats.mean
        if ratio >= SMURFING_MAX_VARIANCE_RATIO or stats.mean >= SMURFING_MAX_AVERAGE:
            continue
        found.append(
            PatternResult(
                kind=PatternKind.SMURFING,
                name="Smurfing Pattern",
                description=f"{len(txs)} similar small transactions on {day}",
                severity=AnomalySeverity.HIGH if len(txs) > SMURFING_HIGH_COUNT else AnomalySeverity.MEDIUM,
                score=_capped(60 + len(txs) * 3),
                transaction_ids=_ids(txs),
                metadata={
                    "day": day,
                    "transaction_count": len(txs),
                    "average_amount": stats.mean,
                    "stddev": stats.stddev,
                    "variance_ratio": ratio,
                },
            )
        )
    return found


def detect_automated_intervals(transactions: Iterable[TransactionEdge]) -> list[PatternResult]:
    """At least 3 gaps that each match >= 3 gaps (itself included) within 1%."""
    ordered = _by_time(transactions)
    if len(ordered) < BEHAVIORAL_MIN_COUNT:
        return []
    gaps = _gaps(ordered)
    exact = [
        g
        for g in gaps
        if sum(1 for other in gaps if abs(g - other) < g * AUTOMATED_INTERVAL_TOLERANCE) >= AUTOMATED_MIN_MATCHES
    ]
    if len(exact) < AUTOMATED_MIN_MATCHES:
        return []
    interval, _ = Counter(round(g) for g in exact).most_common(1)[0]
    return [
        PatternResult(
            kind=PatternKind.AUTOMATED,
            name="Automated Transaction Pattern",
            description=f"{len(exact)} transactions with precise time intervals",
            severity=AnomalySeverity.HIGH if len(exact) > AUTOMATED_HIGH_COUNT else AnomalySeverity.MEDIUM,
            score=_capped(50 + len(exact) * 5),
            transaction_ids=_ids(ordered),
            metadata={"interval_seconds": interval, "interval_count": len(exact), "total_count": len(ordered)},
        )
    ]


def detect_activity_spikes(transactions: Iterable[TransactionEdge]) -> list[PatternResult]:
    """UTC hours whose count exceeds mean + 3 stddev of hourly counts (needs 10 transactions)."""
    transactions = list(transactions)
    if len(transactions) < SPIKE_MIN_COUNT:
        return []
    by_hour = _bucket(transactions, _hour_key)
    stats = compute_value_statistics(len(txs) for txs in by_hour.values())
    spikes = sorted(h for h, txs in by_hour.items() if len(txs) > stats.mean + SPIKE_STDDEVS * stats.stddev)
    if not spikes:
        return []
    return [
        PatternResult(
            kind=PatternKind.ACTIVITY_SPIKE,
            name="Abnormal Activity Spike",
            description=f"{len(spikes)} hours with abnormally high transaction activity",
            severity=AnomalySeverity.HIGH if len(spikes) > SPIKE_HIGH_HOURS else AnomalySeverity.MEDIUM,
            score=_capped(60 + len(spikes) * 10),
            transaction_ids=_ids(e for h in spikes for e in by_hour[h]),
            metadata={"spike_hours": spikes, "average_hourly_count": stats.mean, "stddev": stats.stddev},
        )
    ]


# --- categories ---


def detect_time_patterns(transactions: Sequence[TransactionEdge]) -> list[PatternResult]:
    if len(transactions) < MIN_TRANSACTIONS:
        return []
    return (
        detect_rapid_succession(transactions)
        + detect_periodic(transactions)
        + detect_unusual_hours(transactions)
        + detect_activity_bursts(transactions)
    )


def detect_amount_patterns(transactions: Sequence[TransactionEdge]) -> list[PatternResult]:
    if len(transactions) < MIN_TRANSACTIONS:
        return []
    return (
        detect_round_amounts(transactions)
        + detect_structured_amounts(transactions)
        + detect_repeating_amounts(transactions)
        + detect_splitting(transactions)
    )


def detect_flow_patterns(transactions: Sequence[TransactionEdge], address: str) -> list[PatternResult]:
    if len(transactions) < MIN_TRANSACTIONS:
        return []
    return (
        detect_circular_flows(transactions, address)
        + detect_layering_paths(transactions, address)
        + detect_funnels(transactions)
        + detect_fan_outs(transactions)
    )


def detect_behavioral_patterns(transactions: Sequence[TransactionEdge], address: str) -> list[PatternResult]:
    if len(transactions) < BEHAVIORAL_MIN_COUNT:
        return []
    return (
        detect_wash_trading(transactions, address)
        + detect_daily_smurfing(transactions, address)
        + detect_automated_intervals(transactions)
        + detect_activity_spikes(transactions)
    )


def analyze_transaction_patterns(transactions: Iterable[TransactionEdge], address: str) -> PatternAnalysis:
    """
    Run every detector over address's transactions.

    Groups come back in category order (time, amount, flow, behavioral), each
    present even when empty.
    """
    validate_address("address", address)
    transactions = list(transactions)
    groups = (
        PatternGroup(PatternCategory.TIME_BASED, tuple(detect_time_patterns(transactions))),
        PatternGroup(PatternCategory.AMOUNT_BASED, tuple(detect_amount_patterns(transactions))),
        PatternGroup(PatternCategory.FLOW_BASED, tuple(detect_flow_patterns(transactions, address))),
        PatternGroup(PatternCategory.BEHAVIORAL, tuple(detect_behavioral_patterns(transactions, address))),
    )
    analysis = PatternAnalysis(address=address, groups=groups)
    found = analysis.patterns
    if found:
        logger.info(
            "transaction_patterns_detected",
            tx_count=len(transactions),
            patterns=[p.kind.value for p in found],
            high_severity=sum(g.high_severity_count for g in groups),
        )
    return analysis
