"""
Transaction clustering: temporal, value-similarity and circular-flow passes.

Each pass is independent and returns clusters of >= 2 edges. A wallet may sit
in clusters of different types; one cluster never mixes passes.

Heuristic rules (no ML):
- temporal: consecutive edges (by time) no more than `window` apart.
- value similarity: consecutive edges (by value) within a relative difference.
- circular: directed cycles of length >= 3 found by bounded DFS.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Sequence

from backend_chainrisk.analysis_engine.critical_path import DEFAULT_CRITICAL_THRESHOLD, identify_critical_paths
from backend_chainrisk.analysis_engine.graph import GraphIndex, build_graph_index
from backend_chainrisk.analysis_engine.models import (
    RiskLevel,
    TransactionEdge,
    TransactionGraph,
    is_critical_edge,
    utc_date,
)
from backend_chainrisk.chainrisk_logging import get_logger
from backend_chainrisk.core.exceptions import InvalidInputError
from backend_chainrisk.core.validation import (
    parse_duration,
    parse_timestamp,
    require_key,
    require_mapping,
    validate_fraction,
)

logger = get_logger(__name__)

DEFAULT_TEMPORAL_WINDOW = timedelta(minutes=5)
DEFAULT_VALUE_SIMILARITY = 0.10
DEFAULT_MAX_DFS_DEPTH = 10
MIN_CLUSTER_SIZE = 2
MIN_CYCLE_LENGTH = 3

# Cluster report risk score: mean of these per cluster.
CLUSTER_RISK_VALUES = {
    RiskLevel.LOW: 10,
    RiskLevel.MEDIUM: 50,
    RiskLevel.HIGH: 100,
    RiskLevel.UNKNOWN: 0,
}


class ClusterType(str, Enum):
    TEMPORAL = "temporal"
    VALUE_SIMILARITY = "value_similarity"
    CIRCULAR_PATTERN = "circular_pattern"


_ID_PREFIX = {
    ClusterType.TEMPORAL: "temporal",
    ClusterType.VALUE_SIMILARITY: "value",
    ClusterType.CIRCULAR_PATTERN: "circular",
}


@dataclass(frozen=True)
class ClusterRiskPolicy:
    """Risk level assigned per cluster type. Defaults: temporal by critical members, value medium, circular high."""

    temporal_with_critical: RiskLevel = RiskLevel.HIGH
    temporal_default: RiskLevel = RiskLevel.LOW
    value_similarity: RiskLevel = RiskLevel.MEDIUM
    circular_pattern: RiskLevel = RiskLevel.HIGH

    def to_dict(self) -> dict[str, Any]:
        return {
            "temporal_with_critical": self.temporal_with_critical.value,
            "temporal_default": self.temporal_default.value,
            "value_similarity": self.value_similarity.value,
            "circular_pattern": self.circular_pattern.value,
        }


DEFAULT_RISK_POLICY = ClusterRiskPolicy()


@dataclass(frozen=True)
class Cluster:
    id: str
    name: str
    type: ClusterType
    member_edges: tuple[TransactionEdge, ...]
    member_wallets: frozenset[str]
    risk_level: RiskLevel
    start_time: datetime
    end_time: datetime

    @property
    def transaction_count(self) -> int:
        return len(self.member_edges)

    @property
    def total_value(self) -> float:
        return sum(e.value for e in self.member_edges)

    @property
    def timeframe(self) -> str:
        start, end = utc_date(self.start_time), utc_date(self.end_time)
        return start if start == end else f"{start} to {end}"

    def contains_wallet(self, address: str) -> bool:
        return address in self.member_wallets

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "member_edges": [e.to_dict() for e in self.member_edges],
            "member_wallets": sorted(self.member_wallets),
            "risk_level": self.risk_level.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "transaction_count": self.transaction_count,
            "total_value": self.total_value,
            "timeframe": self.timeframe,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Cluster":
        data = require_mapping("cluster", data)
        try:
            ctype = ClusterType(require_key(data, "type", "cluster"))
            risk = RiskLevel(require_key(data, "risk_level", "cluster"))
        except ValueError as e:
            raise InvalidInputError("cluster", data.get("type"), str(e)) from e
        return cls(
            id=require_key(data, "id", "cluster"),
            name=require_key(data, "name", "cluster"),
            type=ctype,
            member_edges=tuple(TransactionEdge.from_dict(e) for e in require_key(data, "member_edges", "cluster")),
            member_wallets=frozenset(require_key(data, "member_wallets", "cluster")),
            risk_level=risk,
            start_time=parse_timestamp("cluster.start_time", require_key(data, "start_time", "cluster")),
            end_time=parse_timestamp("cluster.end_time", require_key(data, "end_time", "cluster")),
        )


def _wallets(edges: Iterable[TransactionEdge]) -> frozenset[str]:
    out: set[str] = set()
    for e in edges:
        out.add(e.source)
        out.add(e.target)
    return frozenset(out)


def _make_cluster(
    ctype: ClusterType,
    seq: int,
    name: str,
    members: Sequence[TransactionEdge],
    risk: RiskLevel,
    wallets: frozenset[str] | None = None,
) -> Cluster:
    by_time = sorted(members, key=lambda e: e.epoch_seconds)
    return Cluster(
        id=f"{_ID_PREFIX[ctype]}-{seq}",
        name=f"{name} {seq}",
        type=ctype,
        member_edges=tuple(members),
        member_wallets=wallets if wallets is not None else _wallets(members),
        risk_level=risk,
        start_time=by_time[0].timestamp,
        end_time=by_time[-1].timestamp,
    )


def detect_temporal_clusters(
    edges: Iterable[TransactionEdge],
    window: timedelta | float = DEFAULT_TEMPORAL_WINDOW,
    policy: ClusterRiskPolicy = DEFAULT_RISK_POLICY,
) -> list[Cluster]:
    """
    Walk edges in timestamp order (stable); a gap > window to the previous
    edge starts a new group. Groups of >= 2 become clusters.
    """
    window_s = parse_duration("window", window).total_seconds()
    ordered = sorted(edges, key=lambda e: e.epoch_seconds)
    groups: list[list[TransactionEdge]] = []
    current: list[TransactionEdge] = []
    for edge in ordered:
        if current and edge.epoch_seconds - current[-1].epoch_seconds > window_s:
            groups.append(current)
            current = []
        current.append(edge)
    if current:
        groups.append(current)

    clusters = []
    for group in groups:
        if len(group) < MIN_CLUSTER_SIZE:
            continue
        risk = policy.temporal_with_critical if any(is_critical_edge(e) for e in group) else policy.temporal_default
        clusters.append(
            _make_cluster(ClusterType.TEMPORAL, len(clusters) + 1, "Rapid Succession Transactions", group, risk)
        )
    return clusters


def _similar(prev: float, curr: float, threshold: float) -> bool:
    if prev == 0:
        return False
    return abs(curr - prev) / prev <= threshold


def detect_value_clusters(
    edges: Iterable[TransactionEdge],
    similarity_threshold: float = DEFAULT_VALUE_SIMILARITY,
    policy: ClusterRiskPolicy = DEFAULT_RISK_POLICY,
) -> list[Cluster]:
    """
    Walk edges in value order (stable); extend the group while the relative
    difference to the previous value is within similarity_threshold. A zero
    previous value never groups.
    """
    similarity_threshold = validate_fraction("similarity_threshold", similarity_threshold)
    ordered = sorted(edges, key=lambda e: e.value)
    groups: list[list[TransactionEdge]] = []
    current: list[TransactionEdge] = []
    for edge in ordered:
        if current and not _similar(current[-1].value, edge.value, similarity_threshold):
            groups.append(current)
            current = []
        current.append(edge)
    if current:
        groups.append(current)

    clusters = []
    for group in groups:
        if len(group) < MIN_CLUSTER_SIZE:
            continue
        clusters.append(
            _make_cluster(
                ClusterType.VALUE_SIMILARITY,
                len(clusters) + 1,
                "Similar Value Transfers",
                group,
                policy.value_similarity,
            )
        )
    return clusters


def find_cycles(index: GraphIndex, max_depth: int = DEFAULT_MAX_DFS_DEPTH) -> list[tuple[str, ...]]:
    """
    Distinct directed cycles (ordered address sequences) of length >= 3.

    DFS from each source not yet visited, in first-seen order. visited is
    global across starts, so each address is expanded at most once; depth is
    capped at max_depth. The path is one buffer with push/pop.
    """
    cycles: list[tuple[str, ...]] = []
    seen: set[tuple[int, ...]] = set()
    visited: set[int] = set()
    path: list[int] = []

    def dfs(start: int, current: int, depth: int) -> None:
        if depth > max_depth:
            return
        path.append(current)
        visited.add(current)
        for neighbor in index.successors[current]:
            if neighbor == start and len(path) >= MIN_CYCLE_LENGTH:
                key = tuple(path)
                if key not in seen:
                    seen.add(key)
                    cycles.append(tuple(index.addresses[i] for i in key))
            elif neighbor not in visited:
                dfs(start, neighbor, depth + 1)
        path.pop()

    for start in index.sources_in_order:
        if start not in visited:
            dfs(start, start, 0)
    return cycles


def detect_circular_clusters(
    graph: TransactionGraph | Iterable[TransactionEdge],
    max_depth: int = DEFAULT_MAX_DFS_DEPTH,
    policy: ClusterRiskPolicy = DEFAULT_RISK_POLICY,
) -> list[Cluster]:
    """One cluster per distinct cycle; members are the edges along it (plus the closing edge), in input order."""
    if isinstance(max_depth, bool) or not isinstance(max_depth, int) or max_depth < 1:
        raise InvalidInputError("max_depth", max_depth, "must be a positive integer")
    edges = graph.edges if isinstance(graph, TransactionGraph) else tuple(graph)
    index = build_graph_index(graph if isinstance(graph, TransactionGraph) else edges)

    clusters = []
    for cycle in find_cycles(index, max_depth):
        pairs = {(cycle[i], cycle[i + 1]) for i in range(len(cycle) - 1)}
        pairs.add((cycle[-1], cycle[0]))
        members = [e for e in edges if e.pair in pairs]
        if not members:
            continue
        clusters.append(
            _make_cluster(
                ClusterType.CIRCULAR_PATTERN,
                len(clusters) + 1,
                "Circular Transaction Pattern",
                members,
                policy.circular_pattern,
                wallets=frozenset(cycle),
            )
        )
    return clusters


@dataclass(frozen=True)
class ClusterReport:
    clusters: tuple[Cluster, ...] = ()

    @property
    def risk_score(self) -> int:
        """Mean of per-cluster risk values (low 10, medium 50, high 100), rounded; 0 when empty."""
        if not self.clusters:
            return 0
        total = sum(CLUSTER_RISK_VALUES[c.risk_level] for c in self.clusters)
        return min(100, int(total / len(self.clusters) + 0.5))

    @property
    def high_risk_clusters(self) -> int:
        return sum(1 for c in self.clusters if c.risk_level is RiskLevel.HIGH)

    def of_type(self, ctype: ClusterType) -> list[Cluster]:
        return [c for c in self.clusters if c.type is ctype]

    def for_wallet(self, address: str) -> list[Cluster]:
        return [c for c in self.clusters if c.contains_wallet(address)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "clusters": [c.to_dict() for c in self.clusters],
            "risk_score": self.risk_score,
            "high_risk_clusters": self.high_risk_clusters,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ClusterReport":
        data = require_mapping("cluster_report", data)
        return cls(clusters=tuple(Cluster.from_dict(c) for c in data.get("clusters", [])))


def detect_clusters(
    graph: TransactionGraph,
    *,
    critical_threshold: float = DEFAULT_CRITICAL_THRESHOLD,
    window: timedelta | float = DEFAULT_TEMPORAL_WINDOW,
    similarity_threshold: float = DEFAULT_VALUE_SIMILARITY,
    max_depth: int = DEFAULT_MAX_DFS_DEPTH,
    policy: ClusterRiskPolicy = DEFAULT_RISK_POLICY,
) -> ClusterReport:
    """
    Annotate critical edges, then run all three passes over the annotated graph.

    Already-annotated graphs (from identify_critical_paths().as_graph()) can
    be passed as-is; annotation is recomputed either way.
    """
    annotated = identify_critical_paths(graph, critical_threshold).as_graph()
    temporal = detect_temporal_clusters(annotated.edges, window, policy)
    value = detect_value_clusters(annotated.edges, similarity_threshold, policy)
    circular = detect_circular_clusters(annotated, max_depth, policy)
    report = ClusterReport(clusters=tuple(temporal + value + circular))
    logger.info(
        "clusters_detected",
        edge_count=len(graph.edges),
        temporal=len(temporal),
        value_similarity=len(value),
        circular=len(circular),
        high_risk_clusters=report.high_risk_clusters,
        risk_score=report.risk_score,
    )
    return report
