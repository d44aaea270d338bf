"""
Critical / unusual edge flagging and per-address critical counts.

- critical: value >= critical_threshold (absolute).
- unusual: not critical and value > mean + 2 * stddev of all edge values.
Each endpoint of a critical edge gets +1; an address with count >= 2 is high risk.
Annotated edges keep input order; counts do not depend on edge order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from backend_chainrisk.analysis_engine.graph_stats import ValueStatistics, edge_value_statistics
from backend_chainrisk.analysis_engine.models import (
    AnnotatedEdge,
    TransactionEdge,
    TransactionGraph,
    TransactionNode,
)
from backend_chainrisk.chainrisk_logging import get_logger, short_address
from backend_chainrisk.core.validation import require_key, require_mapping, validate_amount

logger = get_logger(__name__)

DEFAULT_CRITICAL_THRESHOLD = 5.0
HIGH_RISK_CRITICAL_COUNT = 2


@dataclass(frozen=True)
class AnnotatedNode(TransactionNode):
    risk_count: int = 0

    @property
    def is_high_risk(self) -> bool:
        return self.risk_count >= HIGH_RISK_CRITICAL_COUNT

    @classmethod
    def annotate(cls, node: TransactionNode, risk_count: int) -> "AnnotatedNode":
        return cls(
            id=node.id,
            label=node.label,
            group=node.group,
            aggregate_value=node.aggregate_value,
            risk_count=risk_count,
        )

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["risk_count"] = self.risk_count
        out["is_high_risk"] = self.is_high_risk
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "AnnotatedNode":
        node = TransactionNode.from_dict(data)
        return cls.annotate(node, int(data.get("risk_count", 0)))


@dataclass(frozen=True)
class CriticalPathResult:
    edges: tuple[AnnotatedEdge, ...]
    nodes: tuple[AnnotatedNode, ...]
    critical_counts: Mapping[str, int]
    statistics: ValueStatistics
    critical_threshold: float = DEFAULT_CRITICAL_THRESHOLD
    _graph: TransactionGraph | None = field(default=None, init=False, repr=False, compare=False)

    @property
    def critical_edges(self) -> tuple[AnnotatedEdge, ...]:
        return tuple(e for e in self.edges if e.is_critical)

    @property
    def unusual_edges(self) -> tuple[AnnotatedEdge, ...]:
        return tuple(e for e in self.edges if e.is_unusual)

    @property
    def high_risk_addresses(self) -> list[str]:
        return [n.id for n in self.nodes if n.is_high_risk]

    def as_graph(self) -> TransactionGraph:
        """Annotated snapshot for downstream stages."""
        if self._graph is None:
            object.__setattr__(self, "_graph", TransactionGraph(nodes=self.nodes, edges=self.edges))
        return self._graph

    def to_dict(self) -> dict[str, Any]:
        return {
            "edges": [e.to_dict() for e in self.edges],
            "nodes": [n.to_dict() for n in self.nodes],
            "critical_counts": dict(self.critical_counts),
            "statistics": self.statistics.to_dict(),
            "critical_threshold": self.critical_threshold,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "CriticalPathResult":
        data = require_mapping("critical_paths", data)
        edges = []
        for raw in require_key(data, "edges", "critical_paths"):
            edge = TransactionEdge.from_dict(raw)
            if not isinstance(edge, AnnotatedEdge):
                edge = AnnotatedEdge.annotate(edge, is_critical=False, is_unusual=False)
            edges.append(edge)
        return cls(
            edges=tuple(edges),
            nodes=tuple(AnnotatedNode.from_dict(n) for n in require_key(data, "nodes", "critical_paths")),
            critical_counts={k: int(v) for k, v in require_key(data, "critical_counts", "critical_paths").items()},
            statistics=ValueStatistics.from_dict(require_key(data, "statistics", "critical_paths")),
            critical_threshold=float(data.get("critical_threshold", DEFAULT_CRITICAL_THRESHOLD)),
        )


def identify_critical_paths(
    graph: TransactionGraph,
    critical_threshold: float = DEFAULT_CRITICAL_THRESHOLD,
) -> CriticalPathResult:
    """
    Annotate every edge and node of graph. The input graph is not modified.

    Edges whose endpoints are not in graph.nodes still count; those addresses
    are appended as unlabeled nodes.
    """
    critical_threshold = validate_amount("critical_threshold", critical_threshold)
    stats = edge_value_statistics(graph.edges)
    unusual_above = stats.unusual_threshold

    counts: dict[str, int] = {}
    annotated: list[AnnotatedEdge] = []
    for edge in graph.edges:
        is_critical = edge.value >= critical_threshold
        is_unusual = not is_critical and edge.value > unusual_above
        if is_critical:
            counts[edge.source] = counts.get(edge.source, 0) + 1
            counts[edge.target] = counts.get(edge.target, 0) + 1
        annotated.append(AnnotatedEdge.annotate(edge, is_critical=is_critical, is_unusual=is_unusual))

    nodes = [AnnotatedNode.annotate(n, counts.get(n.id, 0)) for n in graph.nodes]
    missing = graph.missing_references()
    if missing:
        totals: dict[str, float] = {}
        for edge in graph.edges:
            for address in (edge.source, edge.target):
                totals[address] = totals.get(address, 0.0) + edge.value
        for address in missing:
            logger.debug("graph_missing_node_reference", address=short_address(address))
            placeholder = TransactionNode.unlabeled(address, totals.get(address, 0.0))
            nodes.append(AnnotatedNode.annotate(placeholder, counts.get(address, 0)))

    result = CriticalPathResult(
        edges=tuple(annotated),
        nodes=tuple(nodes),
        critical_counts=counts,
        statistics=stats,
        critical_threshold=critical_threshold,
    )
    logger.debug(
        "critical_paths_identified",
        edge_count=len(annotated),
        critical=len(result.critical_edges),
        unusual=len(result.unusual_edges),
        high_risk_addresses=len(result.high_risk_addresses),
    )
    return result
