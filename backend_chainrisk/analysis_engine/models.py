"""
Graph data model for the analysis engine.

Edges are the unit of all analysis: directed, timestamped, valued transfers.
Nodes are derived from the edges touching them and are never mutated in place;
annotation produces new objects (AnnotatedEdge, AnnotatedNode).
All types are frozen dataclasses with to_dict/from_dict for host serialization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Iterable

from backend_chainrisk.core.exceptions import InvalidInputError
from backend_chainrisk.core.validation import (
    parse_timestamp,
    require_key,
    require_mapping,
    validate_address,
    validate_amount,
    validate_timestamp,
)

UNLABELED_NODE_LABEL = "Unknown Wallet"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    UNKNOWN = "unknown"


# Ordering for max/merge operations; UNKNOWN ranks below LOW.
RISK_LEVEL_ORDER = (RiskLevel.UNKNOWN, RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH)


def max_risk_level(*levels: RiskLevel) -> RiskLevel:
    """Highest of the given levels (UNKNOWN when none)."""
    if not levels:
        return RiskLevel.UNKNOWN
    return max(levels, key=RISK_LEVEL_ORDER.index)


def timestamp_seconds(ts: datetime) -> float:
    """Unix seconds; naive datetimes are read as UTC so mixed inputs still compare."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.timestamp()


def utc_date(ts: datetime) -> str:
    """YYYY-MM-DD of ts in UTC (naive read as UTC)."""
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.date().isoformat()


class NodeGroup(IntEnum):
    """Display group of a node in the flow graph."""

    MAIN = 1
    EXCHANGE = 2
    UNKNOWN = 3
    MIXER = 4


@dataclass(frozen=True)
class TransactionEdge:
    """
    A directed, timestamped, valued transfer between two addresses.

    tx_id, tx_type, description and hops are optional metadata used by pattern
    classification; the graph algorithms only read source/target/value/timestamp.
    """

    source: str
    target: str
    value: float
    timestamp: datetime
    tx_id: str = ""
    tx_type: str = "transfer"
    description: str = ""
    hops: int = 0

    def __post_init__(self) -> None:
        validate_address("source", self.source)
        validate_address("target", self.target)
        object.__setattr__(self, "value", validate_amount("value", self.value))
        validate_timestamp("timestamp", self.timestamp)
        if isinstance(self.hops, bool) or not isinstance(self.hops, int) or self.hops < 0:
            raise InvalidInputError("hops", self.hops, "must be a non-negative integer")

    @property
    def edge_id(self) -> str:
        """Transaction id, or source+target when none was supplied."""
        return self.tx_id or f"{self.source}{self.target}"

    @property
    def epoch_seconds(self) -> float:
        """Timestamp as unix seconds; naive datetimes are read as UTC."""
        return timestamp_seconds(self.timestamp)

    @property
    def pair(self) -> tuple[str, str]:
        return (self.source, self.target)

    def touches(self, address: str) -> bool:
        return self.source == address or self.target == address

    def counterparty(self, address: str) -> str:
        """The other endpoint as seen from address (the target for self-transfers)."""
        return self.target if self.source == address else self.source

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "source": self.source,
            "target": self.target,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.tx_id:
            out["tx_id"] = self.tx_id
        if self.tx_type != "transfer":
            out["tx_type"] = self.tx_type
        if self.description:
            out["description"] = self.description
        if self.hops:
            out["hops"] = self.hops
        return out

    @classmethod
    def _fields_from_dict(cls, data: Any) -> dict[str, Any]:
        data = require_mapping("edge", data)
        return {
            "source": require_key(data, "source", "edge"),
            "target": require_key(data, "target", "edge"),
            "value": require_key(data, "value", "edge"),
            "timestamp": parse_timestamp("edge.timestamp", require_key(data, "timestamp", "edge")),
            "tx_id": data.get("tx_id") or data.get("id") or "",
            "tx_type": data.get("tx_type") or "transfer",
            "description": data.get("description") or "",
            "hops": data.get("hops", 0),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "TransactionEdge":
        """Parse an edge; dicts carrying is_critical/is_unusual come back as AnnotatedEdge."""
        fields_ = cls._fields_from_dict(data)
        if "is_critical" in data or "is_unusual" in data:
            return AnnotatedEdge(
                **fields_,
                is_critical=bool(data.get("is_critical", False)),
                is_unusual=bool(data.get("is_unusual", False)),
            )
        return TransactionEdge(**fields_)


@dataclass(frozen=True)
class AnnotatedEdge(TransactionEdge):
    """Edge plus critical/unusual flags from critical-path analysis."""

    is_critical: bool = False
    is_unusual: bool = False

    @classmethod
    def annotate(cls, edge: TransactionEdge, *, is_critical: bool, is_unusual: bool) -> "AnnotatedEdge":
        return cls(
            source=edge.source,
            target=edge.target,
            value=edge.value,
            timestamp=edge.timestamp,
            tx_id=edge.tx_id,
            tx_type=edge.tx_type,
            description=edge.description,
            hops=edge.hops,
            is_critical=is_critical,
            is_unusual=is_unusual,
        )

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["is_critical"] = self.is_critical
        out["is_unusual"] = self.is_unusual
        return out


def is_critical_edge(edge: TransactionEdge) -> bool:
    """True only for annotated edges flagged critical."""
    return isinstance(edge, AnnotatedEdge) and edge.is_critical


@dataclass(frozen=True)
class TransactionNode:
    id: str
    label: str = UNLABELED_NODE_LABEL
    group: NodeGroup = NodeGroup.UNKNOWN
    aggregate_value: float = 0.0

    def __post_init__(self) -> None:
        validate_address("id", self.id)
        object.__setattr__(self, "group", NodeGroup(self.group))
        object.__setattr__(self, "aggregate_value", validate_amount("aggregate_value", self.aggregate_value))

    @classmethod
    def unlabeled(cls, address: str, aggregate_value: float = 0.0) -> "TransactionNode":
        """Placeholder for an address referenced by an edge but absent from the node list."""
        return cls(id=address, aggregate_value=aggregate_value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "group": int(self.group),
            "aggregate_value": self.aggregate_value,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "TransactionNode":
        data = require_mapping("node", data)
        group = data.get("group", NodeGroup.UNKNOWN)
        try:
            group = NodeGroup(group)
        except ValueError as e:
            raise InvalidInputError("node.group", group, "unknown node group") from e
        return cls(
            id=require_key(data, "id", "node"),
            label=data.get("label") or UNLABELED_NODE_LABEL,
            group=group,
            aggregate_value=data.get("aggregate_value", data.get("value", 0.0)),
        )


@dataclass(frozen=True)
class TransactionGraph:
    """
    Immutable snapshot: nodes plus directed edges.

    Edges may reference addresses missing from nodes; node() returns an
    unlabeled placeholder for those instead of failing.
    """

    nodes: tuple[TransactionNode, ...] = ()
    edges: tuple[TransactionEdge, ...] = ()
    _node_lookup: dict[str, TransactionNode] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "nodes", tuple(self.nodes))
        object.__setattr__(self, "edges", tuple(self.edges))
        lookup: dict[str, TransactionNode] = {}
        for node in self.nodes:
            if not isinstance(node, TransactionNode):
                raise InvalidInputError("nodes", node, "expected TransactionNode")
            lookup.setdefault(node.id, node)
        for edge in self.edges:
            if not isinstance(edge, TransactionEdge):
                raise InvalidInputError("edges", edge, "expected TransactionEdge")
        object.__setattr__(self, "_node_lookup", lookup)

    @classmethod
    def from_edges(
        cls,
        edges: Iterable[TransactionEdge],
        labels: dict[str, tuple[str, NodeGroup]] | None = None,
    ) -> "TransactionGraph":
        """Derive nodes (first-appearance order, aggregate value of touching edges) from edges."""
        edges = tuple(edges)
        labels = labels or {}
        totals: dict[str, float] = {}
        for edge in edges:
            for address in (edge.source, edge.target):
                totals[address] = totals.get(address, 0.0) + edge.value
        nodes = []
        for address, total in totals.items():
            label, group = labels.get(address, (UNLABELED_NODE_LABEL, NodeGroup.UNKNOWN))
            nodes.append(TransactionNode(id=address, label=label, group=group, aggregate_value=total))
        return cls(nodes=tuple(nodes), edges=edges)

    def has_node(self, address: str) -> bool:
        return address in self._node_lookup

    def node(self, address: str) -> TransactionNode:
        """Node for address; an unlabeled placeholder when the graph does not list it."""
        found = self._node_lookup.get(address)
        if found is not None:
            return found
        return TransactionNode.unlabeled(address)

    def edges_touching(self, address: str) -> tuple[TransactionEdge, ...]:
        return tuple(e for e in self.edges if e.touches(address))

    def missing_references(self) -> list[str]:
        """Edge endpoints absent from the node list, in first-appearance order."""
        missing: list[str] = []
        seen: set[str] = set()
        for edge in self.edges:
            for address in (edge.source, edge.target):
                if address not in self._node_lookup and address not in seen:
                    seen.add(address)
                    missing.append(address)
        return missing

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "TransactionGraph":
        """Accepts {"nodes": [...], "edges": [...]} (or "links", as the dashboard names them)."""
        data = require_mapping("graph", data)
        raw_edges = data.get("edges", data.get("links", []))
        if not isinstance(raw_edges, list):
            raise InvalidInputError("graph.edges", raw_edges, "must be a list")
        raw_nodes = data.get("nodes", [])
        if not isinstance(raw_nodes, list):
            raise InvalidInputError("graph.nodes", raw_nodes, "must be a list")
        return cls(
            nodes=tuple(TransactionNode.from_dict(n) for n in raw_nodes),
            edges=tuple(TransactionEdge.from_dict(e) for e in raw_edges),
        )
