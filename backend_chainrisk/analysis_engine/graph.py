"""
Immutable adjacency index over a transaction graph.

The builder makes one pass over the edges and freezes the result: an arena of
addresses, an address -> index mapping and per-index successor tuples
(deduplicated, first-seen order). Traversals (cycle search, hop counting)
only ever see the finished GraphIndex.

Also: default hop counter (BFS) and a flow summary (volume, high-value edges,
central addresses).
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from backend_chainrisk.analysis_engine.models import TransactionEdge, TransactionGraph
from backend_chainrisk.chainrisk_logging import get_logger, short_address
from backend_chainrisk.core.validation import require_key, require_mapping

logger = get_logger(__name__)

HIGH_VALUE_TOP_FRACTION = 0.1
CENTRAL_ADDRESS_LIMIT = 5


@dataclass(frozen=True)
class GraphIndex:
    addresses: tuple[str, ...]
    index: Mapping[str, int]
    successors: tuple[tuple[int, ...], ...]
    sources_in_order: tuple[int, ...]
    missing_references: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.addresses)

    def successors_of(self, address: str) -> tuple[str, ...]:
        i = self.index.get(address)
        if i is None:
            return ()
        return tuple(self.addresses[j] for j in self.successors[i])


@dataclass
class _GraphIndexBuilder:
    """Mutable during build only; build() returns the frozen index."""

    known_nodes: frozenset[str] = frozenset()
    check_references: bool = False
    _addresses: list[str] = field(default_factory=list)
    _index: dict[str, int] = field(default_factory=dict)
    _successors: list[list[int]] = field(default_factory=list)
    _successor_sets: list[set[int]] = field(default_factory=list)
    _sources: list[int] = field(default_factory=list)
    _source_set: set[int] = field(default_factory=set)
    _missing: list[str] = field(default_factory=list)

    def _intern(self, address: str) -> int:
        i = self._index.get(address)
        if i is not None:
            return i
        i = len(self._addresses)
        self._addresses.append(address)
        self._index[address] = i
        self._successors.append([])
        self._successor_sets.append(set())
        if self.check_references and address not in self.known_nodes:
            self._missing.append(address)
        return i

    def add_edge(self, edge: TransactionEdge) -> None:
        s = self._intern(edge.source)
        t = self._intern(edge.target)
        if s not in self._source_set:
            self._source_set.add(s)
            self._sources.append(s)
        if t not in self._successor_sets[s]:
            self._successor_sets[s].add(t)
            self._successors[s].append(t)

    def build(self) -> GraphIndex:
        return GraphIndex(
            addresses=tuple(self._addresses),
            index=MappingProxyType(dict(self._index)),
            successors=tuple(tuple(s) for s in self._successors),
            sources_in_order=tuple(self._sources),
            missing_references=tuple(self._missing),
        )


def build_graph_index(graph: TransactionGraph | Iterable[TransactionEdge]) -> GraphIndex:
    """Index the edges of graph (or a bare edge list). Missing node references are logged, not fatal."""
    if isinstance(graph, TransactionGraph):
        edges: Iterable[TransactionEdge] = graph.edges
        builder = _GraphIndexBuilder(known_nodes=frozenset(n.id for n in graph.nodes), check_references=True)
    else:
        edges = graph
        builder = _GraphIndexBuilder()
    for edge in edges:
        builder.add_edge(edge)
    index = builder.build()
    for address in index.missing_references:
        logger.debug("graph_missing_node_reference", address=short_address(address))
    return index


def count_hops(edge: TransactionEdge, graph: TransactionGraph, index: GraphIndex | None = None) -> int:
    """
    Longest BFS distance reachable from edge.source.

    Default hop counter for transaction scoring; a result > 1 means the edge
    sits on a chain.
    """
    if index is None:
        index = build_graph_index(graph.edges)
    start = index.index.get(edge.source)
    if start is None:
        return 0
    visited: set[int] = set()
    queue: deque[tuple[int, int]] = deque([(start, 0)])
    max_distance = 0
    while queue:
        node, distance = queue.popleft()
        if node in visited:
            continue
        visited.add(node)
        max_distance = max(max_distance, distance)
        for neighbor in index.successors[node]:
            if neighbor not in visited:
                queue.append((neighbor, distance + 1))
    return max_distance


@dataclass(frozen=True)
class CentralAddress:
    address: str
    label: str
    degree: int

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "label": self.label, "degree": self.degree}

    @classmethod
    def from_dict(cls, data: Any) -> "CentralAddress":
        data = require_mapping("central_address", data)
        return cls(
            address=require_key(data, "address", "central_address"),
            label=require_key(data, "label", "central_address"),
            degree=int(require_key(data, "degree", "central_address")),
        )


@dataclass(frozen=True)
class FlowSummary:
    node_count: int
    edge_count: int
    total_volume: float
    high_value_edges: tuple[TransactionEdge, ...]
    central_addresses: tuple[CentralAddress, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_count": self.node_count,
            "edge_count": self.edge_count,
            "total_volume": self.total_volume,
            "high_value_edges": [e.to_dict() for e in self.high_value_edges],
            "central_addresses": [c.to_dict() for c in self.central_addresses],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "FlowSummary":
        data = require_mapping("flow_summary", data)
        return cls(
            node_count=int(require_key(data, "node_count", "flow_summary")),
            edge_count=int(require_key(data, "edge_count", "flow_summary")),
            total_volume=float(require_key(data, "total_volume", "flow_summary")),
            high_value_edges=tuple(TransactionEdge.from_dict(e) for e in data.get("high_value_edges", [])),
            central_addresses=tuple(CentralAddress.from_dict(c) for c in data.get("central_addresses", [])),
        )


def summarize_flow(graph: TransactionGraph) -> FlowSummary:
    """
    Volume, high-value edges (value >= the top-10% value) and the most
    connected addresses (degree = touching edges; ties by first appearance).
    """
    edges = graph.edges
    by_value = sorted(edges, key=lambda e: e.value, reverse=True)
    if by_value:
        threshold = by_value[math.floor(len(by_value) * HIGH_VALUE_TOP_FRACTION)].value
        high_value = tuple(e for e in by_value if e.value >= threshold)
    else:
        high_value = ()

    degrees: dict[str, int] = {}
    for edge in edges:
        degrees[edge.source] = degrees.get(edge.source, 0) + 1
        degrees[edge.target] = degrees.get(edge.target, 0) + 1
    ranked = sorted(degrees.items(), key=lambda item: item[1], reverse=True)[:CENTRAL_ADDRESS_LIMIT]
    central = tuple(
        CentralAddress(address=address, label=graph.node(address).label, degree=degree)
        for address, degree in ranked
    )
    return FlowSummary(
        node_count=len(graph.nodes),
        edge_count=len(edges),
        total_volume=sum(e.value for e in edges),
        high_value_edges=high_value,
        central_addresses=central,
    )
