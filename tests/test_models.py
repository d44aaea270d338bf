"""
Tests for the graph data model: validation, helpers and serialization.
"""

from __future__ import annotations

import math
from datetime import datetime

import pytest
from conftest import T0, WALLET_A, WALLET_B, WALLET_C, edge

from backend_chainrisk.analysis_engine.models import (
    UNLABELED_NODE_LABEL,
    AnnotatedEdge,
    NodeGroup,
    RiskLevel,
    TransactionEdge,
    TransactionGraph,
    TransactionNode,
    max_risk_level,
    timestamp_seconds,
)
from backend_chainrisk.core.exceptions import InvalidInputError


@pytest.mark.parametrize("value", [-1.0, math.nan, math.inf, "10"])
def test_edge_rejects_bad_values(value):
    """Negative, NaN, infinite and string values are rejected."""
    with pytest.raises(InvalidInputError):
        TransactionEdge(WALLET_A, WALLET_B, value, T0)


@pytest.mark.parametrize("address", ["", "   ", "Wallet A", None])
def test_edge_rejects_bad_addresses(address):
    """Empty, whitespace and non-string addresses are rejected."""
    with pytest.raises(InvalidInputError):
        TransactionEdge(address, WALLET_B, 1.0, T0)


def test_edge_rejects_non_datetime_timestamp():
    """Timestamps must be datetimes."""
    with pytest.raises(InvalidInputError):
        TransactionEdge(WALLET_A, WALLET_B, 1.0, "2024-03-01")


def test_edge_helpers():
    """edge_id falls back to source+target; counterparty sees the other side."""
    e = edge(WALLET_A, WALLET_B, 1.0)
    assert e.edge_id == WALLET_A + WALLET_B
    assert edge(WALLET_A, WALLET_B, 1.0, tx_id="sig1").edge_id == "sig1"
    assert e.touches(WALLET_A) and e.touches(WALLET_B) and not e.touches(WALLET_C)
    assert e.counterparty(WALLET_A) == WALLET_B
    assert e.counterparty(WALLET_B) == WALLET_A


def test_naive_timestamp_read_as_utc():
    """A naive datetime equals the same wall time in UTC."""
    naive = datetime(2024, 3, 1, 12, 0)
    assert timestamp_seconds(naive) == timestamp_seconds(T0)


def test_edge_round_trip():
    """Plain and annotated edges survive to_dict/from_dict."""
    e = edge(WALLET_A, WALLET_B, 2.5, 3, tx_id="sig", tx_type="swap", description="dex swap", hops=2)
    assert TransactionEdge.from_dict(e.to_dict()) == e
    annotated = AnnotatedEdge.annotate(e, is_critical=True, is_unusual=False)
    back = TransactionEdge.from_dict(annotated.to_dict())
    assert isinstance(back, AnnotatedEdge)
    assert back == annotated


def test_node_defaults_and_alias():
    """Missing label means Unknown Wallet; "value" is accepted for aggregate_value."""
    node = TransactionNode.from_dict({"id": WALLET_A, "value": 4.0})
    assert node.label == UNLABELED_NODE_LABEL
    assert node.group is NodeGroup.UNKNOWN
    assert node.aggregate_value == 4.0


def test_graph_from_edges_derives_nodes():
    """Nodes come out in first-appearance order with aggregate values."""
    graph = TransactionGraph.from_edges(
        [edge(WALLET_A, WALLET_B, 1.0), edge(WALLET_B, WALLET_C, 2.0)],
        labels={WALLET_B: ("Exchange", NodeGroup.EXCHANGE)},
    )
    assert [n.id for n in graph.nodes] == [WALLET_A, WALLET_B, WALLET_C]
    assert graph.node(WALLET_B).aggregate_value == 3.0
    assert graph.node(WALLET_B).group is NodeGroup.EXCHANGE


def test_graph_missing_reference_placeholder():
    """Edge endpoints absent from nodes are reported and get a placeholder."""
    graph = TransactionGraph(nodes=(TransactionNode(WALLET_A),), edges=(edge(WALLET_A, WALLET_B, 1.0),))
    assert graph.missing_references() == [WALLET_B]
    assert not graph.has_node(WALLET_B)
    assert graph.node(WALLET_B).label == UNLABELED_NODE_LABEL


def test_graph_round_trip_and_links_alias():
    """Graphs round-trip; "links" is accepted in place of "edges"."""
    graph = TransactionGraph.from_edges([edge(WALLET_A, WALLET_B, 1.0), edge(WALLET_B, WALLET_C, 2.0, 5)])
    data = graph.to_dict()
    assert TransactionGraph.from_dict(data) == graph
    aliased = {"nodes": data["nodes"], "links": data["edges"]}
    assert TransactionGraph.from_dict(aliased) == graph


def test_max_risk_level():
    """UNKNOWN ranks below LOW; no levels gives UNKNOWN."""
    assert max_risk_level(RiskLevel.LOW, RiskLevel.HIGH, RiskLevel.MEDIUM) is RiskLevel.HIGH
    assert max_risk_level(RiskLevel.UNKNOWN, RiskLevel.LOW) is RiskLevel.LOW
    assert max_risk_level() is RiskLevel.UNKNOWN
