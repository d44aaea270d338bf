"""
Tests for the immutable graph index, hop counting and flow summary.
"""

from __future__ import annotations

from conftest import WALLET_A, WALLET_B, WALLET_C, edge

from backend_chainrisk.analysis_engine.graph import (
    FlowSummary,
    build_graph_index,
    count_hops,
    summarize_flow,
)
from backend_chainrisk.analysis_engine.models import TransactionGraph, TransactionNode


def test_index_dedupes_successors():
    """Repeated edges add one successor; order is first seen."""
    index = build_graph_index(
        [
            edge(WALLET_A, WALLET_B, 1.0),
            edge(WALLET_A, WALLET_C, 1.0),
            edge(WALLET_A, WALLET_B, 2.0),
        ]
    )
    assert index.successors_of(WALLET_A) == (WALLET_B, WALLET_C)
    assert index.successors_of(WALLET_C) == ()
    assert index.successors_of("Nobody") == ()
    assert len(index) == 3


def test_index_sources_in_first_seen_order():
    """Sources follow first-seen edge order."""
    index = build_graph_index([edge(WALLET_B, WALLET_C, 1.0), edge(WALLET_A, WALLET_B, 1.0)])
    assert [index.addresses[i] for i in index.sources_in_order] == [WALLET_B, WALLET_A]


def test_index_reports_missing_references():
    """Addresses absent from the node list are recorded, not fatal."""
    graph = TransactionGraph(nodes=(TransactionNode(WALLET_A),), edges=(edge(WALLET_A, WALLET_B, 1.0),))
    assert build_graph_index(graph).missing_references == (WALLET_B,)


def test_count_hops_chain():
    """A -> B -> C gives 2 hops from A, 1 from B."""
    e1, e2 = edge(WALLET_A, WALLET_B, 1.0), edge(WALLET_B, WALLET_C, 1.0)
    graph = TransactionGraph.from_edges([e1, e2])
    assert count_hops(e1, graph) == 2
    assert count_hops(e2, graph) == 1


def test_count_hops_cycle_terminates(cycle_graph):
    """Cycles do not loop forever."""
    assert count_hops(cycle_graph.edges[0], cycle_graph) == 2


def test_summarize_flow():
    """Top-10% value threshold and most-connected addresses."""
    edges = [edge(WALLET_A, WALLET_B, v, i) for i, v in enumerate([1, 2, 3, 4, 5, 6, 7, 8, 9, 100])]
    edges.append(edge(WALLET_C, WALLET_A, 50.0, 20))
    graph = TransactionGraph.from_edges(edges)
    flow = summarize_flow(graph)
    assert flow.edge_count == 11
    assert flow.node_count == 3
    assert flow.total_volume == 195.0
    # 11 edges: threshold is the value at index floor(1.1) = 1 -> 50
    assert [e.value for e in flow.high_value_edges] == [100.0, 50.0]
    assert flow.central_addresses[0].address == WALLET_A
    assert flow.central_addresses[0].degree == 11


def test_summarize_empty_and_round_trip():
    """Empty graphs summarize to zeros; summaries round-trip."""
    flow = summarize_flow(TransactionGraph())
    assert flow.edge_count == 0 and flow.high_value_edges == () and flow.central_addresses == ()
    full = summarize_flow(TransactionGraph.from_edges([edge(WALLET_A, WALLET_B, 2.0)]))
    assert FlowSummary.from_dict(full.to_dict()) == full
