"""
Tests for funding source analysis.
"""

from __future__ import annotations

import pytest
from conftest import edge

from backend_chainrisk.analysis_engine.funding import FundingReport, analyze_funding_sources
from backend_chainrisk.analysis_engine.models import NodeGroup, TransactionGraph
from backend_chainrisk.core.exceptions import InvalidInputError


def test_percentages_and_largest():
    """Incoming 10, 30, 60 to W: total 100, shares 60/30/10, largest 60."""
    graph = TransactionGraph.from_edges(
        [
            edge("S1", "W", 10.0, 0),
            edge("S2", "W", 30.0, 1),
            edge("S3", "W", 60.0, 2),
            edge("W", "Out", 500.0, 3),
        ]
    )
    report = analyze_funding_sources(graph, "W")
    assert report.total_incoming == 100.0
    assert [s.amount for s in report.sources] == [60.0, 30.0, 10.0]
    assert sorted(s.percentage for s in report.sources) == [10.0, 30.0, 60.0]
    assert report.largest_source.amount == 60.0
    assert report.largest_source.address == "S3"


def test_sources_aggregate_and_ties_keep_order():
    """Edges from one source add up; equal amounts keep first appearance."""
    graph = TransactionGraph.from_edges(
        [
            edge("S1", "W", 5.0, 0),
            edge("S2", "W", 10.0, 1),
            edge("S1", "W", 5.0, 2),
        ]
    )
    report = analyze_funding_sources(graph, "W")
    assert [s.address for s in report.sources] == ["S1", "S2"]
    assert len(report.sources[0].transactions) == 2


def test_mixer_source_is_high_risk():
    """A source in the mixer group is flagged high risk."""
    graph = TransactionGraph.from_edges(
        [edge("Mix", "W", 5.0)],
        labels={"Mix": ("Mixer", NodeGroup.MIXER)},
    )
    source = analyze_funding_sources(graph, "W").sources[0]
    assert source.is_high_risk
    assert source.label == "Mixer"


def test_no_incoming_and_zero_total():
    """No incoming edges is empty; a zero total gives 0% shares."""
    graph = TransactionGraph.from_edges([edge("W", "X", 1.0), edge("Y", "Z", 0.0)])
    assert analyze_funding_sources(graph, "W") == FundingReport()
    zero = analyze_funding_sources(TransactionGraph.from_edges([edge("Y", "W", 0.0)]), "W")
    assert zero.sources[0].percentage == 0.0
    assert FundingReport().largest_source is None


def test_invalid_address():
    """Empty addresses are rejected."""
    with pytest.raises(InvalidInputError):
        analyze_funding_sources(TransactionGraph(), "")


def test_round_trip():
    """FundingReport survives to_dict/from_dict."""
    graph = TransactionGraph.from_edges([edge("S1", "W", 10.0), edge("S2", "W", 30.0, 1)])
    report = analyze_funding_sources(graph, "W")
    assert FundingReport.from_dict(report.to_dict()) == report
