"""
Tests for the scored suspicious-pattern library.
"""

from __future__ import annotations

import json

import pytest
from conftest import edge

from backend_chainrisk.analysis_engine.anomaly import AnomalySeverity
from backend_chainrisk.analysis_engine.transaction_patterns import (
    PatternAnalysis,
    PatternCategory,
    PatternGroup,
    PatternKind,
    PatternResult,
    analyze_transaction_patterns,
    detect_activity_bursts,
    detect_activity_spikes,
    detect_automated_intervals,
    detect_circular_flows,
    detect_daily_smurfing,
    detect_fan_outs,
    detect_funnels,
    detect_layering_paths,
    detect_periodic,
    detect_rapid_succession,
    detect_repeating_amounts,
    detect_round_amounts,
    detect_splitting,
    detect_structured_amounts,
    detect_unusual_hours,
    detect_wash_trading,
    is_round_amount,
)
from backend_chainrisk.core.exceptions import InvalidInputError

WALLET = "W"


def _seconds(*offsets: float) -> list:
    return [edge("A1", WALLET, 1.0, s / 60, tx_id=f"t{i}") for i, s in enumerate(offsets)]


def _amounts(*values: float) -> list:
    return [edge("A1", WALLET, v, i * 60, tx_id=f"t{i}") for i, v in enumerate(values)]


def test_rapid_succession_run():
    """Four transfers inside 30 seconds form one medium run; a late one is ignored."""
    found = detect_rapid_succession(_seconds(0, 10, 20, 25, 300))
    assert len(found) == 1
    assert found[0].transaction_ids == ("t0", "t1", "t2", "t3")
    assert found[0].severity is AnomalySeverity.MEDIUM
    assert found[0].score == 40


def test_rapid_succession_long_run_is_high():
    """The 30 second window is inclusive; more than five transfers is high."""
    found = detect_rapid_succession(_seconds(0, 5, 10, 15, 20, 25, 30))
    assert len(found) == 1
    assert found[0].severity is AnomalySeverity.HIGH
    assert found[0].score == 70


def test_periodic():
    """Hourly transfers are periodic; uneven gaps or a zero mean gap are not."""
    hourly = [edge("A1", WALLET, 1.0, 60 * i) for i in range(6)]
    found = detect_periodic(hourly)
    assert found[0].kind is PatternKind.PERIODIC
    assert found[0].score == 100
    assert "~60 minutes" in found[0].description
    uneven = [edge("A1", WALLET, 1.0, m) for m in (0, 10, 70, 80, 140, 150)]
    assert detect_periodic(uneven) == []
    assert detect_periodic([edge("A1", WALLET, 1.0, 0) for _ in range(6)]) == []


def test_unusual_hours_boundaries():
    """01:00-05:59 UTC counts; 06:00 does not; three hits and 40% are required."""
    # T0 is 12:00 UTC, so +840 minutes is 02:00 the next day
    minutes = [0, 10, 840, 1079, 1080]
    edges = [edge("A1", WALLET, 1.0, m, tx_id=f"t{m}") for m in minutes]
    assert detect_unusual_hours(edges) == []
    edges.append(edge("A1", WALLET, 1.0, 845, tx_id="t845"))
    found = detect_unusual_hours(edges)
    assert found[0].transaction_ids == ("t840", "t845", "t1079")
    assert found[0].severity is AnomalySeverity.MEDIUM
    assert found[0].score == 50


def test_unusual_hours_high_ratio():
    """More than 70% at unusual hours is high severity."""
    edges = [edge("A1", WALLET, 1.0, m) for m in (0, 840, 850, 860, 870)]
    found = detect_unusual_hours(edges)
    assert found[0].severity is AnomalySeverity.HIGH
    assert found[0].score == pytest.approx(80)


def test_activity_burst_day():
    """One busy day among quiet ones is a burst."""
    edges = [edge("A1", WALLET, 1.0, day * 1440) for day in range(9)]
    edges += [edge("A1", WALLET, 1.0, 9 * 1440 + i) for i in range(10)]
    found = detect_activity_bursts(edges)
    assert len(found) == 1
    assert found[0].metadata["burst_days"] == ["2024-03-10"]
    assert len(found[0].transaction_ids) == 10
    assert found[0].score == 60
    assert detect_activity_bursts(edges[:9]) == []


def test_round_amount_rule():
    """Whole numbers and tenths / hundredths of round numbers are round."""
    assert is_round_amount(3.0)
    assert is_round_amount(0.5)
    assert is_round_amount(0.05)
    assert is_round_amount(2.0005)
    assert not is_round_amount(2.37)


def test_round_amounts():
    """Three round amounts out of five is a medium pattern."""
    found = detect_round_amounts(_amounts(10, 0.5, 3.0, 2.37, 7.77))
    assert found[0].transaction_ids == ("t0", "t1", "t2")
    assert found[0].severity is AnomalySeverity.MEDIUM
    assert found[0].score == 55
    assert detect_round_amounts(_amounts(10, 2.37, 7.77)) == []


def test_structured_amounts():
    """Amounts within 5% below a reporting threshold are structured."""
    found = detect_structured_amounts(_amounts(990, 2900, 4800, 1000, 940))
    assert found[0].transaction_ids == ("t0", "t1", "t2")
    assert found[0].score == 90
    assert detect_structured_amounts(_amounts(990, 1000, 940)) == []


def test_repeating_amounts():
    """The most repeated amount is reported."""
    found = detect_repeating_amounts(_amounts(2.5, 1.0, 2.5, 1.0, 1.0, 2.5, 1.0, 7))
    assert found[0].metadata["amount"] == 1.0
    assert found[0].metadata["count"] == 4
    assert found[0].severity is AnomalySeverity.MEDIUM
    assert found[0].score == 60


def test_splitting():
    """A large transfer split into smaller ones within a day is high severity."""
    edges = [
        edge(WALLET, "B1", 100.0, 0, tx_id="big"),
        edge(WALLET, "B2", 30.0, 60, tx_id="p1"),
        edge(WALLET, "B3", 30.0, 120, tx_id="p2"),
        edge(WALLET, "B4", 35.0, 180, tx_id="p3"),
        edge(WALLET, "B5", 40.0, 1500, tx_id="late"),
    ]
    found = detect_splitting(edges)
    assert len(found) == 1
    assert found[0].transaction_ids == ("big", "p1", "p2", "p3")
    assert found[0].severity is AnomalySeverity.HIGH
    assert found[0].score == 76
    assert found[0].metadata["ratio"] == pytest.approx(0.95)


def test_splitting_needs_matching_sum():
    """Parts summing far below the large transfer are not a split."""
    edges = [edge(WALLET, "B1", 100.0, 0)] + [edge(WALLET, "B2", 10.0, 60 + i) for i in range(5)]
    assert detect_splitting(edges) == []


def test_circular_flow_through_wallet():
    """W -> A -> B -> W is a circular flow; ping-pong is not."""
    edges = [edge(WALLET, "A", 1.0, 0), edge("A", "B", 1.0, 1), edge("B", WALLET, 1.0, 2)]
    found = detect_circular_flows(edges, WALLET)
    assert len(found) == 1
    assert found[0].metadata["path"] == [WALLET, "A", "B", WALLET]
    assert found[0].score == 90
    ping_pong = [edge(WALLET, "A", 1.0, 0), edge("A", WALLET, 1.0, 1), edge(WALLET, "A", 1.0, 2)]
    assert detect_circular_flows(ping_pong, WALLET) == []


def test_layering_path():
    """A chain of four addresses ending at a sink is layering; three is not."""
    edges = [edge(WALLET, "A", 1.0, 0), edge("A", "B", 1.0, 1), edge("B", "C", 1.0, 2)]
    found = detect_layering_paths(edges, WALLET)
    assert len(found) == 1
    assert found[0].metadata["hop_count"] == 4
    assert found[0].severity is AnomalySeverity.MEDIUM
    assert found[0].score == 80
    assert detect_layering_paths(edges[:2], WALLET) == []


def test_funnel_within_a_week():
    """Three transfers into one address within 7 days form a funnel."""
    edges = [edge(f"S{i}", WALLET, 2.0, i * 60) for i in range(3)]
    found = detect_funnels(edges)
    assert found[0].metadata["destination"] == WALLET
    assert found[0].metadata["total_amount"] == 6.0
    assert found[0].score == 65
    spread = [edge(f"S{i}", WALLET, 2.0, i * 4 * 1440) for i in range(3)]
    assert detect_funnels(spread) == []


def test_fan_out_needs_distinct_destinations():
    """Three distinct destinations within a day fan out; repeats to one do not."""
    edges = [edge(WALLET, t, 1.0, i) for i, t in enumerate(("A", "B", "C"))]
    found = detect_fan_outs(edges)
    assert found[0].metadata["destination_count"] == 3
    assert found[0].score == 65
    assert detect_fan_outs([edge(WALLET, "A", 1.0, i) for i in range(3)]) == []


def test_wash_trading():
    """Balanced back-and-forth with one counterparty is wash trading."""
    edges = [
        edge(WALLET, "A", 10.0, 0, tx_id="o1"),
        edge("A", WALLET, 9.0, 1, tx_id="i1"),
        edge(WALLET, "A", 10.0, 2, tx_id="o2"),
        edge("A", WALLET, 10.0, 3, tx_id="i2"),
    ]
    found = detect_wash_trading(edges, WALLET)
    assert len(found) == 1
    assert found[0].metadata["cycle_count"] == 2
    assert found[0].transaction_ids == ("o1", "i1", "o2", "i2")
    assert found[0].score == 80
    lopsided = edges[:3] + [edge("A", WALLET, 1.0, 3)]
    assert detect_wash_trading(lopsided, WALLET) == []


def test_daily_smurfing_outgoing_only():
    """Five similar small outgoing transfers in a day are smurfing; incoming are ignored."""
    outgoing = [edge(WALLET, f"D{i}", v, i) for i, v in enumerate((9, 10, 11, 10, 10))]
    found = detect_daily_smurfing(outgoing, WALLET)
    assert found[0].metadata["day"] == "2024-03-01"
    assert found[0].score == 75
    incoming = [edge(f"D{i}", WALLET, 10.0, i) for i in range(5)]
    assert detect_daily_smurfing(incoming, WALLET) == []
    large = [edge(WALLET, f"D{i}", 150.0, i) for i in range(5)]
    assert detect_daily_smurfing(large, WALLET) == []


def test_automated_intervals():
    """Identical gaps between transfers look automated; same-instant transfers do not."""
    hourly = [edge("A1", WALLET, 1.0, 60 * i) for i in range(6)]
    found = detect_automated_intervals(hourly)
    assert found[0].metadata["interval_seconds"] == 3600
    assert found[0].metadata["interval_count"] == 5
    assert found[0].score == 75
    assert detect_automated_intervals([edge("A1", WALLET, 1.0, 0) for _ in range(6)]) == []


def test_activity_spike_hour():
    """One hour far above the hourly mean is a spike."""
    edges = [edge("A1", WALLET, 1.0, 60 * h) for h in range(20)]
    edges += [edge("A1", WALLET, 1.0, 1500 + i) for i in range(10)]
    found = detect_activity_spikes(edges)
    assert len(found) == 1
    assert found[0].metadata["spike_hours"] == ["2024-03-02T13"]
    assert found[0].score == 70


def test_group_summary():
    """Group risk score is the mean; affected transactions are distinct ids."""
    a = PatternResult(PatternKind.FUNNEL, "a", "", AnomalySeverity.HIGH, 60, ("t1", "t2"))
    b = PatternResult(PatternKind.FAN_OUT, "b", "", AnomalySeverity.MEDIUM, 80, ("t2", "t3"))
    group = PatternGroup(PatternCategory.FLOW_BASED, (a, b))
    assert group.risk_score == 70
    assert group.affected_transactions == 3
    assert group.high_severity_count == 1
    assert PatternGroup(PatternCategory.BEHAVIORAL).risk_score == 0


def test_analysis_groups_in_category_order():
    """Every category is present and ordered even with too few transactions."""
    analysis = analyze_transaction_patterns([edge("A1", WALLET, 1.0)], WALLET)
    assert [g.category for g in analysis.groups] == [
        PatternCategory.TIME_BASED,
        PatternCategory.AMOUNT_BASED,
        PatternCategory.FLOW_BASED,
        PatternCategory.BEHAVIORAL,
    ]
    assert analysis.patterns == []


def test_analysis_finds_patterns_and_round_trips():
    """A wash-trading wallet is reported under behavioral and survives to_dict/from_dict."""
    edges = []
    for i in range(3):
        edges.append(edge(WALLET, "A", 10.0, 120 * i, tx_id=f"o{i}"))
        edges.append(edge("A", WALLET, 10.0, 120 * i + 60, tx_id=f"i{i}"))
    analysis = analyze_transaction_patterns(edges, WALLET)
    assert PatternKind.WASH_TRADING in analysis.kinds()
    assert analysis.group(PatternCategory.BEHAVIORAL).pattern_count >= 1
    payload = json.loads(json.dumps(analysis.to_dict()))
    assert PatternAnalysis.from_dict(payload) == analysis


def test_invalid_address_rejected():
    """The focus address must be a valid address."""
    with pytest.raises(InvalidInputError):
        analyze_transaction_patterns([], "")
