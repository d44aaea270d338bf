"""
Tests for edge value statistics.
"""

from __future__ import annotations

import pytest
from conftest import WALLET_A, WALLET_B, edge

from backend_chainrisk.analysis_engine.graph_stats import (
    ValueStatistics,
    compute_value_statistics,
    edge_value_statistics,
)
from backend_chainrisk.core.exceptions import InvalidInputError


def test_empty_is_zero():
    """No values gives mean 0 and stddev 0."""
    assert compute_value_statistics([]) == ValueStatistics(0.0, 0.0)
    assert edge_value_statistics([]) == ValueStatistics(0.0, 0.0)


def test_population_stddev():
    """Population standard deviation, not sample."""
    stats = compute_value_statistics([2, 4, 4, 4, 5, 5, 7, 9])
    assert stats.mean == 5.0
    assert stats.stddev == 2.0
    assert stats.unusual_threshold == 9.0


def test_single_value():
    """One value has zero spread."""
    stats = edge_value_statistics([edge(WALLET_A, WALLET_B, 3.0)])
    assert stats.mean == 3.0
    assert stats.stddev == 0.0


def test_negative_value_rejected():
    """Negative values raise InvalidInputError."""
    with pytest.raises(InvalidInputError):
        compute_value_statistics([1.0, -2.0])


def test_round_trip():
    """to_dict/from_dict reproduce the statistics."""
    stats = compute_value_statistics([1.0, 2.0, 6.0])
    assert ValueStatistics.from_dict(stats.to_dict()) == stats
