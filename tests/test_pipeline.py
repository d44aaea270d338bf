"""
End-to-end tests for run_graph_analysis.
"""

from __future__ import annotations

import json

import pytest
from conftest import MIXER_WALLET, T0, WALLET_A, at, edge

from backend_chainrisk.analysis_engine.entities import EntityCategory, LabeledEntity
from backend_chainrisk.analysis_engine.models import RiskLevel, TransactionGraph
from backend_chainrisk.analysis_engine.pipeline import context_factors, run_graph_analysis
from backend_chainrisk.analysis_engine.risk_prediction import FACTOR_CIRCULAR, FACTOR_VELOCITY
from backend_chainrisk.analysis_engine.scorer import score_wallet
from backend_chainrisk.analysis_engine.transaction_clusters import ClusterType
from backend_chainrisk.analysis_engine.transaction_patterns import PatternKind
from backend_chainrisk.config import EngineSettings
from backend_chainrisk.core.exceptions import InvalidInputError

STRICT_ADDRESS = "9QCfNuQuxct1Xk9ytFYgxc5fThmTzL4pHQnSjjrVUrka"
OTHER_STRICT_ADDRESS = "So11111111111111111111111111111111111111112"


def test_scenario_end_to_end(scenario_graph):
    """X->W, Y->W, W->Z: one critical edge, W not high risk, one temporal cluster of all three."""
    result = run_graph_analysis(scenario_graph, wallet="W", settings=EngineSettings())
    assert [e.is_critical for e in result.critical_paths.edges] == [False, False, True]
    w = next(n for n in result.critical_paths.nodes if n.id == "W")
    assert w.risk_count == 1 and not w.is_high_risk
    temporal = result.clusters.of_type(ClusterType.TEMPORAL)
    assert len(temporal) == 1 and temporal[0].transaction_count == 3

    wallet = result.wallet
    assert wallet.score.sample_size == 3
    assert wallet.funding.total_incoming == 3.0
    assert wallet.funding.largest_source.address == "X"
    assert wallet.patterns is not None
    assert wallet.transaction_patterns.address == "W"
    assert wallet.prediction is not None
    assert wallet.outlook is not None
    assert result.flow.edge_count == 3


def test_wash_trading_wallet_gets_pattern_library_hits():
    """The scored pattern library runs over the focus wallet's transactions."""
    edges = []
    for i in range(3):
        edges.append(edge("W", "A1", 10.0, 120 * i))
        edges.append(edge("A1", "W", 10.0, 120 * i + 60))
    result = run_graph_analysis(TransactionGraph.from_edges(edges), wallet="W", settings=EngineSettings())
    assert PatternKind.WASH_TRADING in result.wallet.transaction_patterns.kinds()
    assert result.wallet.to_dict()["transaction_patterns"]["address"] == "W"


def test_no_wallet_no_wallet_analysis(cycle_graph):
    """Without a wallet only the graph-level stages run."""
    result = run_graph_analysis(cycle_graph, settings=EngineSettings())
    assert result.wallet is None
    assert result.entity_clusters is None
    assert len(result.clusters.of_type(ClusterType.CIRCULAR_PATTERN)) == 1


def test_circular_context_factor_feeds_prediction(cycle_graph):
    """A wallet on a cycle gets the circular factor and an increasing prediction."""
    result = run_graph_analysis(cycle_graph, wallet=WALLET_A, settings=EngineSettings())
    assert "Circular transaction patterns likely to continue" in result.wallet.prediction.contributing_factors
    assert result.wallet.prediction.predicted_score >= result.wallet.score.score


def test_context_factors_velocity():
    """Velocity factor carries the velocity score and 20% of it as impact."""
    history = [edge("A1", "W", 1.0, i) for i in range(5)]
    graph = TransactionGraph.from_edges(history)
    score = score_wallet("W", history, computed_at=T0)
    result = run_graph_analysis(graph, settings=EngineSettings())
    factors = context_factors("W", score, result.clusters, None)
    velocity = next(f for f in factors if f.name == FACTOR_VELOCITY)
    assert velocity.score == 50.0
    assert velocity.impact == pytest.approx(10.0)
    assert all(f.name != FACTOR_CIRCULAR for f in factors)


def test_unknown_wallet_has_unknown_level(scenario_graph):
    """A wallet absent from the graph scores 0 / unknown and has no outlook."""
    result = run_graph_analysis(scenario_graph, wallet="Nobody", settings=EngineSettings())
    assert result.wallet.score.level is RiskLevel.UNKNOWN
    assert result.wallet.outlook is None
    assert result.wallet.funding.sources == ()


def test_directory_drives_wallet_score(directory):
    """Mixer counterparties from the directory raise the wallet score."""
    graph = TransactionGraph.from_edges([edge(MIXER_WALLET, "W", 5.0, 0), edge("W", "B1", 1.0, 60)])
    plain = run_graph_analysis(graph, wallet="W", settings=EngineSettings())
    labelled = run_graph_analysis(graph, wallet="W", directory=directory, settings=EngineSettings())
    assert labelled.wallet.score.score > plain.wallet.score.score
    assert labelled.wallet.score.factor("Mixer Connections") is not None


def test_entities_are_clustered_and_used_as_directory():
    """Entity labels yield entity clusters and classify counterparties."""
    graph = TransactionGraph.from_edges([edge("Mix1", "W", 5.0, 0)])
    entities = [LabeledEntity("Mix1", EntityCategory.MIXER, 90), LabeledEntity("Ex1", EntityCategory.EXCHANGE)]
    result = run_graph_analysis(graph, wallet="W", entities=entities, settings=EngineSettings(max_entity_clusters=1))
    assert len(result.entity_clusters) == 1
    assert result.wallet.score.components["mixer_interactions"] == 1


def test_strict_addresses():
    """Strict mode rejects non-base58 addresses and accepts real ones."""
    strict = EngineSettings(strict_addresses=True)
    with pytest.raises(InvalidInputError):
        run_graph_analysis(TransactionGraph.from_edges([edge(WALLET_A, "B1", 1.0)]), settings=strict)
    ok = TransactionGraph.from_edges([edge(STRICT_ADDRESS, OTHER_STRICT_ADDRESS, 1.0)])
    assert run_graph_analysis(ok, wallet=STRICT_ADDRESS, settings=strict).wallet is not None


def test_settings_from_environment(monkeypatch, scenario_graph):
    """Without explicit settings the environment threshold applies."""
    monkeypatch.setenv("CHAINRISK_CRITICAL_THRESHOLD", "100")
    result = run_graph_analysis(scenario_graph)
    assert result.critical_paths.critical_edges == ()


def test_optional_stage_failure_is_logged_not_raised(monkeypatch, scenario_graph):
    """A failing optional stage leaves its result as None."""
    import backend_chainrisk.analysis_engine.pipeline as pipeline

    def boom(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(pipeline, "summarize_flow", boom)
    result = run_graph_analysis(scenario_graph, settings=EngineSettings())
    assert result.flow is None


def test_result_is_json_serializable_and_idempotent(scenario_graph):
    """to_dict is JSON-safe and stable across runs with a fixed reference time."""
    first = run_graph_analysis(scenario_graph, wallet="W", settings=EngineSettings(), now=at(minutes=10))
    second = run_graph_analysis(scenario_graph, wallet="W", settings=EngineSettings(), now=at(minutes=10))
    assert json.dumps(first.to_dict(), sort_keys=True) == json.dumps(second.to_dict(), sort_keys=True)


def test_empty_graph():
    """An empty graph analyzes to empty results."""
    result = run_graph_analysis(TransactionGraph(), wallet="W", settings=EngineSettings())
    assert result.clusters.clusters == ()
    assert result.critical_paths.edges == ()
    assert result.wallet.score.level is RiskLevel.UNKNOWN
