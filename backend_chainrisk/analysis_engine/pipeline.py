"""
Graph analysis pipeline: run every analyzer over one transaction graph.

Order: critical paths -> clusters -> flow summary, then (for a focus wallet)
funding sources, wallet score, anomalies, pattern classification, the scored
pattern library, prediction and outlook.
Entity clusters are built when entity labels are supplied.

Optional stages never take the whole run down: a failure is logged and the
stage result is left as None. Invalid input always propagates.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, TypeVar

from backend_chainrisk.analysis_engine.anomaly import (
    AnomalyReport,
    PatternReport,
    classify_transaction_patterns,
    detect_anomalies,
)
from backend_chainrisk.analysis_engine.critical_path import CriticalPathResult, identify_critical_paths
from backend_chainrisk.analysis_engine.entities import (
    KnownEntityDirectory,
    LabeledEntity,
    directory_from_entities,
)
from backend_chainrisk.analysis_engine.entity_clusters import EntityCluster, cluster_entities
from backend_chainrisk.analysis_engine.funding import FundingReport, analyze_funding_sources
from backend_chainrisk.analysis_engine.graph import FlowSummary, summarize_flow
from backend_chainrisk.analysis_engine.models import TransactionGraph
from backend_chainrisk.analysis_engine.risk_prediction import (
    FACTOR_ANOMALOUS,
    FACTOR_CIRCULAR,
    FACTOR_VELOCITY,
    RiskOutlook,
    RiskPrediction,
    forecast_from_anomalies,
    predict_future_risk,
)
from backend_chainrisk.analysis_engine.scorer import RiskFactor, RiskScore, score_wallet
from backend_chainrisk.analysis_engine.transaction_clusters import ClusterReport, ClusterType, detect_clusters
from backend_chainrisk.analysis_engine.transaction_patterns import PatternAnalysis, analyze_transaction_patterns
from backend_chainrisk.chainrisk_logging import bind_subject, get_logger
from backend_chainrisk.config.settings import EngineSettings, get_settings
from backend_chainrisk.core.exceptions import InvalidInputError
from backend_chainrisk.core.validation import validate_address

logger = get_logger(__name__)

T = TypeVar("T")

CIRCULAR_FACTOR_IMPACT = 15
ANOMALOUS_FACTOR_IMPACT = 20
VELOCITY_IMPACT_WEIGHT = 0.2


def _optional_stage(stage: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T | None:
    try:
        return fn(*args, **kwargs)
    except InvalidInputError:
        raise
    except Exception as e:
        logger.warning("analysis_stage_failed", stage=stage, error=str(e))
        return None


@dataclass(frozen=True)
class WalletAnalysis:
    address: str
    score: RiskScore
    funding: FundingReport | None = None
    anomalies: AnomalyReport | None = None
    patterns: PatternReport | None = None
    transaction_patterns: PatternAnalysis | None = None
    prediction: RiskPrediction | None = None
    outlook: RiskOutlook | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "score": self.score.to_dict(),
            "funding": self.funding.to_dict() if self.funding else None,
            "anomalies": self.anomalies.to_dict() if self.anomalies else None,
            "patterns": self.patterns.to_dict() if self.patterns else None,
            "transaction_patterns": self.transaction_patterns.to_dict() if self.transaction_patterns else None,
            "prediction": self.prediction.to_dict() if self.prediction else None,
            "outlook": self.outlook.to_dict() if self.outlook else None,
        }


@dataclass(frozen=True)
class GraphAnalysisResult:
    critical_paths: CriticalPathResult
    clusters: ClusterReport
    flow: FlowSummary | None = None
    wallet: WalletAnalysis | None = None
    entity_clusters: tuple[EntityCluster, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "critical_paths": self.critical_paths.to_dict(),
            "clusters": self.clusters.to_dict(),
            "flow": self.flow.to_dict() if self.flow else None,
            "wallet": self.wallet.to_dict() if self.wallet else None,
            "entity_clusters": (
                [c.to_dict() for c in self.entity_clusters] if self.entity_clusters is not None else None
            ),
        }


def _check_addresses(graph: TransactionGraph, strict: bool) -> None:
    if not strict:
        return
    for node in graph.nodes:
        validate_address("node.id", node.id, strict=True)
    for edge in graph.edges:
        validate_address("edge.source", edge.source, strict=True)
        validate_address("edge.target", edge.target, strict=True)


def context_factors(wallet: str, score: RiskScore, clusters: ClusterReport, anomalies: AnomalyReport | None) -> list[RiskFactor]:
    """Factors the predictor reacts to beyond the wallet's own score factors."""
    factors: list[RiskFactor] = []
    circular = [c for c in clusters.of_type(ClusterType.CIRCULAR_PATTERN) if c.contains_wallet(wallet)]
    if circular:
        factors.append(
            RiskFactor(
                FACTOR_CIRCULAR,
                f"Wallet takes part in {len(circular)} circular transaction patterns",
                CIRCULAR_FACTOR_IMPACT,
            )
        )
    if anomalies is not None and anomalies.is_anomalous:
        factors.append(
            RiskFactor(
                FACTOR_ANOMALOUS,
                f"{len(anomalies.anomalies)} anomalies detected in wallet activity",
                ANOMALOUS_FACTOR_IMPACT,
            )
        )
    if score.sample_size:
        velocity = float(score.components.get("velocity_score", 0.0))
        factors.append(
            RiskFactor(
                FACTOR_VELOCITY,
                f"{score.components.get('tx_per_day', 0.0):.2f} transactions per day",
                velocity * VELOCITY_IMPACT_WEIGHT,
                score=velocity,
            )
        )
    return factors


def _analyze_wallet(
    graph: TransactionGraph,
    wallet: str,
    clusters: ClusterReport,
    directory: KnownEntityDirectory | None,
    settings: EngineSettings,
    historical_average_per_day: float | None,
    now: datetime | None,
) -> WalletAnalysis:
    log = bind_subject(wallet)
    history = graph.edges_touching(wallet)
    funding = _optional_stage("funding_sources", analyze_funding_sources, graph, wallet)
    score = score_wallet(wallet, history, directory, as_of=now, computed_at=now)
    anomalies = _optional_stage("anomalies", detect_anomalies, history, historical_average_per_day)
    patterns = _optional_stage("patterns", classify_transaction_patterns, history)
    transaction_patterns = _optional_stage(
        "transaction_patterns", analyze_transaction_patterns, history, wallet
    )

    factors = list(score.factors) + context_factors(wallet, score, clusters, anomalies)
    prediction = _optional_stage(
        "risk_prediction",
        predict_future_risk,
        factors,
        [e.timestamp for e in history],
        current_score=score.score,
        horizon=timedelta(days=settings.prediction_horizon_days),
    )

    reference = now
    if reference is None and history:
        reference = max(history, key=lambda e: e.epoch_seconds).timestamp
    outlook = None
    if reference is not None:
        outlook = _optional_stage(
            "risk_outlook",
            forecast_from_anomalies,
            score,
            history,
            now=reference,
            historical_average_per_day=historical_average_per_day,
        )

    log.info(
        "wallet_analysis_complete",
        score=round(score.score, 2),
        level=score.level.value,
        tx_count=len(history),
        trend=prediction.trend_direction.value if prediction else None,
        suspicious_patterns=len(transaction_patterns.patterns) if transaction_patterns else None,
    )
    return WalletAnalysis(
        address=wallet,
        score=score,
        funding=funding,
        anomalies=anomalies,
        patterns=patterns,
        transaction_patterns=transaction_patterns,
        prediction=prediction,
        outlook=outlook,
    )


def run_graph_analysis(
    graph: TransactionGraph,
    *,
    wallet: str | None = None,
    directory: KnownEntityDirectory | None = None,
    entities: Iterable[LabeledEntity] | None = None,
    settings: EngineSettings | None = None,
    historical_average_per_day: float | None = None,
    now: datetime | None = None,
) -> GraphAnalysisResult:
    """
    Analyze graph with the given (or environment) settings.

    entities, when given, are clustered and also provide the directory if
    none is passed. now defaults to the wallet's latest transaction.
    """
    settings = settings or get_settings()
    _check_addresses(graph, settings.strict_addresses)
    if wallet is not None:
        validate_address("wallet", wallet, strict=settings.strict_addresses)
    entities = list(entities) if entities is not None else None
    if directory is None and entities:
        directory = directory_from_entities(entities)

    critical = identify_critical_paths(graph, settings.critical_threshold)
    clusters = detect_clusters(
        graph,
        critical_threshold=settings.critical_threshold,
        window=settings.temporal_window_seconds,
        similarity_threshold=settings.value_similarity_threshold,
        max_depth=settings.max_dfs_depth,
    )
    flow = _optional_stage("flow_summary", summarize_flow, graph)

    wallet_analysis = None
    if wallet is not None:
        wallet_analysis = _analyze_wallet(
            graph, wallet, clusters, directory, settings, historical_average_per_day, now
        )

    entity_clusters = None
    if entities is not None:
        built = _optional_stage("entity_clusters", cluster_entities, entities, settings.max_entity_clusters)
        entity_clusters = tuple(built) if built is not None else None

    logger.info(
        "graph_analysis_complete",
        node_count=len(graph.nodes),
        edge_count=len(graph.edges),
        critical_edges=len(critical.critical_edges),
        clusters=len(clusters.clusters),
        wallet_analyzed=wallet_analysis is not None,
    )
    return GraphAnalysisResult(
        critical_paths=critical,
        clusters=clusters,
        flow=flow,
        wallet=wallet_analysis,
        entity_clusters=entity_clusters,
    )
