"""
Analysis engine package: transaction graph risk analysis and clustering.

Consumes a host-supplied transaction graph (and optional known-entity
labels), flags critical paths, detects transaction clusters, scores wallets
and transactions, and produces explainable risk results.
"""

from backend_chainrisk.analysis_engine.models import (
    AnnotatedEdge,
    NodeGroup,
    RiskLevel,
    TransactionEdge,
    TransactionGraph,
    TransactionNode,
)
from backend_chainrisk.analysis_engine.entities import (
    DirectoryEntry,
    EntityCategory,
    KnownEntityDirectory,
    LabeledEntity,
    directory_from_entities,
)
from backend_chainrisk.analysis_engine.graph_stats import ValueStatistics, compute_value_statistics
from backend_chainrisk.analysis_engine.graph import FlowSummary, build_graph_index, count_hops, summarize_flow
from backend_chainrisk.analysis_engine.critical_path import CriticalPathResult, identify_critical_paths
from backend_chainrisk.analysis_engine.transaction_clusters import (
    Cluster,
    ClusterReport,
    ClusterRiskPolicy,
    ClusterType,
    detect_circular_clusters,
    detect_clusters,
    detect_temporal_clusters,
    detect_value_clusters,
)
from backend_chainrisk.analysis_engine.funding import FundingReport, FundingSource, analyze_funding_sources
from backend_chainrisk.analysis_engine.scorer import (
    RiskFactor,
    RiskScore,
    SubjectKind,
    score_transaction,
    score_wallet,
    summarize_risk_metrics,
)
from backend_chainrisk.analysis_engine.patterns import match_known_pattern
from backend_chainrisk.analysis_engine.anomaly import (
    AnomalyReport,
    PatternReport,
    classify_transaction_patterns,
    detect_anomalies,
)
from backend_chainrisk.analysis_engine.transaction_patterns import (
    PatternAnalysis,
    PatternCategory,
    PatternKind,
    PatternResult,
    analyze_transaction_patterns,
)
from backend_chainrisk.analysis_engine.risk_prediction import (
    RiskOutlook,
    RiskPrediction,
    TrendDirection,
    forecast_from_anomalies,
    predict_future_risk,
)
from backend_chainrisk.analysis_engine.entity_clusters import EntityCluster, cluster_entities
from backend_chainrisk.analysis_engine.pipeline import GraphAnalysisResult, WalletAnalysis, run_graph_analysis

__all__ = [
    "AnnotatedEdge",
    "NodeGroup",
    "RiskLevel",
    "TransactionEdge",
    "TransactionGraph",
    "TransactionNode",
    "DirectoryEntry",
    "EntityCategory",
    "KnownEntityDirectory",
    "LabeledEntity",
    "directory_from_entities",
    "ValueStatistics",
    "compute_value_statistics",
    "FlowSummary",
    "build_graph_index",
    "count_hops",
    "summarize_flow",
    "CriticalPathResult",
    "identify_critical_paths",
    "Cluster",
    "ClusterReport",
    "ClusterRiskPolicy",
    "ClusterType",
    "detect_circular_clusters",
    "detect_clusters",
    "detect_temporal_clusters",
    "detect_value_clusters",
    "FundingReport",
    "FundingSource",
    "analyze_funding_sources",
    "RiskFactor",
    "RiskScore",
    "SubjectKind",
    "score_transaction",
    "score_wallet",
    "summarize_risk_metrics",
    "match_known_pattern",
    "AnomalyReport",
    "PatternReport",
    "classify_transaction_patterns",
    "detect_anomalies",
    "PatternAnalysis",
    "PatternCategory",
    "PatternKind",
    "PatternResult",
    "analyze_transaction_patterns",
    "RiskOutlook",
    "RiskPrediction",
    "TrendDirection",
    "forecast_from_anomalies",
    "predict_future_risk",
    "EntityCluster",
    "cluster_entities",
    "GraphAnalysisResult",
    "WalletAnalysis",
    "run_graph_analysis",
]
