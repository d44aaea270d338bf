"""
Funding source analysis: who sent value into a wallet, and how much of it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from backend_chainrisk.analysis_engine.models import NodeGroup, TransactionEdge, TransactionGraph
from backend_chainrisk.chainrisk_logging import get_logger, short_address
from backend_chainrisk.core.validation import require_key, require_mapping, validate_address

logger = get_logger(__name__)


@dataclass(frozen=True)
class FundingSource:
    address: str
    label: str
    amount: float
    percentage: float
    transactions: tuple[TransactionEdge, ...]
    is_high_risk: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "label": self.label,
            "amount": self.amount,
            "percentage": self.percentage,
            "transactions": [t.to_dict() for t in self.transactions],
            "is_high_risk": self.is_high_risk,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "FundingSource":
        data = require_mapping("funding_source", data)
        return cls(
            address=require_key(data, "address", "funding_source"),
            label=require_key(data, "label", "funding_source"),
            amount=float(require_key(data, "amount", "funding_source")),
            percentage=float(require_key(data, "percentage", "funding_source")),
            transactions=tuple(TransactionEdge.from_dict(t) for t in data.get("transactions", [])),
            is_high_risk=bool(data.get("is_high_risk", False)),
        )


@dataclass(frozen=True)
class FundingReport:
    sources: tuple[FundingSource, ...] = ()
    total_incoming: float = 0.0

    @property
    def largest_source(self) -> FundingSource | None:
        return self.sources[0] if self.sources else None

    def to_dict(self) -> dict[str, Any]:
        largest = self.largest_source
        return {
            "sources": [s.to_dict() for s in self.sources],
            "total_incoming": self.total_incoming,
            "largest_source": largest.to_dict() if largest else None,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "FundingReport":
        data = require_mapping("funding_report", data)
        return cls(
            sources=tuple(FundingSource.from_dict(s) for s in data.get("sources", [])),
            total_incoming=float(data.get("total_incoming", 0.0)),
        )


def analyze_funding_sources(graph: TransactionGraph, address: str) -> FundingReport:
    """
    Aggregate incoming edges of address by source, ranked by amount.

    Ties keep first-appearance order. A source is high risk when its node is
    in the mixer group. No incoming edges gives an empty report; a zero total
    gives 0% shares.
    """
    validate_address("address", address)
    totals: dict[str, float] = {}
    txs: dict[str, list[TransactionEdge]] = {}
    total_incoming = 0.0
    for edge in graph.edges:
        if edge.target != address:
            continue
        total_incoming += edge.value
        totals[edge.source] = totals.get(edge.source, 0.0) + edge.value
        txs.setdefault(edge.source, []).append(edge)

    if not totals:
        return FundingReport()

    sources = []
    for source, amount in totals.items():
        node = graph.node(source)
        sources.append(
            FundingSource(
                address=source,
                label=node.label,
                amount=amount,
                percentage=amount * 100 / total_incoming if total_incoming > 0 else 0.0,
                transactions=tuple(txs[source]),
                is_high_risk=node.group is NodeGroup.MIXER,
            )
        )
    sources.sort(key=lambda s: s.amount, reverse=True)
    logger.debug(
        "funding_sources_analyzed",
        wallet=short_address(address),
        source_count=len(sources),
        total_incoming=total_incoming,
        high_risk_sources=sum(1 for s in sources if s.is_high_risk),
    )
    return FundingReport(sources=tuple(sources), total_incoming=total_incoming)
