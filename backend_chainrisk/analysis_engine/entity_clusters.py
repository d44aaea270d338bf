"""
Entity clustering: group labeled entities into named clusters by category.

Categories with more than 5 members are split in two (Group A / Group B)
while there is room under max_clusters; if the count still exceeds the limit,
the two smallest clusters are merged repeatedly into mixed groups.
Deterministic: no randomness, stable ordering throughout.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from backend_chainrisk.analysis_engine.entities import (
    CATEGORY_PROFILES,
    EntityCategory,
    LabeledEntity,
    parse_category,
    parse_risk_level,
)
from backend_chainrisk.analysis_engine.models import RiskLevel, max_risk_level
from backend_chainrisk.chainrisk_logging import get_logger
from backend_chainrisk.core.exceptions import InvalidInputError
from backend_chainrisk.core.validation import require_key, require_mapping, validate_fraction

logger = get_logger(__name__)

DEFAULT_MAX_CLUSTERS = 10
SPLIT_MIN_MEMBERS = 6
SIMILARITY_GROUP_A = 0.875
SIMILARITY_GROUP_B = 0.85
SIMILARITY_SINGLE = 0.825
MERGE_SIMILARITY_PENALTY = 0.1
MERGED_PATTERNS_EACH = 2
HIGH_RISK_MEMBER_SCORE = 75
MEDIUM_RISK_MEMBER_SCORE = 50


@dataclass(frozen=True)
class EntityCluster:
    id: str
    name: str
    description: str
    member_addresses: frozenset[str]
    dominant_category: EntityCategory
    behavior_patterns: tuple[str, ...]
    similarity_score: float
    risk_level: RiskLevel

    def __post_init__(self) -> None:
        validate_fraction("similarity_score", self.similarity_score)

    @property
    def entity_count(self) -> int:
        return len(self.member_addresses)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "member_addresses": sorted(self.member_addresses),
            "entity_count": self.entity_count,
            "dominant_category": self.dominant_category.value,
            "behavior_patterns": list(self.behavior_patterns),
            "similarity_score": self.similarity_score,
            "risk_level": self.risk_level.value,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "EntityCluster":
        data = require_mapping("entity_cluster", data)
        return cls(
            id=require_key(data, "id", "entity_cluster"),
            name=require_key(data, "name", "entity_cluster"),
            description=data.get("description", ""),
            member_addresses=frozenset(require_key(data, "member_addresses", "entity_cluster")),
            dominant_category=parse_category(
                "entity_cluster.dominant_category", require_key(data, "dominant_category", "entity_cluster")
            ),
            behavior_patterns=tuple(data.get("behavior_patterns", [])),
            similarity_score=require_key(data, "similarity_score", "entity_cluster"),
            risk_level=parse_risk_level("entity_cluster.risk_level", require_key(data, "risk_level", "entity_cluster")),
        )


def cluster_risk_level(category: EntityCategory, members: Sequence[LabeledEntity]) -> RiskLevel:
    """High for mixer/scam or any member score > 75; medium for contract or any > 50; else low."""
    inherent = CATEGORY_PROFILES[category].inherent_risk
    scores = [m.risk_score or 0.0 for m in members]
    if inherent is RiskLevel.HIGH or any(s > HIGH_RISK_MEMBER_SCORE for s in scores):
        return RiskLevel.HIGH
    if inherent is RiskLevel.MEDIUM or any(s > MEDIUM_RISK_MEMBER_SCORE for s in scores):
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


class _ClusterIds:
    def __init__(self) -> None:
        self._next = 1

    def take(self) -> str:
        cid = f"cluster-{self._next}"
        self._next += 1
        return cid


def _category_cluster(
    ids: _ClusterIds,
    category: EntityCategory,
    members: Sequence[LabeledEntity],
    suffix: str,
    description: str,
    similarity: float,
) -> EntityCluster:
    profile = CATEGORY_PROFILES[category]
    name = f"{profile.display_name} Group"
    if suffix:
        name = f"{name} {suffix}"
    return EntityCluster(
        id=ids.take(),
        name=name,
        description=description,
        member_addresses=frozenset(m.address for m in members),
        dominant_category=category,
        behavior_patterns=profile.behavior_patterns,
        similarity_score=similarity,
        risk_level=cluster_risk_level(category, members),
    )


def _merge(ids: _ClusterIds, a: EntityCluster, b: EntityCluster) -> EntityCluster:
    dominant = a.dominant_category if a.entity_count > b.entity_count else b.dominant_category
    return EntityCluster(
        id=ids.take(),
        name=f"Mixed Group ({a.dominant_category.value}/{b.dominant_category.value})",
        description="A mixed cluster containing entities from different categories",
        member_addresses=a.member_addresses | b.member_addresses,
        dominant_category=dominant,
        behavior_patterns=a.behavior_patterns[:MERGED_PATTERNS_EACH] + b.behavior_patterns[:MERGED_PATTERNS_EACH],
        similarity_score=max(0.0, min(a.similarity_score, b.similarity_score) - MERGE_SIMILARITY_PENALTY),
        risk_level=max_risk_level(a.risk_level, b.risk_level),
    )


def cluster_entities(
    entities: Iterable[LabeledEntity],
    max_clusters: int = DEFAULT_MAX_CLUSTERS,
) -> list[EntityCluster]:
    """
    Group entities by category (first-appearance order) into at most max_clusters clusters.

    A category with > 5 members is bisected at floor(n/2) when fewer than
    max_clusters - 1 clusters exist so far. A repeated address keeps its last
    label, as in directory_from_entities.
    """
    if isinstance(max_clusters, bool) or not isinstance(max_clusters, int) or max_clusters < 1:
        raise InvalidInputError("max_clusters", max_clusters, "must be an integer >= 1")
    unique: dict[str, LabeledEntity] = {}
    for entity in entities:
        unique[entity.address] = entity
    by_category: dict[EntityCategory, list[LabeledEntity]] = {}
    for entity in unique.values():
        by_category.setdefault(entity.category, []).append(entity)
    if not by_category:
        return []

    ids = _ClusterIds()
    clusters: list[EntityCluster] = []
    for category, members in by_category.items():
        value = category.value
        if len(members) >= SPLIT_MIN_MEMBERS and len(clusters) < max_clusters - 1:
            mid = len(members) // 2
            clusters.append(
                _category_cluster(
                    ids,
                    category,
                    members[:mid],
                    "A",
                    f"A cluster of {value} entities with similar transaction patterns",
                    SIMILARITY_GROUP_A,
                )
            )
            clusters.append(
                _category_cluster(
                    ids,
                    category,
                    members[mid:],
                    "B",
                    f"Another cluster of {value} entities with different transaction patterns",
                    SIMILARITY_GROUP_B,
                )
            )
        else:
            clusters.append(
                _category_cluster(
                    ids,
                    category,
                    members,
                    "",
                    f"A cluster of {value} entities with similar transaction patterns",
                    SIMILARITY_SINGLE,
                )
            )

    merges = 0
    while len(clusters) > max_clusters:
        clusters.sort(key=lambda c: c.entity_count)
        a, b = clusters.pop(0), clusters.pop(0)
        clusters.append(_merge(ids, a, b))
        merges += 1

    logger.info(
        "entity_clusters_built",
        entity_count=sum(len(m) for m in by_category.values()),
        categories=len(by_category),
        clusters=len(clusters),
        merges=merges,
    )
    return clusters
