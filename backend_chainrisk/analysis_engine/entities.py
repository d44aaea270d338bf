"""
Known-entity directory: address -> category / risk level lookup.

Categories are a closed enumeration; CATEGORY_PROFILES maps every category to
its counterparty class, node group, privacy-tool flag, inherent risk, display
name and behaviour patterns. Adding a category without a profile fails at import.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from backend_chainrisk.analysis_engine.models import NodeGroup, RiskLevel
from backend_chainrisk.core.exceptions import ChainRiskError, InvalidInputError
from backend_chainrisk.core.validation import require_key, require_mapping, validate_address, validate_score


class EntityCategory(str, Enum):
    EXCHANGE = "exchange"
    INDIVIDUAL = "individual"
    CONTRACT = "contract"
    MIXER = "mixer"
    PRIVACY_TOOL = "privacy_tool"
    SCAM = "scam"
    DARKNET_MARKET = "darknet_market"
    RANSOMWARE = "ransomware"
    SANCTIONED = "sanctioned"
    HIGH_RISK_EXCHANGE = "high_risk_exchange"
    GAMBLING = "gambling"
    PHISHING = "phishing"
    PONZI_SCHEME = "ponzi_scheme"
    OTHER = "other"
    UNKNOWN = "unknown"


class CounterpartyClass(str, Enum):
    """How a counterparty counts toward wallet risk."""

    MIXER = "mixer"
    EXCHANGE = "exchange"
    HIGH_RISK = "high_risk"
    KNOWN = "known"
    UNKNOWN = "unknown"


# Substrings that mark an entity name as a privacy tool.
PRIVACY_TOOL_NAMES = (
    "tornado_cash",
    "wasabi_wallet",
    "samourai_wallet",
    "coinjoin",
    "solana_mixer",
    "monero_bridge",
    "zcash_bridge",
)


@dataclass(frozen=True)
class CategoryProfile:
    counterparty_class: CounterpartyClass
    node_group: NodeGroup
    is_privacy_tool: bool
    inherent_risk: RiskLevel
    display_name: str
    behavior_patterns: tuple[str, ...]


_EXCHANGE_PATTERNS = (
    "Regular large deposits and withdrawals",
    "High transaction volume during market hours",
    "Multiple token types handled",
    "Consistent hot/cold wallet transfers",
    "Batch processing of transactions",
)
_INDIVIDUAL_PATTERNS = (
    "Irregular transaction timing",
    "Varied transaction amounts",
    "Limited counterparties",
    "Preference for specific tokens",
    "Weekend activity spikes",
)
_CONTRACT_PATTERNS = (
    "Automated transaction patterns",
    "Consistent gas usage",
    "Regular interaction with specific contracts",
    "Predictable timing patterns",
    "Similar transaction amounts",
)
_MIXER_PATTERNS = (
    "Multiple small output transactions",
    "Delayed withdrawals",
    "Privacy token usage",
    "Irregular timing patterns",
    "Connection to known privacy tools",
)
_SCAM_PATTERNS = (
    "Rapid fund consolidation",
    "Short-lived wallet activity",
    "Connections to reported scam addresses",
    "Unusual token swapping patterns",
    "Quick distribution to multiple wallets",
)
_OTHER_PATTERNS = (
    "Mixed transaction patterns",
    "Varied counterparties",
    "Inconsistent activity periods",
    "Multiple token types",
    "Varied transaction sizes",
)


def _high_risk(display_name: str) -> CategoryProfile:
    return CategoryProfile(
        counterparty_class=CounterpartyClass.HIGH_RISK,
        node_group=NodeGroup.UNKNOWN,
        is_privacy_tool=False,
        inherent_risk=RiskLevel.LOW,
        display_name=display_name,
        behavior_patterns=_OTHER_PATTERNS,
    )


CATEGORY_PROFILES: Mapping[EntityCategory, CategoryProfile] = MappingProxyType({
    EntityCategory.EXCHANGE: CategoryProfile(
        CounterpartyClass.EXCHANGE, NodeGroup.EXCHANGE, False, RiskLevel.LOW, "Exchange", _EXCHANGE_PATTERNS
    ),
    EntityCategory.INDIVIDUAL: CategoryProfile(
        CounterpartyClass.KNOWN, NodeGroup.UNKNOWN, False, RiskLevel.LOW, "Individual", _INDIVIDUAL_PATTERNS
    ),
    EntityCategory.CONTRACT: CategoryProfile(
        CounterpartyClass.KNOWN, NodeGroup.UNKNOWN, False, RiskLevel.MEDIUM, "Contract", _CONTRACT_PATTERNS
    ),
    EntityCategory.MIXER: CategoryProfile(
        CounterpartyClass.MIXER, NodeGroup.MIXER, True, RiskLevel.HIGH, "Mixer", _MIXER_PATTERNS
    ),
    EntityCategory.PRIVACY_TOOL: CategoryProfile(
        CounterpartyClass.MIXER, NodeGroup.MIXER, True, RiskLevel.LOW, "Privacy Tool", _OTHER_PATTERNS
    ),
    EntityCategory.SCAM: CategoryProfile(
        CounterpartyClass.HIGH_RISK, NodeGroup.UNKNOWN, False, RiskLevel.HIGH, "Scam", _SCAM_PATTERNS
    ),
    EntityCategory.DARKNET_MARKET: _high_risk("Darknet Market"),
    EntityCategory.RANSOMWARE: _high_risk("Ransomware"),
    EntityCategory.SANCTIONED: _high_risk("Sanctioned"),
    EntityCategory.HIGH_RISK_EXCHANGE: _high_risk("High Risk Exchange"),
    EntityCategory.GAMBLING: _high_risk("Gambling"),
    EntityCategory.PHISHING: _high_risk("Phishing"),
    EntityCategory.PONZI_SCHEME: _high_risk("Ponzi Scheme"),
    EntityCategory.OTHER: CategoryProfile(
        CounterpartyClass.KNOWN, NodeGroup.UNKNOWN, False, RiskLevel.LOW, "Other", _OTHER_PATTERNS
    ),
    EntityCategory.UNKNOWN: CategoryProfile(
        CounterpartyClass.UNKNOWN, NodeGroup.UNKNOWN, False, RiskLevel.LOW, "Unknown", _OTHER_PATTERNS
    ),
})

_missing_profiles = [c.value for c in EntityCategory if c not in CATEGORY_PROFILES]
if _missing_profiles:
    raise ChainRiskError(f"CATEGORY_PROFILES missing categories: {_missing_profiles}")


def profile_for(category: EntityCategory) -> CategoryProfile:
    return CATEGORY_PROFILES[category]


def parse_category(field: str, value: Any) -> EntityCategory:
    """EntityCategory from an enum member or its string value."""
    if isinstance(value, EntityCategory):
        return value
    try:
        return EntityCategory(value)
    except ValueError as e:
        raise InvalidInputError(field, value, "unknown entity category") from e


def parse_risk_level(field: str, value: Any) -> RiskLevel:
    if isinstance(value, RiskLevel):
        return value
    try:
        return RiskLevel(value)
    except ValueError as e:
        raise InvalidInputError(field, value, "unknown risk level") from e


@dataclass(frozen=True)
class DirectoryEntry:
    category: EntityCategory
    risk_level: RiskLevel = RiskLevel.UNKNOWN
    name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "category", parse_category("category", self.category))
        object.__setattr__(self, "risk_level", parse_risk_level("risk_level", self.risk_level))

    @property
    def profile(self) -> CategoryProfile:
        return CATEGORY_PROFILES[self.category]

    def to_dict(self) -> dict[str, Any]:
        return {"category": self.category.value, "risk_level": self.risk_level.value, "name": self.name}

    @classmethod
    def from_dict(cls, data: Any) -> "DirectoryEntry":
        data = require_mapping("directory_entry", data)
        return cls(
            category=require_key(data, "category", "directory_entry"),
            risk_level=data.get("risk_level", RiskLevel.UNKNOWN.value),
            name=data.get("name") or "",
        )


class KnownEntityDirectory:
    """
    Immutable address -> DirectoryEntry lookup supplied by the host.

    An absent address is equivalent to category=unknown.
    """

    def __init__(self, entries: Mapping[str, DirectoryEntry] | None = None):
        checked: dict[str, DirectoryEntry] = {}
        for address, entry in (entries or {}).items():
            validate_address("directory.address", address)
            if not isinstance(entry, DirectoryEntry):
                raise InvalidInputError("directory.entry", entry, "expected DirectoryEntry")
            checked[address] = entry
        self._entries: Mapping[str, DirectoryEntry] = MappingProxyType(checked)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, address: object) -> bool:
        return address in self._entries

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KnownEntityDirectory):
            return NotImplemented
        return dict(self._entries) == dict(other._entries)

    def __repr__(self) -> str:
        return f"KnownEntityDirectory({len(self._entries)} entries)"

    @property
    def entries(self) -> Mapping[str, DirectoryEntry]:
        return self._entries

    def lookup(self, address: str) -> DirectoryEntry | None:
        return self._entries.get(address)

    def category_of(self, address: str) -> EntityCategory:
        entry = self._entries.get(address)
        return entry.category if entry is not None else EntityCategory.UNKNOWN

    def classify(self, address: str) -> CounterpartyClass:
        """Counterparty class; a known entity flagged high risk counts as high_risk."""
        entry = self._entries.get(address)
        if entry is None:
            return CounterpartyClass.UNKNOWN
        cls = entry.profile.counterparty_class
        if cls is CounterpartyClass.KNOWN and entry.risk_level is RiskLevel.HIGH:
            return CounterpartyClass.HIGH_RISK
        return cls

    def privacy_tool_name(self, address: str) -> str | None:
        """Display name when address is a privacy tool, else None."""
        entry = self._entries.get(address)
        if entry is None:
            return None
        name = entry.name.lower()
        if entry.profile.is_privacy_tool or any(tool in name for tool in PRIVACY_TOOL_NAMES):
            return entry.name or entry.profile.display_name
        return None

    def is_privacy_tool(self, address: str) -> bool:
        return self.privacy_tool_name(address) is not None

    def node_labels(self) -> dict[str, tuple[str, NodeGroup]]:
        """Labels for TransactionGraph.from_edges."""
        return {
            address: (entry.name or entry.profile.display_name, entry.profile.node_group)
            for address, entry in self._entries.items()
        }

    def to_dict(self) -> dict[str, Any]:
        return {address: entry.to_dict() for address, entry in self._entries.items()}

    @classmethod
    def from_dict(cls, data: Any) -> "KnownEntityDirectory":
        """Accepts {address: entry} or a list of entries each carrying "address"."""
        if isinstance(data, list):
            pairs = []
            for item in data:
                item = require_mapping("directory_entry", item)
                pairs.append((require_key(item, "address", "directory_entry"), DirectoryEntry.from_dict(item)))
            return cls(dict(pairs))
        data = require_mapping("directory", data)
        return cls({address: DirectoryEntry.from_dict(entry) for address, entry in data.items()})


@dataclass(frozen=True)
class LabeledEntity:
    """An entity label as stored by the host (input to entity clustering)."""

    address: str
    category: EntityCategory
    risk_score: float | None = None
    name: str = ""

    def __post_init__(self) -> None:
        validate_address("address", self.address)
        object.__setattr__(self, "category", parse_category("category", self.category))
        if self.risk_score is not None:
            object.__setattr__(self, "risk_score", validate_score("risk_score", self.risk_score))

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "category": self.category.value,
            "risk_score": self.risk_score,
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "LabeledEntity":
        data = require_mapping("entity", data)
        return cls(
            address=require_key(data, "address", "entity"),
            category=require_key(data, "category", "entity"),
            risk_score=data.get("risk_score"),
            name=data.get("name") or "",
        )


def directory_from_entities(entities: Iterable[LabeledEntity]) -> KnownEntityDirectory:
    """Build a directory from entity labels; risk level from score (>75 high, >50 medium)."""
    entries: dict[str, DirectoryEntry] = {}
    for entity in entities:
        if entity.risk_score is None:
            level = RiskLevel.UNKNOWN
        elif entity.risk_score > 75:
            level = RiskLevel.HIGH
        elif entity.risk_score > 50:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.LOW
        entries[entity.address] = DirectoryEntry(category=entity.category, risk_level=level, name=entity.name)
    return KnownEntityDirectory(entries)
