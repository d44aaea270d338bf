"""
Pytest fixtures for chain risk engine tests: small graphs, a known-entity directory,
and a settings cache reset so env overrides never leak between tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backend_chainrisk.analysis_engine.entities import DirectoryEntry, EntityCategory, KnownEntityDirectory
from backend_chainrisk.analysis_engine.models import RiskLevel, TransactionEdge, TransactionGraph

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

WALLET_A = "WalletA"
WALLET_B = "WalletB"
WALLET_C = "WalletC"
MIXER_WALLET = "MixerWallet"
EXCHANGE_WALLET = "ExchangeWallet"
SCAM_WALLET = "ScamWallet"


def at(minutes: float = 0.0, days: float = 0.0) -> datetime:
    """T0 shifted by minutes / days."""
    return T0 + timedelta(minutes=minutes, days=days)


def edge(source: str, target: str, value: float, minutes: float = 0.0, **kwargs) -> TransactionEdge:
    return TransactionEdge(source=source, target=target, value=value, timestamp=at(minutes), **kwargs)


@pytest.fixture(autouse=True)
def _fresh_settings():
    from backend_chainrisk.config.settings import reset_settings_cache

    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def cycle_graph() -> TransactionGraph:
    """A -> B -> C -> A, one hour apart so no temporal cluster forms."""
    return TransactionGraph.from_edges(
        [
            edge(WALLET_A, WALLET_B, 1.0, 0),
            edge(WALLET_B, WALLET_C, 1.0, 60),
            edge(WALLET_C, WALLET_A, 1.0, 120),
        ]
    )


@pytest.fixture
def scenario_graph() -> TransactionGraph:
    """X -> W (2.0), Y -> W (1.0), W -> Z (50.0), one minute apart."""
    return TransactionGraph.from_edges(
        [
            edge("X", "W", 2.0, 0),
            edge("Y", "W", 1.0, 1),
            edge("W", "Z", 50.0, 2),
        ]
    )


@pytest.fixture
def directory() -> KnownEntityDirectory:
    return KnownEntityDirectory(
        {
            MIXER_WALLET: DirectoryEntry(EntityCategory.MIXER, RiskLevel.HIGH, "solana_mixer pool"),
            EXCHANGE_WALLET: DirectoryEntry(EntityCategory.EXCHANGE, RiskLevel.LOW, "Big Exchange"),
            SCAM_WALLET: DirectoryEntry(EntityCategory.SCAM, RiskLevel.HIGH, "Fake airdrop"),
        }
    )
