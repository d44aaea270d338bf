"""
Known suspicious flow patterns, usable as the transaction scorer's pattern_matcher.

Each detector takes the graph's edges and returns the positions of the edges
taking part in the pattern. match_known_pattern reports the first detector
(in KNOWN_PATTERN_DETECTORS order) whose matches include the scored edge.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Callable, Sequence

from backend_chainrisk.analysis_engine.models import TransactionEdge, TransactionGraph

PatternDetector = Callable[[Sequence[TransactionEdge]], "set[int]"]

LAYERING_WINDOW_SECONDS = 10 * 60
LAYERING_CHAIN = 3
SMURFING_SMALL_VALUE = 10
SMURFING_MIN_COUNT = 3
SMURFING_MIN_TOTAL = 100
PEELING_MIN_CHAIN = 3
FAN_OUT_MIN_TARGETS = 5


def _by_time(edges: Sequence[TransactionEdge]) -> list[int]:
    return sorted(range(len(edges)), key=lambda i: edges[i].epoch_seconds)


def detect_layering(edges: Sequence[TransactionEdge]) -> set[int]:
    """Any 3 consecutive transactions (by time) within 10 minutes."""
    order = _by_time(edges)
    hit: set[int] = set()
    for k in range(len(order) - LAYERING_CHAIN + 1):
        first, last = order[k], order[k + LAYERING_CHAIN - 1]
        if edges[last].epoch_seconds - edges[first].epoch_seconds < LAYERING_WINDOW_SECONDS:
            hit.update(order[k:k + LAYERING_CHAIN])
    return hit


def detect_smurfing(edges: Sequence[TransactionEdge]) -> set[int]:
    """At least 3 small transfers (< 10) that together exceed 100."""
    small = [i for i, e in enumerate(edges) if e.value < SMURFING_SMALL_VALUE]
    if len(small) < SMURFING_MIN_COUNT:
        return set()
    if sum(edges[i].value for i in small) <= SMURFING_MIN_TOTAL:
        return set()
    return set(small)


def detect_round_trip(edges: Sequence[TransactionEdge]) -> set[int]:
    """An address that receives funds after it has sent funds."""
    outgoing: dict[str, list[int]] = defaultdict(list)
    incoming: dict[str, list[int]] = defaultdict(list)
    for i, e in enumerate(edges):
        outgoing[e.source].append(i)
        incoming[e.target].append(i)
    hit: set[int] = set()
    for address, outs in outgoing.items():
        for o in outs:
            for n in incoming.get(address, ()):
                if edges[n].epoch_seconds > edges[o].epoch_seconds:
                    hit.add(o)
                    hit.add(n)
    return hit


def detect_peeling_chain(edges: Sequence[TransactionEdge]) -> set[int]:
    """One source sending at least 3 successively smaller amounts (by time)."""
    chains: dict[str, list[int]] = {}
    hit: set[int] = set()
    for i in _by_time(edges):
        e = edges[i]
        chain = chains.get(e.source)
        if chain is not None and e.value < edges[chain[-1]].value:
            chain.append(i)
        else:
            chain = [i]
            chains[e.source] = chain
        if len(chain) >= PEELING_MIN_CHAIN:
            hit.update(chain)
    return hit


def detect_fan_out(edges: Sequence[TransactionEdge]) -> set[int]:
    """One source sending to at least 5 distinct targets."""
    targets: dict[str, set[str]] = defaultdict(set)
    for e in edges:
        targets[e.source].add(e.target)
    fanning = {s for s, t in targets.items() if len(t) >= FAN_OUT_MIN_TARGETS}
    return {i for i, e in enumerate(edges) if e.source in fanning}


KNOWN_PATTERN_DETECTORS: tuple[tuple[str, PatternDetector], ...] = (
    ("Layering", detect_layering),
    ("Smurfing", detect_smurfing),
    ("Round-trip", detect_round_trip),
    ("Peeling Chain", detect_peeling_chain),
    ("Fan-out", detect_fan_out),
)


def _same_edge(a: TransactionEdge, b: TransactionEdge) -> bool:
    # Annotated and plain copies of one transfer compare equal here.
    return (
        a.source == b.source
        and a.target == b.target
        and a.value == b.value
        and a.epoch_seconds == b.epoch_seconds
        and a.tx_id == b.tx_id
    )


def match_known_pattern(edge: TransactionEdge, graph: TransactionGraph) -> str | None:
    """Name of the first known pattern the edge takes part in, or None."""
    positions = {i for i, e in enumerate(graph.edges) if e is edge or _same_edge(e, edge)}
    if not positions:
        return None
    for name, detector in KNOWN_PATTERN_DETECTORS:
        if positions & detector(graph.edges):
            return name
    return None
