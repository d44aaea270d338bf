"""
Command-line entrypoint: analyze a transaction graph JSON file.

Reads the graph (and optional known-entity directory / entity labels), runs
the analysis pipeline and prints the result as JSON on stdout.

Usage:
  python main.py graph.json
  python main.py graph.json --wallet <address> --directory directory.json
  python main.py graph.json --entities entities.json --historical-tx-per-day 2.5

Env: CHAINRISK_* tunables (see backend_chainrisk.config.settings), LOG_FORMAT, LOG_LEVEL.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

from backend_chainrisk.chainrisk_logging import get_logger

logger = get_logger("main")


def _load_json(path: Path) -> Any:
    with path.open(encoding="utf-8") as f:
        return json.load(f)


def main() -> int:
    import argparse

    from backend_chainrisk.analysis_engine import (
        KnownEntityDirectory,
        LabeledEntity,
        TransactionGraph,
        run_graph_analysis,
    )
    from backend_chainrisk.core.exceptions import ChainRiskError
    from backend_chainrisk.core.validation import parse_timestamp

    ap = argparse.ArgumentParser(description="Transaction graph risk analysis and clustering")
    ap.add_argument("graph", type=Path, help="Graph JSON: {nodes: [...], edges: [...]}")
    ap.add_argument("--wallet", default=None, help="Focus wallet for scoring, funding and prediction")
    ap.add_argument("--directory", type=Path, default=None, help="Known-entity directory JSON")
    ap.add_argument("--entities", type=Path, default=None, help="Entity labels JSON list (clustered)")
    ap.add_argument("--historical-tx-per-day", type=float, default=None, help="Baseline for high-frequency anomalies")
    ap.add_argument("--now", default=None, help="Reference time (ISO-8601); default latest wallet transaction")
    ap.add_argument("--indent", type=int, default=2, help="JSON indent")
    args = ap.parse_args()

    try:
        graph = TransactionGraph.from_dict(_load_json(args.graph))
        directory = KnownEntityDirectory.from_dict(_load_json(args.directory)) if args.directory else None
        entities = None
        if args.entities:
            raw = _load_json(args.entities)
            if not isinstance(raw, list):
                logger.error("main_entities_invalid", path=str(args.entities))
                return 1
            entities = [LabeledEntity.from_dict(e) for e in raw]
        now = parse_timestamp("now", args.now) if args.now else None
        result = run_graph_analysis(
            graph,
            wallet=args.wallet,
            directory=directory,
            entities=entities,
            historical_average_per_day=args.historical_tx_per_day,
            now=now,
        )
    except (OSError, json.JSONDecodeError) as e:
        logger.error("main_input_unreadable", error=str(e))
        return 1
    except ChainRiskError as e:
        logger.error("main_invalid_input", error=str(e))
        return 1

    json.dump(result.to_dict(), sys.stdout, indent=args.indent)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
