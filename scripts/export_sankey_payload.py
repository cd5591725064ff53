#!/usr/bin/env python
"""
Export a flow diagram payload as JSON for an external renderer.

Usage:
    python scripts/export_sankey_payload.py --input data/loans.csv --steps Source Qualification Review Outcome \
        --output runtime/sankey_payload.json

The resulting JSON contains positioned nodes and links, KPIs and the most common paths.
"""

from __future__ import annotations

import argparse
import json
import pathlib
import sys
from typing import Any, Dict

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from flowtrace.config import ExplorerConfig  # noqa: E402  pylint: disable=wrong-import-position
from flowtrace.data_source import CsvSource  # noqa: E402  pylint: disable=wrong-import-position
from flowtrace.errors import ConfigurationError, DataUnavailableError  # noqa: E402  pylint: disable=wrong-import-position
from flowtrace.explorer import FlowExplorer  # noqa: E402  pylint: disable=wrong-import-position
from flowtrace.logging_setup import configure_logging  # noqa: E402  pylint: disable=wrong-import-position
from flowtrace.path_model import NullHandling  # noqa: E402  pylint: disable=wrong-import-position
from flowtrace.record_loader import try_auto_detect_columns  # noqa: E402  pylint: disable=wrong-import-position


def build_payload(explorer: FlowExplorer) -> Dict[str, Any]:
    snapshot = explorer.snapshot()
    graph = snapshot.graph
    positions = {node.id: node for node in snapshot.layout.nodes}
    link_geometry = {link.id: link for link in snapshot.layout.links}

    nodes = []
    for node in graph.nodes:
        box = positions[node.id]
        nodes.append(
            {
                "id": node.id,
                "label": node.label,
                "stepIndex": node.step_index,
                "records": len(node.members),
                "colour": snapshot.colours[node.key],
                "x0": box.x0,
                "x1": box.x1,
                "y0": box.y0,
                "y1": box.y1,
            }
        )

    links = []
    for link in graph.links:
        geometry = link_geometry[link.id]
        links.append(
            {
                "id": link.id,
                "source": link.source.id,
                "target": link.target.id,
                "count": link.count,
                "amount": link.amount,
                "value": geometry.value,
                "width": geometry.width,
                "y0": geometry.y0,
                "y1": geometry.y1,
            }
        )

    return {
        "steps": list(graph.steps),
        "metric": snapshot.metric.value,
        "nodes": nodes,
        "links": links,
        "kpis": explorer.kpis(),
        "topPaths": explorer.top_paths().to_dict(orient="records"),
        "metadata": {
            "records": graph.record_count,
            "truncated": graph.table.truncated,
            "width": snapshot.layout.width,
            "height": snapshot.layout.height,
        },
    }


def export_payload(args: argparse.Namespace) -> None:
    source = CsvSource(args.input)
    id_col, name_col, amount_col = try_auto_detect_columns(source.df)
    config = ExplorerConfig(
        object_name=source.object_name,
        path_fields=tuple(args.steps),
        metric_type="AMOUNT" if args.metric == "amount" else "COUNT",
        metric_field=args.amount_column or amount_col or "",
        record_id_field=args.id_column or id_col,
        name_field=args.name_column or name_col or "",
        null_handling=NullHandling.parse(args.null_handling),
    )
    explorer = FlowExplorer(source, width=args.width, height=args.height)
    try:
        loaded = explorer.load(config)
    except ConfigurationError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc
    if not loaded:
        raise SystemExit(f"Failed to load records: {explorer.error_message}")

    payload = build_payload(explorer)
    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    print(f"Wrote flow payload to {args.output}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export a flow diagram payload for an external renderer.")
    parser.add_argument("--input", required=True, type=pathlib.Path, help="CSV file with one row per record.")
    parser.add_argument("--output", required=True, type=pathlib.Path, help="Destination JSON file.")
    parser.add_argument("--steps", required=True, nargs="+", help="Ordered path columns (at least two).")
    parser.add_argument("--metric", choices=("count", "amount"), default="count")
    parser.add_argument("--id-column", help="Record id column (auto-detected when omitted).")
    parser.add_argument("--name-column", help="Display name column.")
    parser.add_argument("--amount-column", help="Numeric amount column.")
    parser.add_argument(
        "--null-handling",
        choices=[option.value for option in NullHandling],
        default=NullHandling.GROUP_UNKNOWN.value,
    )
    parser.add_argument("--width", type=float, default=960)
    parser.add_argument("--height", type=float, default=540)
    return parser.parse_args()


def main() -> None:
    configure_logging()
    args = parse_args()
    try:
        export_payload(args)
    except DataUnavailableError as exc:
        raise SystemExit(str(exc)) from exc


if __name__ == "__main__":
    main()
