from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from .graph_builder import FlowGraph, LinkKey, NodeKey
from .path_model import UNKNOWN

MIN_LINK_WEIGHT = 1.0
TOP_PATH_LIMIT = 10
PATH_SEPARATOR = " → "

# d3.schemeTableau10
TABLEAU10 = (
    "#4e79a7",
    "#f28e2c",
    "#e15759",
    "#76b7b2",
    "#59a14f",
    "#edc949",
    "#af7aa1",
    "#ff9da7",
    "#9c755f",
    "#bab0ab",
)


class Metric(str, Enum):
    COUNT = "count"
    AMOUNT = "amount"

    @classmethod
    def parse(cls, value: Any) -> "Metric":
        if isinstance(value, cls):
            return value
        text = str(value or "count").lower()
        return cls.AMOUNT if text == "amount" else cls.COUNT


@dataclass(frozen=True)
class LinkWeight:
    key: LinkKey
    source_id: str
    target_id: str
    value: float

    @property
    def id(self) -> str:
        return self.key.id


def project_link_weights(graph: FlowGraph, metric: Metric | str = Metric.COUNT) -> List[LinkWeight]:
    """One layout weight per link; zero, missing or non-finite values fall back to the floor."""
    metric = Metric.parse(metric)
    raw = np.array(
        [link.amount if metric is Metric.AMOUNT else link.count for link in graph.links],
        dtype=float,
    )
    raw = np.nan_to_num(raw, nan=0.0, posinf=0.0, neginf=0.0)
    weights = np.where(raw > 0, raw, MIN_LINK_WEIGHT)
    return [
        LinkWeight(key=link.key, source_id=link.source.id, target_id=link.target.id, value=float(weight))
        for link, weight in zip(graph.links, weights)
    ]


def assign_label_colours(graph: FlowGraph, palette: tuple[str, ...] = TABLEAU10) -> Dict[NodeKey, str]:
    """Same label, same colour across steps; labels cycle the palette in first-seen order."""
    label_index = {label: idx for idx, label in enumerate(graph.labels())}
    return {node.key: palette[label_index[node.label] % len(palette)] for node in graph.nodes}


def _percentage(part: float, whole: float) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def compute_kpis(graph: FlowGraph) -> Dict[str, Any]:
    """Headline numbers for the insights panel."""
    total_records = graph.record_count
    amounts = graph.table.amounts()
    total_amount = float(amounts.sum()) if total_records else 0.0
    last_step = graph.step_count - 1
    converted = sum(
        1 for path in graph.record_paths if len(path) > last_step and path[last_step].value is not UNKNOWN
    )
    conversion_rate = _percentage(converted, total_records)
    return {
        "totalRecords": total_records,
        "totalAmount": total_amount,
        "avgAmount": total_amount / total_records if total_records else 0.0,
        "convertedRecords": converted,
        "conversionRate": conversion_rate,
        "dropOffRate": round(100.0 - conversion_rate, 1) if total_records else 0.0,
    }


def compute_top_paths(
    graph: FlowGraph, metric: Metric | str = Metric.COUNT, limit: Optional[int] = TOP_PATH_LIMIT
) -> pd.DataFrame:
    columns = ["path", "records", "amount", "percentage"]
    if not graph.record_paths:
        return pd.DataFrame(columns=columns)
    metric = Metric.parse(metric)
    amounts = graph.table.amounts()
    counts: Counter[str] = Counter()
    path_amounts: Dict[str, float] = defaultdict(float)
    for record_index, path in enumerate(graph.record_paths):
        label = PATH_SEPARATOR.join(key.label for key in path)
        counts[label] += 1
        path_amounts[label] += float(amounts[record_index])

    rows = [
        {
            "path": label,
            "records": count,
            "amount": path_amounts[label],
            "percentage": _percentage(count, graph.record_count),
        }
        for label, count in counts.items()
    ]
    sort_column = "amount" if metric is Metric.AMOUNT else "records"
    # Stable sort keeps first-seen order among ties.
    df = pd.DataFrame(rows, columns=columns).sort_values(sort_column, ascending=False, kind="mergesort")
    if limit:
        df = df.head(limit)
    return df.reset_index(drop=True)


def compute_flow_trace_kpis(graph: FlowGraph, step_index: Optional[int], value: Any) -> Optional[Dict[str, Any]]:
    if step_index is None or value is None or value == "":
        return None
    if not 0 <= step_index < graph.step_count:
        return None
    node = graph.resolve_node(step_index, value)
    members = node.members if node else frozenset()
    amounts = graph.table.amounts()
    return {
        "totalRecords": len(members),
        "totalAmount": float(sum(amounts[index] for index in members)),
        "conversionPct": f"{_percentage(len(members), graph.record_count):.1f}",
    }
