"""
Default column layout for the flow diagram.

Any callable with the signature of `sankey_layout` can be handed to the explorer instead;
the engine only supplies `{id, value}` pairs and reads positions back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Protocol, Sequence

import networkx as nx

NODE_WIDTH = 18.0
NODE_PADDING = 16.0


@dataclass(frozen=True)
class LayoutNode:
    id: str


@dataclass(frozen=True)
class LayoutLink:
    id: str
    source: str
    target: str
    value: float


@dataclass(frozen=True)
class PositionedNode:
    id: str
    value: float
    x0: float
    x1: float
    y0: float
    y1: float


@dataclass(frozen=True)
class PositionedLink:
    id: str
    source: str
    target: str
    value: float
    width: float
    y0: float
    y1: float


@dataclass(frozen=True)
class LayoutResult:
    nodes: List[PositionedNode]
    links: List[PositionedLink]
    width: float
    height: float


class LayoutRoutine(Protocol):
    def __call__(
        self, nodes: Sequence[LayoutNode], links: Sequence[LayoutLink], width: float, height: float
    ) -> LayoutResult: ...


def _assign_levels(graph: nx.DiGraph) -> Dict[str, int]:
    levels: Dict[str, int] = {}
    for node in nx.topological_sort(graph):
        levels[node] = max((levels[pred] + 1 for pred in graph.predecessors(node)), default=0)
    return levels


def sankey_layout(
    nodes: Sequence[LayoutNode],
    links: Sequence[LayoutLink],
    width: float,
    height: float,
    *,
    node_width: float = NODE_WIDTH,
    node_padding: float = NODE_PADDING,
) -> LayoutResult:
    graph = nx.DiGraph()
    graph.add_nodes_from(node.id for node in nodes)
    for link in links:
        graph.add_edge(link.source, link.target)
    if not nx.is_directed_acyclic_graph(graph):
        raise ValueError("Flow layout needs an acyclic graph.")

    inflow: Dict[str, float] = {node.id: 0.0 for node in nodes}
    outflow: Dict[str, float] = {node.id: 0.0 for node in nodes}
    for link in links:
        outflow[link.source] += link.value
        inflow[link.target] += link.value
    node_value = {node.id: max(inflow[node.id], outflow[node.id]) for node in nodes}

    levels = _assign_levels(graph)
    max_level = max(levels.values(), default=0)
    columns: Dict[int, List[str]] = {}
    for node in nodes:
        columns.setdefault(levels[node.id], []).append(node.id)

    scales = []
    for members in columns.values():
        total = sum(node_value[member] for member in members)
        if total > 0:
            scales.append(max(0.0, height - (len(members) - 1) * node_padding) / total)
    ky = min(scales, default=0.0)

    x_step = (width - node_width) / max_level if max_level else 0.0
    positioned: Dict[str, PositionedNode] = {}
    for level, members in columns.items():
        y = 0.0
        for member in members:
            node_height = node_value[member] * ky
            x0 = level * x_step
            positioned[member] = PositionedNode(
                id=member, value=node_value[member], x0=x0, x1=x0 + node_width, y0=y, y1=y + node_height
            )
            y += node_height + node_padding

    out_offset = {node_id: node.y0 for node_id, node in positioned.items()}
    in_offset = dict(out_offset)
    positioned_links: List[PositionedLink] = []
    for link in links:
        link_width = link.value * ky
        y0 = out_offset[link.source] + link_width / 2
        y1 = in_offset[link.target] + link_width / 2
        out_offset[link.source] += link_width
        in_offset[link.target] += link_width
        positioned_links.append(
            PositionedLink(
                id=link.id, source=link.source, target=link.target, value=link.value, width=link_width, y0=y0, y1=y1
            )
        )

    return LayoutResult(
        nodes=[positioned[node.id] for node in nodes], links=positioned_links, width=width, height=height
    )
