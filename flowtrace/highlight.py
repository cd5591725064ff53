from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import AbstractSet, Dict, Iterable, List, Mapping, Optional, Tuple

from .graph_builder import FlowGraph, LinkKey, NodeKey
from .selection import ActiveRecordSet
from .state_machine import Mode, SelectionState

SAMPLE_NAME_LIMIT = 3

BASE_OPACITY = 0.35
DIM_OPACITY = 0.07
HI_OPACITY = 0.72
NODE_DIM_OPACITY = 0.2


class LinkState(str, Enum):
    DIM = "dim"
    BASE = "base"
    HIGHLIGHT = "highlight"

    @property
    def opacity(self) -> float:
        return {LinkState.DIM: DIM_OPACITY, LinkState.BASE: BASE_OPACITY, LinkState.HIGHLIGHT: HI_OPACITY}[self]


class NodeState(str, Enum):
    DIMMED = "dimmed"
    NORMAL = "normal"

    @property
    def opacity(self) -> float:
        return NODE_DIM_OPACITY if self is NodeState.DIMMED else 1.0


@dataclass(frozen=True)
class HighlightProjection:
    link_state: Mapping[LinkKey, LinkState] = field(default_factory=dict)
    node_state: Mapping[NodeKey, NodeState] = field(default_factory=dict)
    overlay_links: Tuple[LinkKey, ...] = ()

    def as_payload(self) -> Dict[str, object]:
        """Id-keyed form for a rendering surface."""
        return {
            "links": {key.id: state.value for key, state in self.link_state.items()},
            "nodes": {key.id: state.value for key, state in self.node_state.items()},
            "overlay": [key.id for key in self.overlay_links],
        }


def intersects(members: AbstractSet[int], active: AbstractSet[int]) -> bool:
    small, large = (members, active) if len(members) <= len(active) else (active, members)
    for item in small:
        if item in large:
            return True
    return False


def trace_overlay(graph: FlowGraph, record_index: Optional[int], trace_cursor: int) -> Tuple[LinkKey, ...]:
    """The record's own transitions for step pairs 0..cursor, in walking order."""
    if record_index is None or not 0 <= record_index < len(graph.record_paths):
        return ()
    path = graph.record_paths[record_index]
    cursor = min(max(trace_cursor, 0), max(0, graph.step_count - 2))
    overlay: List[LinkKey] = []
    for boundary, (source, target) in enumerate(zip(path, path[1:])):
        if boundary > cursor:
            break
        key = LinkKey(source, target)
        if graph.link(key) is not None:
            overlay.append(key)
    return tuple(overlay)


def project_highlight(
    graph: FlowGraph,
    active: ActiveRecordSet,
    *,
    overlay_record: Optional[int] = None,
    trace_cursor: int = 0,
) -> HighlightProjection:
    if active is None:
        link_state = {link.key: LinkState.BASE for link in graph.links}
        node_state = {node.key: NodeState.NORMAL for node in graph.nodes}
    else:
        link_state = {
            link.key: LinkState.HIGHLIGHT if intersects(link.members, active) else LinkState.DIM
            for link in graph.links
        }
        node_state = {
            node.key: NodeState.NORMAL if intersects(node.members, active) else NodeState.DIMMED
            for node in graph.nodes
        }
    overlay = trace_overlay(graph, overlay_record, trace_cursor) if overlay_record is not None else ()
    return HighlightProjection(link_state=link_state, node_state=node_state, overlay_links=overlay)


def project_for_state(graph: FlowGraph, state: SelectionState, active: ActiveRecordSet) -> HighlightProjection:
    overlay_record = None
    if state.mode is Mode.RECORD_TRACE and state.record_id:
        overlay_record = graph.table.index_of(state.record_id)
    return project_highlight(graph, active, overlay_record=overlay_record, trace_cursor=state.trace_cursor)


def hover_preview(graph: FlowGraph, node_key: NodeKey) -> HighlightProjection:
    """Aggregate-view hover: the node, its adjacent links and their far ends stay lit."""
    if graph.node(node_key) is None:
        return project_highlight(graph, None)
    adjacent = {link.key for link in graph.links if node_key in (link.source, link.target)}
    neighbours = {node_key}
    for key in adjacent:
        neighbours.update((key.source, key.target))
    return HighlightProjection(
        link_state={link.key: LinkState.HIGHLIGHT if link.key in adjacent else LinkState.DIM for link in graph.links},
        node_state={node.key: NodeState.NORMAL if node.key in neighbours else NodeState.DIMMED for node in graph.nodes},
    )


def format_amount(value: float) -> str:
    if value >= 1e6:
        return f"{value / 1e6:.1f}M"
    if value >= 1e3:
        return f"{value / 1e3:.0f}K"
    if float(value).is_integer():
        return str(int(value))
    return str(value)


@dataclass(frozen=True)
class TooltipData:
    title: str
    record_count: int
    amount: float
    percentage: str
    sample_names: Tuple[str, ...]
    more_count: int

    @property
    def detail(self) -> str:
        return f"{self.record_count} records  ·  {self.percentage}%  ·  ${format_amount(self.amount)}"

    @property
    def sample_text(self) -> str:
        if not self.sample_names:
            return ""
        text = ", ".join(self.sample_names)
        return f"{text} +{self.more_count} more" if self.more_count > 0 else text


def tooltip_for(
    graph: FlowGraph, members: Iterable[int], title: str = "", sample_size: int = SAMPLE_NAME_LIMIT
) -> TooltipData:
    ordered = sorted(members)
    amounts = graph.table.amounts()
    names = graph.table.names()
    total = graph.record_count
    count = len(ordered)
    percentage = f"{count / total * 100:.1f}" if total > 0 else "0.0"
    sample = tuple(names[index] for index in ordered[:sample_size])
    return TooltipData(
        title=title,
        record_count=count,
        amount=float(sum(amounts[index] for index in ordered)),
        percentage=percentage,
        sample_names=sample,
        more_count=count - len(sample),
    )


def node_tooltip(graph: FlowGraph, key: NodeKey, sample_size: int = SAMPLE_NAME_LIMIT) -> Optional[TooltipData]:
    node = graph.node(key)
    if node is None:
        return None
    title = f"{node.label}  ({graph.steps[node.step_index]})"
    return tooltip_for(graph, node.members, title, sample_size)


def link_tooltip(graph: FlowGraph, key: LinkKey, sample_size: int = SAMPLE_NAME_LIMIT) -> Optional[TooltipData]:
    link = graph.link(key)
    if link is None:
        return None
    title = f"{link.source.label} → {link.target.label}"
    return tooltip_for(graph, link.members, title, sample_size)
