from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .errors import ConfigurationError
from .logging_setup import get_logger
from .path_model import UNKNOWN, UNKNOWN_LABEL, NullHandling, PathModel, display_label
from .record_loader import RecordTable

logger = get_logger("graph")

ID_SEPARATOR = "::"
LINK_ARROW = "→"
ID_ESCAPE = "\\"


def id_segment(value: Any) -> str:
    """Value part of a node id; a literal ``∅`` is escaped so only the sentinel renders bare."""
    if value is UNKNOWN:
        return UNKNOWN_LABEL
    text = str(value)
    if text == UNKNOWN_LABEL or text.startswith(ID_ESCAPE):
        return ID_ESCAPE + text
    return text


def parse_id_segment(segment: str) -> Any:
    if segment == UNKNOWN_LABEL:
        return UNKNOWN
    if segment.startswith(ID_ESCAPE):
        return segment[len(ID_ESCAPE):]
    return segment


@dataclass(frozen=True)
class NodeKey:
    step_index: int
    value: Any

    @property
    def id(self) -> str:
        return f"{self.step_index}{ID_SEPARATOR}{id_segment(self.value)}"

    @property
    def label(self) -> str:
        return display_label(self.value)


@dataclass(frozen=True)
class LinkKey:
    source: NodeKey
    target: NodeKey

    @property
    def id(self) -> str:
        return f"{self.source.id}{LINK_ARROW}{self.target.id}"

    @property
    def boundary(self) -> int:
        return self.source.step_index


ElementKey = Union[NodeKey, LinkKey]


@dataclass(frozen=True)
class Node:
    key: NodeKey
    label: str
    step_index: int
    members: FrozenSet[int]

    @property
    def id(self) -> str:
        return self.key.id


@dataclass(frozen=True)
class Link:
    key: LinkKey
    members: FrozenSet[int]
    count: float
    amount: float

    @property
    def id(self) -> str:
        return self.key.id

    @property
    def source(self) -> NodeKey:
        return self.key.source

    @property
    def target(self) -> NodeKey:
        return self.key.target


@dataclass(frozen=True, eq=False)
class FlowGraph:
    """
    Nodes and links for one (record table, steps, null handling) configuration.

    Built in one go by `build_graph` or `build_graph_from_aggregates` and never mutated
    afterwards; a rebuild produces a new instance.
    """

    table: RecordTable
    steps: Tuple[str, ...]
    null_handling: NullHandling
    nodes: Tuple[Node, ...]
    links: Tuple[Link, ...]
    record_paths: Tuple[Tuple[NodeKey, ...], ...]
    _node_map: Dict[NodeKey, Node] = field(default_factory=dict, init=False, repr=False)
    _link_map: Dict[LinkKey, Link] = field(default_factory=dict, init=False, repr=False)
    _ids: Dict[str, ElementKey] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self._node_map.update({node.key: node for node in self.nodes})
        self._link_map.update({link.key: link for link in self.links})
        self._ids.update({link.id: link.key for link in self.links})
        self._ids.update({node.id: node.key for node in self.nodes})

    @property
    def record_count(self) -> int:
        return len(self.table)

    @property
    def step_count(self) -> int:
        return len(self.steps)

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def node(self, key: NodeKey) -> Optional[Node]:
        return self._node_map.get(key)

    def link(self, key: LinkKey) -> Optional[Link]:
        return self._link_map.get(key)

    def members_of(self, key: ElementKey) -> Optional[FrozenSet[int]]:
        if isinstance(key, NodeKey):
            node = self._node_map.get(key)
            return node.members if node else None
        link = self._link_map.get(key)
        return link.members if link else None

    def element_for_id(self, element_id: str) -> Optional[ElementKey]:
        """Map a rendering-surface id (``"0::Online"`` or ``"0::Online→1::Won"``) back to a key."""
        return self._ids.get(element_id)

    def resolve_node(self, step_index: int, value: Any) -> Optional[Node]:
        """Find the node for a selector value, which may arrive as its id segment or display label."""
        if value == UNKNOWN_LABEL:
            node = self._node_map.get(NodeKey(step_index, UNKNOWN))
            if node is not None:
                return node
        node = self._node_map.get(NodeKey(step_index, value))
        if node is not None:
            return node
        candidates = self.nodes_at(step_index)
        for candidate in candidates:
            if id_segment(candidate.key.value) == str(value):
                return candidate
        for candidate in candidates:
            if candidate.label == str(value):
                return candidate
        return None

    def nodes_at(self, step_index: int) -> List[Node]:
        return [node for node in self.nodes if node.step_index == step_index]

    def links_at(self, boundary: int) -> List[Link]:
        return [link for link in self.links if link.key.boundary == boundary]

    def labels(self) -> List[str]:
        """Distinct node labels in first-seen order."""
        return list(dict.fromkeys(node.label for node in self.nodes))


def _validate_steps(table: RecordTable, steps: Sequence[str]) -> Tuple[str, ...]:
    steps = tuple(steps)
    if len(steps) < 2:
        raise ConfigurationError(f"A path needs at least 2 steps, got {len(steps)}.")
    missing = [step for step in steps if step not in table.steps]
    if missing:
        raise ConfigurationError(f"Steps missing from the record table: {', '.join(missing)}")
    return steps


def _record_paths(table: RecordTable, model: PathModel) -> List[List[Any]]:
    # One entry per step; None where the path model drops the step.
    return [
        [model.value_at(record.values, step_index) for step_index in range(len(model.steps))]
        for record in table.records
    ]


def build_graph(
    table: RecordTable,
    steps: Optional[Sequence[str]] = None,
    null_handling: NullHandling = NullHandling.GROUP_UNKNOWN,
) -> FlowGraph:
    """
    Aggregate a record table into nodes per (step, value) and links per adjacent transition.

    Nodes and links appear in order of first encounter. An empty table yields an empty graph.
    """
    steps = _validate_steps(table, steps if steps is not None else table.steps)
    model = PathModel(steps, null_handling)
    values = _record_paths(table, model)

    node_members: Dict[NodeKey, Set[int]] = {}
    for step_index in range(len(steps)):
        for record_index, path in enumerate(values):
            value = path[step_index]
            if value is None:
                continue
            key = NodeKey(step_index, value)
            node_members.setdefault(key, set()).add(record_index)

    amounts = table.amounts()
    link_members: Dict[LinkKey, Set[int]] = {}
    link_amounts: Dict[LinkKey, float] = defaultdict(float)
    record_paths: List[Tuple[NodeKey, ...]] = []
    for record_index, path in enumerate(values):
        keys: List[NodeKey] = []
        for step_index, value in enumerate(path):
            if value is None:
                break
            keys.append(NodeKey(step_index, value))
        record_paths.append(tuple(keys))
        for source, target in zip(keys, keys[1:]):
            link_key = LinkKey(source, target)
            link_members.setdefault(link_key, set()).add(record_index)
            link_amounts[link_key] += float(amounts[record_index])

    nodes = tuple(
        Node(key=key, label=key.label, step_index=key.step_index, members=frozenset(members))
        for key, members in node_members.items()
    )
    links = tuple(
        Link(key=key, members=frozenset(members), count=float(len(members)), amount=link_amounts[key])
        for key, members in link_members.items()
    )
    logger.info("Built flow graph: %s records, %s steps, %s nodes, %s links.", len(table), len(steps), len(nodes), len(links))
    return FlowGraph(
        table=table,
        steps=steps,
        null_handling=model.null_handling,
        nodes=nodes,
        links=links,
        record_paths=tuple(record_paths),
    )


@dataclass(frozen=True)
class AggregateNode:
    step_index: int
    value: Any

    @property
    def id(self) -> str:
        return NodeKey(self.step_index, self.value).id

    @classmethod
    def from_id(cls, element_id: str) -> "AggregateNode":
        step, _, segment = str(element_id).partition(ID_SEPARATOR)
        return cls(step_index=int(step), value=parse_id_segment(segment))

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AggregateNode":
        if payload.get("id"):
            return cls.from_id(payload["id"])
        label = payload.get("label")
        value = UNKNOWN if label is None or label == UNKNOWN_LABEL else label
        return cls(step_index=int(payload["stepIndex"]), value=value)


@dataclass(frozen=True)
class AggregateLink:
    source: AggregateNode
    target: AggregateNode
    record_ids: Optional[Tuple[str, ...]] = None
    count: Optional[float] = None
    amount: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AggregateLink":
        record_ids = payload.get("recordIds")
        return cls(
            source=AggregateNode.from_id(payload["source"]),
            target=AggregateNode.from_id(payload["target"]),
            record_ids=tuple(str(item) for item in record_ids) if record_ids is not None else None,
            count=payload.get("countVal"),
            amount=payload.get("amountVal"),
        )


def build_graph_from_aggregates(
    table: RecordTable,
    aggregate_nodes: Iterable[AggregateNode],
    aggregate_links: Iterable[AggregateLink],
    steps: Optional[Sequence[str]] = None,
    null_handling: NullHandling = NullHandling.GROUP_UNKNOWN,
) -> FlowGraph:
    """
    Rebuild membership sets for nodes and links aggregated elsewhere.

    Declared nodes are matched to record values by node id, so a declared ``"0::2023"``
    picks up records whose step holds the integer 2023. Declared keys keep their order and
    their external count/amount; members come from re-deriving each record's step values,
    or from the link's record ids when supplied.
    """
    steps = _validate_steps(table, steps if steps is not None else table.steps)
    model = PathModel(steps, null_handling)
    values = _record_paths(table, model)

    record_paths: List[Tuple[NodeKey, ...]] = []
    derived: Dict[str, NodeKey] = {}
    for path in values:
        keys: List[NodeKey] = []
        for step_index, value in enumerate(path):
            if value is None:
                break
            key = NodeKey(step_index, value)
            derived.setdefault(key.id, key)
            keys.append(key)
        record_paths.append(tuple(keys))

    def resolve(item: AggregateNode) -> NodeKey:
        return derived.get(item.id, NodeKey(item.step_index, item.value))

    declared_nodes = list(dict.fromkeys(resolve(item) for item in aggregate_nodes))
    node_members: Dict[NodeKey, Set[int]] = {key: set() for key in declared_nodes}
    for record_index, keys in enumerate(record_paths):
        for key in keys:
            if key in node_members:
                node_members[key].add(record_index)

    amounts = table.amounts()
    links: List[Link] = []
    for item in aggregate_links:
        key = LinkKey(resolve(item.source), resolve(item.target))
        if item.record_ids is not None:
            members = {index for index in (table.index_of(record_id) for record_id in item.record_ids) if index is not None}
        else:
            boundary = key.boundary
            members = {
                record_index
                for record_index, path in enumerate(record_paths)
                if len(path) > boundary + 1 and path[boundary] == key.source and path[boundary + 1] == key.target
            }
        count = float(item.count) if item.count else float(len(members))
        amount = float(item.amount) if item.amount is not None else float(sum(amounts[index] for index in members))
        links.append(Link(key=key, members=frozenset(members), count=count, amount=amount))

    nodes = tuple(
        Node(key=key, label=key.label, step_index=key.step_index, members=frozenset(node_members[key]))
        for key in declared_nodes
    )
    logger.info("Rebuilt membership for %s precomputed nodes and %s links.", len(nodes), len(links))
    return FlowGraph(
        table=table,
        steps=steps,
        null_handling=model.null_handling,
        nodes=nodes,
        links=tuple(links),
        record_paths=tuple(record_paths),
    )
