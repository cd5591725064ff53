from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pandas as pd

from .change_detector import Fingerprint, should_rebuild
from .config import ExplorerConfig
from .data_source import DataSource, LoadResult, load_or_unavailable
from .errors import ConfigurationError, DataUnavailableError
from .graph_builder import ElementKey, FlowGraph, LinkKey, NodeKey, build_graph, id_segment
from .highlight import HighlightProjection, TooltipData, hover_preview, link_tooltip, node_tooltip, project_for_state
from .layout import LayoutLink, LayoutNode, LayoutResult, LayoutRoutine, sankey_layout
from .logging_setup import get_logger
from .metrics import (
    Metric,
    assign_label_colours,
    compute_flow_trace_kpis,
    compute_kpis,
    compute_top_paths,
    project_link_weights,
)
from .record_loader import RecordTable
from .selection import ActiveRecordSet, active_record_set
from .state_machine import InteractionStateMachine, Listener, Mode, SelectionState

DEFAULT_WIDTH = 960
DEFAULT_HEIGHT = 540
MIN_HEIGHT = 440

Builder = Callable[..., FlowGraph]


@dataclass(frozen=True)
class ExplorerSnapshot:
    graph: FlowGraph
    layout: LayoutResult
    highlight: HighlightProjection
    state: SelectionState
    metric: Metric
    colours: Dict[NodeKey, str]


class FlowExplorer:
    """
    Coordinates loading, graph rebuilds and re-highlighting for one flow diagram.

    A rebuild (new graph, new layout) happens only when the fingerprint of table, steps,
    metric and null handling changes. Mode, record, flow value, cursor and click changes
    re-run the highlight projection against the existing layout.
    """

    def __init__(
        self,
        source: DataSource,
        layout: LayoutRoutine = sankey_layout,
        *,
        width: float = DEFAULT_WIDTH,
        height: float = DEFAULT_HEIGHT,
        builder: Builder = build_graph,
    ):
        self.logger = get_logger("explorer")
        self.source = source
        self.layout_routine = layout
        self.builder = builder
        self.machine = InteractionStateMachine()

        self.config: Optional[ExplorerConfig] = None
        self.metric = Metric.COUNT
        self.loading = False
        self.error_message = ""

        self._table: Optional[RecordTable] = None
        self._graph: Optional[FlowGraph] = None
        self._fingerprint: Optional[Fingerprint] = None
        self._layout: Optional[LayoutResult] = None
        self._highlight: Optional[HighlightProjection] = None
        self._colours: Dict[NodeKey, str] = {}

        self._requested_hash: Optional[str] = None
        self._last_hash: Optional[str] = None
        self._cached_result: Optional[LoadResult] = None

        self._size: Tuple[float, float] = (width, height)
        self._pending_size: Optional[Tuple[float, float]] = None

        self.build_count = 0
        self.layout_count = 0

    # ------------------------------------------------------------------ loading

    def request_load(self, config: ExplorerConfig) -> str:
        """
        Start a load for `config` and return its hash.

        Only the result carrying the most recently requested hash is accepted by
        `complete_load`; earlier in-flight results are discarded when they arrive.
        """
        config.validate()
        config_hash = config.config_hash()
        self.config = config
        self._requested_hash = config_hash
        self.loading = True
        self.error_message = ""
        self.logger.info("Load requested for %s (%s fields).", config.object_name or "records", len(config.path_fields))
        return config_hash

    def complete_load(self, config_hash: str, outcome: Union[LoadResult, Exception]) -> bool:
        if config_hash != self._requested_hash:
            self.logger.warning("Discarding stale load result %s.", config_hash[:12])
            return False
        self.loading = False
        if isinstance(outcome, Exception):
            self.error_message = str(outcome) or outcome.__class__.__name__
            self.logger.error("Load failed: %s", self.error_message)
            return False
        try:
            self._apply_result(outcome)
        except ConfigurationError as exc:
            self.error_message = str(exc)
            self.logger.warning("Loaded records rejected: %s", exc)
            return False
        self._last_hash = config_hash
        self._cached_result = outcome
        return True

    def load(self, config: ExplorerConfig) -> bool:
        config_hash = self.request_load(config)
        if config_hash == self._last_hash and self._cached_result is not None:
            self.logger.info("Configuration unchanged; reusing cached records.")
            return self.complete_load(config_hash, self._cached_result)
        try:
            result = load_or_unavailable(self.source, config)
        except (ConfigurationError, DataUnavailableError) as exc:
            self.logger.exception("Failed to load records.")
            return self.complete_load(config_hash, exc)
        return self.complete_load(config_hash, result)

    def _apply_result(self, result: LoadResult) -> None:
        metric = Metric.parse(self.config.metric_display) if self.config else self.metric
        null_handling = self.config.null_handling if self.config else None
        fingerprint = Fingerprint.of(result.table, result.steps, metric, null_handling)
        if self._graph is not None and not should_rebuild(self._fingerprint, fingerprint):
            self._table = result.table
            self.metric = metric
        else:
            graph = self._build(result.table, fingerprint)
            # Swap everything at once so no half-built state is observable.
            self._table = result.table
            self.metric = metric
            self._install(graph, fingerprint)
        self.machine.reset()
        self.machine.set_step_count(self._graph.step_count)
        self._restyle()

    def _build(self, table: RecordTable, fingerprint: Fingerprint) -> FlowGraph:
        graph = self.builder(table, fingerprint.steps, fingerprint.null_handling)
        self.build_count += 1
        return graph

    def _install(self, graph: FlowGraph, fingerprint: Fingerprint) -> None:
        self._graph = graph
        self._fingerprint = fingerprint
        self._colours = assign_label_colours(graph)
        self._relayout()

    # ------------------------------------------------------------------ refresh

    def refresh(self) -> bool:
        """Rebuild when the fingerprint moved, otherwise only re-highlight. Returns True on rebuild."""
        if self._table is None or self._graph is None:
            return False
        fingerprint = Fingerprint.of(self._table, self._graph.steps, self.metric, self._graph.null_handling)
        if should_rebuild(self._fingerprint, fingerprint):
            self.logger.info("Structure changed; rebuilding graph.")
            self._install(self._build(self._table, fingerprint), fingerprint)
            self.machine.set_step_count(self._graph.step_count)
            self._restyle()
            return True
        self._restyle()
        return False

    def set_metric(self, metric: Union[Metric, str]) -> bool:
        self.metric = Metric.parse(metric)
        self.machine.clear_click()
        return self.refresh()

    def _relayout(self) -> None:
        graph = self._graph
        if graph is None:
            return
        width, height = self._size
        layout_nodes = [LayoutNode(id=node.id) for node in graph.nodes]
        layout_links = [
            LayoutLink(id=weight.id, source=weight.source_id, target=weight.target_id, value=weight.value)
            for weight in project_link_weights(graph, self.metric)
        ]
        self._layout = self.layout_routine(layout_nodes, layout_links, width, height)
        self.layout_count += 1

    def _restyle(self) -> None:
        if self._graph is None:
            self._highlight = None
            return
        state = self.machine.state
        self._highlight = project_for_state(self._graph, state, active_record_set(self._graph, state))

    # ------------------------------------------------------------------ resize

    def request_resize(self, width: float, height: Optional[float] = None) -> None:
        """Record a viewport change; only the latest one is acted on by `flush_resize`."""
        if width <= 0:
            return
        if height is None:
            height = max(MIN_HEIGHT, round(width * 0.55))
        self._pending_size = (width, height)

    def flush_resize(self) -> bool:
        """Run once per animation tick. Relayouts the same graph when the size changed."""
        pending, self._pending_size = self._pending_size, None
        if pending is None or pending == self._size:
            return False
        self._size = pending
        if self._graph is None:
            return False
        self._relayout()
        self._restyle()
        return True

    # ------------------------------------------------------------------ interaction

    def _interactive(self) -> bool:
        if self._graph is None:
            self.logger.debug("Ignoring interaction: no data yet.")
            return False
        return True

    def _after(self, action: Callable[..., None], *args: Any) -> None:
        if not self._interactive():
            return
        action(*args)
        self._restyle()

    def set_mode(self, mode: Union[Mode, str]) -> None:
        self._after(self.machine.set_mode, mode)

    def select_record(self, record_id: Optional[str]) -> None:
        self._after(self.machine.select_record, record_id)

    def select_flow_step(self, step_index: Optional[int]) -> None:
        self._after(self.machine.select_flow_step, step_index)

    def select_flow_value(self, value: Any) -> None:
        self._after(self.machine.select_flow_value, value)

    def select_flow_step_and_value(self, step_index: int, value: Any) -> None:
        self._after(self.machine.select_flow_step_and_value, step_index, value)

    def trace_next(self) -> None:
        self._after(self.machine.trace_next)

    def trace_prev(self) -> None:
        self._after(self.machine.trace_prev)

    def trace_reset(self) -> None:
        self._after(self.machine.trace_reset)

    def _element(self, element: Union[ElementKey, str]) -> Optional[ElementKey]:
        if isinstance(element, (NodeKey, LinkKey)):
            return element
        return self._graph.element_for_id(element) if self._graph else None

    def click_element(self, element: Union[ElementKey, str]) -> None:
        if not self._interactive():
            return
        key = self._element(element)
        if key is None:
            self.logger.warning("Click on unknown element %r ignored.", element)
            return
        self.machine.click_element(key)
        self._restyle()

    def drill_into_node(self, element: Union[NodeKey, str]) -> None:
        if not self._interactive():
            return
        key = self._element(element)
        if not isinstance(key, NodeKey):
            self.logger.warning("Drill-down needs a node, got %r.", element)
            return
        self.machine.drill_into_node(key)
        self._restyle()

    def reset(self) -> None:
        if not self._interactive():
            return
        self.machine.reset()
        self.set_metric(Metric.COUNT)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.machine.subscribe(listener)

    # ------------------------------------------------------------------ read models

    @property
    def graph(self) -> Optional[FlowGraph]:
        return self._graph

    @property
    def highlight(self) -> Optional[HighlightProjection]:
        return self._highlight

    @property
    def state(self) -> SelectionState:
        return self.machine.state

    @property
    def has_data(self) -> bool:
        return self._graph is not None and not self._graph.is_empty

    def require_graph(self) -> FlowGraph:
        if self._graph is None:
            raise DataUnavailableError(self.error_message or "No records loaded yet.")
        return self._graph

    def snapshot(self) -> ExplorerSnapshot:
        graph = self.require_graph()
        return ExplorerSnapshot(
            graph=graph,
            layout=self._layout,
            highlight=self._highlight,
            state=self.machine.state,
            metric=self.metric,
            colours=dict(self._colours),
        )

    def active_records(self) -> ActiveRecordSet:
        return active_record_set(self._graph, self.machine.state)

    def tooltip(self, element: Union[ElementKey, str]) -> Optional[TooltipData]:
        if self._graph is None:
            return None
        key = self._element(element)
        if isinstance(key, NodeKey):
            return node_tooltip(self._graph, key)
        if isinstance(key, LinkKey):
            return link_tooltip(self._graph, key)
        return None

    def hover(self, element: Union[ElementKey, str]) -> Optional[HighlightProjection]:
        """Preview for a hovered element; a clicked selection keeps its own highlight."""
        if self._graph is None:
            return None
        key = self._element(element)
        if self.machine.state.clicked is None and isinstance(key, NodeKey):
            return hover_preview(self._graph, key)
        return self._highlight

    def record_options(self) -> List[Dict[str, str]]:
        if self._table is None:
            return []
        return [{"label": f"{record.name} ({record.record_id})", "value": record.record_id} for record in self._table.records]

    def step_options(self) -> List[Dict[str, str]]:
        if self._graph is None:
            return []
        return [{"label": step, "value": str(index)} for index, step in enumerate(self._graph.steps)]

    def flow_value_options(self, step_index: Optional[int] = None) -> List[Dict[str, str]]:
        graph = self._graph
        step_index = self.machine.state.flow_step if step_index is None else step_index
        if graph is None or step_index is None or not 0 <= step_index < graph.step_count:
            return []
        nodes = sorted(graph.nodes_at(step_index), key=lambda node: (node.label, node.id))
        return [{"label": node.label, "value": id_segment(node.key.value)} for node in nodes]

    def kpis(self) -> Dict[str, Any]:
        return compute_kpis(self.require_graph())

    def top_paths(self, limit: Optional[int] = 10) -> pd.DataFrame:
        return compute_top_paths(self.require_graph(), self.metric, limit)

    def flow_trace_kpis(self) -> Optional[Dict[str, Any]]:
        state = self.machine.state
        if self._graph is None or state.mode is not Mode.FLOW_TRACE:
            return None
        return compute_flow_trace_kpis(self._graph, state.flow_step, state.flow_value)
