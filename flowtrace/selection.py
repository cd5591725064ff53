from __future__ import annotations

from typing import FrozenSet, Optional

from .errors import SelectionMiscomputedWarning
from .graph_builder import FlowGraph
from .logging_setup import get_logger
from .state_machine import Mode, SelectionState

logger = get_logger("selection")

# None means "no restriction": everything renders at base weight.
# An empty frozenset means "restricted to nothing" and dims everything.
ActiveRecordSet = Optional[FrozenSet[int]]
NO_RESTRICTION: ActiveRecordSet = None


def _fallback(message: str) -> ActiveRecordSet:
    logger.warning("Selection falls back to no restriction: %s", SelectionMiscomputedWarning(message))
    return NO_RESTRICTION


def active_record_set(graph: Optional[FlowGraph], state: SelectionState) -> ActiveRecordSet:
    """
    Resolve the records lit up by the current selection.

    A clicked node or link wins regardless of mode; then a traced record; then a traced
    flow value. Anything that does not resolve yields no restriction.
    """
    if graph is None:
        return NO_RESTRICTION

    if state.clicked is not None:
        members = graph.members_of(state.clicked)
        if members is None:
            return _fallback(f"clicked element {state.clicked.id!r} is not in the current graph")
        return members

    if state.mode is Mode.RECORD_TRACE:
        if not state.record_id:
            return NO_RESTRICTION
        record_index = graph.table.index_of(state.record_id)
        if record_index is None:
            return _fallback(f"unknown record id {state.record_id!r}")
        return frozenset({record_index})

    if state.mode is Mode.FLOW_TRACE:
        if state.flow_step is None or state.flow_value is None:
            return NO_RESTRICTION
        if not 0 <= state.flow_step < graph.step_count:
            return _fallback(f"step index {state.flow_step} is outside the path")
        node = graph.resolve_node(state.flow_step, state.flow_value)
        if node is None:
            return _fallback(f"no node for step {state.flow_step} value {state.flow_value!r}")
        return node.members

    return NO_RESTRICTION
