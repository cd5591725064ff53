from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, List, Optional, Union

from .graph_builder import ElementKey, LinkKey, NodeKey
from .logging_setup import get_logger

logger = get_logger("interaction")


class Mode(str, Enum):
    AGGREGATE = "AGGREGATE"
    RECORD_TRACE = "RECORD_TRACE"
    FLOW_TRACE = "FLOW_TRACE"


@dataclass(frozen=True)
class SelectionState:
    """Everything the Selection Engine reads. Replaced, never mutated, on each transition."""

    mode: Mode = Mode.AGGREGATE
    record_id: Optional[str] = None
    flow_step: Optional[int] = None
    flow_value: Optional[Any] = None
    trace_cursor: int = 0
    clicked: Optional[ElementKey] = None


# Intents published to the surrounding UI shell.


@dataclass(frozen=True)
class ModeChanged:
    previous: Mode
    mode: Mode

    def __post_init__(self) -> None:
        if not isinstance(self.mode, Mode) or not isinstance(self.previous, Mode):
            raise TypeError("ModeChanged needs Mode values.")


@dataclass(frozen=True)
class RecordSelected:
    record_id: Optional[str]
    trace_cursor: int


@dataclass(frozen=True)
class FlowValueSelected:
    step_index: Optional[int]
    value: Optional[Any]

    def __post_init__(self) -> None:
        if self.step_index is not None and self.step_index < 0:
            raise ValueError("step_index must be non-negative.")
        if self.value is not None and self.step_index is None:
            raise ValueError("A flow value needs its step.")


@dataclass(frozen=True)
class TraceStepped:
    trace_cursor: int

    def __post_init__(self) -> None:
        if self.trace_cursor < 0:
            raise ValueError("trace_cursor must be non-negative.")


@dataclass(frozen=True)
class ElementClicked:
    element: ElementKey
    selected: bool

    def __post_init__(self) -> None:
        if not isinstance(self.element, (NodeKey, LinkKey)):
            raise TypeError("ElementClicked needs a node or link key.")


@dataclass(frozen=True)
class ResetRequested:
    pass


Intent = Union[ModeChanged, RecordSelected, FlowValueSelected, TraceStepped, ElementClicked, ResetRequested]
Listener = Callable[[Intent], None]


class InteractionStateMachine:
    """
    Owns the exploration mode, its parameters, the trace cursor and the clicked element.

    Transitions follow the UI: changing mode clears the parameters of the mode being left
    and any clicked element; clicking toggles an element without touching the mode.
    """

    def __init__(self, step_count: int = 0):
        self._step_count = max(0, step_count)
        self._state = SelectionState()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> SelectionState:
        return self._state

    @property
    def mode(self) -> Mode:
        return self._state.mode

    @property
    def max_trace_cursor(self) -> int:
        return max(0, self._step_count - 2)

    @property
    def trace_label(self) -> str:
        maximum = self.max_trace_cursor if self._state.record_id else 0
        return f"Step {self._state.trace_cursor} / {maximum}"

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, intent: Intent) -> None:
        for listener in list(self._listeners):
            listener(intent)

    def _clamp(self, cursor: int) -> int:
        return min(max(cursor, 0), self.max_trace_cursor)

    def set_step_count(self, step_count: int) -> None:
        """Called whenever a new graph replaces the old one."""
        self._step_count = max(0, step_count)
        self._state = replace(self._state, trace_cursor=self._clamp(self._state.trace_cursor))

    def set_mode(self, mode: Union[Mode, str]) -> None:
        mode = Mode(mode)
        previous = self._state.mode
        changes: dict[str, Any] = {"mode": mode, "clicked": None}
        if mode is not Mode.RECORD_TRACE:
            changes.update(record_id=None, trace_cursor=0)
        if mode is not Mode.FLOW_TRACE:
            changes.update(flow_step=None, flow_value=None)
        self._state = replace(self._state, **changes)
        logger.debug("Mode %s -> %s", previous.value, mode.value)
        self._emit(ModeChanged(previous=previous, mode=mode))

    def select_record(self, record_id: Optional[str]) -> None:
        record_id = str(record_id) if record_id not in (None, "") else None
        cursor = self.max_trace_cursor if record_id else 0
        self._state = replace(self._state, record_id=record_id, trace_cursor=cursor, clicked=None)
        self._emit(RecordSelected(record_id=record_id, trace_cursor=cursor))

    def select_flow_step(self, step_index: Optional[int]) -> None:
        """Changing the step alone drops the value, which belonged to the old step."""
        step_index = int(step_index) if step_index not in (None, "") else None
        self._state = replace(self._state, flow_step=step_index, flow_value=None, clicked=None)
        self._emit(FlowValueSelected(step_index=step_index, value=None))

    def select_flow_value(self, value: Optional[Any]) -> None:
        if self._state.flow_step is None:
            return
        value = value if value != "" else None
        self._state = replace(self._state, flow_value=value, clicked=None)
        self._emit(FlowValueSelected(step_index=self._state.flow_step, value=value))

    def select_flow_step_and_value(self, step_index: int, value: Any) -> None:
        step_index = int(step_index)
        value = value if value != "" else None
        self._state = replace(self._state, flow_step=step_index, flow_value=value, clicked=None)
        self._emit(FlowValueSelected(step_index=step_index, value=value))

    def drill_into_node(self, node: NodeKey) -> None:
        """Switch to flow trace on a node, as a node click in the builder does."""
        if self._state.mode is not Mode.FLOW_TRACE:
            self.set_mode(Mode.FLOW_TRACE)
        self.select_flow_step_and_value(node.step_index, node.value)

    def _move_cursor(self, cursor: int) -> None:
        if self._state.mode is not Mode.RECORD_TRACE:
            return
        cursor = self._clamp(cursor)
        if cursor == self._state.trace_cursor:
            return
        self._state = replace(self._state, trace_cursor=cursor)
        self._emit(TraceStepped(trace_cursor=cursor))

    def trace_next(self) -> None:
        self._move_cursor(self._state.trace_cursor + 1)

    def trace_prev(self) -> None:
        self._move_cursor(self._state.trace_cursor - 1)

    def trace_reset(self) -> None:
        self._move_cursor(0)

    def click_element(self, element: ElementKey) -> None:
        selected = self._state.clicked != element
        self._state = replace(self._state, clicked=element if selected else None)
        self._emit(ElementClicked(element=element, selected=selected))

    def clear_click(self) -> None:
        if self._state.clicked is not None:
            self._state = replace(self._state, clicked=None)

    def reset(self) -> None:
        self._state = SelectionState()
        self._emit(ResetRequested())
