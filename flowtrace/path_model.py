from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional, Sequence

import pandas as pd


class _Unknown:
    """Sentinel for an absent step value. Equal only to itself, so never to ``""``."""

    _instance: Optional["_Unknown"] = None

    def __new__(cls) -> "_Unknown":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNKNOWN"

    def __str__(self) -> str:
        return UNKNOWN_LABEL

    def __reduce__(self):
        return (_Unknown, ())


UNKNOWN = _Unknown()
UNKNOWN_LABEL = "∅"


class NullHandling(str, Enum):
    GROUP_UNKNOWN = "GROUP_UNKNOWN"
    STOP = "STOP"
    CARRY_FORWARD = "CARRY_FORWARD"

    @classmethod
    def parse(cls, value: Any) -> "NullHandling":
        if isinstance(value, cls):
            return value
        if not value:
            return cls.GROUP_UNKNOWN
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.GROUP_UNKNOWN


def is_absent(value: Any) -> bool:
    if value is None or value is UNKNOWN:
        return True
    if isinstance(value, str):
        return value == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def display_label(value: Any) -> str:
    return UNKNOWN_LABEL if value is UNKNOWN else str(value)


class PathModel:
    """
    Turns a record's raw step values into node values.

    ``GROUP_UNKNOWN`` substitutes the shared sentinel for every absent value.
    ``CARRY_FORWARD`` repeats the last present value of the path, falling back to the
    sentinel when nothing precedes it. ``STOP`` ends the path at the first absent value:
    that step and every later one yield ``None`` and contribute neither nodes nor links.
    """

    def __init__(self, steps: Sequence[str], null_handling: NullHandling = NullHandling.GROUP_UNKNOWN):
        self.steps = tuple(steps)
        self.null_handling = NullHandling.parse(null_handling)

    def value_at(self, values: Mapping[str, Any], step_index: int) -> Any:
        if self.null_handling is NullHandling.STOP:
            for index in range(step_index + 1):
                if is_absent(values.get(self.steps[index])):
                    return None
            return values.get(self.steps[step_index])
        raw = values.get(self.steps[step_index])
        if not is_absent(raw):
            return raw
        if self.null_handling is NullHandling.CARRY_FORWARD:
            for previous in range(step_index - 1, -1, -1):
                earlier = values.get(self.steps[previous])
                if not is_absent(earlier):
                    return earlier
        return UNKNOWN

    def path_of(self, values: Mapping[str, Any]) -> list[Any]:
        """Node values of one record in step order, cut at the first ``None`` under ``STOP``."""
        path: list[Any] = []
        for step_index in range(len(self.steps)):
            value = self.value_at(values, step_index)
            if value is None:
                break
            path.append(value)
        return path
