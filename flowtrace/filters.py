from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping, Optional

import pandas as pd

from .errors import ConfigurationError

OPERATORS = ("=", "!=", ">", "<", ">=", "<=", "LIKE", "IN")
DATE_RANGES = ("THIS_QUARTER", "LAST_QUARTER", "THIS_YEAR", "LAST_YEAR", "LAST_30_DAYS", "LAST_90_DAYS")


@dataclass(frozen=True)
class FilterCondition:
    field: str
    operator: str
    value: Any

    def __post_init__(self) -> None:
        if not self.field:
            raise ConfigurationError("Filter rows need a field.")
        if self.operator not in OPERATORS:
            raise ConfigurationError(f"Unsupported filter operator: {self.operator}")

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "FilterCondition":
        return cls(field=payload.get("field", ""), operator=payload.get("operator", "="), value=payload.get("value"))

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator, "value": self.value}


def _like_pattern(value: str) -> re.Pattern[str]:
    # SOQL style: % matches any run, _ a single character.
    escaped = re.escape(value).replace("%", ".*").replace("_", ".")
    return re.compile(f"^{escaped}$", re.IGNORECASE)


def _date_range_bounds(name: str, now: datetime) -> tuple[datetime, datetime]:
    if name == "LAST_30_DAYS":
        return now - timedelta(days=30), now
    if name == "LAST_90_DAYS":
        return now - timedelta(days=90), now
    if name == "THIS_YEAR":
        start = datetime(now.year, 1, 1, tzinfo=timezone.utc)
        return start, datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    if name == "LAST_YEAR":
        return datetime(now.year - 1, 1, 1, tzinfo=timezone.utc), datetime(now.year, 1, 1, tzinfo=timezone.utc)
    quarter_start_month = 3 * ((now.month - 1) // 3) + 1
    this_quarter = datetime(now.year, quarter_start_month, 1, tzinfo=timezone.utc)
    if name == "THIS_QUARTER":
        next_month = quarter_start_month + 3
        if next_month > 12:
            return this_quarter, datetime(now.year + 1, next_month - 12, 1, tzinfo=timezone.utc)
        return this_quarter, datetime(now.year, next_month, 1, tzinfo=timezone.utc)
    previous_month = quarter_start_month - 3
    if previous_month < 1:
        return datetime(now.year - 1, previous_month + 12, 1, tzinfo=timezone.utc), this_quarter
    return datetime(now.year, previous_month, 1, tzinfo=timezone.utc), this_quarter


def _condition_mask(df: pd.DataFrame, condition: FilterCondition, now: datetime) -> pd.Series:
    column = df[condition.field]
    operator = condition.operator
    value = condition.value

    if operator == "=" and isinstance(value, str) and value in DATE_RANGES:
        timestamps = pd.to_datetime(column, utc=True, errors="coerce")
        start, end = _date_range_bounds(value, now)
        return (timestamps >= pd.Timestamp(start)) & (timestamps < pd.Timestamp(end))
    if operator == "IN":
        if isinstance(value, str):
            allowed = {item.strip() for item in value.split(",") if item.strip()}
        else:
            allowed = {str(item) for item in value or ()}
        return column.astype(str).isin(allowed)
    if operator == "LIKE":
        pattern = _like_pattern(str(value))
        return column.astype(str).map(lambda cell: bool(pattern.match(cell)))
    if operator in {"=", "!="}:
        numeric = pd.to_numeric(pd.Series([value]), errors="coerce").iloc[0]
        if pd.api.types.is_numeric_dtype(column) and pd.notna(numeric):
            mask = column == numeric
        else:
            mask = column.astype(str) == str(value)
        return mask if operator == "=" else ~mask

    numeric_column = pd.to_numeric(column, errors="coerce")
    numeric_value = pd.to_numeric(pd.Series([value]), errors="coerce").iloc[0]
    if pd.isna(numeric_value):
        raise ConfigurationError(f"Filter '{condition.field} {operator}' needs a numeric value, got {value!r}.")
    if operator == ">":
        return numeric_column > numeric_value
    if operator == "<":
        return numeric_column < numeric_value
    if operator == ">=":
        return numeric_column >= numeric_value
    return numeric_column <= numeric_value


def apply_conditions(
    df: pd.DataFrame, conditions: Iterable[FilterCondition], *, now: Optional[datetime] = None
) -> pd.DataFrame:
    """AND together every condition; fields missing from the frame are a configuration error."""
    now = now or datetime.now(timezone.utc)
    subset = df
    for condition in conditions:
        if condition.field not in subset.columns:
            raise ConfigurationError(f"Filter field '{condition.field}' is not a column of the record table.")
        subset = subset[_condition_mask(subset, condition, now).fillna(False).astype(bool)]
    return subset.copy()

