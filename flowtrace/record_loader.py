from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from pandas.errors import ParserError

from .errors import ConfigurationError

RECORD_ID = "record_id"
NAME = "name"
AMOUNT = "amount"
CANONICAL_COLUMNS = (RECORD_ID, NAME, AMOUNT)


class RecordFormatError(ConfigurationError):
    """Raised when a record table cannot be parsed or is missing required columns."""


@dataclass(frozen=True)
class Record:
    record_id: str
    name: str
    amount: float
    values: Mapping[str, Any] = field(default_factory=dict)

    def value(self, step: str) -> Any:
        return self.values.get(step)


@dataclass(frozen=True, eq=False)
class RecordTable:
    """
    Immutable table of records flowing through an ordered list of step columns.

    The dataframe uses `record_id`, `name` and `amount` as canonical columns next to the
    step columns. Tables are replaced wholesale on reload; nothing mutates one in place.
    """

    df: pd.DataFrame
    steps: tuple[str, ...]
    truncated: bool = False

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        steps: Sequence[str],
        *,
        record_id_col: str = RECORD_ID,
        name_col: Optional[str] = NAME,
        amount_col: Optional[str] = AMOUNT,
        truncated: bool = False,
    ) -> "RecordTable":
        normalised = _normalise_dataframe(df, steps, record_id_col, name_col, amount_col)
        return cls(df=normalised, steps=tuple(steps), truncated=truncated)

    @classmethod
    def from_records(cls, rows: Iterable[Mapping[str, Any]], steps: Sequence[str]) -> "RecordTable":
        """Build a table from plain dicts keyed by `id`, `name`, `amount` and the step names."""
        rows = list(rows)
        columns = ["id", "name", "amount", *steps]
        df = pd.DataFrame(rows, columns=columns) if rows else pd.DataFrame(columns=columns)
        return cls.from_dataframe(df, steps, record_id_col="id", name_col="name", amount_col="amount")

    @classmethod
    def empty(cls, steps: Sequence[str]) -> "RecordTable":
        return cls(df=pd.DataFrame(columns=[*CANONICAL_COLUMNS, *steps]), steps=tuple(steps))

    def __len__(self) -> int:
        return len(self.df)

    @cached_property
    def records(self) -> tuple[Record, ...]:
        rows = self.df.to_dict(orient="records")
        return tuple(
            Record(
                record_id=row[RECORD_ID],
                name=row[NAME],
                amount=float(row[AMOUNT]),
                values={step: row[step] for step in self.steps},
            )
            for row in rows
        )

    @cached_property
    def _index_by_id(self) -> Dict[str, int]:
        index: Dict[str, int] = {}
        for position, record_id in enumerate(self.df[RECORD_ID].tolist()):
            index.setdefault(record_id, position)
        return index

    @property
    def record_ids(self) -> List[str]:
        return self.df[RECORD_ID].tolist()

    @property
    def total_amount(self) -> float:
        return float(self.df[AMOUNT].sum()) if len(self.df) else 0.0

    def index_of(self, record_id: Optional[str]) -> Optional[int]:
        if record_id is None or record_id == "":
            return None
        return self._index_by_id.get(str(record_id))

    def amounts(self) -> np.ndarray:
        return self.df[AMOUNT].to_numpy(dtype=float)

    def names(self) -> List[str]:
        return self.df[NAME].tolist()


def _normalise_dataframe(
    df: pd.DataFrame,
    steps: Sequence[str],
    record_id_col: str,
    name_col: Optional[str],
    amount_col: Optional[str],
) -> pd.DataFrame:
    """
    Standardise column names and types so every downstream consumer sees the same shape.
    """
    if len(steps) < 2:
        raise ConfigurationError(f"A path needs at least 2 steps, got {len(steps)}.")
    if len(set(steps)) != len(steps):
        raise ConfigurationError("Path steps must be distinct columns.")

    missing = {record_id_col, *steps} - set(df.columns)
    if missing:
        raise RecordFormatError(f"Missing required columns: {', '.join(sorted(missing))}")

    normalised = pd.DataFrame(index=df.index)
    ids = df[record_id_col]
    if ids.isna().any() or (ids.astype(str).str.strip() == "").any():
        raise RecordFormatError(f"Every record needs a value in '{record_id_col}'.")
    normalised[RECORD_ID] = ids.astype(str)

    if name_col and name_col in df.columns:
        normalised[NAME] = df[name_col].where(df[name_col].notna(), normalised[RECORD_ID]).astype(str)
    else:
        normalised[NAME] = normalised[RECORD_ID]

    if amount_col and amount_col in df.columns:
        normalised[AMOUNT] = pd.to_numeric(df[amount_col], errors="coerce").fillna(0.0).astype(float)
    else:
        normalised[AMOUNT] = 0.0

    for step in steps:
        column = df[step].astype(object)
        normalised[step] = column.where(column.notna(), None)

    return normalised.reset_index(drop=True)


def read_csv_frame(buffer: io.BytesIO, **kwargs: Any) -> pd.DataFrame:
    """
    Read raw CSV content, retrying with a sniffed delimiter when the default comma fails.
    """
    try:
        df = pd.read_csv(buffer, **kwargs)
    except ParserError:
        buffer.seek(0)
        try:
            return pd.read_csv(buffer, sep=None, engine="python", **kwargs)
        except ParserError as exc_second:
            raise RecordFormatError(
                "Unable to parse CSV content. Ensure the file uses a consistent delimiter (e.g., comma or semicolon) "
                "and that embedded commas are quoted."
            ) from exc_second
    if len(df.columns) > 1:
        return df
    # One column usually means a different delimiter.
    buffer.seek(0)
    try:
        return pd.read_csv(buffer, sep=None, engine="python", **kwargs)
    except (ParserError, csv.Error):
        return df


def try_auto_detect_columns(df: pd.DataFrame) -> tuple[str, Optional[str], Optional[str]]:
    """
    Best-effort detection of id/name/amount columns for CSV uploads.
    """
    lowered = {col.lower(): col for col in df.columns}

    def pick(options: Iterable[str]) -> Optional[str]:
        for option in options:
            if option in lowered:
                return lowered[option]
        return None

    id_col = pick(("id", "record_id", "recordid", "record id", "key"))
    name_col = pick(("name", "record_name", "title", "label"))
    amount_col = pick(("amount", "value", "revenue", "total"))

    if id_col is None:
        raise RecordFormatError("Could not auto-detect the record id column.")

    return id_col, name_col, amount_col

