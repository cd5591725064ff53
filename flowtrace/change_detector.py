from __future__ import annotations

import hashlib
import json
import weakref
from dataclasses import dataclass
from typing import Optional, Sequence

import pandas as pd

from .metrics import Metric
from .path_model import NullHandling
from .record_loader import RecordTable

_TABLE_DIGESTS: "weakref.WeakKeyDictionary[RecordTable, str]" = weakref.WeakKeyDictionary()


def table_digest(table: RecordTable) -> str:
    """Content hash of a record table, cached per table instance since tables never mutate."""
    cached = _TABLE_DIGESTS.get(table)
    if cached is not None:
        return cached
    hasher = hashlib.sha256()
    hasher.update(json.dumps(list(table.df.columns), default=str).encode("utf-8"))
    if len(table.df):
        row_hashes = pd.util.hash_pandas_object(table.df.astype(str), index=True)
        hasher.update(row_hashes.to_numpy().tobytes())
    digest = hasher.hexdigest()
    _TABLE_DIGESTS[table] = digest
    return digest


@dataclass(frozen=True)
class Fingerprint:
    """
    Structural identity of what is drawn. Mode and trace parameters are not part of it.
    """

    table: str
    steps: tuple[str, ...]
    metric: Metric
    null_handling: NullHandling

    @classmethod
    def of(
        cls,
        table: RecordTable,
        steps: Optional[Sequence[str]] = None,
        metric: Metric | str = Metric.COUNT,
        null_handling: NullHandling = NullHandling.GROUP_UNKNOWN,
    ) -> "Fingerprint":
        return cls(
            table=table_digest(table),
            steps=tuple(steps if steps is not None else table.steps),
            metric=Metric.parse(metric),
            null_handling=NullHandling.parse(null_handling),
        )


def should_rebuild(previous: Optional[Fingerprint], current: Fingerprint) -> bool:
    return previous != current
