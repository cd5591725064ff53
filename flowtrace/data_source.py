from __future__ import annotations

import io
import pathlib
from dataclasses import dataclass
from typing import Protocol

import pandas as pd

from .config import ExplorerConfig
from .errors import ConfigurationError, DataUnavailableError
from .filters import apply_conditions
from .logging_setup import get_logger
from .record_loader import RecordFormatError, RecordTable, read_csv_frame

DATASET_LIMIT = 10_000

logger = get_logger("data")


@dataclass(frozen=True)
class LoadResult:
    table: RecordTable
    config_hash: str

    @property
    def steps(self) -> tuple[str, ...]:
        return self.table.steps

    @property
    def truncated(self) -> bool:
        return self.table.truncated


class DataSource(Protocol):
    def load_records(self, config: ExplorerConfig) -> LoadResult: ...


class DataFrameSource:
    """Serves records from an in-memory dataframe, applying filters and the dataset limit."""

    def __init__(self, df: pd.DataFrame, *, object_name: str = "", limit: int = DATASET_LIMIT):
        self.df = df
        self.object_name = object_name
        self.limit = limit

    def load_records(self, config: ExplorerConfig) -> LoadResult:
        config.validate()
        if self.object_name and config.object_name and config.object_name != self.object_name:
            raise DataUnavailableError(f"No records for object '{config.object_name}'.")

        subset = apply_conditions(self.df, config.filters)
        truncated = len(subset) >= self.limit
        if len(subset) > self.limit:
            subset = subset.head(self.limit)

        table = RecordTable.from_dataframe(
            subset,
            config.path_fields,
            record_id_col=config.record_id_field,
            name_col=config.name_field,
            amount_col=config.metric_field or None,
            truncated=truncated,
        )
        logger.info(
            "Loaded %s records over %s steps%s.",
            len(table),
            len(table.steps),
            " (truncated)" if truncated else "",
        )
        return LoadResult(table=table, config_hash=config.config_hash())


class CsvSource(DataFrameSource):
    def __init__(self, path: pathlib.Path, *, object_name: str = "", limit: int = DATASET_LIMIT):
        try:
            df = read_csv_frame(io.BytesIO(path.read_bytes()))
        except (OSError, RecordFormatError, pd.errors.EmptyDataError) as exc:
            raise DataUnavailableError(f"Unable to read records from {path}: {exc}") from exc
        super().__init__(df, object_name=object_name or path.stem, limit=limit)
        self.path = path


def load_or_unavailable(source: DataSource, config: ExplorerConfig) -> LoadResult:
    """Run a load, mapping unexpected source failures onto DataUnavailableError."""
    try:
        return source.load_records(config)
    except (ConfigurationError, DataUnavailableError):
        raise
    except Exception as exc:
        raise DataUnavailableError(f"Data source failed: {exc}") from exc
