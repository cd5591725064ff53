from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Tuple

from .errors import ConfigurationError
from .filters import FilterCondition
from .path_model import NullHandling

METRIC_TYPES = ("COUNT", "AMOUNT")


@dataclass(frozen=True)
class ExplorerConfig:
    """
    What to load: the object, its filters, the ordered path fields and the metric.

    Saved configurations round-trip through `to_dict` / `from_dict`; the persistence
    layer itself only stores those payloads.
    """

    object_name: str = ""
    filters: Tuple[FilterCondition, ...] = ()
    path_fields: Tuple[str, ...] = ()
    metric_type: str = "COUNT"
    metric_field: str = ""
    record_id_field: str = "Id"
    name_field: str = "Name"
    null_handling: NullHandling = NullHandling.GROUP_UNKNOWN

    def validate(self) -> "ExplorerConfig":
        if len(self.path_fields) < 2:
            raise ConfigurationError("Select at least 2 path fields before loading data.")
        if len(set(self.path_fields)) != len(self.path_fields):
            raise ConfigurationError("Path fields must not repeat.")
        if self.metric_type not in METRIC_TYPES:
            raise ConfigurationError(f"Unsupported metric type: {self.metric_type}")
        if self.metric_type == "AMOUNT" and not self.metric_field:
            raise ConfigurationError("An AMOUNT metric needs a metric field.")
        if not self.record_id_field:
            raise ConfigurationError("A record id field is required.")
        return self

    @property
    def metric_display(self) -> str:
        return "amount" if self.metric_type == "AMOUNT" else "count"

    def with_changes(self, **changes: Any) -> "ExplorerConfig":
        if "filters" in changes:
            changes["filters"] = tuple(
                item if isinstance(item, FilterCondition) else FilterCondition.from_dict(item)
                for item in changes["filters"]
            )
        if "path_fields" in changes:
            changes["path_fields"] = tuple(changes["path_fields"])
        if "null_handling" in changes:
            changes["null_handling"] = NullHandling.parse(changes["null_handling"])
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "objectApiName": self.object_name,
            "filters": [condition.to_dict() for condition in self.filters],
            "pathFields": list(self.path_fields),
            "metricType": self.metric_type,
            "metricField": self.metric_field,
            "recordIdField": self.record_id_field,
            "nameField": self.name_field,
            "nullHandling": self.null_handling.value,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ExplorerConfig":
        defaults = cls()
        return cls(
            object_name=payload.get("objectApiName", defaults.object_name) or "",
            filters=tuple(FilterCondition.from_dict(item) for item in payload.get("filters") or ()),
            path_fields=tuple(payload.get("pathFields") or ()),
            metric_type=str(payload.get("metricType") or defaults.metric_type).upper(),
            metric_field=payload.get("metricField") or "",
            record_id_field=payload.get("recordIdField") or defaults.record_id_field,
            name_field=payload.get("nameField") or defaults.name_field,
            null_handling=NullHandling.parse(payload.get("nullHandling")),
        )

    def config_hash(self) -> str:
        canonical = json.dumps(self.to_dict(), sort_keys=True, default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
