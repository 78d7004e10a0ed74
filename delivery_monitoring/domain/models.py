"""
Domain models for the delivery monitoring store.

`MonitoringRecord` is the in-memory snapshot of one delivery execution: the
natural key plus a flat mapping of attributes. Which attributes end up in the
primary table and which in the key/value table is decided by the store at save
time, never by the record itself.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

COLUMN_ID = "id"
COLUMN_DELIVERY_EXECUTION_ID = "delivery_execution_id"
COLUMN_STATUS = "status"
COLUMN_CURRENT_ASSESSMENT_ITEM = "current_assessment_item"
COLUMN_TEST_TAKER = "test_taker"
COLUMN_AUTHORIZED_BY = "authorized_by"
COLUMN_START_TIME = "start_time"
COLUMN_END_TIME = "end_time"


class MonitoringRecord(BaseModel):
    """
    Monitoring state of a single delivery execution.

    Example
    -------
        record = MonitoringRecord(delivery_execution_id="http://sample/first.rdf#i1450190828500474")
        record.set({"status": "ACTIVE", "remaining_time": "1200"})
        store.save(record)
        record.id  # surrogate key assigned by the store
    """

    delivery_execution_id: str = Field(..., frozen=True, description="Natural key.")
    data: Dict[str, Any] = Field(default_factory=dict, description="Fixed and dynamic attributes.")

    @field_validator("data", mode="before")
    @classmethod
    def _copy_data(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return dict(value)
        return value

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "MonitoringRecord":
        """Build a record from a result row that contains the natural key column."""
        record = cls(delivery_execution_id=row[COLUMN_DELIVERY_EXECUTION_ID])
        record.set(row)
        return record

    @property
    def id(self) -> Optional[int]:
        return self.data.get(COLUMN_ID)

    def get(self) -> Dict[str, Any]:
        """
        Return every attribute, natural key included, as a new dict.
        """
        result = dict(self.data)
        result[COLUMN_DELIVERY_EXECUTION_ID] = self.delivery_execution_id
        return result

    def set(self, data: Mapping[str, Any]) -> None:
        """
        Replace the attribute mapping.

        Raises
        ------
        ValueError
            If `data` carries a natural key different from the record's own.
        """
        values = dict(data)
        natural_key = values.pop(COLUMN_DELIVERY_EXECUTION_ID, self.delivery_execution_id)
        if natural_key != self.delivery_execution_id:
            raise ValueError(
                f"delivery_execution_id is immutable ({self.delivery_execution_id!r} != {natural_key!r})"
            )
        self.data = values

    def add_value(self, key: str, value: Any) -> None:
        """Set a single attribute, keeping the others."""
        if key == COLUMN_DELIVERY_EXECUTION_ID:
            self.set({**self.data, key: value})
            return
        self.data[key] = value

    def validation_errors(self) -> List[str]:
        errors: List[str] = []
        if not isinstance(self.delivery_execution_id, str) or not self.delivery_execution_id.strip():
            errors.append("delivery_execution_id must be a non-empty string")
        return errors

    def is_valid(self) -> bool:
        return not self.validation_errors()


class FindOptions(BaseModel):
    """
    Paging and ordering options for `DeliveryMonitoringStore.find`.

    `order` is inserted verbatim after ORDER BY and must come from trusted code.
    """

    order: str = Field(f"t.{COLUMN_ID} ASC", description="Raw ORDER BY fragment.")
    offset: int = Field(0, ge=0)
    limit: Optional[int] = Field(None, gt=0)

    model_config = {
        "frozen": True,
        "extra": "ignore",
    }


__all__ = [
    "COLUMN_ID",
    "COLUMN_DELIVERY_EXECUTION_ID",
    "COLUMN_STATUS",
    "COLUMN_CURRENT_ASSESSMENT_ITEM",
    "COLUMN_TEST_TAKER",
    "COLUMN_AUTHORIZED_BY",
    "COLUMN_START_TIME",
    "COLUMN_END_TIME",
    "MonitoringRecord",
    "FindOptions",
]
