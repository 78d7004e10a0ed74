"""
Irregularity report scheduling.

Reports are generated asynchronously by the platform's task queue; this module
only hands the job over. Building and storing the report itself belongs to the
task runner.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

from delivery_monitoring.utils.logging import get_logger

log = get_logger(__name__)

IRREGULARITY_ACTION = "taoProctoring/irregularity"
IRREGULARITY_TASK_NAME = "export/irregularity"


@runtime_checkable
class TaskQueue(Protocol):
    """Task queue collaborator; returns an opaque task handle."""

    def create_task(
        self,
        action: str,
        parameters: Mapping[str, Any],
        repeatedly: bool = False,
        label: Optional[str] = None,
        task_name: Optional[str] = None,
    ) -> Any:
        ...


class IrregularityReportService:
    """
    Schedule irregularity exports for a delivery.

    Parameters
    ----------
    task_queue : TaskQueue
        Queue the export task is pushed to.
    action : str
        Action identifier the task runner dispatches on.
    """

    def __init__(self, task_queue: TaskQueue, action: str = IRREGULARITY_ACTION) -> None:
        self._task_queue = task_queue
        self._action = action

    def schedule(
        self,
        delivery_id: str,
        delivery_label: str,
        from_ts: str = "",
        to_ts: str = "",
    ) -> Any:
        """
        Queue an irregularity export for `delivery_id` between `from_ts` and `to_ts`.

        Returns
        -------
        Any
            Whatever `create_task` returned.
        """
        parameters: Dict[str, Any] = {
            "deliveryId": delivery_id,
            "from": from_ts,
            "to": to_ts,
        }
        label = f"{delivery_label} from {from_ts} to {to_ts}"
        task = self._task_queue.create_task(
            self._action,
            parameters,
            repeatedly=False,
            label=label,
            task_name=IRREGULARITY_TASK_NAME,
        )
        log.info("Irregularity report scheduled", extra={"delivery_id": delivery_id, "label": label})
        return task


__all__ = [
    "IRREGULARITY_ACTION",
    "IRREGULARITY_TASK_NAME",
    "IrregularityReportService",
    "TaskQueue",
]
