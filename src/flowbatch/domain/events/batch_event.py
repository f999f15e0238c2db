from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from src.flowbatch.domain.models.batch_summary import BatchSummary
from src.flowbatch.domain.models.batch_task import BatchTask


class EventType(str, Enum):
    BATCH_STARTED = "batch_started"
    TASK_UPDATED = "task_updated"
    TASK_FINALIZED = "task_finalized"
    SLICE_COMPLETED = "slice_completed"
    BATCH_COMPLETED = "batch_completed"
    BATCH_STOPPED = "batch_stopped"


class BatchEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: uuid4().hex)
    type: EventType
    task_id: str | None = Field(default=None, description="Client id of the task, if any.")
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def batch_started(cls, flow_id: str, total: int, runnable: int, parallelism: int) -> "BatchEvent":
        return cls(
            type=EventType.BATCH_STARTED,
            payload={
                "flow_id": flow_id,
                "total": total,
                "runnable": runnable,
                "parallelism": parallelism,
            },
        )

    @classmethod
    def task_updated(cls, task: BatchTask) -> "BatchEvent":
        return cls(type=EventType.TASK_UPDATED, task_id=task.id, payload={"task": task.to_view()})

    @classmethod
    def task_finalized(cls, task: BatchTask) -> "BatchEvent":
        return cls(
            type=EventType.TASK_FINALIZED, task_id=task.id, payload={"task": task.to_view()}
        )

    @classmethod
    def slice_completed(cls, index: int, size: int, summary: BatchSummary) -> "BatchEvent":
        return cls(
            type=EventType.SLICE_COMPLETED,
            payload={"index": index, "size": size, "summary": summary.model_dump(mode="json")},
        )

    @classmethod
    def batch_finished(cls, summary: BatchSummary) -> "BatchEvent":
        event_type = EventType.BATCH_STOPPED if summary.stopped else EventType.BATCH_COMPLETED
        return cls(type=event_type, payload={"summary": summary.model_dump(mode="json")})

