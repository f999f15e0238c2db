from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from src.flowbatch.domain.models.task_state import TaskState

_UNSAFE_COLUMN_CHARS = str.maketrans("", "", "{}[]\"'")


def _new_id() -> str:
    return uuid4().hex


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BatchTask(BaseModel):
    id: str = Field(default_factory=_new_id, description="Client-generated task identifier.")
    task_id: str | None = Field(
        default=None, description="Identifier assigned by the flow API once invoked."
    )
    flow_input: dict[str, Any] = Field(
        default_factory=dict, description="Input mapping, semantically {'input': text}."
    )
    row_data: dict[str, str] = Field(
        default_factory=dict, description="All CSV columns of the imported row."
    )
    filename: str | None = Field(default=None, description="Output file name.")
    status: TaskState = Field(default=TaskState.WAITING, description="Lifecycle state.")
    result: str | None = Field(default=None, description="Extracted textual answer.")
    error: str | None = Field(default=None, description="Failure message.")
    raw_output: str | None = Field(
        default=None, description="Serialized API response kept for diagnostics."
    )
    credits: float | None = Field(default=None, description="Cost reported by the flow API.")
    start_time: datetime | None = None
    end_time: datetime | None = None
    should_cancel: bool = Field(
        default=False, description="Cooperative cancellation flag checked while polling."
    )

    @classmethod
    def from_input(
        cls,
        text: str,
        filename: str | None = None,
        row_data: dict[str, str] | None = None,
    ) -> "BatchTask":
        return cls(flow_input={"input": text}, filename=filename, row_data=row_data or {})

    @property
    def input_text(self) -> str:
        value = self.flow_input.get("input")
        return "" if value is None else str(value)

    @property
    def duration(self) -> timedelta | None:
        if self.start_time is None:
            return None
        end = self.end_time or _utc_now()
        return end - self.start_time

    @property
    def duration_formatted(self) -> str:
        duration = self.duration
        if duration is None:
            return "-"
        total = int(duration.total_seconds())
        hours, rest = divmod(total, 3600)
        minutes, seconds = divmod(rest, 60)
        if hours:
            return f"{hours}h {minutes}m {seconds}s"
        if minutes:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"

    @property
    def duration_decimal(self) -> str:
        duration = self.duration
        if duration is None:
            return "-"
        return f"{duration.total_seconds():.1f}s"

    def to_view(self) -> dict[str, Any]:
        """JSON-ready representation without the bulky diagnostic fields."""
        view = self.model_dump(mode="json", exclude={"raw_output", "row_data"})
        view["duration"] = self.duration_decimal
        return view

    def format_row_data_as_input(self) -> str:
        """Render the CSV row as ``column: value`` lines, skipping the filename column."""
        if not self.row_data:
            return self.input_text
        lines = []
        for column, value in self.row_data.items():
            if column.lower() == "filename":
                continue
            name = column.translate(_UNSAFE_COLUMN_CHARS).strip()
            lines.append(f"{name}: {value}")
        return "\n".join(lines)

    def mark_queued(self) -> None:
        self.status = TaskState.QUEUED
        self.task_id = None
        self.result = None
        self.error = None
        self.raw_output = None
        self.credits = None
        self.start_time = _utc_now()
        self.end_time = None

    def mark_done(self, result: str, credits: float | None, raw_output: str | None) -> None:
        self.result = result
        self.credits = credits
        self.raw_output = raw_output
        self.end_time = _utc_now()
        if self.start_time is None:
            self.start_time = self.end_time
        self.status = TaskState.DONE

    def mark_failed(self, error: str, raw_output: str | None = None) -> None:
        self.error = error
        if raw_output is not None:
            self.raw_output = raw_output
        self.end_time = _utc_now()
        self.status = TaskState.FAILED

    def reset_for_retry(self) -> None:
        self.status = TaskState.WAITING
        self.task_id = None
        self.result = None
        self.error = None
        self.raw_output = None
        self.credits = None
        self.start_time = None
        self.end_time = None
        self.should_cancel = False
