from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class FlowTaskResponse(BaseModel):
    """Response of an invoke or status call against the flow API."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("id", "task_id"),
        description="Remote task identifier; the singleton endpoint reports it as task_id.",
    )
    status: str | None = Field(default=None, description="PENDING, SUCCESS, FAILED or ERROR.")
    result: str | dict[str, Any] | list[Any] | None = Field(
        default=None, description="JSON-encoded string or already decoded object."
    )
    error_message: str | None = Field(default=None, description="Error reported by the API.")
    credits: float | None = Field(default=None, description="Credits in API micro-units.")


class FlowInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    flow_id: str | None = Field(default=None, validation_alias=AliasChoices("id", "flow_id"))
    name: str | None = None
    description: str | None = None
    flow_type: str | None = None
    component_count: int | None = None
    executed_at: str | None = None
    last_modified: str | None = None
