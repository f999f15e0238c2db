from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

from src.flowbatch.domain.models.batch_task import BatchTask
from src.flowbatch.domain.models.flow_response import FlowInfo, FlowTaskResponse


class FlowInvocationRepository(Protocol):
    """Repository contract for invoking remote flows and polling their tasks."""

    async def invoke(
        self,
        flow_id: str,
        workspace_id: str,
        flow_input: dict[str, Any],
        *,
        singleton: bool,
    ) -> FlowTaskResponse:
        """Start a flow run and return immediately with its task id and initial status."""

    async def poll_status(self, flow_id: str, task_id: str, workspace_id: str) -> FlowTaskResponse:
        """Fetch the current status of the remote task ``task_id``."""

    async def list_flows(
        self,
        workspace_id: str,
        *,
        limit: int | None = None,
        offset: int | None = None,
        public: bool = False,
    ) -> list[FlowInfo]:
        """List the flows visible from ``workspace_id``."""


class ResultSinkRepository(Protocol):
    async def write_text(self, directory: str, filename: str, content: str) -> Path:
        """Write ``content`` to ``directory/filename``, replacing any existing file."""


class PreferencesRepository(Protocol):
    def get_output_directory(self) -> str | None:
        """Return the persisted output directory, if one was saved."""

    def set_output_directory(self, directory: str) -> None:
        """Persist the output directory across sessions."""


class TaskListRepository(Protocol):
    def load(self) -> list[BatchTask]:
        """Return the saved task list, or an empty list."""

    def save(self, tasks: list[BatchTask]) -> None:
        """Replace the saved task list."""
