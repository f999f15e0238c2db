from __future__ import annotations

from typing import Any

import inject
from fastapi import APIRouter, HTTPException, Query, Response
from pydantic import BaseModel, Field

from src.flowbatch.application.services import BatchService
from src.flowbatch.domain.exceptions import (
    BatchAlreadyRunningError,
    BatchValidationError,
    FlowApiError,
    OutputWriteError,
    TaskBusyError,
    TaskNotFoundError,
)
from src.flowbatch.domain.models import (
    MAX_PARALLELISM,
    MIN_PARALLELISM,
    BatchConfiguration,
    BatchSummary,
    FlowInfo,
    OutputWriteReport,
)
from src.flowbatch.domain.repositories import FlowInvocationRepository

router = APIRouter(tags=["batch"])

# Instantiate services once (simple DI)
_batch_service = BatchService()
_flows = inject.instance(FlowInvocationRepository)


class AddTaskRequest(BaseModel):
    input: str = Field(..., min_length=1, description="Text sent to the flow as its input.")
    filename: str | None = Field(default=None, description="Output file name for the result.")


class UpdateTaskRequest(BaseModel):
    input: str | None = Field(default=None, min_length=1)
    filename: str | None = None


class ImportCsvRequest(BaseModel):
    csv_text: str = Field(..., description="CSV content: input in column 1, filename in column 2.")
    merge_columns: bool = Field(
        default=False, description="Send every column of a headed CSV as the input."
    )


class ImportCsvResponse(BaseModel):
    imported: int
    skipped: int
    total_rows: int
    has_header: bool
    task_ids: list[str]


class ConfigUpdateRequest(BaseModel):
    parallelism: int | None = Field(default=None, ge=MIN_PARALLELISM, le=MAX_PARALLELISM)
    singleton_mode: bool | None = None
    write_output_to_file: bool | None = None
    output_directory: str | None = Field(default=None, min_length=1)


class FlowTargetRequest(BaseModel):
    flow_id: str = Field(..., description="Flow to invoke.")
    workspace_id: str = Field(..., description="Workspace that owns the flow.")


class StartResponse(BaseModel):
    started: bool
    runnable: int


class OutputPathResponse(BaseModel):
    task_id: str
    path: str


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, TaskNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (BatchAlreadyRunningError, TaskBusyError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (BatchValidationError, OutputWriteError)):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, FlowApiError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500)


_HANDLED = (
    TaskNotFoundError,
    BatchAlreadyRunningError,
    TaskBusyError,
    BatchValidationError,
    OutputWriteError,
    FlowApiError,
)


@router.get("/health", summary="Liveness probe")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/flows",
    response_model=list[FlowInfo],
    summary="List flows",
    description="Lists the flows of a workspace, or the public flows when `public` is set.",
    responses={502: {"description": "The flow API rejected the request."}},
)
async def list_flows(
    workspace_id: str = Query(..., description="Workspace id"),
    public: bool = Query(False, description="List public flows instead of the workspace's own"),
    limit: int | None = Query(None, ge=1),
    offset: int | None = Query(None, ge=0),
):
    try:
        return await _flows.list_flows(workspace_id, limit=limit, offset=offset, public=public)
    except FlowApiError as exc:
        raise _http_error(exc) from exc


@router.get("/batch/tasks", summary="List batch tasks in display order")
def list_tasks() -> list[dict[str, Any]]:
    return [task.to_view() for task in _batch_service.tasks]


@router.post("/batch/tasks", status_code=201, summary="Add a manual task")
def add_task(body: AddTaskRequest) -> dict[str, Any]:
    try:
        task = _batch_service.add_task(body.input, body.filename)
    except _HANDLED as exc:
        raise _http_error(exc) from exc
    return task.to_view()


@router.post(
    "/batch/tasks/import",
    response_model=ImportCsvResponse,
    status_code=201,
    summary="Import tasks from CSV",
    description=(
        "Parses CSV text into tasks. A first row whose first cell contains 'input' or 'flow' "
        "is treated as a header. Rows without a filename are skipped while writing output "
        "to files is enabled."
    ),
)
def import_tasks(body: ImportCsvRequest):
    result = _batch_service.import_csv_text(body.csv_text, merge_columns=body.merge_columns)
    return ImportCsvResponse(
        imported=len(result.tasks),
        skipped=result.skipped,
        total_rows=result.total_rows,
        has_header=result.has_header,
        task_ids=[task.id for task in result.tasks],
    )


@router.delete("/batch/tasks", status_code=204, summary="Remove every task")
def clear_tasks() -> Response:
    try:
        _batch_service.clear_tasks()
    except _HANDLED as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@router.get("/batch/tasks/{task_id}", summary="Get one task")
def get_task(task_id: str) -> dict[str, Any]:
    try:
        task = _batch_service.get_task(task_id)
    except _HANDLED as exc:
        raise _http_error(exc) from exc
    view = task.to_view()
    view["raw_output"] = task.raw_output
    view["row_data"] = task.row_data
    return view


@router.patch("/batch/tasks/{task_id}", summary="Edit a task's input or filename")
def update_task(task_id: str, body: UpdateTaskRequest) -> dict[str, Any]:
    try:
        task = _batch_service.update_task(task_id, body.input, body.filename)
    except _HANDLED as exc:
        raise _http_error(exc) from exc
    return task.to_view()


@router.delete("/batch/tasks/{task_id}", status_code=204, summary="Remove a task")
def remove_task(task_id: str) -> Response:
    try:
        _batch_service.remove_task(task_id)
    except _HANDLED as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@router.post("/batch/tasks/{task_id}/run", status_code=202, summary="Run a single task")
async def run_task(task_id: str, body: FlowTargetRequest) -> dict[str, Any]:
    try:
        _batch_service.run_task(task_id, body.flow_id, body.workspace_id)
        return _batch_service.get_task(task_id).to_view()
    except _HANDLED as exc:
        raise _http_error(exc) from exc


@router.post("/batch/tasks/{task_id}/retry", status_code=202, summary="Reset and rerun a task")
async def retry_task(task_id: str, body: FlowTargetRequest) -> dict[str, Any]:
    try:
        _batch_service.retry_task(task_id, body.flow_id, body.workspace_id)
        return _batch_service.get_task(task_id).to_view()
    except _HANDLED as exc:
        raise _http_error(exc) from exc


@router.post("/batch/tasks/{task_id}/cancel", summary="Request cancellation of a task")
def cancel_task(task_id: str) -> dict[str, Any]:
    try:
        return _batch_service.cancel_task(task_id).to_view()
    except _HANDLED as exc:
        raise _http_error(exc) from exc


@router.post(
    "/batch/tasks/{task_id}/output",
    response_model=OutputPathResponse,
    summary="Write one task's result to its file",
)
async def write_task_output(task_id: str):
    try:
        path = await _batch_service.write_task_output(task_id)
    except _HANDLED as exc:
        raise _http_error(exc) from exc
    return OutputPathResponse(task_id=task_id, path=str(path))


@router.get("/batch/config", response_model=BatchConfiguration, summary="Current run configuration")
def get_config():
    return _batch_service.config


@router.put("/batch/config", response_model=BatchConfiguration, summary="Update run configuration")
def update_config(body: ConfigUpdateRequest):
    changes = body.model_dump(exclude_none=True)
    return _batch_service.update_config(**changes)


@router.post(
    "/batch/start",
    response_model=StartResponse,
    status_code=202,
    summary="Start the batch",
    description=(
        "Runs every non-terminal task in slices of `parallelism` tasks. Progress is pushed "
        "on the `/ws/batch` websocket."
    ),
    responses={409: {"description": "A batch run is already in progress."}},
)
async def start_batch(body: FlowTargetRequest):
    try:
        _batch_service.start(body.flow_id, body.workspace_id)
    except _HANDLED as exc:
        raise _http_error(exc) from exc
    runnable = sum(1 for task in _batch_service.tasks if not task.status.is_terminal)
    return StartResponse(started=True, runnable=runnable)


@router.post("/batch/stop", summary="Stop dispatching further slices")
def stop_batch() -> dict[str, bool]:
    _batch_service.stop()
    return {"is_executing": _batch_service.is_executing}


@router.get("/batch/summary", response_model=BatchSummary, summary="Counts per task state")
def get_summary():
    return _batch_service.summary()


@router.post(
    "/batch/outputs",
    response_model=OutputWriteReport,
    summary="Write every completed result to its file",
)
async def write_outputs():
    try:
        return await _batch_service.write_outputs()
    except _HANDLED as exc:
        raise _http_error(exc) from exc
