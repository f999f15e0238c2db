from src.flowbatch.domain.models.batch_config import (
    MAX_PARALLELISM,
    MIN_PARALLELISM,
    BatchConfiguration,
)
from src.flowbatch.domain.models.batch_summary import BatchSummary, ImportResult, OutputWriteReport
from src.flowbatch.domain.models.batch_task import BatchTask
from src.flowbatch.domain.models.flow_response import FlowInfo, FlowTaskResponse
from src.flowbatch.domain.models.task_state import RemoteStatus, TaskState

__all__ = [
    "MAX_PARALLELISM",
    "MIN_PARALLELISM",
    "BatchTask",
    "BatchConfiguration",
    "BatchSummary",
    "ImportResult",
    "OutputWriteReport",
    "FlowInfo",
    "FlowTaskResponse",
    "RemoteStatus",
    "TaskState",
]
