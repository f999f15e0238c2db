from __future__ import annotations

import logging
from pathlib import Path

from pydantic import TypeAdapter

from src.flowbatch.domain.models.batch_task import BatchTask
from src.flowbatch.domain.repositories import TaskListRepository

logger = logging.getLogger(__name__)

_TASK_LIST = TypeAdapter(list[BatchTask])


class JsonTaskListStore(TaskListRepository):
    """Snapshot of a batch task list, used to resume an interrupted run."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[BatchTask]:
        if not self._path.exists():
            return []
        tasks = _TASK_LIST.validate_json(self._path.read_bytes())
        logger.info("Loaded %d tasks", len(tasks), extra={"path": str(self._path)})
        return tasks

    def save(self, tasks: list[BatchTask]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_bytes(_TASK_LIST.dump_json(tasks, indent=2))
        tmp.replace(self._path)
