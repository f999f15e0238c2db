from enum import Enum


class TaskState(str, Enum):
    WAITING = "waiting"
    QUEUED = "queued"
    DONE = "done"
    FAILED = "failed"

    @classmethod
    def _missing_(cls, value: object) -> "TaskState | None":
        # Tasks created before dispatch used to be tagged "pending".
        if isinstance(value, str) and value.lower() == "pending":
            return cls.WAITING
        return None

    @property
    def is_terminal(self) -> bool:
        return self in {TaskState.DONE, TaskState.FAILED}


class RemoteStatus(str, Enum):
    """Status vocabulary reported by the flow invocation API."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    ERROR = "ERROR"


FAILED_REMOTE_STATUSES = {RemoteStatus.FAILED.value, RemoteStatus.ERROR.value}
