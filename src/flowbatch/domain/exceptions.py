from __future__ import annotations

from typing import Any


class TaskNotFoundError(Exception):
    """Raised when a task identifier does not exist in the batch."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task with id '{task_id}' was not found.")
        self.task_id = task_id


class BatchValidationError(Exception):
    """Raised before dispatch when a batch cannot be started as requested."""


class BatchAlreadyRunningError(Exception):
    def __init__(self) -> None:
        super().__init__("A batch run is already in progress.")


class TaskBusyError(Exception):
    """Raised when a task is modified or dispatched while it is executing."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task '{task_id}' is currently executing.")
        self.task_id = task_id


class OutputWriteError(Exception):
    def __init__(self, task_id: str, message: str) -> None:
        super().__init__(message)
        self.task_id = task_id


class FlowApiError(Exception):
    """Base error for failures reported by the flow invocation API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is None:
            return f"{type(self).__name__}: {self.message}"
        return f"{type(self).__name__} [{self.status_code}]: {self.message}"


class UnauthorizedError(FlowApiError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=401)


class ForbiddenError(FlowApiError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=403)


class FlowNotFoundError(FlowApiError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=404)


class RequestValidationError(FlowApiError):
    def __init__(self, message: str, errors: Any = None) -> None:
        super().__init__(message, status_code=422)
        self.errors = errors


class RateLimitError(FlowApiError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=429)


class ServerError(FlowApiError):
    def __init__(self, message: str, status_code: int = 500) -> None:
        super().__init__(message, status_code=status_code)


class NetworkError(FlowApiError):
    pass


class RequestTimeoutError(FlowApiError):
    pass
