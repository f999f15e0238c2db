from __future__ import annotations

import importlib
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.flowbatch.application.executor import BatchExecutor
from src.flowbatch.application.persistence import ResultWriter
from src.flowbatch.application.services import BatchService
from src.flowbatch.domain.events.batch_event import BatchEvent, EventType
from src.flowbatch.domain.models.batch_config import BatchConfiguration
from src.flowbatch.domain.models.batch_task import BatchTask
from src.flowbatch.domain.models.flow_response import FlowInfo, FlowTaskResponse
from src.flowbatch.domain.repositories import (
    FlowInvocationRepository,
    PreferencesRepository,
    ResultSinkRepository,
)
from src.flowbatch.infrastructure.filesystem.result_sink import LocalResultSink


class StubFlowRepository(FlowInvocationRepository):
    """
    Scripted in-memory flow API.

    Remote ids are ``r-<input>``. Unscripted polls succeed with
    ``{"ai_answer": "answer:<input>"}``.
    """

    def __init__(self) -> None:
        self.invoke_calls: list[dict[str, Any]] = []
        self.poll_calls: list[str] = []
        self.log: list[tuple[str, str]] = []
        self.invoke_responses: dict[str, FlowTaskResponse | Exception] = {}
        self.poll_responses: dict[str, list[FlowTaskResponse]] = {}
        self.flows: list[FlowInfo] = []
        self.list_error: Exception | None = None
        self.list_calls: list[dict[str, Any]] = []
        self.on_invoke: Callable[[str], None] | None = None
        self.on_poll: Callable[[str, int], None] | None = None
        self.in_flight = 0
        self.max_in_flight = 0
        self._inputs: dict[str, str] = {}
        self._poll_counts: dict[str, int] = {}

    async def invoke(
        self,
        flow_id: str,
        workspace_id: str,
        flow_input: dict[str, Any],
        *,
        singleton: bool,
    ) -> FlowTaskResponse:
        text = flow_input["human_input"]
        self.invoke_calls.append(
            {
                "flow_id": flow_id,
                "workspace_id": workspace_id,
                "flow_input": flow_input,
                "singleton": singleton,
            }
        )
        self.log.append(("invoke", text))
        if self.on_invoke is not None:
            self.on_invoke(text)

        scripted = self.invoke_responses.get(text)
        if isinstance(scripted, Exception):
            raise scripted
        response = scripted or FlowTaskResponse(id=f"r-{text}", status="PENDING")
        if response.id:
            self._inputs[response.id] = text
        if response.status == "PENDING" and response.result is None:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        return response

    async def poll_status(self, flow_id: str, task_id: str, workspace_id: str) -> FlowTaskResponse:
        text = self._inputs.get(task_id, task_id)
        self.poll_calls.append(task_id)
        count = self._poll_counts.get(text, 0) + 1
        self._poll_counts[text] = count
        if self.on_poll is not None:
            self.on_poll(text, count)

        script = self.poll_responses.get(text)
        if script:
            response = script.pop(0) if len(script) > 1 else script[0]
        else:
            response = FlowTaskResponse(
                id=task_id,
                status="SUCCESS",
                result=json.dumps({"ai_answer": f"answer:{text}"}),
            )
        if response.status != "PENDING":
            self.in_flight -= 1
            self.log.append(("done", text))
        return response

    async def list_flows(
        self,
        workspace_id: str,
        *,
        limit: int | None = None,
        offset: int | None = None,
        public: bool = False,
    ) -> list[FlowInfo]:
        self.list_calls.append({"workspace_id": workspace_id, "public": public})
        if self.list_error is not None:
            raise self.list_error
        return list(self.flows)


class RecordingBroadcaster:
    def __init__(self) -> None:
        self.events: list[BatchEvent] = []

    async def broadcast(self, event: BatchEvent) -> None:
        self.events.append(event)

    def types(self) -> list[EventType]:
        return [event.type for event in self.events]


class InMemoryPreferences(PreferencesRepository):
    def __init__(self) -> None:
        self.output_directory: str | None = None

    def get_output_directory(self) -> str | None:
        return self.output_directory

    def set_output_directory(self, directory: str) -> None:
        self.output_directory = directory


def make_tasks(*inputs: str) -> list[BatchTask]:
    return [BatchTask.from_input(text, filename=f"{text}.txt") for text in inputs]


@pytest.fixture
def flows() -> StubFlowRepository:
    return StubFlowRepository()


@pytest.fixture
def events() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def executor(flows: StubFlowRepository, events: RecordingBroadcaster) -> BatchExecutor:
    return BatchExecutor(flows=flows, broadcaster=events, poll_interval=0, max_poll_attempts=5)


@pytest.fixture
def config(tmp_path: Path) -> BatchConfiguration:
    return BatchConfiguration(parallelism=2, output_directory=str(tmp_path / "out"))


@pytest.fixture
def preferences() -> InMemoryPreferences:
    return InMemoryPreferences()


@pytest.fixture
def batch_service(
    executor: BatchExecutor,
    config: BatchConfiguration,
    preferences: InMemoryPreferences,
) -> BatchService:
    return BatchService(
        executor=executor,
        writer=ResultWriter(LocalResultSink()),
        preferences=preferences,
        config=config,
    )


def _patch_inject_instance(
    monkeypatch: pytest.MonkeyPatch, bindings: dict[object, object]
) -> Callable[[object], object]:
    """Patch `inject.instance` to serve the given stubs."""
    import inject

    def fake_instance(interface: object) -> object:
        if interface in bindings:
            return bindings[interface]
        raise RuntimeError(f"Unexpected dependency request: {interface}")

    monkeypatch.setattr(inject, "instance", fake_instance)
    return fake_instance


@pytest.fixture
def api_client(
    monkeypatch: pytest.MonkeyPatch,
    flows: StubFlowRepository,
    executor: BatchExecutor,
    config: BatchConfiguration,
    preferences: InMemoryPreferences,
):
    """FastAPI test client with the batch service wired to the stub flow API."""
    _patch_inject_instance(
        monkeypatch,
        {
            FlowInvocationRepository: flows,
            BatchExecutor: executor,
            BatchConfiguration: config,
            PreferencesRepository: preferences,
            ResultSinkRepository: LocalResultSink(),
        },
    )

    # Reload so the module-level service picks up the patched injector.
    routes_module = importlib.reload(importlib.import_module("src.flowbatch.presentation.routes"))

    app = FastAPI()
    app.include_router(routes_module.router)
    # Entering the client keeps one event loop alive for background batch runs.
    with TestClient(app) as client:
        yield client, flows, preferences
