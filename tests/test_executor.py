import json

import pytest

from src.flowbatch.application.executor import BatchExecutor
from src.flowbatch.domain.events.batch_event import EventType
from src.flowbatch.domain.exceptions import (
    BatchAlreadyRunningError,
    BatchValidationError,
    ServerError,
)
from src.flowbatch.domain.models.batch_config import BatchConfiguration
from src.flowbatch.domain.models.batch_task import BatchTask
from src.flowbatch.domain.models.flow_response import FlowTaskResponse
from src.flowbatch.domain.models.task_state import TaskState

from tests.conftest import make_tasks

PENDING = FlowTaskResponse(status="PENDING")


@pytest.mark.asyncio
async def test_run_batch_completes_every_task(executor, flows, events, config) -> None:
    tasks = make_tasks("a", "b", "c")

    summary = await executor.run_batch(tasks, "flow-1", "ws-1", config)

    assert [task.status for task in tasks] == [TaskState.DONE] * 3
    assert [task.result for task in tasks] == ["answer:a", "answer:b", "answer:c"]
    assert [task.task_id for task in tasks] == ["r-a", "r-b", "r-c"]
    assert summary.done == 3
    assert summary.failed == 0
    assert not summary.stopped
    assert events.types()[0] == EventType.BATCH_STARTED
    assert events.types()[-1] == EventType.BATCH_COMPLETED
    assert events.types().count(EventType.TASK_FINALIZED) == 3
    assert not executor.is_running


@pytest.mark.asyncio
async def test_input_is_sent_as_human_input(executor, flows, config) -> None:
    await executor.run_batch(make_tasks("hello"), "flow-1", "ws-1", config)

    call = flows.invoke_calls[0]
    assert call["flow_input"] == {"human_input": "hello"}
    assert call["flow_id"] == "flow-1"
    assert call["workspace_id"] == "ws-1"
    assert call["singleton"] is True


@pytest.mark.asyncio
async def test_normal_mode_disables_singleton(executor, flows, config) -> None:
    config = config.model_copy(update={"singleton_mode": False})

    await executor.run_batch(make_tasks("a", "b"), "flow-1", "ws-1", config)

    assert [call["singleton"] for call in flows.invoke_calls] == [False, False]


@pytest.mark.asyncio
async def test_slices_run_sequentially_with_bounded_concurrency(executor, flows, events, config) -> None:
    tasks = make_tasks("a", "b", "c", "d", "e")

    await executor.run_batch(tasks, "flow-1", "ws-1", config)

    assert flows.max_in_flight == 2
    slices = [["a", "b"], ["c", "d"], ["e"]]
    for previous, current in zip(slices, slices[1:]):
        last_done = max(flows.log.index(("done", text)) for text in previous)
        first_invoke = min(flows.log.index(("invoke", text)) for text in current)
        assert last_done < first_invoke
    slice_events = [event for event in events.events if event.type == EventType.SLICE_COMPLETED]
    assert [event.payload["size"] for event in slice_events] == [2, 2, 1]


@pytest.mark.asyncio
async def test_terminal_tasks_are_skipped_on_rerun(executor, flows, config) -> None:
    done, failed, stale = make_tasks("done", "failed", "stale")
    done.mark_done("kept", None, None)
    failed.mark_failed("boom")
    stale.status = TaskState.QUEUED

    summary = await executor.run_batch([done, failed, stale], "flow-1", "ws-1", config)

    assert [call["flow_input"]["human_input"] for call in flows.invoke_calls] == ["stale"]
    assert done.result == "kept"
    assert failed.error == "boom"
    assert stale.status == TaskState.DONE
    assert summary.done == 2
    assert summary.failed == 1


@pytest.mark.asyncio
async def test_immediate_result_skips_polling(executor, flows, config) -> None:
    flows.invoke_responses["a"] = FlowTaskResponse(
        task_id="cached-1",
        status="SUCCESS",
        result={"ai_answer": "cached", "credits": 2_500_000},
    )
    tasks = make_tasks("a")

    await executor.run_batch(tasks, "flow-1", "ws-1", config)

    assert flows.poll_calls == []
    assert tasks[0].status == TaskState.DONE
    assert tasks[0].task_id == "cached-1"
    assert tasks[0].result == "cached"
    assert tasks[0].credits == pytest.approx(2.5)
    assert json.loads(tasks[0].raw_output)["id"] == "cached-1"


@pytest.mark.asyncio
async def test_remote_failure_marks_task_failed(executor, flows, config) -> None:
    flows.poll_responses["a"] = [FlowTaskResponse(status="FAILED", error_message="flow crashed")]
    flows.poll_responses["b"] = [FlowTaskResponse(status="ERROR")]
    tasks = make_tasks("a", "b")

    summary = await executor.run_batch(tasks, "flow-1", "ws-1", config)

    assert tasks[0].status == TaskState.FAILED
    assert tasks[0].error == "flow crashed"
    assert tasks[0].raw_output is not None
    assert tasks[1].error == "Task failed: ERROR"
    assert summary.failed == 2


@pytest.mark.asyncio
async def test_success_without_answer_uses_fallback_text(executor, flows, config) -> None:
    flows.poll_responses["a"] = [FlowTaskResponse(id="r-a", status="SUCCESS")]
    tasks = make_tasks("a")

    await executor.run_batch(tasks, "flow-1", "ws-1", config)

    assert tasks[0].status == TaskState.DONE
    assert tasks[0].result == "Task r-a - SUCCESS"


@pytest.mark.asyncio
async def test_pending_polls_until_terminal(executor, flows, config) -> None:
    flows.poll_responses["a"] = [
        PENDING,
        PENDING,
        FlowTaskResponse(status="SUCCESS", result=json.dumps({"ai_answer": "late"})),
    ]
    tasks = make_tasks("a")

    await executor.run_batch(tasks, "flow-1", "ws-1", config)

    assert flows.poll_calls == ["r-a", "r-a", "r-a"]
    assert tasks[0].result == "late"


@pytest.mark.asyncio
async def test_invoke_error_is_contained_to_its_task(executor, flows, config) -> None:
    flows.invoke_responses["b"] = ServerError("upstream down", status_code=503)
    tasks = make_tasks("a", "b", "c")

    summary = await executor.run_batch(tasks, "flow-1", "ws-1", config)

    assert [task.status for task in tasks] == [TaskState.DONE, TaskState.FAILED, TaskState.DONE]
    assert tasks[1].error == "ServerError [503]: upstream down"
    assert summary.done == 2
    assert summary.failed == 1


@pytest.mark.asyncio
async def test_missing_remote_id_fails_task(executor, flows, config) -> None:
    flows.invoke_responses["a"] = FlowTaskResponse(status="PENDING")
    tasks = make_tasks("a")

    await executor.run_batch(tasks, "flow-1", "ws-1", config)

    assert tasks[0].status == TaskState.FAILED
    assert tasks[0].error == "FlowApiError: No task ID returned from flow invocation"
    assert flows.poll_calls == []


@pytest.mark.asyncio
async def test_polling_times_out(flows, events, config) -> None:
    executor = BatchExecutor(flows=flows, broadcaster=events, poll_interval=0.001, max_poll_attempts=3)
    flows.poll_responses["a"] = [PENDING]
    tasks = make_tasks("a")

    await executor.run_batch(tasks, "flow-1", "ws-1", config)

    assert len(flows.poll_calls) == 3
    assert tasks[0].status == TaskState.FAILED
    assert tasks[0].error == "Task r-a timed out after 0.003 seconds"


@pytest.mark.asyncio
async def test_cancel_while_polling(executor, flows, config) -> None:
    tasks = make_tasks("a")
    flows.poll_responses["a"] = [PENDING]

    def cancel_on_second_poll(text: str, count: int) -> None:
        if count == 2:
            tasks[0].should_cancel = True

    flows.on_poll = cancel_on_second_poll

    await executor.run_batch(tasks, "flow-1", "ws-1", config)

    assert len(flows.poll_calls) == 2
    assert tasks[0].status == TaskState.FAILED
    assert tasks[0].error == "Task cancelled by user"


@pytest.mark.asyncio
async def test_cancelled_task_is_not_invoked(executor, flows, config) -> None:
    tasks = make_tasks("a", "b")
    tasks[0].should_cancel = True

    await executor.run_batch(tasks, "flow-1", "ws-1", config)

    assert [call["flow_input"]["human_input"] for call in flows.invoke_calls] == ["b"]
    assert tasks[0].error == "Task cancelled by user"


@pytest.mark.asyncio
async def test_stop_lets_current_slice_finish(executor, flows, events, config) -> None:
    config = config.model_copy(update={"parallelism": 1})
    tasks = make_tasks("a", "b", "c")
    executing_after_stop: list[bool] = []

    def stop_on_first(text: str) -> None:
        if text == "a":
            executor.stop()
            executing_after_stop.append(executor.is_executing)

    flows.on_invoke = stop_on_first

    summary = await executor.run_batch(tasks, "flow-1", "ws-1", config)

    assert executing_after_stop == [False]
    assert tasks[0].status == TaskState.DONE
    assert [task.status for task in tasks[1:]] == [TaskState.WAITING, TaskState.WAITING]
    assert summary.stopped
    assert summary.waiting == 2
    assert events.types()[-1] == EventType.BATCH_STOPPED
    assert not executor.is_running


@pytest.mark.asyncio
async def test_second_start_is_rejected_while_running(executor, config) -> None:
    tasks = make_tasks("a", "b")

    run = executor.start(tasks, "flow-1", "ws-1", config)
    assert executor.is_executing
    with pytest.raises(BatchAlreadyRunningError):
        executor.start(tasks, "flow-1", "ws-1", config)

    summary = await run
    assert summary.done == 2


@pytest.mark.parametrize(
    ("tasks", "flow_id", "workspace_id", "message"),
    [
        ([], "flow-1", "ws-1", "No tasks"),
        (make_tasks("a"), "", "ws-1", "flow"),
        (make_tasks("a"), "flow-1", "", "workspace"),
        ([BatchTask.from_input("a")], "flow-1", "ws-1", "no filename"),
    ],
)
def test_validate_rejects_invalid_batches(tasks, flow_id, workspace_id, message) -> None:
    with pytest.raises(BatchValidationError, match=message):
        BatchExecutor.validate(tasks, flow_id, workspace_id, BatchConfiguration())


def test_validate_allows_missing_filenames_without_file_output() -> None:
    config = BatchConfiguration(write_output_to_file=False)

    BatchExecutor.validate([BatchTask.from_input("a")], "flow-1", "ws-1", config)


@pytest.mark.asyncio
async def test_execute_one_runs_single_task(executor, flows, events, config) -> None:
    task = make_tasks("solo")[0]

    await executor.execute_one(task, "flow-1", "ws-1", config)

    assert task.status == TaskState.DONE
    assert not executor.is_task_active(task.id)
    assert events.types() == [
        EventType.TASK_UPDATED,
        EventType.TASK_UPDATED,
        EventType.TASK_FINALIZED,
    ]
