"""Tests for the per-task polling loop.

The poller only writes remote-phase states (pending, processing,
pending_url); completion is reported to the caller, who archives. Expected
outcomes:
- progress is monotonic and capped below the archival range
- transient errors are tolerated up to ``max_retries + 1`` in a row
- provider-reported failures and unknown remote ids stop immediately
- the wall-clock budget turns into a timeout failure
"""

from datetime import datetime, timedelta, timezone

import pytest

from gentask.adapters.task_repository_inmemory import InMemoryTaskRepository
from gentask.core.exceptions import (
    RemoteGenerationError,
    RemoteTaskNotFoundError,
    TaskTimeoutError,
    TransportError,
)
from gentask.core.managers.notifier import StatusHistoryObserver
from gentask.core.managers.poller import PollOutcomeKind, TaskPoller
from gentask.core.managers.task_registry import CancellationToken
from gentask.core.managers.task_state import TaskStateWriter
from gentask.core.models.generation import GenerationRequest
from gentask.core.models.task import Task, TaskPatch, TaskStatus

from conftest import TMP_VIDEO_URL, ScriptedGenerationClient


@pytest.fixture
async def writer():
    repo = InMemoryTaskRepository()
    writer = TaskStateWriter(repo, observers=[StatusHistoryObserver(repo)])
    request = GenerationRequest(prompt="northern lights")
    await writer.create(
        Task(
            id="t-1",
            owner_id="owner-1",
            kind=request.kind,
            request=request,
            remote_task_id="remote-1",
        )
    )
    return writer


@pytest.mark.asyncio
async def test_progress_scenario_until_completed(writer, config):
    client = ScriptedGenerationClient(
        statuses=[
            {"data": {"status": "processing", "progress": 40}},
            {"data": {"status": "completed", "output": {"video_url": ""}}},
            {"data": {"status": "completed", "output": {"video_url": TMP_VIDEO_URL, "thumbnail_url": "https://tmp.provider.test/x.jpg"}}},
        ]
    )
    poller = TaskPoller(client, writer, config)

    outcome = await poller.run("t-1", CancellationToken())

    assert outcome.kind == PollOutcomeKind.completed
    assert outcome.result_url == TMP_VIDEO_URL
    assert outcome.thumbnail_url == "https://tmp.provider.test/x.jpg"

    task = await writer.get("t-1")
    # archival owns the last step; the poller stops at pending_url
    assert task.status == TaskStatus.pending_url
    assert task.progress == 95
    assert task.remote_result_url == TMP_VIDEO_URL

    history = await writer._repo.events("t-1")
    assert [(h["status"], h["progress"]) for h in history] == [
        ("pending", 0),
        ("processing", 40),
        ("pending_url", 95),
        ("pending_url", 95),
    ]


@pytest.mark.asyncio
async def test_remote_progress_is_capped(writer, config):
    client = ScriptedGenerationClient(statuses=[{"status": "processing", "progress": 99}])
    poller = TaskPoller(client, writer, config)

    outcome = await poller.check_once(await writer.get("t-1"))

    assert outcome is None
    assert (await writer.get("t-1")).progress == 95


@pytest.mark.asyncio
async def test_transient_errors_fail_after_tolerance(writer, config):
    # max_retries=3 -> four consecutive failures end polling
    client = ScriptedGenerationClient(statuses=[TransportError("connection reset", status=502)])
    poller = TaskPoller(client, writer, config)

    outcome = await poller.run("t-1", CancellationToken())

    assert outcome.kind == PollOutcomeKind.failed
    assert isinstance(outcome.error, TransportError)
    assert "4 consecutive times" in outcome.error.message
    assert client.fetch_calls == config.max_retries + 1


@pytest.mark.asyncio
async def test_success_resets_error_streak(writer, config):
    boom = TransportError("timeout", status=504)
    client = ScriptedGenerationClient(
        statuses=[
            boom,
            boom,
            boom,
            {"status": "processing", "progress": 10},
            boom,
            boom,
            boom,
            {"status": "completed", "video_url": TMP_VIDEO_URL},
        ]
    )
    poller = TaskPoller(client, writer, config)

    outcome = await poller.run("t-1", CancellationToken())

    assert outcome.kind == PollOutcomeKind.completed
    assert client.fetch_calls == 8


@pytest.mark.asyncio
async def test_remote_failure_stops_immediately(writer, config):
    client = ScriptedGenerationClient(statuses=[{"status": "failed", "error": "content policy"}])
    poller = TaskPoller(client, writer, config)

    outcome = await poller.run("t-1", CancellationToken())

    assert outcome.kind == PollOutcomeKind.failed
    assert isinstance(outcome.error, RemoteGenerationError)
    assert outcome.error.message == "content policy"
    assert client.fetch_calls == 1
    # the poller reports, the caller writes the failure
    assert (await writer.get("t-1")).status == TaskStatus.pending


@pytest.mark.asyncio
async def test_unknown_remote_task_is_terminal(writer, config):
    client = ScriptedGenerationClient(statuses=[RemoteTaskNotFoundError("remote-1")])
    poller = TaskPoller(client, writer, config)

    outcome = await poller.run("t-1", CancellationToken())

    assert outcome.kind == PollOutcomeKind.failed
    assert isinstance(outcome.error, RemoteTaskNotFoundError)
    assert client.fetch_calls == 1


@pytest.mark.asyncio
async def test_wall_clock_budget_times_out(writer, config):
    await writer.update(
        "t-1",
        TaskPatch(started_at=datetime.now(timezone.utc) - timedelta(seconds=10)),
    )
    client = ScriptedGenerationClient()
    poller = TaskPoller(client, writer, config)  # poll_timeout=5

    outcome = await poller.run("t-1", CancellationToken())

    assert outcome.kind == PollOutcomeKind.failed
    assert isinstance(outcome.error, TaskTimeoutError)
    assert client.fetch_calls == 0


@pytest.mark.asyncio
async def test_slow_status_request_is_a_transport_error(writer, config):
    client = ScriptedGenerationClient(fetch_delay=5)
    poller = TaskPoller(client, writer, config.model_copy(update={"request_timeout": 0.01}))

    with pytest.raises(TransportError) as excinfo:
        await poller.check_once(await writer.get("t-1"))
    assert excinfo.value.status == 504


@pytest.mark.asyncio
async def test_cancelled_token_stops_before_polling(writer, config):
    client = ScriptedGenerationClient()
    token = CancellationToken()
    token.cancel()

    outcome = await TaskPoller(client, writer, config).run("t-1", token)

    assert outcome.kind == PollOutcomeKind.cancelled
    assert client.fetch_calls == 0


@pytest.mark.asyncio
async def test_task_leaving_remote_phase_ends_loop(writer, config):
    await writer.update("t-1", TaskPatch(status=TaskStatus.failed, error_message="stopped elsewhere"))
    client = ScriptedGenerationClient()

    outcome = await TaskPoller(client, writer, config).run("t-1", CancellationToken())

    assert outcome.kind == PollOutcomeKind.finished
    assert client.fetch_calls == 0
