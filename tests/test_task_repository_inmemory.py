"""Tests for InMemoryTaskRepository: status guards, idempotent writes, snapshots."""

import json
import os

import pytest

from gentask.adapters.task_repository_inmemory import InMemoryTaskRepository
from gentask.core.models.generation import GenerationRequest
from gentask.core.models.task import (
    NON_TERMINAL_STATUSES,
    REMOTE_PHASE_STATUSES,
    Task,
    TaskPatch,
    TaskStatus,
)


def make_task(task_id: str = "t-1", owner_id: str = "owner-1") -> Task:
    request = GenerationRequest(prompt="waves crashing on rocks")
    return Task(id=task_id, owner_id=owner_id, kind=request.kind, request=request)


@pytest.mark.asyncio
async def test_create_and_get_return_copies():
    repo = InMemoryTaskRepository()
    await repo.create(make_task())

    fetched = await repo.get("t-1")
    fetched.progress = 77
    assert (await repo.get("t-1")).progress == 0


@pytest.mark.asyncio
async def test_duplicate_create_is_rejected():
    repo = InMemoryTaskRepository()
    await repo.create(make_task())
    with pytest.raises(ValueError):
        await repo.create(make_task())


@pytest.mark.asyncio
async def test_update_unknown_task_returns_none():
    repo = InMemoryTaskRepository()
    assert await repo.update("missing", TaskPatch(progress=10)) is None


@pytest.mark.asyncio
async def test_status_guard_rejects_mismatch():
    repo = InMemoryTaskRepository()
    await repo.create(make_task())

    change = await repo.update(
        "t-1",
        TaskPatch(status=TaskStatus.storing),
        expected_status={TaskStatus.downloading},
    )
    assert change is None
    assert (await repo.get("t-1")).status == TaskStatus.pending


@pytest.mark.asyncio
async def test_status_guard_allows_only_one_claim():
    # Two writers racing to claim the same transition: only the first wins
    repo = InMemoryTaskRepository()
    await repo.create(make_task())
    patch = TaskPatch(status=TaskStatus.downloading, progress=96)

    first = await repo.update("t-1", patch, expected_status=REMOTE_PHASE_STATUSES)
    second = await repo.update("t-1", patch, expected_status=REMOTE_PHASE_STATUSES)

    assert first is not None and first.applied
    assert second is None


@pytest.mark.asyncio
async def test_identical_update_is_not_a_change():
    repo = InMemoryTaskRepository()
    await repo.create(make_task())
    first = await repo.update("t-1", TaskPatch(status=TaskStatus.processing, progress=40))
    again = await repo.update("t-1", TaskPatch(status=TaskStatus.processing, progress=40))

    assert first.task.version == 1
    assert again is not None
    assert not again.applied
    assert again.task.version == 1


@pytest.mark.asyncio
async def test_list_filters_by_owner_and_status():
    repo = InMemoryTaskRepository()
    await repo.create(make_task("a", owner_id="alice"))
    await repo.create(make_task("b", owner_id="bob"))
    await repo.create(make_task("c", owner_id="alice"))
    await repo.update(
        "c",
        TaskPatch(status=TaskStatus.failed, error_message="boom"),
    )

    alice = await repo.list(owner_id="alice")
    assert [t.id for t in alice] == ["a", "c"]

    active = await repo.list(status=NON_TERMINAL_STATUSES)
    assert {t.id for t in active} == {"a", "b"}


@pytest.mark.asyncio
async def test_events_are_appended_in_order():
    repo = InMemoryTaskRepository()
    await repo.create(make_task())
    await repo.append_event("t-1", {"version": 0, "status": "pending"})
    await repo.append_event("t-1", {"version": 1, "status": "processing"})

    events = await repo.events("t-1")
    assert [e["version"] for e in events] == [0, 1]
    assert await repo.events("unknown") == []


@pytest.mark.asyncio
async def test_snapshots_survive_restart(tmp_path):
    dump_dir = str(tmp_path / "tasks")
    repo = InMemoryTaskRepository(dump_dir)
    await repo.create(make_task())
    await repo.update(
        "t-1",
        TaskPatch(status=TaskStatus.processing, progress=40, remote_task_id="remote-1"),
    )
    await repo.append_event("t-1", {"version": 1, "status": "processing"})

    path = os.path.join(dump_dir, "t-1.json")
    with open(path, encoding="utf-8") as f:
        payload = json.load(f)
    assert payload["task"]["status"] == "processing"
    assert payload["meta"]["repository"] == "in-memory"

    reloaded = InMemoryTaskRepository(dump_dir)
    task = await reloaded.get("t-1")
    assert task.status == TaskStatus.processing
    assert task.remote_task_id == "remote-1"
    assert task.version == 1
    assert await reloaded.events("t-1") == [{"version": 1, "status": "processing"}]


@pytest.mark.asyncio
async def test_unreadable_snapshot_is_skipped(tmp_path):
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    repo = InMemoryTaskRepository(str(tmp_path))
    assert await repo.list() == []
