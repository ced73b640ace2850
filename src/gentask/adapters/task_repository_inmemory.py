"""In-memory implementation of TaskRepositoryPort.

Async-safe using an asyncio.Lock. Optionally snapshots every task as JSON
into ``dump_dir`` and reloads those snapshots on construction, so
unfinished tasks can be resumed after a restart.
"""
from __future__ import annotations

import asyncio
import json
import os
from copy import deepcopy
from datetime import datetime, timezone
from typing import Collection, Dict, List, Optional, Sequence

from pydantic import ValidationError

from gentask.core.interfaces.task_repository import TaskRepositoryPort
from gentask.core.models.task import Task, TaskChange, TaskPatch, TaskStatus
from gentask.core.settings import logger

SNAPSHOT_VERSION = 1


class InMemoryTaskRepository(TaskRepositoryPort):
    def __init__(self, dump_dir: str | None = None) -> None:
        self._tasks: Dict[str, Task] = {}
        self._events: Dict[str, List[dict]] = {}
        self._lock = asyncio.Lock()
        self._dump_dir = dump_dir
        if self._dump_dir:
            os.makedirs(self._dump_dir, exist_ok=True)
            self._load()

    def _load(self) -> None:
        for name in sorted(os.listdir(self._dump_dir)):
            if not name.endswith(".json"):
                continue
            path = os.path.join(self._dump_dir, name)
            try:
                with open(path, encoding="utf-8") as f:
                    payload = json.load(f)
                task = Task.model_validate(payload["task"])
            except (OSError, ValueError, KeyError, ValidationError) as exc:
                logger.warning(f"[repo:load] skipping unreadable snapshot path={path} err={exc}")
                continue
            self._tasks[task.id] = task
            self._events[task.id] = list(payload.get("events", []))
        if self._tasks:
            logger.info(f"[repo:load] restored {len(self._tasks)} task(s) from {self._dump_dir}")

    def _dump(self, task: Task) -> None:
        if not self._dump_dir:
            return
        payload = {
            "meta": {
                "dumped_at": datetime.now(timezone.utc).isoformat(),
                "repository": "in-memory",
                "version": SNAPSHOT_VERSION,
            },
            "task": task.model_dump(mode="json"),
            "events": self._events.get(task.id, []),
        }
        path = os.path.join(self._dump_dir, f"{task.id}.json")
        tmp_path = f"{path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2, default=str)
            os.replace(tmp_path, path)
        except OSError as exc:
            # The in-memory state stays authoritative
            logger.warning(f"[repo:dump] snapshot failed task_id={task.id} err={exc}")

    async def create(self, task: Task) -> Task:
        async with self._lock:
            if task.id in self._tasks:
                raise ValueError(f"Task already exists: {task.id}")
            stored = task.model_copy(deep=True)
            self._tasks[task.id] = stored
            self._events.setdefault(task.id, [])
            self._dump(stored)
            return stored.model_copy(deep=True)

    async def get(self, task_id: str) -> Optional[Task]:
        async with self._lock:
            t = self._tasks.get(task_id)
            return t.model_copy(deep=True) if t else None

    async def update(
        self,
        task_id: str,
        patch: TaskPatch,
        expected_status: Optional[Collection[TaskStatus]] = None,
        reset: bool = False,
    ) -> Optional[TaskChange]:
        async with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                return None
            if expected_status is not None and current.status not in expected_status:
                logger.debug(
                    f"[repo:update] status guard rejected task_id={task_id} "
                    f"current={current.status} expected={sorted(expected_status)}"
                )
                return None
            merged, changed = current.merged(patch, reset=reset)
            if changed:
                self._tasks[task_id] = merged
                self._dump(merged)
            return TaskChange(task=merged.model_copy(deep=True), changed=changed)

    async def list(
        self,
        owner_id: Optional[str] = None,
        status: Optional[Collection[TaskStatus]] = None,
    ) -> Sequence[Task]:
        async with self._lock:
            tasks = list(self._tasks.values())
            if owner_id is not None:
                tasks = [t for t in tasks if t.owner_id == owner_id]
            if status is not None:
                tasks = [t for t in tasks if t.status in status]
            tasks.sort(key=lambda t: t.created_at)
            return [t.model_copy(deep=True) for t in tasks]

    async def append_event(self, task_id: str, event: dict) -> None:
        async with self._lock:
            self._events.setdefault(task_id, []).append(deepcopy(event))
            task = self._tasks.get(task_id)
            if task is not None:
                self._dump(task)

    async def events(self, task_id: str) -> List[dict]:
        async with self._lock:
            return [deepcopy(e) for e in self._events.get(task_id, [])]
