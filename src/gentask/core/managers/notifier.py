"""Observers that fan task changes out to subscribers and to the change log.

EventNotifier delivers TaskEvents to callbacks registered per task, per
owner or globally. Delivery per task follows the record ``version``: an
event whose version is not newer than the last one accepted for that
task is dropped, so subscribers never see duplicates or reordering.

Events of one task go through a FIFO queue drained by whichever publish
call found it idle. A slow subscriber therefore delays later events of
that task instead of being overtaken by them, and a subscriber that
writes to its own task just queues the resulting event.
"""

from __future__ import annotations

import inspect
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Set, Tuple, Union

from gentask.core.interfaces.task_repository import TaskRepositoryPort
from gentask.core.models.event import TaskEvent
from gentask.core.models.task import Task

logger = logging.getLogger(__name__)

EventCallback = Callable[[TaskEvent], Union[None, Awaitable[None]]]


class Subscription:
    def __init__(self, notifier: "EventNotifier", scope: str, key: Optional[str], callback: EventCallback):
        self._notifier = notifier
        self.scope = scope
        self.key = key
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self._notifier._remove(self)


class EventNotifier:
    """TaskStateObserver publishing TaskEvents to subscribers."""

    def __init__(self) -> None:
        self._by_task: Dict[str, List[Subscription]] = {}
        self._by_owner: Dict[str, List[Subscription]] = {}
        self._global: List[Subscription] = []
        self._last_version: Dict[str, int] = {}
        self._queues: Dict[str, Deque[TaskEvent]] = {}
        self._draining: Set[str] = set()
        self._finished: Set[str] = set()

    # ---------------- Subscriptions -----------------
    def subscribe(self, task_id: str, callback: EventCallback) -> Subscription:
        sub = Subscription(self, "task", task_id, callback)
        self._by_task.setdefault(task_id, []).append(sub)
        return sub

    def subscribe_owner(self, owner_id: str, callback: EventCallback) -> Subscription:
        sub = Subscription(self, "owner", owner_id, callback)
        self._by_owner.setdefault(owner_id, []).append(sub)
        return sub

    def subscribe_all(self, callback: EventCallback) -> Subscription:
        sub = Subscription(self, "all", None, callback)
        self._global.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        if sub.scope == "all":
            if sub in self._global:
                self._global.remove(sub)
            return
        buckets = self._by_owner if sub.scope == "owner" else self._by_task
        bucket = buckets.get(sub.key, [])
        if sub in bucket:
            bucket.remove(sub)
        if not bucket:
            buckets.pop(sub.key, None)
            if sub.scope == "task":
                self._forget_if_finished(sub.key)

    def _forget_if_finished(self, task_id: str) -> None:
        """Drop per-task bookkeeping once nothing can observe the task anymore."""
        if task_id not in self._finished or task_id in self._draining:
            return
        if self._by_task.get(task_id) or self._queues.get(task_id):
            return
        self._finished.discard(task_id)
        self._last_version.pop(task_id, None)
        self._queues.pop(task_id, None)

    def subscriber_count(self, task_id: str) -> int:
        return len(self._by_task.get(task_id, []))

    # ---------------- Publishing -----------------
    async def publish(self, event: TaskEvent) -> bool:
        """Queue ``event`` for delivery; returns False if it was stale and dropped.

        Returns once the task's queue is drained, or at once when another
        publish call is already draining it.
        """
        task_id = event.task_id
        last = self._last_version.get(task_id, -1)
        if event.version <= last:
            logger.debug(
                f"[notify:drop] stale event task_id={task_id} version={event.version} last={last}"
            )
            return False
        self._last_version[task_id] = event.version
        if event.is_terminal:
            self._finished.add(task_id)
        else:
            self._finished.discard(task_id)

        queue = self._queues.setdefault(task_id, deque())
        queue.append(event)
        if task_id in self._draining:
            return True

        self._draining.add(task_id)
        try:
            while queue:
                await self._deliver(queue.popleft())
        finally:
            self._draining.discard(task_id)
            if not queue:
                self._queues.pop(task_id, None)
        self._forget_if_finished(task_id)
        return True

    async def _deliver(self, event: TaskEvent) -> None:
        targets = [
            *self._by_task.get(event.task_id, []),
            *self._by_owner.get(event.owner_id, []),
            *self._global,
        ]
        for sub in targets:
            if not sub.active:
                continue
            try:
                result = sub.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error(
                    f"[notify:error] subscriber failed task_id={event.task_id} "
                    f"version={event.version} scope={sub.scope} error={exc}"
                )

    async def on_task_created(self, task: Task) -> None:
        await self.publish(TaskEvent.from_task(task, ("status",)))

    async def on_task_changed(self, task: Task, changed: Tuple[str, ...]) -> None:
        await self.publish(TaskEvent.from_task(task, changed))

    async def on_task_finished(self, task: Task) -> None:
        """Terminal change already published in on_task_changed."""
        pass


class StatusHistoryObserver:
    """Records every committed change in the repository's per-task log."""

    def __init__(self, repository: TaskRepositoryPort):
        self._repo = repository

    @staticmethod
    def _entry(task: Task, changed: Tuple[str, ...]) -> dict:
        return {
            "version": task.version,
            "status": task.status.value,
            "progress": task.progress,
            "changed": list(changed),
            "error_message": task.error_message,
            "at": task.updated_at.isoformat(),
        }

    async def on_task_created(self, task: Task) -> None:
        await self._repo.append_event(task.id, self._entry(task, ("status",)))
        logger.debug(f"[observer:history] recorded creation task_id={task.id}")

    async def on_task_changed(self, task: Task, changed: Tuple[str, ...]) -> None:
        await self._repo.append_event(task.id, self._entry(task, changed))
        logger.debug(
            f"[observer:history] recorded change task_id={task.id} version={task.version} status={task.status}"
        )

    async def on_task_finished(self, task: Task) -> None:
        """Terminal status already recorded in on_task_changed."""
        pass
