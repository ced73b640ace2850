"""Process-wide map of task id to its running worker.

Guarantees at most one worker per task. Workers receive a
CancellationToken and are expected to check it after every suspension
point; ``stop`` only signals, it never interrupts an in-flight call.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

from gentask.core.settings import logger


class TaskCancelled(Exception):
    """Raised inside a worker once its cancellation has been observed."""


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TaskCancelled()

    async def wait(self, timeout: Optional[float]) -> bool:
        """Sleep up to ``timeout`` seconds; True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


Worker = Callable[[CancellationToken], Awaitable[None]]


class _Entry:
    def __init__(self, task: asyncio.Task, token: CancellationToken):
        self.task = task
        self.token = token


class TaskRegistry:
    def __init__(self) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._closed = False

    def start(self, task_id: str, worker: Worker) -> bool:
        """Run ``worker`` for ``task_id`` unless one is already active."""
        if self._closed:
            logger.warning(f"[registry:start] registry shut down, ignoring task_id={task_id}")
            return False
        if task_id in self._entries:
            logger.warning(f"[registry:start] worker already active task_id={task_id}")
            return False
        token = CancellationToken()
        task = asyncio.create_task(worker(token), name=f"gentask-worker-{task_id}")
        entry = _Entry(task, token)
        self._entries[task_id] = entry
        task.add_done_callback(lambda t: self._on_done(task_id, entry, t))
        logger.debug(f"[registry:start] task_id={task_id}")
        return True

    def _on_done(self, task_id: str, entry: _Entry, task: asyncio.Task) -> None:
        # a stopped entry may already be replaced by a newer worker
        if self._entries.get(task_id) is entry:
            del self._entries[task_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[registry:done] worker crashed task_id={task_id} error={task.exception()}")

    def stop(self, task_id: str) -> bool:
        entry = self._entries.pop(task_id, None)
        if entry is None:
            return False
        entry.token.cancel()
        logger.info(f"[registry:stop] cancellation requested task_id={task_id}")
        return True

    def is_active(self, task_id: str) -> bool:
        return task_id in self._entries

    def active_ids(self) -> List[str]:
        return list(self._entries)

    async def join(self, task_id: str, timeout: Optional[float] = None) -> None:
        """Wait for the current worker of ``task_id`` (if any) to finish."""
        entry = self._entries.get(task_id)
        if entry is None:
            return
        await asyncio.wait_for(asyncio.shield(entry.task), timeout)

    async def shutdown(self) -> None:
        self._closed = True
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            entry.token.cancel()
            entry.task.cancel()
        if entries:
            await asyncio.gather(*(e.task for e in entries), return_exceptions=True)
