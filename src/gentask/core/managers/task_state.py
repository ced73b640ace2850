"""Single write path for task state.

Every mutation goes through TaskStateWriter so that observers see exactly
the committed changes: nothing is published for a write that changed
nothing or lost its status guard.
"""

from __future__ import annotations

from typing import Collection, Optional, Sequence, Tuple

from gentask.core.interfaces.observers import TaskStateObserver
from gentask.core.interfaces.task_repository import TaskRepositoryPort
from gentask.core.models.task import Task, TaskChange, TaskPatch, TaskStatus
from gentask.core.settings import logger


class TaskStateWriter:
    def __init__(
        self,
        repository: TaskRepositoryPort,
        observers: Optional[Sequence[TaskStateObserver]] = None,
    ) -> None:
        self._repo = repository
        self._observers = list(observers or [])

    def add_observer(self, observer: TaskStateObserver) -> None:
        self._observers.append(observer)

    async def get(self, task_id: str) -> Optional[Task]:
        return await self._repo.get(task_id)

    async def create(self, task: Task) -> Task:
        stored = await self._repo.create(task)
        logger.info(
            f"[task:create] task_id={stored.id} owner_id={stored.owner_id} kind={stored.kind}"
        )
        await self._notify_created(stored)
        return stored

    async def update(
        self,
        task_id: str,
        patch: TaskPatch,
        expected_status: Optional[Collection[TaskStatus]] = None,
        reset: bool = False,
    ) -> Optional[TaskChange]:
        """Commit ``patch`` and notify observers if anything changed.

        Returns None when the task is unknown or the status guard failed.
        """
        change = await self._repo.update(
            task_id, patch, expected_status=expected_status, reset=reset
        )
        if change is None or not change.applied:
            return change
        task = change.task
        logger.debug(
            f"[task:update] task_id={task_id} version={task.version} status={task.status} "
            f"progress={task.progress} changed={','.join(change.changed)}"
        )
        await self._notify_changed(task, change.changed)
        if change.became_terminal:
            logger.info(f"[task:finish] task_id={task_id} status={task.status}")
            await self._notify_finished(task)
        return change

    async def _notify_created(self, task: Task) -> None:
        for observer in self._observers:
            try:
                await observer.on_task_created(task)
            except Exception as exc:
                logger.error(
                    f"[observer:error] on_task_created failed observer={type(observer).__name__} "
                    f"task_id={task.id} error={exc}"
                )

    async def _notify_changed(self, task: Task, changed: Tuple[str, ...]) -> None:
        for observer in self._observers:
            try:
                await observer.on_task_changed(task, changed)
            except Exception as exc:
                logger.error(
                    f"[observer:error] on_task_changed failed observer={type(observer).__name__} "
                    f"task_id={task.id} error={exc}"
                )

    async def _notify_finished(self, task: Task) -> None:
        for observer in self._observers:
            try:
                await observer.on_task_finished(task)
            except Exception as exc:
                logger.error(
                    f"[observer:error] on_task_finished failed observer={type(observer).__name__} "
                    f"task_id={task.id} error={exc}"
                )
