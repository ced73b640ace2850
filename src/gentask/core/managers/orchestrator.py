"""TaskOrchestrator: the consumer-facing surface of the task lifecycle.

Responsibilities:
1. Create the local task record (``pending``) and start its worker.
2. Cancel, retry and manually recheck tasks.
3. Expose read access, per-owner storage usage and subscriptions to task
   changes.
4. Resume unfinished tasks after a restart.

Nothing else is allowed to mutate task records. All collaborators are
injected; the orchestrator owns its registry and notifier.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from gentask.core.config import OrchestratorConfig
from gentask.core.exceptions import (
    InvalidRequestError,
    InvalidTaskStateError,
    TaskNotFoundError,
)
from gentask.core.interfaces.generation_client import GenerationClientPort
from gentask.core.interfaces.http_client import HttpClientPort
from gentask.core.interfaces.object_storage import ObjectStoragePort
from gentask.core.interfaces.observers import TaskStateObserver
from gentask.core.interfaces.retry import RetryPort
from gentask.core.interfaces.task_repository import TaskRepositoryPort
from gentask.core.managers.archiver import Archiver
from gentask.core.managers.failure_classifier import classify_failure
from gentask.core.managers.notifier import (
    EventCallback,
    EventNotifier,
    StatusHistoryObserver,
    Subscription,
)
from gentask.core.managers.poller import PollOutcomeKind, TaskPoller
from gentask.core.managers.retry_coordinator import RetryCoordinator
from gentask.core.managers.status_normalizer import StatusNormalizer
from gentask.core.managers.task_registry import TaskRegistry
from gentask.core.managers.task_state import TaskStateWriter
from gentask.core.models.artifact import StorageUsage
from gentask.core.models.generation import GenerationRequest
from gentask.core.models.task import (
    ARCHIVAL_FAILURE_KINDS,
    NON_TERMINAL_STATUSES,
    REMOTE_PHASE_STATUSES,
    PublicStatus,
    Task,
    TaskPatch,
    TaskStatus,
)
from gentask.core.settings import logger


class TaskOrchestrator:
    """Orchestrates task lifecycles: creation, workers, retry, recheck, subscriptions.

    Attributes:
        config: Immutable lifecycle configuration (poll interval, retries, archival)
        registry: Active workers by task id
        notifier: Subscriber fan-out of committed changes
    """

    def __init__(
        self,
        repository: TaskRepositoryPort,
        client: GenerationClientPort,
        storage: ObjectStoragePort,
        http_client: HttpClientPort,
        config: OrchestratorConfig,
        retry_port: RetryPort,
        observers: Optional[Sequence[TaskStateObserver]] = None,
        normalizer: Optional[StatusNormalizer] = None,
    ) -> None:
        self.config = config
        self._repo = repository
        self.registry = TaskRegistry()
        self.notifier = EventNotifier()
        self._writer = TaskStateWriter(
            repository,
            observers=[self.notifier, StatusHistoryObserver(repository), *(observers or [])],
        )
        self._poller = TaskPoller(client, self._writer, config, normalizer=normalizer)
        self._archiver = Archiver(http_client, storage, self._writer, config, retry_port)
        self._coordinator = RetryCoordinator(
            client, self._writer, self._poller, self._archiver, retry_port, config
        )
        self._rechecks: Dict[str, asyncio.Future] = {}

    def _start(self, task_id: str) -> bool:
        return self.registry.start(
            task_id, lambda token: self._coordinator.run(task_id, token)
        )

    # ---------------- Commands -----------------
    async def submit(self, request: GenerationRequest, owner_id: str) -> str:
        if not owner_id or not owner_id.strip():
            raise InvalidRequestError("owner_id is required")
        task = Task(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            kind=request.kind,
            request=request,
        )
        await self._writer.create(task)
        self._start(task.id)
        return task.id

    async def cancel(self, task_id: str) -> bool:
        """Stop the task's worker; the status stays as last reached."""
        await self.get_task(task_id)
        stopped = self.registry.stop(task_id)
        logger.info(f"[task:cancel] task_id={task_id} stopped={stopped}")
        return stopped

    async def retry(self, task_id: str) -> Task:
        """Start a fresh lifecycle for a failed task."""
        task = await self.get_task(task_id)
        if task.status != TaskStatus.failed:
            raise InvalidTaskStateError(
                f"Only failed tasks can be retried (status: {task.status})",
                task_id=task_id,
            )
        # never resume an old worker
        self.registry.stop(task_id)

        reuse_remote = bool(task.remote_task_id) and task.failure_kind in ARCHIVAL_FAILURE_KINDS
        fields = dict(
            status=TaskStatus.pending,
            progress=0,
            attempt_count=0,
            retry_count=task.retry_count + 1,
            started_at=datetime.now(timezone.utc),
            error_message=None,
            failure_kind=None,
        )
        if not reuse_remote:
            fields.update(remote_task_id=None, remote_result_url=None)
        change = await self._writer.update(
            task_id, TaskPatch(**fields), expected_status={TaskStatus.failed}, reset=True
        )
        if change is None:
            raise InvalidTaskStateError("Task changed while retrying", task_id=task_id)
        logger.info(
            f"[task:retry] task_id={task_id} retry_count={change.task.retry_count} "
            f"reuse_remote={reuse_remote}"
        )
        self._start(task_id)
        return change.task

    async def recheck(self, task_id: str) -> Task:
        """Run one poll tick now; concurrent rechecks share a single tick."""
        task = await self.get_task(task_id)
        if not task.remote_task_id or task.status not in REMOTE_PHASE_STATUSES:
            return task
        pending = self._rechecks.get(task_id)
        if pending is None:
            pending = asyncio.ensure_future(self._recheck(task))
            self._rechecks[task_id] = pending
            pending.add_done_callback(lambda _: self._rechecks.pop(task_id, None))
        return await asyncio.shield(pending)

    async def _recheck(self, task: Task) -> Task:
        try:
            outcome = await self._poller.check_once(task)
        except Exception as exc:
            classification = classify_failure(exc)
            if not classification.terminal:
                logger.warning(f"[task:recheck] transient error task_id={task.id} err={exc}")
                return await self.get_task(task.id)
            await self._fail_from_recheck(task.id, exc)
            return await self.get_task(task.id)

        if outcome is not None and outcome.kind == PollOutcomeKind.failed:
            await self._fail_from_recheck(task.id, outcome.error)
        elif outcome is not None and outcome.kind == PollOutcomeKind.completed:
            # a running worker archives on its own next tick
            if not self.registry.is_active(task.id):
                self._start(task.id)
        return await self.get_task(task.id)

    async def _fail_from_recheck(self, task_id: str, exc: BaseException) -> None:
        # a worker that already claimed archival keeps the task
        failed = await self._coordinator.fail(
            task_id, exc, archival=False, expected_status=REMOTE_PHASE_STATUSES
        )
        if failed is not None:
            self.registry.stop(task_id)

    async def resume_active(self) -> List[str]:
        """Restart workers for every unfinished task (after a process restart)."""
        tasks = await self._repo.list(status=NON_TERMINAL_STATUSES)
        resumed = [t.id for t in tasks if self._start(t.id)]
        if resumed:
            logger.info(f"[task:resume] resumed {len(resumed)} task(s)")
        return resumed

    async def shutdown(self) -> None:
        await self.registry.shutdown()
        for pending in list(self._rechecks.values()):
            pending.cancel()

    # ---------------- Queries -----------------
    async def get_task(self, task_id: str) -> Task:
        task = await self._repo.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def list_tasks(
        self,
        owner_id: Optional[str] = None,
        status: Optional[PublicStatus] = None,
    ) -> Sequence[Task]:
        statuses = None
        if status is not None:
            statuses = {s for s in TaskStatus if s.public == status}
        return await self._repo.list(owner_id=owner_id, status=statuses)

    async def storage_usage(self, owner_id: str) -> StorageUsage:
        """Sum the archived artifacts of ``owner_id`` (completed tasks only)."""
        if not owner_id or not owner_id.strip():
            raise InvalidRequestError("owner_id is required")
        tasks = await self._repo.list(owner_id=owner_id, status={TaskStatus.completed})
        sizes = [t.file_size for t in tasks if t.storage_path and t.file_size is not None]
        used = sum(sizes)
        total = self.config.storage_quota_bytes
        return StorageUsage(
            owner_id=owner_id,
            used_bytes=used,
            file_count=len(sizes),
            total_bytes=total,
            available_bytes=max(0, total - used),
        )

    async def events(self, task_id: str) -> List[dict]:
        await self.get_task(task_id)
        return await self._repo.events(task_id)

    def is_active(self, task_id: str) -> bool:
        return self.registry.is_active(task_id)

    # ---------------- Subscriptions -----------------
    def subscribe(self, task_id: str, callback: EventCallback) -> Subscription:
        return self.notifier.subscribe(task_id, callback)

    def subscribe_owner(self, owner_id: str, callback: EventCallback) -> Subscription:
        return self.notifier.subscribe_owner(owner_id, callback)

    def subscribe_all(self, callback: EventCallback) -> Subscription:
        return self.notifier.subscribe_all(callback)
