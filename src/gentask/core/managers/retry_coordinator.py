"""Runs one task lifecycle: submit with retry, poll, archive, and fail exactly once."""

from __future__ import annotations

import asyncio
from typing import Collection, Optional

from gentask.core.config import OrchestratorConfig
from gentask.core.exceptions import TransportError
from gentask.core.interfaces.generation_client import GenerationClientPort
from gentask.core.interfaces.retry import RetryPort
from gentask.core.logging_config import correlation_scope
from gentask.core.managers.archiver import Archiver
from gentask.core.managers.failure_classifier import classify_failure, is_transient
from gentask.core.managers.poller import PollOutcomeKind, TaskPoller
from gentask.core.managers.task_registry import CancellationToken, TaskCancelled
from gentask.core.managers.task_state import TaskStateWriter
from gentask.core.models.task import (
    NON_TERMINAL_STATUSES,
    Task,
    TaskPatch,
    TaskStatus,
)
from gentask.core.settings import logger

GENERATION_FAILED = "Generation failed"
ARCHIVAL_FAILED = "Generation succeeded but archiving the result failed"


class RetryCoordinator:
    def __init__(
        self,
        client: GenerationClientPort,
        writer: TaskStateWriter,
        poller: TaskPoller,
        archiver: Archiver,
        retry: RetryPort,
        config: OrchestratorConfig,
    ) -> None:
        self._client = client
        self._writer = writer
        self._poller = poller
        self._archiver = archiver
        self._retry = retry
        self.config = config

    async def run(self, task_id: str, token: CancellationToken) -> None:
        """Worker entrypoint started by the task registry."""
        with correlation_scope(task_id):
            try:
                await self._run(task_id, token)
            except TaskCancelled:
                logger.info(f"[task:cancel] worker stopped task_id={task_id}")
            except Exception as exc:
                logger.error(f"[task:worker] unexpected error task_id={task_id} err={exc!r}")
                await self.fail(task_id, exc, archival=False, token=token)

    async def _run(self, task_id: str, token: CancellationToken) -> None:
        task = await self._writer.get(task_id)
        if task is None or task.is_terminal():
            return

        # resumed mid-archival: the remote side is done already
        if task.status in (TaskStatus.downloading, TaskStatus.storing) and task.remote_result_url:
            await self._archive(task, task.remote_result_url, task.thumbnail_url, token, resume=True)
            return

        if not task.remote_task_id:
            try:
                task = await self._submit(task, token)
            except TaskCancelled:
                raise
            except Exception as exc:
                await self.fail(task_id, exc, archival=False, token=token)
                return
            if task is None:
                return

        outcome = await self._poller.run(task_id, token)
        if outcome.kind == PollOutcomeKind.cancelled:
            raise TaskCancelled()
        if outcome.kind == PollOutcomeKind.finished:
            return
        if outcome.kind == PollOutcomeKind.failed:
            await self.fail(task_id, outcome.error, archival=False, token=token)
            return

        await self._archive(task, outcome.result_url, outcome.thumbnail_url, token)

    async def _archive(
        self,
        task: Task,
        source_url: str,
        thumbnail_url: Optional[str],
        token: CancellationToken,
        resume: bool = False,
    ) -> None:
        try:
            await self._archiver.archive(task, source_url, thumbnail_url, token, resume=resume)
        except TaskCancelled:
            raise
        except Exception as exc:
            await self.fail(task.id, exc, archival=True, token=token)

    async def _submit(self, task: Task, token: CancellationToken) -> Optional[Task]:
        """Create the remote task, retrying transient failures with a fixed delay."""
        remaining = max(1, self.config.max_submit_attempts - task.attempt_count)

        async def attempt() -> str:
            token.raise_if_cancelled()
            current = await self._writer.get(task.id)
            if current is None or current.status != TaskStatus.pending:
                raise TaskCancelled()
            await self._writer.update(
                task.id,
                TaskPatch(attempt_count=current.attempt_count + 1),
                expected_status={TaskStatus.pending},
            )
            logger.info(
                f"[task:submit] attempt={current.attempt_count + 1}/{self.config.max_submit_attempts} "
                f"task_id={task.id}"
            )
            try:
                return await asyncio.wait_for(
                    self._client.submit(task.request),
                    timeout=self.config.request_timeout,
                )
            except asyncio.TimeoutError:
                raise TransportError(
                    f"Submission timed out after {self.config.request_timeout}s",
                    status=504,
                    task_id=task.id,
                )

        remote_task_id = await self._retry.execute(
            attempt,
            attempts=remaining,
            fixed_wait=self.config.retry_delay,
            exception_types=(Exception,),
            retry_if=is_transient,
        )
        token.raise_if_cancelled()
        change = await self._writer.update(
            task.id,
            TaskPatch(remote_task_id=remote_task_id),
            expected_status={TaskStatus.pending},
        )
        if change is None:
            return None
        logger.info(f"[task:submit] task_id={task.id} remote_task_id={remote_task_id}")
        return change.task

    async def fail(
        self,
        task_id: str,
        exc: BaseException,
        archival: bool,
        token: Optional[CancellationToken] = None,
        expected_status: Collection[TaskStatus] = NON_TERMINAL_STATUSES,
    ) -> Optional[Task]:
        """Write ``failed`` with a classified reason, once, unless cancelled.

        Returns None when the task is no longer in ``expected_status``.
        """
        if token is not None and token.cancelled:
            logger.info(f"[task:fail] suppressed after cancellation task_id={task_id} err={exc}")
            return None
        classification = classify_failure(exc)
        prefix = ARCHIVAL_FAILED if archival else GENERATION_FAILED
        change = await self._writer.update(
            task_id,
            TaskPatch(
                status=TaskStatus.failed,
                error_message=f"{prefix}: {classification.reason}",
                failure_kind=classification.kind,
            ),
            expected_status=expected_status,
        )
        if change is None:
            return None
        logger.error(
            f"[task:fail] task_id={task_id} kind={classification.kind} reason={classification.reason}"
        )
        return change.task
