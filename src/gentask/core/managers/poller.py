"""Per-task polling loop against the remote generation service."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional

from gentask.core.config import OrchestratorConfig
from gentask.core.exceptions import (
    RemoteGenerationError,
    TaskTimeoutError,
    TransportError,
)
from gentask.core.interfaces.generation_client import GenerationClientPort
from gentask.core.managers.failure_classifier import classify_failure
from gentask.core.managers.status_normalizer import PENDING_URL_PROGRESS, StatusNormalizer
from gentask.core.managers.task_registry import CancellationToken
from gentask.core.managers.task_state import TaskStateWriter
from gentask.core.models.remote_status import NormalizedStatus
from gentask.core.models.task import REMOTE_PHASE_STATUSES, Task, TaskPatch, TaskStatus
from gentask.core.settings import logger


class PollOutcomeKind(StrEnum):
    completed = "completed"  # remote finished with an artifact URL
    failed = "failed"  # terminal error, see ``error``
    cancelled = "cancelled"
    finished = "finished"  # record left the remote phase elsewhere


@dataclass(frozen=True)
class PollOutcome:
    kind: PollOutcomeKind
    result_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error: Optional[BaseException] = None


_CANCELLED = PollOutcome(PollOutcomeKind.cancelled)
_FINISHED = PollOutcome(PollOutcomeKind.finished)


class TaskPoller:
    def __init__(
        self,
        client: GenerationClientPort,
        writer: TaskStateWriter,
        config: OrchestratorConfig,
        normalizer: Optional[StatusNormalizer] = None,
    ) -> None:
        self._client = client
        self._writer = writer
        self.config = config
        self._normalizer = normalizer or StatusNormalizer()

    async def run(self, task_id: str, token: CancellationToken) -> PollOutcome:
        """Poll until the remote task completes, fails, or polling is cancelled.

        The first check happens immediately; later checks wait
        ``poll_interval`` on the cancellation token so a stop wakes the
        loop at once.
        """
        consecutive_errors = 0
        tolerance = self.config.poll_error_tolerance

        while True:
            if token.cancelled:
                return _CANCELLED
            task = await self._writer.get(task_id)
            if task is None or task.status not in REMOTE_PHASE_STATUSES:
                logger.debug(f"[task:poll] stopping, task left remote phase task_id={task_id}")
                return _FINISHED

            timeout_error = self._check_timeout(task)
            if timeout_error is not None:
                return PollOutcome(PollOutcomeKind.failed, error=timeout_error)

            try:
                outcome = await self.check_once(task, token)
                consecutive_errors = 0
            except Exception as exc:
                classification = classify_failure(exc)
                if classification.terminal:
                    logger.warning(
                        f"[task:poll] terminal error task_id={task_id} kind={classification.kind} err={exc}"
                    )
                    return PollOutcome(PollOutcomeKind.failed, error=exc)
                consecutive_errors += 1
                logger.warning(
                    f"[task:poll] transient error task_id={task_id} "
                    f"consecutive={consecutive_errors}/{tolerance} err={exc}"
                )
                if consecutive_errors >= tolerance:
                    return PollOutcome(
                        PollOutcomeKind.failed,
                        error=TransportError(
                            f"Status polling failed {consecutive_errors} consecutive times: "
                            f"{classification.reason}",
                            status=getattr(exc, "status", None),
                            task_id=task_id,
                        ),
                    )
                outcome = None

            if outcome is not None:
                return outcome
            if await token.wait(self.config.poll_interval):
                return _CANCELLED

    def _check_timeout(self, task: Task) -> Optional[TaskTimeoutError]:
        if self.config.poll_timeout is None:
            return None
        elapsed = (datetime.now(timezone.utc) - task.started_at).total_seconds()
        if elapsed < self.config.poll_timeout:
            return None
        return TaskTimeoutError(task.id, elapsed, self.config.poll_timeout)

    async def check_once(
        self, task: Task, token: Optional[CancellationToken] = None
    ) -> Optional[PollOutcome]:
        """One poll tick.

        Returns an outcome when polling should stop, None to keep polling.
        Provider errors propagate to the caller.
        """
        if not task.remote_task_id:
            return _FINISHED
        try:
            raw = await asyncio.wait_for(
                self._client.fetch_status(task.remote_task_id),
                timeout=self.config.request_timeout,
            )
        except asyncio.TimeoutError:
            raise TransportError(
                f"Status request timed out after {self.config.request_timeout}s",
                status=504,
                task_id=task.id,
            )
        if token is not None and token.cancelled:
            return _CANCELLED

        normalized = self._normalizer.normalize(raw)
        logger.debug(
            f"[task:poll] task_id={task.id} remote_task_id={task.remote_task_id} "
            f"raw_status={normalized.raw_status} status={normalized.status} progress={normalized.progress}"
        )

        if normalized.status == TaskStatus.failed:
            return PollOutcome(
                PollOutcomeKind.failed,
                error=RemoteGenerationError(
                    normalized.error_text or "Remote task failed",
                    diagnostic=f"raw_status={normalized.raw_status}",
                    task_id=task.id,
                ),
            )

        change = await self._writer.update(
            task.id,
            self._patch_for(normalized),
            expected_status=REMOTE_PHASE_STATUSES,
        )
        if change is None:
            return _FINISHED

        if normalized.status == TaskStatus.completed:
            return PollOutcome(
                PollOutcomeKind.completed,
                result_url=normalized.result_url,
                thumbnail_url=normalized.thumbnail_url or change.task.thumbnail_url,
            )
        return None

    @staticmethod
    def _patch_for(normalized: NormalizedStatus) -> TaskPatch:
        """Only fields the provider actually reported; absent values never erase."""
        fields = {}
        if normalized.status in REMOTE_PHASE_STATUSES:
            fields["status"] = normalized.status
        if normalized.progress is not None:
            # the last percent points belong to archival
            fields["progress"] = min(normalized.progress, PENDING_URL_PROGRESS)
        if normalized.thumbnail_url:
            fields["thumbnail_url"] = normalized.thumbnail_url
        if normalized.status == TaskStatus.completed and normalized.result_url:
            fields["remote_result_url"] = normalized.result_url
        return TaskPatch(**fields)
