from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from pydantic import BaseModel, Field

from gentask.core.models.generation import GenerationRequest, TaskKind


class TaskStatus(StrEnum):
    pending = "pending"
    processing = "processing"
    pending_url = "pending_url"  # remote reported success, artifact URL not yet populated
    downloading = "downloading"
    storing = "storing"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def public(self) -> "PublicStatus":
        if self == TaskStatus.pending:
            return PublicStatus.pending
        if self == TaskStatus.completed:
            return PublicStatus.completed
        if self == TaskStatus.failed:
            return PublicStatus.failed
        return PublicStatus.processing


class PublicStatus(StrEnum):
    """The only statuses consumers have to act on."""

    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class FailureKind(StrEnum):
    configuration = "configuration"
    validation = "validation"
    resource_exhausted = "resource_exhausted"
    not_found = "not_found"
    transport = "transport"
    timeout = "timeout"
    integrity = "integrity"
    archive = "archive"
    remote_failure = "remote_failure"
    internal = "internal"


TERMINAL_STATUSES: FrozenSet[TaskStatus] = frozenset(
    {TaskStatus.completed, TaskStatus.failed}
)
NON_TERMINAL_STATUSES: FrozenSet[TaskStatus] = frozenset(
    s for s in TaskStatus if s not in TERMINAL_STATUSES
)
# States in which the remote service still owns the work
REMOTE_PHASE_STATUSES: FrozenSet[TaskStatus] = frozenset(
    {TaskStatus.pending, TaskStatus.processing, TaskStatus.pending_url}
)
ARCHIVAL_FAILURE_KINDS: FrozenSet[FailureKind] = frozenset(
    {FailureKind.archive, FailureKind.integrity}
)

_STATUS_RANK: Dict[TaskStatus, int] = {
    TaskStatus.pending: 0,
    TaskStatus.processing: 1,
    TaskStatus.pending_url: 2,
    TaskStatus.downloading: 3,
    TaskStatus.storing: 4,
    TaskStatus.completed: 5,
    TaskStatus.failed: 5,
}

# Fields compared when computing the diff of an update
_TRACKED_FIELDS: Tuple[str, ...] = (
    "status",
    "progress",
    "remote_task_id",
    "remote_result_url",
    "thumbnail_url",
    "result_url",
    "storage_path",
    "file_size",
    "error_message",
    "failure_kind",
    "attempt_count",
    "retry_count",
    "started_at",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskPatch(BaseModel):
    """Partial update of a task.

    Only fields explicitly passed are applied; omitted fields keep their
    stored value. Passing ``None`` explicitly clears a field.
    """

    status: Optional[TaskStatus] = None
    progress: Optional[int] = Field(None, ge=0, le=100)
    remote_task_id: Optional[str] = None
    remote_result_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    result_url: Optional[str] = None
    storage_path: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)
    error_message: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    attempt_count: Optional[int] = Field(None, ge=0)
    retry_count: Optional[int] = Field(None, ge=0)
    started_at: Optional[datetime] = None

    model_config = {"extra": "forbid"}

    def provided(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class Task(BaseModel):
    """Durable record of one generation request's lifecycle.

    Invariants (enforced by :meth:`merged`):
    - ``result_url`` is set if and only if ``status == completed``
    - ``error_message`` is set if and only if ``status == failed``
    - ``progress`` never decreases and ``status`` never moves back along
      the state graph, except through an explicit reset (retry)
    """

    id: str
    owner_id: str
    kind: TaskKind
    request: GenerationRequest
    remote_task_id: Optional[str] = None

    status: TaskStatus = TaskStatus.pending
    progress: int = Field(0, ge=0, le=100)

    remote_result_url: Optional[str] = None  # ephemeral provider URL
    thumbnail_url: Optional[str] = None
    result_url: Optional[str] = None  # permanent storage locator
    storage_path: Optional[str] = None
    file_size: Optional[int] = None

    error_message: Optional[str] = None
    failure_kind: Optional[FailureKind] = None

    attempt_count: int = 0
    retry_count: int = 0

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    started_at: datetime = Field(default_factory=_utcnow)
    version: int = 0

    @property
    def public_status(self) -> PublicStatus:
        return self.status.public

    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def can_transition_to(self, new_status: TaskStatus) -> bool:
        if new_status == self.status:
            return True
        if self.status.is_terminal:
            return False
        if new_status == TaskStatus.failed:
            return True
        return _STATUS_RANK[new_status] > _STATUS_RANK[self.status]

    def merged(
        self,
        patch: TaskPatch,
        reset: bool = False,
        now: Optional[datetime] = None,
    ) -> Tuple["Task", Tuple[str, ...]]:
        """Return ``(task, changed_fields)`` after applying ``patch``.

        Regressions are dropped silently unless ``reset`` is set; the caller
        learns about it through ``changed_fields``. When nothing changes the
        original instance is returned with an empty tuple.
        """
        updates = patch.provided()

        if updates.get("status", self.status) is None:
            updates.pop("status")
        if "status" in updates and not reset and not self.can_transition_to(updates["status"]):
            updates.pop("status")

        if "progress" in updates:
            if updates["progress"] is None:
                updates.pop("progress")
            elif not reset:
                updates["progress"] = max(self.progress, updates["progress"])

        if self.is_terminal() and not reset:
            # terminal records only accept cosmetic fields
            updates = {k: v for k, v in updates.items() if k == "thumbnail_url"}

        candidate = self.model_copy(update=updates)

        if candidate.status != TaskStatus.failed:
            candidate.error_message = None
            candidate.failure_kind = None
        if candidate.status != TaskStatus.completed:
            candidate.result_url = None
        else:
            candidate.progress = 100

        if candidate.status == TaskStatus.completed and not candidate.result_url:
            raise ValueError(f"task {self.id}: completed requires result_url")
        if candidate.status == TaskStatus.failed and not candidate.error_message:
            raise ValueError(f"task {self.id}: failed requires error_message")

        changed = tuple(
            name
            for name in _TRACKED_FIELDS
            if getattr(candidate, name) != getattr(self, name)
        )
        if not changed:
            return self, ()

        candidate.version = self.version + 1
        candidate.updated_at = now or _utcnow()
        return candidate, changed


class TaskView(BaseModel):
    """Consumer-facing projection of a task."""

    id: str
    owner_id: str
    kind: TaskKind
    status: PublicStatus
    detail_status: TaskStatus
    progress: int
    result_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error_message: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    can_retry: bool = False
    attempt_count: int = 0
    retry_count: int = 0
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_task(cls, task: Task) -> "TaskView":
        return cls(
            id=task.id,
            owner_id=task.owner_id,
            kind=task.kind,
            status=task.public_status,
            detail_status=task.status,
            progress=task.progress,
            result_url=task.result_url,
            thumbnail_url=task.thumbnail_url,
            error_message=task.error_message,
            failure_kind=task.failure_kind,
            can_retry=task.status == TaskStatus.failed,
            attempt_count=task.attempt_count,
            retry_count=task.retry_count,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )


class TaskList(BaseModel):
    tasks: list[TaskView]


class TaskChange(BaseModel):
    """Result of a committed update: new snapshot plus the fields that changed."""

    task: Task
    changed: Tuple[str, ...] = ()

    @property
    def applied(self) -> bool:
        return bool(self.changed)

    @property
    def became_terminal(self) -> bool:
        return "status" in self.changed and self.task.is_terminal()
