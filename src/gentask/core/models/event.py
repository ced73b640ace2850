"""Events published to subscribers after a committed task change."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Tuple

from pydantic import BaseModel, Field

from gentask.core.models.task import PublicStatus, Task, TaskStatus


class TaskEvent(BaseModel):
    """Immutable snapshot of a task at a given ``version``."""

    task_id: str
    owner_id: str
    version: int
    status: PublicStatus
    detail_status: TaskStatus
    progress: int
    result_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error_message: Optional[str] = None
    changed: Tuple[str, ...] = ()
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}

    @classmethod
    def from_task(cls, task: Task, changed: Tuple[str, ...] = ()) -> "TaskEvent":
        return cls(
            task_id=task.id,
            owner_id=task.owner_id,
            version=task.version,
            status=task.public_status,
            detail_status=task.status,
            progress=task.progress,
            result_url=task.result_url,
            thumbnail_url=task.thumbnail_url,
            error_message=task.error_message,
            changed=changed,
            occurred_at=task.updated_at,
        )

    @property
    def is_terminal(self) -> bool:
        return self.detail_status.is_terminal
