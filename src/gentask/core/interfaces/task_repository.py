"""TaskRepositoryPort: hexagonal port for persisting and querying Tasks.

Async methods anticipate DB/network-backed adapters; the in-memory
implementation still uses async for interface uniformity.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Collection, List, Optional, Sequence

from gentask.core.models.task import Task, TaskChange, TaskPatch, TaskStatus


class TaskRepositoryPort(ABC):
	"""Port abstraction for Task persistence and change history."""

	@abstractmethod
	async def create(self, task: Task) -> Task:
		"""Persist a newly created Task and return the stored instance."""
		raise NotImplementedError

	@abstractmethod
	async def get(self, task_id: str) -> Optional[Task]:
		"""Return Task or None if not found."""
		raise NotImplementedError

	@abstractmethod
	async def update(
		self,
		task_id: str,
		patch: TaskPatch,
		expected_status: Optional[Collection[TaskStatus]] = None,
		reset: bool = False,
	) -> Optional[TaskChange]:
		"""Atomically merge ``patch`` into the stored task.

		Returns None when the task is unknown or its status is not in
		``expected_status``. A merge that changes nothing returns a
		TaskChange with an empty ``changed`` tuple and writes nothing.
		"""
		raise NotImplementedError

	@abstractmethod
	async def list(
		self,
		owner_id: Optional[str] = None,
		status: Optional[Collection[TaskStatus]] = None,
	) -> Sequence[Task]:
		"""List tasks filtered by owner and status, oldest first."""
		raise NotImplementedError

	@abstractmethod
	async def append_event(self, task_id: str, event: dict) -> None:
		"""Record a change log entry for the task."""
		raise NotImplementedError

	@abstractmethod
	async def events(self, task_id: str) -> List[dict]:
		"""Return the change log of a task in commit order."""
		raise NotImplementedError
