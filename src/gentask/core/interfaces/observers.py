"""Observer protocols for task state transitions.

Observers decouple side effects (subscriber notification, change history)
from the lifecycle logic that writes task state.
"""

from typing import Protocol, Tuple

from gentask.core.models.task import Task


class TaskStateObserver(Protocol):
    """Observer protocol for task state transitions.

    Implementations can react to task lifecycle events:
    - on_task_created: After the task is stored in ``pending``
    - on_task_changed: After any committed change (including the terminal one)
    - on_task_finished: After the task reaches ``completed`` or ``failed``

    Observers may be called from many worker tasks concurrently and are only
    invoked for writes that changed something.
    """

    async def on_task_created(self, task: Task) -> None:
        ...

    async def on_task_changed(self, task: Task, changed: Tuple[str, ...]) -> None:
        """Called after a committed change.

        Args:
            task: Snapshot after the change
            changed: Names of the fields that changed
        """
        ...

    async def on_task_finished(self, task: Task) -> None:
        ...
