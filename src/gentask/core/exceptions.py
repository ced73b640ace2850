from typing import Optional


class OrchestratorError(Exception):
    """Base exception for task lifecycle failures.

    Attributes:
        message: Human-readable error description
        diagnostic: Technical diagnostic information for debugging
        task_id: Optional local task identifier
    """
    def __init__(
        self,
        message: str,
        diagnostic: Optional[str] = None,
        task_id: Optional[str] = None
    ):
        self.message = message
        self.diagnostic = diagnostic
        self.task_id = task_id
        super().__init__(message)


# Remote generation service

class ConfigurationError(OrchestratorError):
    """Service is misconfigured (credentials, endpoints)."""


class ProviderUnavailableError(ConfigurationError):
    """Provider credential is missing, a placeholder, or rejected."""


class InvalidRequestError(OrchestratorError):
    """Request payload rejected locally or by the provider."""


class ResourceExhaustedError(OrchestratorError):
    """Provider quota or credits are exhausted."""


class RemoteTaskNotFoundError(OrchestratorError):
    """Provider does not know the remote task id."""

    def __init__(
        self,
        remote_task_id: str,
        diagnostic: Optional[str] = None,
        task_id: Optional[str] = None
    ):
        self.remote_task_id = remote_task_id
        super().__init__(
            message=f"Remote task {remote_task_id} not found",
            diagnostic=diagnostic,
            task_id=task_id,
        )


class ProviderError(OrchestratorError):
    """Provider answered with an unexpected status or body.

    Attributes:
        status: HTTP status code (504 timeout, 502 connection or bad body)
        body: Response body snippet (if available)
    """
    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
        diagnostic: Optional[str] = None,
        task_id: Optional[str] = None
    ):
        self.status = status
        self.body = body
        super().__init__(message=message, diagnostic=diagnostic, task_id=task_id)


class TransportError(ProviderError):
    """Network failure or timeout talking to a remote endpoint."""


class RemoteGenerationError(OrchestratorError):
    """Provider reported the generation itself as failed."""


# Archival

class ArchiveError(OrchestratorError):
    """Downloading or storing the generated artifact failed."""


class StorageError(ArchiveError):
    """Object storage rejected an upload or lookup.

    Attributes:
        status: HTTP status code from the storage service (if applicable)
    """
    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        diagnostic: Optional[str] = None,
        task_id: Optional[str] = None
    ):
        self.status = status
        super().__init__(message=message, diagnostic=diagnostic, task_id=task_id)


class IntegrityError(OrchestratorError):
    """Archived artifact does not match what was downloaded."""


# Lifecycle

class TaskTimeoutError(OrchestratorError):
    """Raised when a task exceeds its wall-clock budget.

    Attributes:
        elapsed_seconds: Time elapsed before timeout
        timeout_seconds: Configured timeout value
    """
    def __init__(
        self,
        task_id: str,
        elapsed_seconds: float,
        timeout_seconds: float,
        diagnostic: Optional[str] = None
    ):
        self.elapsed_seconds = elapsed_seconds
        self.timeout_seconds = timeout_seconds
        message = f"Task {task_id} timed out after {elapsed_seconds:.1f}s (limit: {timeout_seconds}s)"
        super().__init__(message=message, diagnostic=diagnostic, task_id=task_id)


class TaskNotFoundError(OrchestratorError):
    """Unknown local task id."""

    def __init__(self, task_id: str):
        super().__init__(message=f"Task {task_id} not found", task_id=task_id)


class InvalidTaskStateError(OrchestratorError):
    """Operation not allowed in the task's current status."""
