"""GenerationClientPort: hexagonal port for the remote generation service.

Adapters translate a provider's wire format into this contract. They hold
no task state and never retry; retries belong to the retry coordinator.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from gentask.core.models.generation import GenerationRequest
from gentask.core.models.remote_status import RawStatus


class GenerationClientPort(ABC):

    @abstractmethod
    async def submit(self, request: GenerationRequest) -> str:
        """Create a remote task and return its remote id.

        Raises:
            ProviderUnavailableError: credential missing, placeholder or rejected
            InvalidRequestError: payload rejected (HTTP 400/422)
            ResourceExhaustedError: quota or credits exhausted
            ProviderError: any other non-success response
        """
        raise NotImplementedError

    @abstractmethod
    async def fetch_status(self, remote_task_id: str) -> RawStatus:
        """Return the provider's raw status payload.

        Raises:
            RemoteTaskNotFoundError: provider does not know the id
            ProviderError: any other non-success response
        """
        raise NotImplementedError
