# gentask/core/interfaces/http_client.py
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

from gentask.core.models.artifact import DownloadedArtifact

# (bytes received so far, declared Content-Length or None)
ProgressCallback = Callable[[int, Optional[int]], Awaitable[None]]


class HttpClientPort(ABC):
    @abstractmethod
    async def __aenter__(self) -> "HttpClientPort":
        """Async context manager entry method"""
        pass

    @abstractmethod
    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit method"""
        pass

    @abstractmethod
    async def get(
        self,
        url: str,
        timeout: float | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        """Make a GET request and return the JSON response.

        Raises ProviderError for HTTP error statuses and non-JSON bodies,
        TransportError for timeouts and connection failures.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the HTTP client session"""
        pass

    @abstractmethod
    async def post(
        self,
        url: str,
        json: Dict[str, Any] | None = None,
        data: bytes | None = None,
        timeout: float | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        """Make a POST request. Returns a dict with keys: 'status' (int),
        'headers' (dict) and 'body' (parsed JSON or raw text).

        Error statuses are returned, not raised, so callers can map them.
        """
        pass

    @abstractmethod
    async def head(
        self,
        url: str,
        timeout: float | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        """Make a HEAD request. Returns 'status' and 'headers'."""
        pass

    @abstractmethod
    async def download(
        self,
        url: str,
        timeout: float | None = None,
        max_bytes: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> DownloadedArtifact:
        """Stream a binary body into memory.

        ``on_progress`` is awaited after every received chunk. Raises
        ProviderError for error statuses or bodies larger than ``max_bytes``
        and IntegrityError when the body ends before its declared length.
        """
        pass
