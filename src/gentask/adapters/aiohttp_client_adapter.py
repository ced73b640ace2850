# gentask/adapters/aiohttp_client_adapter.py
import asyncio
import aiohttp
from typing import Any, Dict, Optional

from gentask.core.exceptions import IntegrityError, ProviderError, TransportError
from gentask.core.interfaces.http_client import HttpClientPort, ProgressCallback
from gentask.core.models.artifact import DownloadedArtifact
from gentask.core.settings import logger

DOWNLOAD_CHUNK_SIZE = 64 * 1024


class AioHttpClientAdapter(HttpClientPort):
    def __init__(
        self,
        default_total: float = 30.0,
        sock_read: float = 30.0,
        sock_connect: float = 10.0,
    ):
        self._session: Optional[aiohttp.ClientSession] = None
        # Per-field timeouts are fixed at init time so callers only pass a
        # total budget per request
        self._default_total = default_total
        self._default_sock_read = sock_read
        self._default_sock_connect = sock_connect
        self._default_client_timeout = aiohttp.ClientTimeout(
            total=self._default_total,
            sock_read=self._default_sock_read,
            sock_connect=self._default_sock_connect,
        )

    async def __aenter__(self):
        """Async context manager entry"""
        self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()
        return False

    async def close(self) -> None:
        """Close the session"""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("HTTP client not initialized. Use 'async with' context manager.")
        return self._session

    def _client_timeout(self, timeout: float | None) -> aiohttp.ClientTimeout:
        if timeout is None:
            return self._default_client_timeout
        # Keep adapter-level sock_read/sock_connect values but apply provided total
        return aiohttp.ClientTimeout(
            total=timeout,
            sock_read=min(self._default_sock_read, timeout),
            sock_connect=min(self._default_sock_connect, timeout),
        )

    async def get(
        self,
        url: str,
        timeout: float | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        session = self._require_session()
        try:
            async with session.get(url, timeout=self._client_timeout(timeout), headers=headers) as response:
                if response.status >= 400:
                    response_text = await response.text()
                    logger.warning(
                        "HTTP error from remote service. URL: %s, Status: %s",
                        url,
                        response.status,
                    )
                    raise ProviderError(
                        f"The remote service returned an HTTP error: {response.status}",
                        status=response.status,
                        body=response_text[:500],
                    )
                try:
                    return await response.json()
                except (aiohttp.ContentTypeError, ValueError):
                    # Response isn't JSON; log a snippet and raise domain error
                    response_text = await response.text()
                    logger.error(
                        "Invalid JSON response from remote service. URL: %s, Content: %s",
                        url,
                        response_text[:500],
                    )
                    raise ProviderError(
                        "The response from the remote service was not valid JSON"
                        f": '{response_text[:100]}'",
                        status=502,
                        body=response_text[:500],
                    )

        except asyncio.TimeoutError:
            logger.error("Timeout when requesting remote service. URL: %s", url)
            raise TransportError("The request to the remote service timed out.", status=504)

        except aiohttp.ClientError as client_error:
            logger.error(
                "Connection error when requesting remote service. URL: %s, Error: %s",
                url,
                str(client_error),
            )
            raise TransportError(
                "There was a connection error with the remote service.",
                status=502,
                diagnostic=str(client_error),
            )

    async def post(
        self,
        url: str,
        json: Dict[str, Any] | None = None,
        data: bytes | None = None,
        timeout: float | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        session = self._require_session()
        try:
            async with session.post(
                url,
                json=json,
                data=data,
                timeout=self._client_timeout(timeout),
                headers=headers,
            ) as response:
                # Status is returned, not raised, so callers can map it
                try:
                    body = await response.json()
                except (aiohttp.ContentTypeError, ValueError):
                    body = await response.text()
                return {
                    "status": response.status,
                    "headers": dict(response.headers),
                    "body": body,
                }

        except asyncio.TimeoutError:
            logger.error("Timeout when POSTing to remote service. URL: %s", url)
            raise TransportError("The request to the remote service timed out.", status=504)
        except aiohttp.ClientError as client_err:
            logger.error("Connection error when POSTing to remote service. URL: %s, Error: %s", url, str(client_err))
            raise TransportError(
                "There was a connection error with the remote service.",
                status=502,
                diagnostic=str(client_err),
            )

    async def head(
        self,
        url: str,
        timeout: float | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        session = self._require_session()
        try:
            async with session.head(
                url,
                timeout=self._client_timeout(timeout),
                headers=headers,
                allow_redirects=True,
            ) as response:
                return {"status": response.status, "headers": dict(response.headers)}
        except asyncio.TimeoutError:
            logger.error("Timeout on HEAD request. URL: %s", url)
            raise TransportError("The request to the remote service timed out.", status=504)
        except aiohttp.ClientError as client_err:
            logger.error("Connection error on HEAD request. URL: %s, Error: %s", url, str(client_err))
            raise TransportError(
                "There was a connection error with the remote service.",
                status=502,
                diagnostic=str(client_err),
            )

    async def download(
        self,
        url: str,
        timeout: float | None = None,
        max_bytes: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> DownloadedArtifact:
        session = self._require_session()
        try:
            async with session.get(url, timeout=self._client_timeout(timeout)) as response:
                if response.status >= 400:
                    raise ProviderError(
                        f"Download failed with HTTP {response.status}",
                        status=response.status,
                    )
                declared = response.content_length
                if max_bytes is not None and declared is not None and declared > max_bytes:
                    raise ProviderError(
                        f"Artifact of {declared} bytes exceeds limit of {max_bytes}",
                        status=413,
                    )
                buffer = bytearray()
                async for chunk in response.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                    buffer.extend(chunk)
                    if max_bytes is not None and len(buffer) > max_bytes:
                        raise ProviderError(
                            f"Artifact exceeds limit of {max_bytes} bytes",
                            status=413,
                        )
                    if on_progress is not None:
                        await on_progress(len(buffer), declared)
                logger.debug(
                    "Downloaded %s bytes (declared=%s) from %s", len(buffer), declared, url
                )
                return DownloadedArtifact(
                    data=bytes(buffer),
                    content_type=response.content_type,
                    declared_length=declared,
                )

        except asyncio.TimeoutError:
            logger.error("Timeout while downloading. URL: %s", url)
            raise TransportError("Download from the remote service timed out.", status=504)
        except aiohttp.ClientPayloadError as payload_err:
            # connection closed before Content-Length bytes arrived
            logger.error("Incomplete body while downloading. URL: %s, Error: %s", url, str(payload_err))
            raise IntegrityError(
                "The downloaded artifact is incomplete (truncated response body).",
                diagnostic=str(payload_err),
            )
        except aiohttp.ClientError as client_err:
            logger.error("Connection error while downloading. URL: %s, Error: %s", url, str(client_err))
            raise TransportError(
                "There was a connection error while downloading.",
                status=502,
                diagnostic=str(client_err),
            )
