"""Object storage adapter for a Supabase-style storage REST API.

* upload: ``POST {base}/storage/v1/object/{bucket}/{path}`` with
  ``x-upsert: true`` so re-archiving the same task replaces the object
* public URL: ``{base}/storage/v1/object/public/{bucket}/{path}``
* size: ``Content-Length`` of a HEAD on the public URL
"""

from typing import Optional
from urllib.parse import quote

from gentask.core.exceptions import StorageError
from gentask.core.interfaces.http_client import HttpClientPort
from gentask.core.interfaces.object_storage import ObjectStoragePort
from gentask.core.settings import logger


class HttpObjectStorage(ObjectStoragePort):
    def __init__(
        self,
        http_client: HttpClientPort,
        base_url: str,
        bucket: str,
        service_key: Optional[str],
        request_timeout: float = 120.0,
    ) -> None:
        self._http = http_client
        self._base = base_url.rstrip("/")
        self._bucket = bucket
        self._key = service_key or ""
        self._timeout = request_timeout

    def _object_path(self, path: str) -> str:
        return quote(path.lstrip("/"), safe="/")

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        url = f"{self._base}/storage/v1/object/{self._bucket}/{self._object_path(path)}"
        headers = {
            "Authorization": f"Bearer {self._key}",
            "apikey": self._key,
            "Content-Type": content_type,
            "x-upsert": "true",
            "cache-control": "3600",
        }
        resp = await self._http.post(url, data=data, timeout=self._timeout, headers=headers)
        status = resp.get("status") or 0
        if status >= 400:
            body = resp.get("body")
            message = body.get("message") if isinstance(body, dict) else body
            logger.warning(f"[storage:upload] rejected path={path} status={status} body={str(body)[:200]}")
            raise StorageError(
                f"Storage upload failed: {message or f'HTTP {status}'}",
                status=status,
                diagnostic=str(body)[:500],
            )
        logger.debug(f"[storage:upload] stored path={path} bytes={len(data)}")

    def get_public_url(self, path: str) -> str:
        return f"{self._base}/storage/v1/object/public/{self._bucket}/{self._object_path(path)}"

    async def object_size(self, path: str) -> Optional[int]:
        resp = await self._http.head(self.get_public_url(path), timeout=self._timeout)
        status = resp.get("status") or 0
        if status == 404:
            return None
        if status >= 400:
            raise StorageError(f"Storage lookup failed: HTTP {status}", status=status)
        headers = {k.lower(): v for k, v in (resp.get("headers") or {}).items()}
        length = headers.get("content-length")
        try:
            return int(length) if length is not None else None
        except ValueError:
            return None
