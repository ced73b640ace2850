import asyncio
from typing import Dict, Optional, Tuple

from gentask.core.interfaces.object_storage import ObjectStoragePort


class InMemoryObjectStorage(ObjectStoragePort):
    """Dictionary-backed storage for tests and local runs."""

    def __init__(self, public_base_url: str = "memory://storage") -> None:
        self._objects: Dict[str, Tuple[bytes, str]] = {}
        self._lock = asyncio.Lock()
        self._base = public_base_url.rstrip("/")
        self.upload_count = 0

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        async with self._lock:
            self._objects[path] = (bytes(data), content_type)
            self.upload_count += 1

    def get_public_url(self, path: str) -> str:
        return f"{self._base}/{path.lstrip('/')}"

    async def object_size(self, path: str) -> Optional[int]:
        async with self._lock:
            stored = self._objects.get(path)
            return len(stored[0]) if stored else None

    async def read(self, path: str) -> Optional[bytes]:
        async with self._lock:
            stored = self._objects.get(path)
            return stored[0] if stored else None

    def paths(self) -> list[str]:
        return sorted(self._objects)
