from abc import ABC, abstractmethod
from typing import Optional


class ObjectStoragePort(ABC):
    """Permanent storage for archived artifacts."""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        """Store ``data`` under ``path``, replacing any existing object.

        Raises StorageError when the storage service rejects the upload.
        """
        raise NotImplementedError

    @abstractmethod
    def get_public_url(self, path: str) -> str:
        """Return the permanent public locator of ``path``."""
        raise NotImplementedError

    @abstractmethod
    async def object_size(self, path: str) -> Optional[int]:
        """Return the stored byte size, or None if the service does not say."""
        raise NotImplementedError
