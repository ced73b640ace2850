from typing import Optional

from pydantic import BaseModel


class DownloadedArtifact(BaseModel):
    """Bytes fetched from a remote URL plus what the server claimed about them."""

    data: bytes
    content_type: Optional[str] = None
    declared_length: Optional[int] = None  # Content-Length header, if any

    @property
    def size(self) -> int:
        return len(self.data)


class StorageUsage(BaseModel):
    """Bytes an owner occupies in permanent storage, against the configured allowance."""

    owner_id: str
    used_bytes: int
    file_count: int
    total_bytes: int
    available_bytes: int
