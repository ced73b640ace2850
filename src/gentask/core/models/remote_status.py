from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

from gentask.core.models.task import TaskStatus

# Provider status payloads are opaque mappings until normalized
RawStatus = Mapping[str, Any]


class NormalizedStatus(BaseModel):
    """Provider status reduced to the local vocabulary.

    ``status`` is one of ``pending``, ``processing``, ``pending_url``,
    ``completed`` or ``failed``; the archival states are never produced by
    the provider side.
    """

    status: TaskStatus
    progress: Optional[int] = Field(None, ge=0, le=100)
    result_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error_text: Optional[str] = None
    raw_status: Optional[str] = None

    model_config = {"frozen": True}
