"""Generation request models.

A request describes *what* the remote service should generate. It is stored
on the task so a retry can resubmit the exact same payload.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field, HttpUrl, model_validator

DEFAULT_IMAGE_PROMPT = "Animate this image with natural motion"


class TaskKind(StrEnum):
    text_to_video = "text_to_video"
    image_to_video = "image_to_video"


class AspectRatio(StrEnum):
    landscape = "16:9"
    portrait = "9:16"
    square = "1:1"


class GenerationRequest(BaseModel):
    kind: TaskKind = TaskKind.text_to_video
    prompt: str = Field(default="", max_length=4000)
    image_url: Optional[HttpUrl] = Field(
        None, description="Seed image; required for image_to_video"
    )
    aspect_ratio: AspectRatio = AspectRatio.landscape
    negative_prompt: Optional[str] = Field(None, max_length=2000)

    model_config = {"frozen": True, "extra": "forbid"}

    @model_validator(mode="before")
    @classmethod
    def default_image_prompt(cls, data):
        if isinstance(data, dict) and data.get("kind") == TaskKind.image_to_video:
            if not str(data.get("prompt") or "").strip():
                data = {**data, "prompt": DEFAULT_IMAGE_PROMPT}
        return data

    @model_validator(mode="after")
    def check_kind_inputs(self):
        if self.kind == TaskKind.image_to_video:
            if self.image_url is None:
                raise ValueError("image_to_video requests require 'image_url'")
        elif not self.prompt.strip():
            raise ValueError("text_to_video requests require a non-empty 'prompt'")
        return self
