"""Events sent to connected chat clients."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class UserEvent(BaseModel):
    """Echo of the message the client just submitted."""

    role: Literal["user"] = "user"
    content: str


class AIEvent(BaseModel):
    """Visible model output, or a human-readable error sentence."""

    role: Literal["ai"] = "ai"
    content: str


class AICompleteEvent(BaseModel):
    """End of one turn's text stream."""

    role: Literal["ai_complete"] = "ai_complete"
    prompt_detected: bool = Field(alias="promptDetected")

    model_config = ConfigDict(populate_by_name=True)


class ImageEvent(BaseModel):
    """An inline image as a `data:` URI."""

    role: Literal["image"] = "image"
    content: str


__all__ = ["AICompleteEvent", "AIEvent", "ImageEvent", "UserEvent"]
