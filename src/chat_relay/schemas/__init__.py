"""Pydantic schemas shared across the relay."""

from .chat import ChatCompletionRequest, ChatMessage
from .events import AICompleteEvent, AIEvent, ImageEvent, UserEvent

__all__ = [
    "AICompleteEvent",
    "AIEvent",
    "ChatCompletionRequest",
    "ChatMessage",
    "ImageEvent",
    "UserEvent",
]
