"""Pydantic models for chat messages and completion requests."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict

Role = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    """Represents a single chat message."""

    role: Role
    content: str

    model_config = ConfigDict(frozen=True)


class ChatCompletionRequest(BaseModel):
    """Outgoing streaming chat completion request."""

    model: str
    messages: List[ChatMessage]
    max_completion_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None

    def to_payload(self) -> Dict[str, Any]:
        """Serialize the request for the provider, enforcing streaming."""

        payload = self.model_dump(exclude_none=True)
        payload["stream"] = True
        return payload


__all__ = ["ChatCompletionRequest", "ChatMessage", "Role"]
