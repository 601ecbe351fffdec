"""Per-connection conversation history."""

from __future__ import annotations

from typing import Any

from ..schemas.chat import ChatMessage, Role


class Conversation:
    """Ordered log of role-tagged messages, seeded with the system prompt.

    The full sequence is the context sent upstream on every turn. Entries are
    immutable and never removed; the log lives exactly as long as the
    connection that owns it.
    """

    def __init__(self, system_prompt: str):
        self._messages: list[ChatMessage] = [
            ChatMessage(role="system", content=system_prompt)
        ]

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def system_prompt(self) -> str:
        return self._messages[0].content

    def append(self, role: Role, content: str) -> ChatMessage:
        message = ChatMessage(role=role, content=content)
        self._messages.append(message)
        return message

    def snapshot(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def to_payload(self) -> list[dict[str, Any]]:
        return [message.model_dump() for message in self._messages]


__all__ = ["Conversation"]
