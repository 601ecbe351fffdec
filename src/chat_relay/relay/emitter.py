"""Client-facing event stream for a relay connection."""

from __future__ import annotations

import logging

from fastapi import WebSocket
from pydantic import BaseModel

from ..schemas.events import AICompleteEvent, AIEvent, ImageEvent, UserEvent
from .directive import DEFAULT_KEY, DEFAULT_MARKER, compile_directive_pattern

logger = logging.getLogger(__name__)


class VisibleTextFilter:
    """
    Strip directive text from streamed chunks before they reach the client.

    Spans are decided by the same pattern the scanner uses, so the joined
    output equals the response with each directive removed. A tail that could
    still grow into a directive (``"... here is the _pro"`` or an open
    ``"_prompt: a red"``) is held back until later text or ``flush()`` settles
    it. Matches whose payload is blank stay visible.
    """

    def __init__(self, key: str = DEFAULT_KEY, marker: str = DEFAULT_MARKER):
        self.marker = marker
        self._pattern = compile_directive_pattern(key, marker)
        self._openers = (f"{marker}{key}: ", f"{key}: ")
        self._carry = ""

    def feed(self, chunk: str) -> str:
        """Return the part of ``chunk`` that is safe to show now."""
        return self._release(self._carry + chunk, final=False)

    def flush(self) -> str:
        """Settle the withheld tail at end of stream."""
        return self._release(self._carry, final=True)

    def _release(self, text: str, *, final: bool) -> str:
        self._carry = ""
        visible: list[str] = []

        while text:
            found = self._pattern.search(text)
            if found is None:
                hold = 0 if final else self._held_tail_length(text)
                visible.append(text[: len(text) - hold])
                self._carry = text[len(text) - hold :]
                break

            open_ended = found.end() == len(text) and found.group("trail") is None
            if open_ended and not final:
                # The payload may still grow or gain its closing marker.
                visible.append(text[: found.start()])
                self._carry = text[found.start() :]
                break

            if found.group("payload").strip():
                visible.append(text[: found.start()])
            else:
                visible.append(text[: found.end()])
            text = text[found.end() :]

        return "".join(visible)

    def _held_tail_length(self, text: str) -> int:
        longest = 0
        for opener in self._openers:
            for size in range(min(len(opener), len(text)), longest, -1):
                if text.endswith(opener[:size]):
                    longest = size
                    break
        return longest


class RelayEmitter:
    """Serialize relay events onto one WebSocket."""

    def __init__(self, websocket: WebSocket):
        self._websocket = websocket
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def send(self, event: BaseModel) -> None:
        if self._closed:
            return
        try:
            await self._websocket.send_json(event.model_dump(by_alias=True))
        except Exception as exc:
            logger.info("Dropping event after send failure: %s", exc)
            self._closed = True

    async def user(self, content: str) -> None:
        await self.send(UserEvent(content=content))

    async def ai(self, content: str) -> None:
        if not content:
            return
        await self.send(AIEvent(content=content))

    async def complete(self, prompt_detected: bool) -> None:
        await self.send(AICompleteEvent(prompt_detected=prompt_detected))

    async def image(self, data_uri: str) -> None:
        await self.send(ImageEvent(content=data_uri))


__all__ = ["RelayEmitter", "VisibleTextFilter"]
