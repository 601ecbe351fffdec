"""Connection lifecycle: one WebSocket, one conversation."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..errors import MissingContextError
from .conversation import Conversation
from .emitter import RelayEmitter
from .turn import TurnProcessor

logger = logging.getLogger(__name__)

QUEUE_FULL_MESSAGE = (
    "I'm still working on your earlier messages. Please wait a moment and try again."
)


def load_system_prompt(path: Path, fallback: str) -> str:
    """Read the system prompt file, falling back to ``fallback`` when unreadable."""

    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not read system prompt from %s: %s", path, exc)
        return fallback


@dataclass
class RelaySession:
    """State owned by a single relay connection.

    Inbound messages are queued and processed one turn at a time, in arrival
    order. ``close()`` cancels the in-flight turn (its completion stream and
    image fetches) and releases the conversation.
    """

    emitter: RelayEmitter
    processor: TurnProcessor
    conversation: Optional[Conversation]
    max_pending_turns: int = 8
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    _queue: asyncio.Queue[str] = field(init=False)
    _worker: Optional[asyncio.Task[None]] = field(default=None, init=False)

    def __post_init__(self) -> None:
        self._queue = asyncio.Queue()

    @classmethod
    def open(
        cls,
        emitter: RelayEmitter,
        processor: TurnProcessor,
        system_prompt: str,
        *,
        max_pending_turns: int = 8,
    ) -> "RelaySession":
        session = cls(
            emitter=emitter,
            processor=processor,
            conversation=Conversation(system_prompt),
            max_pending_turns=max_pending_turns,
        )
        logger.info("Relay session %s opened", session.session_id)
        return session

    @property
    def active(self) -> bool:
        return self.conversation is not None

    @property
    def pending_turns(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(
                self._run_worker(), name=f"relay-turns-{self.session_id}"
            )

    async def submit(self, text: str) -> bool:
        """Echo and queue a user message. Returns False if it was rejected.

        Raises:
            MissingContextError: the session's conversation was already released.
        """

        if not self.active:
            raise MissingContextError(
                f"No conversation for session {self.session_id}"
            )

        logger.info("Received user message (%d chars)", len(text))
        await self.emitter.user(text)

        if self._queue.qsize() >= self.max_pending_turns:
            logger.warning(
                "Session %s has %d pending turns; rejecting message",
                self.session_id,
                self._queue.qsize(),
            )
            await self.emitter.ai(QUEUE_FULL_MESSAGE)
            return False

        self._queue.put_nowait(text)
        self.start()
        return True

    async def process(self, text: str) -> None:
        """Run one turn for ``text`` against this session's conversation."""

        conversation = self.conversation
        if conversation is None:
            raise MissingContextError(
                f"No conversation for session {self.session_id}"
            )
        await self.processor.run(conversation, self.emitter, text)

    async def _run_worker(self) -> None:
        while True:
            text = await self._queue.get()
            try:
                await self.process(text)
            except MissingContextError as exc:
                logger.error("%s; dropping turn", exc)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Turn failed in session %s", self.session_id)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued turn has been processed."""
        await self._queue.join()

    async def close(self) -> None:
        """Stop emitting, cancel the in-flight turn and release the conversation."""

        self.emitter.close()
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            with suppress(asyncio.CancelledError):
                await worker
        if self.conversation is not None:
            logger.info(
                "Relay session %s closed after %d messages",
                self.session_id,
                len(self.conversation),
            )
        self.conversation = None


__all__ = ["QUEUE_FULL_MESSAGE", "RelaySession", "load_system_prompt"]
