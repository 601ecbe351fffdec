"""Processing of a single chat turn."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol, Sequence

from ..errors import CompletionError
from ..schemas.chat import ChatMessage
from .conversation import Conversation
from .directive import DEFAULT_KEY, DEFAULT_MARKER, DEFAULT_MAX_BUFFER_CHARS
from .directive import DirectiveMatch, DirectiveScanner
from .emitter import RelayEmitter, VisibleTextFilter
from .images import ImagePipeline

logger = logging.getLogger(__name__)

UPSTREAM_ERROR_MESSAGE = "Sorry, I encountered an error, bro!"


class CompletionStream(Protocol):
    def stream_completion(
        self, history: Sequence[ChatMessage]
    ) -> AsyncIterator[str]:
        ...


@dataclass
class TurnOutcome:
    """Summary of a finished turn, mainly for logging and tests."""

    response: str
    prompt_detected: bool
    directive: Optional[DirectiveMatch] = None
    failed: bool = False
    images_sent: int = 0
    image_failures: int = 0


class TurnProcessor:
    """Run one user message through completion, scanning and image fetches."""

    def __init__(
        self,
        completion: CompletionStream,
        image_pipeline: ImagePipeline,
        *,
        directive_key: str = DEFAULT_KEY,
        directive_marker: str = DEFAULT_MARKER,
        max_buffer_chars: int = DEFAULT_MAX_BUFFER_CHARS,
    ):
        self._completion = completion
        self._images = image_pipeline
        self._key = directive_key
        self._marker = directive_marker
        self._max_buffer_chars = max_buffer_chars

    async def run(
        self,
        conversation: Conversation,
        emitter: RelayEmitter,
        user_text: str,
    ) -> TurnOutcome:
        conversation.append("user", user_text)

        scanner = DirectiveScanner(self._key, self._marker, self._max_buffer_chars)
        visible = VisibleTextFilter(self._key, self._marker)
        parts: list[str] = []

        try:
            async for chunk in self._completion.stream_completion(
                conversation.snapshot()
            ):
                logger.debug("Raw chunk: %r", chunk)
                parts.append(chunk)
                scanner.consume(chunk)
                await emitter.ai(visible.feed(chunk))
        except CompletionError as exc:
            logger.error(
                "Completion failed (status=%s): %s", exc.status_code, exc.detail
            )
            await emitter.ai(visible.flush())
            partial = "".join(parts)
            if partial:
                # Keep history aligned with what the client already saw.
                conversation.append("assistant", partial)
            await emitter.ai(UPSTREAM_ERROR_MESSAGE)
            return TurnOutcome(
                response=partial, prompt_detected=scanner.detected, failed=True
            )

        await emitter.ai(visible.flush())

        response = "".join(parts)
        if response:
            conversation.append("assistant", response)
        logger.info("Full response: %d chars", len(response))

        await emitter.complete(scanner.detected)

        outcome = TurnOutcome(response=response, prompt_detected=scanner.detected)
        if not scanner.detected:
            return outcome

        outcome.directive = scanner.finish()
        if outcome.directive is None:
            return outcome

        logger.info("Directive payload: %s", outcome.directive.payload)
        for result in await self._images.run(outcome.directive.payload):
            if result.ok:
                outcome.images_sent += 1
                await emitter.image(result.encoded_payload or "")
            else:
                outcome.image_failures += 1
                await emitter.ai(
                    f"Image {result.index + 1} could not be generated: "
                    f"{result.failure_reason}"
                )
        return outcome


__all__ = ["CompletionStream", "TurnOutcome", "TurnProcessor", "UPSTREAM_ERROR_MESSAGE"]
