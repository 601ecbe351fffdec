"""
Directive Scanner for streamed model output.

The model may embed an image directive such as ``_prompt: a red fox_`` in its
reply. Upstream chunks carry no guarantee about token or word boundaries, so
the directive can arrive split across any number of chunks. The scanner keeps
the whole turn's text and re-runs the match against it after every chunk.

Usage:
    scanner = DirectiveScanner()

    # During streaming:
    for chunk in completion:
        scanner.consume(chunk)

    # After streaming completes:
    detected = scanner.detected
    match = scanner.finish()
    if match:
        await pipeline.run(match.payload)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

DEFAULT_KEY = "prompt"
DEFAULT_MARKER = "_"
DEFAULT_MAX_BUFFER_CHARS = 64 * 1024


@dataclass(frozen=True, slots=True)
class DirectiveMatch:
    """A directive found in the accumulated response."""

    raw_span: str
    payload: str
    start: int
    end: int


def compile_directive_pattern(
    key: str = DEFAULT_KEY, marker: str = DEFAULT_MARKER
) -> re.Pattern[str]:
    """Build ``<marker>?<key>: ?<not-marker>+<marker>?`` with named groups."""

    m = re.escape(marker)
    return re.compile(
        rf"(?P<lead>{m})?{re.escape(key)}: ?(?P<payload>[^{m}]+)(?P<trail>{m})?"
    )


def iter_directives(text: str, pattern: re.Pattern[str]) -> Iterator[DirectiveMatch]:
    """Yield every directive in ``text`` whose normalized payload is non-empty."""

    for found in pattern.finditer(text):
        payload = found.group("payload").strip()
        if not payload:
            continue
        yield DirectiveMatch(
            raw_span=found.group(0),
            payload=payload,
            start=found.start(),
            end=found.end(),
        )


def find_directive(
    text: str, pattern: Optional[re.Pattern[str]] = None
) -> Optional[DirectiveMatch]:
    """Return the first directive in ``text`` or ``None``."""

    return next(iter_directives(text, pattern or compile_directive_pattern()), None)


class DirectiveScanner:
    """
    Stateful scanner tracking one turn's accumulated output.

    Attributes:
        detected: Sticky flag, set once any chunk completes a directive with a
            non-empty payload and never cleared until ``reset()``.
        truncated: True once the buffer reached ``max_chars``.
    """

    def __init__(
        self,
        key: str = DEFAULT_KEY,
        marker: str = DEFAULT_MARKER,
        max_chars: int = DEFAULT_MAX_BUFFER_CHARS,
    ):
        self.key = key
        self.marker = marker
        self.max_chars = max_chars
        self._pattern = compile_directive_pattern(key, marker)
        self._parts: list[str] = []
        self._length = 0
        self.detected = False
        self.truncated = False

    @property
    def buffer(self) -> str:
        return "".join(self._parts)

    def reset(self) -> None:
        """Discard the buffer and the detection flag for a new turn."""
        self._parts.clear()
        self._length = 0
        self.detected = False
        self.truncated = False

    def consume(self, chunk: str) -> bool:
        """
        Append a chunk and re-scan the whole buffer.

        Returns:
            The sticky detection flag after this chunk.
        """
        if not chunk:
            return self.detected

        room = self.max_chars - self._length
        if room <= 0:
            self._mark_truncated()
            return self.detected
        if len(chunk) > room:
            chunk = chunk[:room]
            self._mark_truncated()

        self._parts.append(chunk)
        self._length += len(chunk)

        if not self.detected and find_directive(self.buffer, self._pattern):
            self.detected = True
            logger.debug("Directive detected after %d buffered chars", self._length)

        return self.detected

    def finish(self) -> Optional[DirectiveMatch]:
        """Re-scan the final buffer and return the first directive, if any."""
        return find_directive(self.buffer, self._pattern)

    def _mark_truncated(self) -> None:
        if not self.truncated:
            self.truncated = True
            logger.warning(
                "Directive scan buffer reached %d chars; ignoring further output",
                self.max_chars,
            )


__all__ = [
    "DirectiveMatch",
    "DirectiveScanner",
    "compile_directive_pattern",
    "find_directive",
    "iter_directives",
]
