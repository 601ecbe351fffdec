"""Exceptions raised by the relay core."""

from __future__ import annotations

from typing import Any


class CompletionError(Exception):
    """Wrap transport or API failures when communicating with the completion provider."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


# The completion failure is the relay's upstream error.
UpstreamError = CompletionError


class ImageFetchError(Exception):
    """Raised when a generated image cannot be retrieved."""

    def __init__(self, reason: str, *, status_code: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


class MissingContextError(RuntimeError):
    """Raised when a turn arrives for a connection whose conversation is gone."""


__all__ = [
    "CompletionError",
    "ImageFetchError",
    "MissingContextError",
    "UpstreamError",
]
