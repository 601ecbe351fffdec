"""Streaming client for the OpenAI-compatible chat completion provider."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Iterable, Sequence

import httpx
from fastapi import status

from .config import Settings
from .errors import CompletionError
from .schemas.chat import ChatCompletionRequest, ChatMessage

logger = logging.getLogger(__name__)


@dataclass
class ServerSentEvent:
    """Represents a parsed Server-Sent Event."""

    data: str


class CompletionClient:
    """Client responsible for streaming chat completions from the provider."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float], httpx.AsyncClient] = {}

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings
        self._http_client = http_client

    def _client_key(self) -> tuple[str, float]:
        return (self._base_url, float(self._settings.request_timeout))

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client

        key = self._client_key()
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                )
                self.__class__._client_pool[key] = client
        return client

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.completion_api_key.get_secret_value()}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    @property
    def _base_url(self) -> str:
        """Return the provider API base URL without a trailing slash."""

        return str(self._settings.completion_base_url).rstrip("/")

    def build_request(self, history: Sequence[ChatMessage]) -> ChatCompletionRequest:
        """Attach the fixed sampling policy to a conversation snapshot."""

        return ChatCompletionRequest(
            model=self._settings.completion_model,
            messages=list(history),
            max_completion_tokens=self._settings.max_completion_tokens,
            temperature=self._settings.temperature,
            top_p=self._settings.top_p,
        )

    async def stream_completion(
        self, history: Sequence[ChatMessage]
    ) -> AsyncGenerator[str, None]:
        """Yield the text fragments of a streamed completion for ``history``."""

        payload = self.build_request(history).to_payload()
        async for event in self.stream_chat_raw(payload):
            if event.data == "[DONE]":
                return
            content = self._extract_delta_content(event.data)
            if content:
                yield content

    async def stream_chat_raw(
        self, payload: dict[str, Any]
    ) -> AsyncGenerator[ServerSentEvent, None]:
        """Low-level streaming helper accepting a prebuilt payload."""

        url = f"{self._base_url}/chat/completions"

        client = await self._get_http_client()
        try:
            async with client.stream(
                "POST",
                url,
                headers=self._headers,
                json=payload,
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    detail = self._extract_error_detail(body)
                    raise CompletionError(response.status_code, detail)

                async for event in self._iter_events(response):
                    if not event.data:
                        continue
                    yield event
        except httpx.HTTPError as exc:
            raise CompletionError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    @staticmethod
    def _extract_delta_content(data: str) -> str:
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON stream event: %.80s", data)
            return ""
        if not isinstance(chunk, dict):
            return ""
        error = chunk.get("error")
        if error:
            raise CompletionError(status.HTTP_502_BAD_GATEWAY, error)
        choices = chunk.get("choices")
        if not isinstance(choices, list) or not choices:
            return ""
        choice = choices[0]
        if not isinstance(choice, dict):
            return ""
        delta = choice.get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        return content if isinstance(content, str) else ""

    async def aclose(self) -> None:
        await self.__class__.aclose_shared()

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.debug("Failed to close pooled HTTP client", exc_info=True)

    async def _iter_events(
        self, response: httpx.Response
    ) -> AsyncGenerator[ServerSentEvent, None]:
        buffer: list[str] = []
        async for line in response.aiter_lines():
            if not line:
                if buffer:
                    yield self._parse_event(buffer)
                    buffer.clear()
                continue
            if line.startswith(":"):
                continue
            buffer.append(line)
        if buffer:
            yield self._parse_event(buffer)

    def _parse_event(self, lines: Iterable[str]) -> ServerSentEvent:
        data_lines: list[str] = []
        for line in lines:
            field, _, value = line.partition(":")
            if field == "data":
                data_lines.append(value.lstrip(" "))
        return ServerSentEvent(data="\n".join(data_lines))

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "Completion provider returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            return payload.get("error") or payload
        return payload


__all__ = ["CompletionClient", "ServerSentEvent"]
