import asyncio
import pathlib
import sys
from typing import Any, Callable, Iterable, Sequence

import httpx
import pytest
from pydantic import SecretStr

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from chat_relay.config import Settings  # noqa: E402
from chat_relay.errors import CompletionError  # noqa: E402
from chat_relay.relay.emitter import RelayEmitter  # noqa: E402
from chat_relay.relay.images import ImagePipeline, ImageVariant  # noqa: E402
from chat_relay.schemas.chat import ChatMessage  # noqa: E402

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class FakeWebSocket:
    """Records JSON frames sent by the emitter."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail_after: int | None = None

    async def send_json(self, data: Any) -> None:
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def roles(self) -> list[str]:
        return [event["role"] for event in self.sent]


class FakeCompletion:
    """Completion stream yielding scripted chunks, optionally failing at the end."""

    def __init__(
        self,
        chunks: Iterable[str] = (),
        *,
        error: CompletionError | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.chunks = list(chunks)
        self.error = error
        self.gate = gate
        self.histories: list[list[ChatMessage]] = []

    async def stream_completion(self, history: Sequence[ChatMessage]):
        self.histories.append(list(history))
        for chunk in self.chunks:
            yield chunk
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error


def image_transport(
    handler: Callable[[httpx.Request], httpx.Response] | None = None,
) -> httpx.MockTransport:
    def _default(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, content=PNG_BYTES, headers={"Content-Type": "image/png"}
        )

    return httpx.MockTransport(handler or _default)


@pytest.fixture
def settings(tmp_path: pathlib.Path) -> Settings:
    prompt_path = tmp_path / "system.txt"
    prompt_path.write_text("You are a test assistant.", encoding="utf-8")
    return Settings(
        completion_api_key=SecretStr("test"),
        completion_base_url="https://llm.example.com/v1",
        system_prompt_path=prompt_path,
        static_dir=tmp_path / "public",
        image_base_url="https://images.example.com/prompt",
    )


@pytest.fixture
def websocket() -> FakeWebSocket:
    return FakeWebSocket()


@pytest.fixture
def emitter(websocket: FakeWebSocket) -> RelayEmitter:
    return RelayEmitter(websocket)  # type: ignore[arg-type]


def make_pipeline(
    handler: Callable[[httpx.Request], httpx.Response] | None = None,
    variants: Sequence[ImageVariant] | None = None,
) -> ImagePipeline:
    client = httpx.AsyncClient(transport=image_transport(handler))
    return ImagePipeline(
        client,
        base_url="https://images.example.com/prompt",
        variants=variants or (ImageVariant(width=512), ImageVariant(width=256)),
    )
