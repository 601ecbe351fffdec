"""WebSocket endpoint relaying chat turns to the completion provider."""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..config import Settings
from ..errors import MissingContextError
from ..relay.emitter import RelayEmitter
from ..relay.session import RelaySession, load_system_prompt
from ..relay.turn import TurnProcessor

router = APIRouter(tags=["relay"])
logger = logging.getLogger(__name__)


def _decode_message(message: dict) -> str:
    text = message.get("text")
    if text is not None:
        return text
    data = message.get("bytes") or b""
    return data.decode("utf-8", errors="replace")


@router.websocket("/")
@router.websocket("/ws")
async def relay_socket(websocket: WebSocket) -> None:
    app_state = websocket.app.state
    settings: Settings = app_state.settings
    processor: TurnProcessor = app_state.turn_processor

    await websocket.accept()

    system_prompt = load_system_prompt(
        settings.resolve_path(settings.system_prompt_path),
        settings.system_prompt,
    )
    session = RelaySession.open(
        RelayEmitter(websocket),
        processor,
        system_prompt,
        max_pending_turns=settings.max_pending_turns,
    )

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(
                    "Client disconnected from session %s (code=%s)",
                    session.session_id,
                    message.get("code"),
                )
                break
            try:
                await session.submit(_decode_message(message))
            except MissingContextError as exc:
                logger.warning("%s; dropping message", exc)
    except WebSocketDisconnect:
        logger.info("Client disconnected from session %s", session.session_id)
    except Exception as exc:
        logger.error("Unexpected error in session %s: %s", session.session_id, exc)
    finally:
        await session.close()


__all__ = ["router"]
