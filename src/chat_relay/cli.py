"""Relay Chat CLI - Terminal client for the chat relay.

Connects to the relay WebSocket, sends each input line as a chat turn and
renders the streamed events with rich.
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import binascii
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import websockets
from rich.console import Console
from rich.prompt import Prompt
from rich.style import Style

USER_STYLE = Style(color="bright_blue", bold=True)
ASSISTANT_STYLE = Style(color="bright_green")
IMAGE_STYLE = Style(color="magenta")
ERROR_STYLE = Style(color="red", bold=True)
INFO_STYLE = Style(color="cyan")

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/avif": "avif",
}


def decode_data_uri(value: str) -> tuple[Optional[str], Optional[bytes]]:
    """Split a base64 ``data:`` URI into its media type and bytes."""

    if not value.startswith("data:"):
        return None, None
    header, _, data_part = value.partition(",")
    media_type, _, encoding = header[5:].partition(";")
    if encoding != "base64" or not data_part:
        return media_type or None, None
    try:
        return media_type or None, base64.b64decode(data_part, validate=True)
    except (binascii.Error, ValueError):
        return media_type or None, None


def describe_image(value: str) -> str:
    media_type, data = decode_data_uri(value)
    if data is None:
        return "[image: undecodable payload]"
    return f"[image: {media_type or 'unknown'}, {len(data)} bytes]"


class RelayChat:
    """Terminal chat client for the relay."""

    def __init__(self, server_url: str, save_dir: Optional[Path] = None):
        self.server_url = server_url
        self.save_dir = save_dir
        self.console = Console()
        self._saved = 0

    def render(self, event: dict[str, Any]) -> bool:
        """Render one event. Returns True when the turn's text stream ended."""

        role = event.get("role")
        if role == "ai":
            self.console.print(event.get("content", ""), style=ASSISTANT_STYLE, end="")
        elif role == "ai_complete":
            self.console.print()
            if event.get("promptDetected"):
                self.console.print("[dim]Generating images...[/dim]")
            return True
        elif role == "image":
            content = event.get("content", "")
            self.console.print(describe_image(content), style=IMAGE_STYLE)
            self._save_image(content)
        elif role == "user":
            pass
        else:
            self.console.print(f"[dim]Unknown event: {event}[/dim]")
        return False

    def _save_image(self, content: str) -> None:
        if self.save_dir is None:
            return
        media_type, data = decode_data_uri(content)
        if data is None:
            return
        self.save_dir.mkdir(parents=True, exist_ok=True)
        self._saved += 1
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        extension = _EXTENSIONS.get(media_type or "", "bin")
        path = self.save_dir / f"relay_{stamp}_{self._saved}.{extension}"
        path.write_bytes(data)
        self.console.print(f"[dim]Saved {path}[/dim]")

    async def _print_events(self, connection: Any) -> None:
        async for raw in connection:
            try:
                event = json.loads(raw)
            except json.JSONDecodeError:
                self.console.print(f"[dim]Non-JSON frame: {raw!r}[/dim]")
                continue
            self.render(event)

    async def run(self) -> None:
        self.console.print(f"Connecting to {self.server_url}", style=INFO_STYLE)
        async with websockets.connect(self.server_url, max_size=None) as connection:
            reader = asyncio.create_task(self._print_events(connection))
            try:
                while not reader.done():
                    user_input = await asyncio.to_thread(
                        Prompt.ask, "[bold bright_blue]You[/bold bright_blue]"
                    )
                    if user_input.strip() in {"/quit", "/exit"}:
                        break
                    if user_input.strip():
                        await connection.send(user_input)
            except EOFError:
                self.console.print("\n[dim]Goodbye![/dim]")
            finally:
                reader.cancel()


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Relay Chat - Terminal client for the chat relay",
    )
    parser.add_argument(
        "--server",
        "-s",
        default=os.environ.get("RELAY_CHAT_SERVER", "ws://localhost:3000/ws"),
        help="Relay WebSocket URL (default: ws://localhost:3000/ws)",
    )
    parser.add_argument(
        "--save-images",
        type=Path,
        default=None,
        help="Directory to write received images to",
    )
    args = parser.parse_args()

    chat = RelayChat(server_url=args.server, save_dir=args.save_images)
    try:
        asyncio.run(chat.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
