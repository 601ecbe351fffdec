"""Application factory for the relay service."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .completion import CompletionClient
from .config import Settings, get_settings
from .relay.images import ImagePipeline, variants_for_policy
from .relay.turn import CompletionStream, TurnProcessor
from .routers.relay import router as relay_router


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handlers: list[logging.Handler] = []

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    logging.getLogger("chat_relay").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Quiet noisy HTTP libraries unless debugging
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app(
    settings: Optional[Settings] = None,
    *,
    completion: Optional[CompletionStream] = None,
    image_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    # Configure logging first thing
    _configure_logging()

    settings = settings or get_settings()

    owns_image_client = image_client is None
    if image_client is None:
        image_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.image_timeout_seconds, connect=10.0),
            follow_redirects=True,
        )

    completion_client = completion or CompletionClient(settings)

    image_pipeline = ImagePipeline(
        image_client,
        base_url=settings.image_base_url,
        variants=variants_for_policy(settings.image_policy),
        timeout_seconds=settings.image_timeout_seconds,
    )
    turn_processor = TurnProcessor(
        completion_client,
        image_pipeline,
        directive_key=settings.directive_key,
        directive_marker=settings.directive_marker,
        max_buffer_chars=settings.directive_buffer_max_chars,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            if owns_image_client:
                await image_client.aclose()
            if isinstance(completion_client, CompletionClient):
                await completion_client.aclose()

    app = FastAPI(
        title="Chat Relay",
        version="0.1.0",
        description="Streaming chat relay with inline image generation.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.turn_processor = turn_processor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str]:
        return {
            "status": "ok",
            "model": settings.completion_model,
            "image_policy": settings.image_policy,
        }

    app.include_router(relay_router)

    static_dir = settings.resolve_path(settings.static_dir)
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
    else:
        logging.getLogger(__name__).warning(
            "Static directory %s not found; serving the relay only", static_dir
        )

    return app


__all__ = ["create_app"]
