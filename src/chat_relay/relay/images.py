"""Image acquisition for directive payloads."""

from __future__ import annotations

import asyncio
import base64
import logging
import random
from dataclasses import dataclass
from typing import Any, Literal, Optional, Sequence
from urllib.parse import quote, urlencode, urlparse, urlunparse

import httpx
from pydantic import BaseModel, Field

from ..errors import ImageFetchError

logger = logging.getLogger(__name__)

ImagePolicy = Literal["single", "multi"]

SEED_MIN = 1
SEED_MAX = 1_000_000_000
FALLBACK_MIME = "image/jpeg"


class ImageVariant(BaseModel):
    """Request parameters for one generated image."""

    width: Optional[int] = Field(default=None, ge=1)
    height: Optional[int] = Field(default=None, ge=1)
    steps: Optional[int] = Field(default=None, ge=1)
    model: Optional[str] = None
    safe: Optional[bool] = None
    enhance: Optional[bool] = None
    nologo: bool = True
    headers: dict[str, str] = Field(default_factory=dict)

    def query_params(self, seed: int) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if self.width is not None:
            params["width"] = self.width
        if self.height is not None:
            params["height"] = self.height
        if self.steps is not None:
            params["steps"] = self.steps
        if self.model:
            params["model"] = self.model
        if self.safe is not None:
            params["safe"] = "true" if self.safe else "false"
        if self.enhance is not None:
            params["enhance"] = "true" if self.enhance else "false"
        if self.nologo:
            params["nologo"] = "true"
        params["seed"] = seed
        return params


SINGLE_VARIANTS: tuple[ImageVariant, ...] = (ImageVariant(),)

# Each variant must differ in size and client identification headers.
MULTI_VARIANTS: tuple[ImageVariant, ...] = (
    ImageVariant(
        width=1024,
        height=1024,
        model="flux",
        safe=True,
        enhance=True,
        headers={
            "User-Agent": (
                "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
            ),
            "Accept": "image/avif,image/webp,image/png,image/*;q=0.8",
            "Cache-Control": "no-cache",
        },
    ),
    ImageVariant(
        width=768,
        height=768,
        steps=4,
        model="turbo",
        safe=True,
        headers={
            "User-Agent": (
                "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.4; rv:125.0) "
                "Gecko/20100101 Firefox/125.0"
            ),
            "Accept": "image/*",
            "Cache-Control": "no-store",
        },
    ),
)


def variants_for_policy(policy: ImagePolicy) -> tuple[ImageVariant, ...]:
    if policy == "single":
        return SINGLE_VARIANTS
    return MULTI_VARIANTS


@dataclass(frozen=True, slots=True)
class ImageResult:
    """Outcome of one variant: an encoded payload or a failure reason."""

    index: int
    encoded_payload: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.encoded_payload is not None


def random_seed() -> int:
    return random.randint(SEED_MIN, SEED_MAX)


def build_image_url(
    base_url: str, payload: str, seed: int, variant: ImageVariant
) -> str:
    """Return ``{base}/{escaped payload}?{variant params}&seed={seed}``."""

    base = base_url.rstrip("/")
    query = urlencode(variant.query_params(seed))
    return f"{base}/{quote(payload, safe='')}?{query}"


def redact_url(url: str) -> str:
    try:
        parsed = urlparse(url)
        return urlunparse(parsed._replace(query="", fragment=""))
    except ValueError:
        return url


def sniff_mime_from_bytes(data: bytes) -> str | None:
    """Guess image mime type from magic bytes for common formats."""

    if not data or len(data) < 12:
        return None
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data.startswith(b"GIF87a") or data.startswith(b"GIF89a"):
        return "image/gif"
    if data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return "image/webp"
    if data.startswith(b"BM"):
        return "image/bmp"
    return None


def encode_data_uri(data: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


async def fetch_image(
    client: httpx.AsyncClient,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    timeout_seconds: float | None = None,
) -> str:
    """Fetch an image and return it as a ``data:`` URI.

    The whole body is buffered in memory. Any non-success status is final.
    """

    timeout = (
        httpx.Timeout(timeout_seconds, connect=10.0)
        if timeout_seconds is not None
        else httpx.USE_CLIENT_DEFAULT
    )
    try:
        response = await client.get(url, headers=headers or None, timeout=timeout)
    except httpx.HTTPError as exc:
        raise ImageFetchError(f"request failed: {exc}") from exc

    if response.status_code >= 400:
        raise ImageFetchError(
            f"image service returned HTTP {response.status_code}",
            status_code=response.status_code,
        )

    data = response.content
    if not data:
        raise ImageFetchError("image service returned an empty body")

    content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
    mime = content_type or sniff_mime_from_bytes(data) or FALLBACK_MIME
    return encode_data_uri(data, mime)


class ImagePipeline:
    """Build, fetch and encode every image variant for one directive."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        variants: Sequence[ImageVariant],
        timeout_seconds: float | None = None,
    ):
        if not variants:
            raise ValueError("At least one image variant is required")
        self._client = client
        self._base_url = base_url
        self._variants = tuple(variants)
        self._timeout_seconds = timeout_seconds

    @property
    def variants(self) -> tuple[ImageVariant, ...]:
        return self._variants

    async def run(self, payload: str) -> list[ImageResult]:
        """Fetch all variants concurrently; results come back in index order."""

        tasks = [
            self._fetch_variant(index, variant, payload)
            for index, variant in enumerate(self._variants)
        ]
        return list(await asyncio.gather(*tasks))

    async def _fetch_variant(
        self, index: int, variant: ImageVariant, payload: str
    ) -> ImageResult:
        url = build_image_url(self._base_url, payload, random_seed(), variant)
        logger.info("Fetching image variant %d from %s", index, redact_url(url))
        try:
            data_uri = await fetch_image(
                self._client,
                url,
                headers=variant.headers,
                timeout_seconds=self._timeout_seconds,
            )
        except ImageFetchError as exc:
            logger.warning("Image variant %d failed: %s", index, exc.reason)
            return ImageResult(index=index, failure_reason=exc.reason)
        except Exception as exc:
            logger.error("Image variant %d failed unexpectedly", index, exc_info=True)
            return ImageResult(index=index, failure_reason=str(exc) or type(exc).__name__)

        logger.info("Image variant %d fetched (%d chars encoded)", index, len(data_uri))
        return ImageResult(index=index, encoded_payload=data_uri)


__all__ = [
    "FALLBACK_MIME",
    "ImagePipeline",
    "ImagePolicy",
    "ImageResult",
    "ImageVariant",
    "MULTI_VARIANTS",
    "SINGLE_VARIANTS",
    "build_image_url",
    "encode_data_uri",
    "fetch_image",
    "random_seed",
    "redact_url",
    "sniff_mime_from_bytes",
    "variants_for_policy",
]
