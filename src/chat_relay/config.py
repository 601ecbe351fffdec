"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

DEFAULT_SYSTEM_PROMPT = (
    "You are a friendly, laid-back assistant. When the user asks for a picture, "
    "answer normally and then append a single image description in the form "
    "_prompt: <description>_ at the end of your reply."
)


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = Field(
        default="0.0.0.0",
        validation_alias=AliasChoices("HOST", "host"),
    )
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("PORT", "port"),
    )
    static_dir: Path = Field(
        default_factory=lambda: Path("public"),
        validation_alias=AliasChoices("STATIC_DIR", "static_dir"),
    )

    completion_api_key: SecretStr = Field(
        ...,
        validation_alias=AliasChoices(
            "COMPLETION_API_KEY",
            "CEREBRAS_API_KEY",
            "completion_api_key",
        ),
    )
    completion_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.cerebras.ai/v1"),
        validation_alias=AliasChoices("COMPLETION_BASE_URL", "completion_base_url"),
    )
    completion_model: str = Field(
        default="llama-3.3-70b",
        validation_alias=AliasChoices("COMPLETION_MODEL", "completion_model"),
    )
    max_completion_tokens: int = Field(
        default=2048,
        ge=1,
        validation_alias=AliasChoices(
            "MAX_COMPLETION_TOKENS",
            "max_completion_tokens",
        ),
    )
    temperature: float = Field(
        default=0.7,
        ge=0,
        le=2,
        validation_alias=AliasChoices("TEMPERATURE", "temperature"),
    )
    top_p: float = Field(
        default=1.0,
        gt=0,
        le=1,
        validation_alias=AliasChoices("TOP_P", "top_p"),
    )
    request_timeout: float = Field(
        default=120.0,
        ge=1,
        validation_alias=AliasChoices("COMPLETION_TIMEOUT", "request_timeout"),
    )

    system_prompt_path: Path = Field(
        default_factory=lambda: Path("system.txt"),
        validation_alias=AliasChoices("SYSTEM_PROMPT_PATH", "system_prompt_path"),
    )
    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        validation_alias=AliasChoices("SYSTEM_PROMPT", "system_prompt"),
        description="Used when the system prompt file cannot be read.",
    )

    directive_key: str = Field(
        default="prompt",
        min_length=1,
        validation_alias=AliasChoices("DIRECTIVE_KEY", "directive_key"),
    )
    directive_marker: str = Field(
        default="_",
        min_length=1,
        max_length=1,
        validation_alias=AliasChoices("DIRECTIVE_MARKER", "directive_marker"),
    )
    directive_buffer_max_chars: int = Field(
        default=64 * 1024,
        ge=1,
        validation_alias=AliasChoices(
            "DIRECTIVE_BUFFER_MAX_CHARS",
            "directive_buffer_max_chars",
        ),
    )

    image_base_url: str = Field(
        default="https://image.pollinations.ai/prompt",
        validation_alias=AliasChoices("IMAGE_BASE_URL", "image_base_url"),
    )
    image_policy: Literal["single", "multi"] = Field(
        default="multi",
        validation_alias=AliasChoices("IMAGE_POLICY", "image_policy"),
    )
    image_timeout_seconds: float = Field(
        default=60.0,
        ge=1,
        validation_alias=AliasChoices(
            "IMAGE_TIMEOUT_SECONDS",
            "image_timeout_seconds",
        ),
    )

    max_pending_turns: int = Field(
        default=8,
        ge=1,
        validation_alias=AliasChoices("MAX_PENDING_TURNS", "max_pending_turns"),
    )

    def resolve_path(self, path: Path) -> Path:
        """Resolve a configured path relative to the project root."""

        if path.is_absolute():
            return path
        return (PROJECT_ROOT / path).resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["DEFAULT_SYSTEM_PROMPT", "PROJECT_ROOT", "Settings", "get_settings"]
