"""Application configuration."""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")

ESTIMATION_BACKENDS = frozenset({"supabase", "openai"})


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    image_bucket: str = "food-images"
    image_storage_dir: Path = Path("data/images")
    image_max_dimension: int = 768
    image_jpeg_quality: int = 65
    estimation_backend: str = "supabase"
    estimation_language: str = "en"
    estimation_enabled: bool = True
    estimation_retry_attempts: int = 1
    openai_api_key: str | None = None
    openai_model: str = "gpt-5.2"
    openai_reasoning_effort: str = "low"
    openai_store: bool = False
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_estimation_backend(raw: str | None) -> str:
    """Normalize the configured estimation backend name."""
    cleaned = (raw or "").strip().lower() or "supabase"
    if cleaned not in ESTIMATION_BACKENDS:
        allowed = ", ".join(sorted(ESTIMATION_BACKENDS))
        raise ValueError(f"Unknown estimation backend {raw!r}; expected {allowed}")
    return cleaned
