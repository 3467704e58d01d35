"""Application configuration."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings for the site and its admin panel."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    log_level: str = "INFO"

    database_url: Optional[str] = None
    use_memory_backend: bool = False

    storage_backend: Literal["local", "supabase"] = "local"
    media_root: Path = Path("media")
    media_url_prefix: str = "/media"
    max_cover_image_bytes: int = 5 * 1024 * 1024

    # Kept server-side only; never rendered into templates.
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_key: Optional[str] = None

    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    admin_session_ttl_minutes: int = 720

    geo_api_base_url: str = "https://servicodados.ibge.gov.br/api/v1/localidades"
    geo_api_timeout_seconds: float = 6.0

    preload_readiness_timeout_seconds: float = 2.0
    preload_image_timeout_seconds: float = 3.0
    preload_settle_seconds: float = 0.3
    preload_photo_limit: int = 12
    preload_video_limit: int = 6
    preload_event_limit: int = 10
    preload_warm_images: bool = True
    # How long the page render waits for its own preload before reading directly.
    preload_render_wait_seconds: float = 5.0
    preload_load_ttl_seconds: float = 600.0
    preload_max_loads: int = 256


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()


settings = get_settings()
