# ─────────────────────────────────────────────────────────────────────────────
# Settings — Pydantic v2 BaseSettings
# ─────────────────────────────────────────────────────────────────────────────


from functools import lru_cache
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server configuration sourced from environment variables.

    Uses pydantic-settings v2 (separate package from pydantic).
    """

    model_config = SettingsConfigDict(env_prefix="", env_file=".env")

    # ── Provider ─────────────────────────────────────────────────────────────
    # Empty = not configured; /generate answers 500 before any external call.
    openai_api_key: SecretStr = SecretStr("")
    openai_base_url: str = ""  # empty = SDK default
    image_model: str = "gpt-image-1-mini"
    image_size: str = "1024x1024"
    image_quality: str = "low"
    image_count: int = 1
    provider_timeout_seconds: float = 120.0

    # ── Admission control ────────────────────────────────────────────────────
    rate_window_seconds: float = 60.0
    max_in_flight_per_client: int = 1
    retry_after_seconds: int = 60
    retry_after_mode: Literal["fixed", "remaining"] = "fixed"
    limiter_idle_ttl_seconds: float = 300.0
    limiter_max_clients: int = 10_000

    # Coarse flood guard on /generate (slowapi format, e.g. "300/minute").
    http_rate_limit: str = "300/minute"

    # ── Security ─────────────────────────────────────────────────────────────
    # Comma-separated origins for CORS. Empty string = deny all cross-origin requests.
    allowed_origins: str = ""

    # ── Limits ───────────────────────────────────────────────────────────────
    max_reference_images: int = 4

    # ── Feature flags ────────────────────────────────────────────────────────
    enable_debug_routes: bool = False

    # ── Logging ──────────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def provider_configured(self) -> bool:
        return bool(self.openai_api_key.get_secret_value())


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
