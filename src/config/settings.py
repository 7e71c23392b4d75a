"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="call-signaling")
    app_version: str = Field(default="0.4.0")
    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")
    display_version: bool = Field(default=True)

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/signaling.db",
        description="SQLAlchemy connection string.",
    )

    # Migrations / schema
    auto_create_db_schema: bool = Field(
        default=True,
        description="If true, provisions tables automatically on startup (useful for local/dev).",
    )
    schema_max_attempts: int = Field(default=5, ge=1)
    schema_retry_delay_seconds: float = Field(default=0.05, ge=0.0)

    # Identity
    session_secret: str = Field(
        default="change-me-session-secret",
        description="Key used to derive session identities from session tokens.",
    )
    user_secret: str = Field(
        default="change-me-user-secret",
        description="Key used to derive user identities from verified identifiers.",
    )
    session_duration_seconds: int = Field(default=60 * 60 * 24 * 30, ge=1)
    assertion_trusted_issuers: list[str] = Field(default=["api.accounts.firefox.com"])
    assertion_audiences: list[str] = Field(default=["app://loop.example"])
    assertion_verification_key: str = Field(default="change-me-assertion-key")
    assertion_algorithms: list[str] = Field(default=["HS256"])

    # Call URLs
    call_url_token_size: int = Field(default=8, ge=4, le=64)
    call_url_timeout_hours: int | None = Field(
        default=None,
        description="Default lifetime applied when a client does not ask for one. None means no expiry.",
    )
    call_url_max_timeout_hours: int = Field(default=24 * 30, ge=1)
    web_app_url: str = Field(default="http://localhost:3000/{token}")

    # Calls
    supervisory_duration_seconds: int = Field(default=10, ge=1)
    max_push_endpoints: int = Field(default=10, ge=1)
    push_timeout_seconds: float = Field(default=3.0, gt=0.0)
    sweep_interval_seconds: float = Field(default=30.0, gt=0.0)
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL used to build the progress websocket URL.",
    )

    # Media session provider
    media_provider: Literal["fake", "opentok"] = Field(default="fake")
    media_api_key: str = Field(default="44669102")
    media_api_secret: str = Field(default="change-me-media-secret")
    media_server_url: str = Field(default="https://api.opentok.com")
    media_token_duration_seconds: int = Field(default=60 * 60 * 24, ge=60)
    media_request_timeout_seconds: float = Field(default=10.0, gt=0.0)
    heartbeat_timeout_seconds: float = Field(default=2.0, gt=0.0)

    # HTTP boundary
    allowed_origins: list[str] = Field(default=["*"])

    data_dir: Path = Field(default=Path("./data"))

    @field_validator("data_dir")
    @classmethod
    def ensure_data_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value

    @field_validator("web_app_url")
    @classmethod
    def web_app_url_has_placeholder(cls, value: str) -> str:
        if "{token}" not in value:
            raise ValueError("web_app_url must contain a {token} placeholder")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
