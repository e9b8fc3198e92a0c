"""
dealguard.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for all layers.
- Offer a cached settings instance shared by services and scripts.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Env-driven configuration (prefix `DEALGUARD_`).
    Defaults are safe for local development.
    """

    model_config = SettingsConfigDict(env_prefix="DEALGUARD_", case_sensitive=False)

    # Environment controls toggle behavior like auto-init DB tables.
    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "dealguard"
    log_level: str = "INFO"

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./dealguard.db"

    # Each deal gets an inbound evidence mailbox: deal-<id>@<domain>
    inbound_email_domain: str = "dealguard.org"

    # Invitations
    invitation_token_bytes: int = Field(default=24, ge=16, le=64)

    # Listing
    default_page_size: int = Field(default=20, ge=1, le=200)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars on every service construction.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Services receive a Settings instance explicitly; only entrypoints call get_settings().
