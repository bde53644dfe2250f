from __future__ import annotations
# BaseSettings moved to the pydantic-settings package in Pydantic v2
from collections.abc import Iterable
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode


def _unique(iterable: Iterable[str | None]) -> list[str]:
    """Return a list of non-empty unique strings preserving order."""

    seen: set[str] = set()
    ordered: list[str] = []
    for value in iterable:
        if not value:
            continue
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    db_host: str = Field(alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field(alias="DB_USER")
    db_password: str = Field(alias="DB_PASSWORD")
    db_name: str = Field(alias="DB_NAME")
    db_timeout: int = Field(30, alias="DB_TIMEOUT")
    db_command_timeout: float = Field(5.0, alias="DB_COMMAND_TIMEOUT")
    database_url: str | None = Field(None, alias="DATABASE_URL")

    # Simulator agent HTTP calls
    agent_timeout_s: float = Field(5.0, alias="AGENT_TIMEOUT_S")
    probe_timeout_s: float = Field(5.0, alias="PROBE_TIMEOUT_S")
    device_timeout_s: float = Field(3.0, alias="DEVICE_TIMEOUT_S")

    # Background reconciliation
    poller_enabled: bool = Field(True, alias="POLLER_ENABLED")
    poll_interval_s: float = Field(5.0, alias="POLL_INTERVAL_S")
    sync_enabled: bool = Field(True, alias="SYNC_ENABLED")
    sync_interval_s: float = Field(10.0, alias="SYNC_INTERVAL_S")
    stale_after_s: int = Field(300, alias="STALE_AFTER_S")
    reboot_grace_s: float = Field(60.0, alias="REBOOT_GRACE_S")
    command_refresh_delay_s: float = Field(0.5, alias="COMMAND_REFRESH_DELAY_S")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"],
        alias="CORS_ORIGINS",
    )

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "extra": "ignore",
        "env_nested_delimiter": "__",
        "populate_by_name": True,
    }

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            parts = [part.strip() for part in value.replace("\n", ",").split(",")]
            return _unique(parts)
        if isinstance(value, list):
            return _unique(part for part in value if isinstance(part, str))
        return []

    @property
    def sqlalchemy_database_uri(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


_settings_instance = None


def get_settings():
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance


# Module-level settings for imports that do not go through dependency injection
settings = get_settings()
