"""Chat server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from shared.validators import StringListEnvSettingsSource, parse_string_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class ChatServerSettings(BaseSettings):
    model_config = {"env_prefix": "CHAT_"}

    host: str = Field(default="0.0.0.0", min_length=1)  # noqa: S104
    port: int = Field(default=10000, ge=1, le=65535)
    log_dir: str | None = None
    cors_origins: list[str] = ["http://localhost:10000"]
    # Exact Origin header required on /ws; None accepts any origin.
    ws_allowed_origin: str | None = None
    history_limit: int = Field(default=50, ge=1, le=500)
    heartbeat_interval_seconds: float = Field(default=30.0, gt=0)
    typing_ttl_seconds: float = Field(default=6.0, gt=0)
    allow_guests: bool = True

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, StringListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings
