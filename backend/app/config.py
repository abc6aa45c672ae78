from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import AliasChoices, AnyHttpUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Huddle", description="Human readable service name")
    environment: str = Field(default="development", description="Deployment environment name")
    debug: bool = Field(default=True, description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://127.0.0.1",
            "http://127.0.0.1:3000",
        ],
        description="List of allowed CORS origins",
    )

    database_user: str = Field(
        default="huddle", validation_alias=AliasChoices("DB_USER", "database_user")
    )
    database_password: str = Field(
        default="huddle", validation_alias=AliasChoices("DB_PASSWORD", "database_password")
    )
    database_host: str = Field(
        default="db", validation_alias=AliasChoices("DB_HOST", "database_host")
    )
    database_port: int = Field(
        default=3306, validation_alias=AliasChoices("DB_PORT", "database_port")
    )
    database_name: str = Field(
        default="huddle", validation_alias=AliasChoices("DB_NAME", "database_name")
    )
    database_url_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "database_url_override"),
        description="Full SQLAlchemy URL; takes precedence over the DB_* parts",
    )

    chat_history_default_limit: int = Field(default=50, ge=1)
    chat_history_max_limit: int = Field(default=100, ge=1)
    chat_message_max_length: int = Field(default=2000, ge=1)
    identity_max_length: int = Field(
        default=50, ge=1, description="Maximum length of a display name before the tripcode"
    )

    private_chat_inactivity_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Idle time after which a private conversation is closed",
    )
    private_chat_sweep_interval_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Period of the idle private conversation sweep",
    )

    websocket_keepalive_timeout_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Idle receive timeout before a keepalive ping is considered",
    )
    websocket_keepalive_ping_interval_seconds: float = Field(
        default=25.0,
        ge=0,
        description="Minimum spacing between keepalive pings on an idle socket",
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"mysql+pymysql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @model_validator(mode="after")
    def check_sweep_window(self) -> "Settings":
        if self.private_chat_sweep_interval_seconds >= self.private_chat_inactivity_seconds:
            raise ValueError(
                "private_chat_sweep_interval_seconds must be smaller than "
                "private_chat_inactivity_seconds"
            )
        if self.chat_history_default_limit > self.chat_history_max_limit:
            raise ValueError("chat_history_default_limit cannot exceed chat_history_max_limit")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
