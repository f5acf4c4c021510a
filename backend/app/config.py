from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import AliasChoices, AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _env(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Connectrix API", description="Human readable service name")
    environment: str = Field(default="development", description="Deployment environment name")
    debug: bool = Field(default=False, description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        description="List of allowed CORS origins",
    )
    cors_allow_origin_regex: str | None = Field(
        default=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        description="Optional regular expression that matches allowed CORS origins",
    )

    database_url_override: str | None = Field(
        default=None, validation_alias=_env("DATABASE_URL", "database_url_override")
    )
    database_user: str = Field(default="connectrix", validation_alias=_env("DB_USER", "database_user"))
    database_password: str = Field(
        default="connectrix", validation_alias=_env("DB_PASSWORD", "database_password")
    )
    database_host: str = Field(default="db", validation_alias=_env("DB_HOST", "database_host"))
    database_port: int = Field(default=3306, validation_alias=_env("DB_PORT", "database_port"))
    database_name: str = Field(default="connectrix", validation_alias=_env("DB_NAME", "database_name"))

    jwt_secret_key: str = Field(default="changeme")
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=60)

    chat_history_default_limit: int = Field(default=50, description="Messages returned when no limit is given")
    chat_history_max_limit: int = Field(default=100)
    chat_message_max_length: int = Field(default=2000)
    notification_window_size: int = Field(
        default=50, description="Number of newest notifications delivered in a feed snapshot"
    )
    presence_reference_counted: bool = Field(
        default=True,
        description="Keep a user online while any of their sessions is still connected.",
    )

    websocket_keepalive_timeout_seconds: float = Field(default=30.0)
    websocket_keepalive_ping_interval_seconds: float = Field(default=25.0)

    realtime_redis_url: str | None = Field(
        default=None, description="Redis URL used to fan out room events across relay processes"
    )
    realtime_namespace: str = Field(default="connectrix.realtime")
    realtime_node_id: str | None = Field(default=None)

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

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in {"production", "prod"}

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


@lru_cache
def get_settings() -> Settings:
    return Settings()
