"""Viewer server configuration via environment variables."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources.base import PydanticBaseSettingsSource

from fetcher.config import DEFAULT_DOWNLOAD_TIMEOUT_SECONDS, DEFAULT_MAP_ORIGIN, FetcherConfig
from shared.validators import StringListEnvSettingsSource, normalize_base_url, parse_string_list


class ViewerServerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="VIEWER_", env_file=".env", extra="ignore")

    host: str = "0.0.0.0"  # noqa: S104
    port: int = Field(default=3000, ge=1, le=65535)

    # Required: the application fails to start if VIEWER_REPLAY_SERVER_URL is not set.
    replay_server_url: str = Field(min_length=1)
    map_server_url: str = DEFAULT_MAP_ORIGIN

    cors_origins: list[str] = ["*"]
    # Prefix that Origin/Referer must start with on the prepare-run API; "*" disables the check.
    allowed_origin: str = "*"

    resources_dir: str = Field(default="resources", min_length=1)
    downloads_dir: str = Field(default="downloads", min_length=1)
    public_dir: str = "public"
    # Empty disables the log file.
    log_dir: str = "logs"

    download_timeout_seconds: float = Field(default=DEFAULT_DOWNLOAD_TIMEOUT_SECONDS, gt=0)
    rate_limit_requests: int = Field(default=15, ge=1)
    rate_limit_window_seconds: int = Field(default=300, ge=1)

    @field_validator("replay_server_url", "map_server_url")
    @classmethod
    def validate_origin_url(cls, v: str) -> str:
        return normalize_base_url(v)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v)

    def fetcher_config(self) -> FetcherConfig:
        return FetcherConfig(
            replay_origin=self.replay_server_url,
            map_origin=self.map_server_url,
            resources_dir=Path(self.resources_dir).resolve(),
            downloads_dir=Path(self.downloads_dir).resolve(),
            download_timeout_seconds=self.download_timeout_seconds,
        )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, StringListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings)
