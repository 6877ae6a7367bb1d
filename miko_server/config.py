# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Configuration for Miko Server."""

import os
from pathlib import Path

from pydantic import BaseModel, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)


def _config_file() -> Path:
    """Locate the optional TOML config file (MIKO_CONFIG, ./config.toml, ~/.miko/config.toml)."""
    explicit = os.environ.get("MIKO_CONFIG")
    if explicit:
        return Path(explicit)
    local = Path("config.toml")
    if local.exists():
        return local
    return Path.home() / ".miko" / "config.toml"


def _expand(value: str) -> str:
    return os.path.expanduser(os.path.expandvars(value)) if value else value


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8082
    # Empty secrets are generated once and persisted in system_settings.
    jwt_secret: str = ""
    password_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 1440
    # Comma-separated origins, or "*"
    cors_origins: str = "*"


class LogSettings(BaseModel):
    level: str = "info"
    format: str = "text"  # text | json
    file: str = ""


class CookieCloudSettings(BaseModel):
    url: str = ""
    timeout: float = 30.0  # seconds
    retry: int = 3
    # Push local cookie changes back every N seconds (<= 0 disables the ticker)
    push_interval: float = 0


class ProviderSettings(BaseModel):
    platform: str = "netease"


class DatabaseSettings(BaseModel):
    driver: str = "sqlite"
    # Path to the SQLite file; defaults to <data_dir>/miko.db
    dsn: str = ""


class SubsonicSettings(BaseModel):
    folders: list[str] = []
    data_dir: str = "~/.miko/data"
    scan_mode: str = "incremental"  # incremental | full
    browse_mode: str = "file"  # file | tag
    ignored_articles: str = "The El La Los Las Le Les A An"
    # Run an incremental scan in the background when the server starts
    scan_on_startup: bool = False


class Settings(BaseSettings):
    """Application settings from config file and MIKO_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MIKO_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        toml_file=_config_file(),
    )

    version: str = "0.1.0"
    server: ServerSettings = ServerSettings()
    log: LogSettings = LogSettings()
    cookiecloud: CookieCloudSettings = CookieCloudSettings()
    provider: ProviderSettings = ProviderSettings()
    database: DatabaseSettings = DatabaseSettings()
    subsonic: SubsonicSettings = SubsonicSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _finalize(self) -> "Settings":
        # Legacy overrides kept for older deployments
        if os.environ.get("PORT"):
            self.server.port = int(os.environ["PORT"])
        if os.environ.get("LOG_LEVEL"):
            self.log.level = os.environ["LOG_LEVEL"]

        self.log.file = _expand(self.log.file)
        self.subsonic.data_dir = _expand(self.subsonic.data_dir)
        self.subsonic.folders = [
            os.path.normpath(_expand(f)).replace("\\", "/") for f in self.subsonic.folders
        ]
        if not self.database.dsn:
            self.database.dsn = os.path.join(self.subsonic.data_dir, "miko.db")
        self.database.dsn = _expand(self.database.dsn)
        return self

    @property
    def database_url(self) -> str:
        """Async SQLAlchemy URL for the web layer."""
        return f"sqlite+aiosqlite:///{self.database.dsn}"

    @property
    def sync_database_url(self) -> str:
        """Blocking SQLAlchemy URL for the scanner threads."""
        return f"sqlite:///{self.database.dsn}"

    @property
    def cover_cache_dir(self) -> Path:
        return Path(self.subsonic.data_dir) / "cache" / "covers"


settings = Settings()
