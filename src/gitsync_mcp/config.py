"""Configuration management for the git sync engine."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class GitSyncSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    backend_url: str = Field(default="http://localhost:3000", validation_alias="GITSYNC_BACKEND_URL")
    github_api_url: str = Field(
        default="https://api.github.com", validation_alias="GITSYNC_GITHUB_API_URL"
    )
    mirror_hosts: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("github.com",), validation_alias="GITSYNC_MIRROR_HOSTS"
    )
    account_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("accounts"),), validation_alias="GITSYNC_ACCOUNT_PATHS"
    )
    user_id: str = Field(default="anonymous", validation_alias="GITSYNC_USER_ID")
    cache_ttl_seconds: float = Field(default=300.0, validation_alias="GITSYNC_CACHE_TTL_SECONDS")
    credential_timeout_seconds: float = Field(
        default=10.0, validation_alias="GITSYNC_CREDENTIAL_TIMEOUT_SECONDS"
    )
    remote_timeout_seconds: float = Field(
        default=15.0, validation_alias="GITSYNC_REMOTE_TIMEOUT_SECONDS"
    )
    backend_timeout_seconds: float = Field(
        default=120.0, validation_alias="GITSYNC_BACKEND_TIMEOUT_SECONDS"
    )
    commit_limit: int = Field(default=30, validation_alias="GITSYNC_COMMIT_LIMIT")
    log_level: str = Field(default="INFO", validation_alias="GITSYNC_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "GITSYNC_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("backend_url", "github_api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("mirror_hosts", mode="before")
    @classmethod
    def _parse_mirror_hosts(cls, value):
        if value is None or value == "":
            return ()
        if isinstance(value, str):
            return tuple(part.strip().lower() for part in value.split(",") if part.strip())
        if isinstance(value, (list, tuple)):
            return tuple(str(item).strip().lower() for item in value if str(item).strip())
        raise TypeError("GITSYNC_MIRROR_HOSTS must be a list of hosts or a comma-separated string")

    @field_validator("account_paths", mode="before")
    @classmethod
    def _parse_account_paths(cls, value):
        if value is None or value == "":
            return (Path("accounts"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("accounts"),)
        raise TypeError("GITSYNC_ACCOUNT_PATHS must be a list of paths or a path-separated string")

    @field_validator(
        "cache_ttl_seconds",
        "credential_timeout_seconds",
        "remote_timeout_seconds",
        "backend_timeout_seconds",
    )
    @classmethod
    def _validate_positive_duration(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("durations must be greater than zero")
        return value

    @field_validator("commit_limit")
    @classmethod
    def _validate_commit_limit(cls, value: int) -> int:
        if not 1 <= value <= 100:
            raise ValueError("GITSYNC_COMMIT_LIMIT must be between 1 and 100")
        return value


@lru_cache(maxsize=1)
def get_settings() -> GitSyncSettings:
    """Return cached settings instance."""

    settings = GitSyncSettings()
    settings.account_paths = tuple(path.expanduser().resolve() for path in settings.account_paths)
    return settings


__all__ = ["GitSyncSettings", "get_settings"]
