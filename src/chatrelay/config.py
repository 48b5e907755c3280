"""Configuration management for chatrelay."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class RelaySettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    claude_path: str | None = Field(default=None, validation_alias="CLAUDE_CLI_PATH")
    claude_default_model: str | None = Field(default=None, validation_alias="CLAUDE_DEFAULT_MODEL")
    workspace_root: Path = Field(default=Path("./workspaces"), validation_alias="RELAY_WORKSPACE_ROOT")
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    profile_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("profiles"),), validation_alias="RELAY_PROFILE_PATHS"
    )
    default_profile: str | None = Field(default=None, validation_alias="RELAY_DEFAULT_PROFILE")
    scratch_dir: Path = Field(default=Path("~/.claude-logs"), validation_alias="RELAY_SCRATCH_DIR")
    auth_config_path: Path = Field(
        default=Path("~/.claudecode/config"), validation_alias="RELAY_AUTH_CONFIG"
    )
    auth_token_env: str = Field(default="CLAUDECODE_TOKEN", validation_alias="RELAY_AUTH_TOKEN_ENV")
    owner_id: str = Field(default="default", validation_alias="RELAY_OWNER_ID")
    flush_threshold: int = Field(default=2000, validation_alias="RELAY_FLUSH_THRESHOLD")
    flush_interval: float = Field(default=3.0, validation_alias="RELAY_FLUSH_INTERVAL")
    chunk_size: int = Field(default=5000, validation_alias="RELAY_CHUNK_SIZE")
    chunk_delay: float = Field(default=0.5, validation_alias="RELAY_CHUNK_DELAY")
    ack_message: str | None = Field(
        default="Received, working on it...", validation_alias="RELAY_ACK_MESSAGE"
    )
    busy_message: str = Field(
        default="Still working on the previous request, please wait...",
        validation_alias="RELAY_BUSY_MESSAGE",
    )
    log_level: str = Field(default="INFO", validation_alias="RELAY_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "RELAY_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("profile_paths", mode="before")
    @classmethod
    def _parse_profile_paths(cls, value):
        if value is None or value == "":
            return (Path("profiles"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("profiles"),)
        raise TypeError("RELAY_PROFILE_PATHS must be a list of paths or a path-separated string")

    @field_validator("flush_threshold", "chunk_size")
    @classmethod
    def _validate_positive_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("flush threshold and chunk size must be >= 1")
        return value

    @field_validator("flush_interval", "chunk_delay")
    @classmethod
    def _validate_non_negative_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("flush interval and chunk delay must be >= 0")
        return value

    @field_validator("ack_message", mode="before")
    @classmethod
    def _blank_ack_disables(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


@lru_cache(maxsize=1)
def get_settings() -> RelaySettings:
    """Return cached settings instance."""

    settings = RelaySettings()
    settings.workspace_root = settings.workspace_root.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.scratch_dir = settings.scratch_dir.expanduser()
    settings.auth_config_path = settings.auth_config_path.expanduser()
    settings.profile_paths = tuple(path.expanduser().resolve() for path in settings.profile_paths)
    return settings


__all__ = ["RelaySettings", "get_settings"]
