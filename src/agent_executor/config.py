"""Configuration management for Agent Executor."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024


class ExecutorSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    working_directory: Path = Field(default=Path("./workspace"), validation_alias="WORKING_DIRECTORY")
    shell: str = Field(default="bash", validation_alias="EXECUTOR_SHELL")
    command_timeout: float = Field(default=300.0, validation_alias="EXECUTOR_COMMAND_TIMEOUT")
    execute_timeout: float = Field(default=60.0, validation_alias="EXECUTOR_EXECUTE_TIMEOUT")
    max_output_bytes: int = Field(
        default=DEFAULT_MAX_OUTPUT_BYTES, validation_alias="EXECUTOR_MAX_OUTPUT_BYTES"
    )
    output_channel_size: int = Field(default=256, validation_alias="EXECUTOR_OUTPUT_CHANNEL_SIZE")
    idle_threshold: float = Field(default=24 * 3600.0, validation_alias="EXECUTOR_IDLE_THRESHOLD")
    sweep_interval: float = Field(default=3600.0, validation_alias="EXECUTOR_SWEEP_INTERVAL")
    dev_server_port: int = Field(default=3100, validation_alias="DEV_SERVER_PORT")
    log_level: str = Field(default="INFO", validation_alias="EXECUTOR_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "EXECUTOR_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("command_timeout", "execute_timeout", "idle_threshold", "sweep_interval")
    @classmethod
    def _validate_duration(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("durations must be > 0 seconds")
        return value

    @field_validator("max_output_bytes", "output_channel_size")
    @classmethod
    def _validate_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("sizes must be >= 1")
        return value

    @field_validator("shell")
    @classmethod
    def _validate_shell(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("EXECUTOR_SHELL must not be empty")
        return stripped


def ensure_working_directory(path: Path) -> Path:
    """Create the base working directory if needed and verify it is writable."""

    resolved = Path(path).expanduser().resolve()
    resolved.mkdir(parents=True, exist_ok=True)
    if not resolved.is_dir():
        raise NotADirectoryError(f"Working directory is not a directory: {resolved}")
    if not os.access(resolved, os.W_OK):
        raise PermissionError(f"Working directory is not writable: {resolved}")
    return resolved


@lru_cache(maxsize=1)
def get_settings() -> ExecutorSettings:
    """Return cached settings instance."""

    settings = ExecutorSettings()
    settings.working_directory = settings.working_directory.expanduser().resolve()
    return settings


__all__ = ["DEFAULT_MAX_OUTPUT_BYTES", "ExecutorSettings", "ensure_working_directory", "get_settings"]
