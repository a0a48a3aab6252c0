"""Configuration management using Pydantic Settings."""

import sys
from functools import lru_cache
from pathlib import Path
from typing import Literal

from loguru import logger
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    # Agent CLI
    claude_cli_path: str | None = Field(
        default=None,
        description="Path to the claude CLI executable (searched on PATH if unset)",
    )
    anthropic_api_key: SecretStr | None = Field(
        default=None,
        description="Anthropic API key passed to the CLI",
    )
    claude_code_oauth_token: SecretStr | None = Field(
        default=None,
        description="OAuth token accepted by the CLI instead of an API key",
    )
    home: str | None = Field(
        default=None,
        description="HOME directory forwarded to the CLI (holds .claude.json)",
    )
    node_extra_ca_certs: str | None = Field(
        default=None,
        description="Extra CA bundle forwarded to the CLI's Node runtime",
    )

    # Logging
    agentproc_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    agentproc_log_file: str | None = Field(
        default=None,
        description="Optional log file path (rotated daily)",
    )
    agentproc_debug: bool = Field(
        default=False,
        description="Enable debug logging on stderr",
    )

    # Sessions and processes
    agentproc_session_inactivity_timeout: float = Field(
        default=1800.0,
        gt=0,
        description="Default idle time in seconds before a session is evicted",
    )
    agentproc_sweep_interval: float = Field(
        default=300.0,
        gt=0,
        description="Seconds between idle-session sweeps",
    )
    agentproc_kill_grace_period: float = Field(
        default=5.0,
        ge=0,
        description="Seconds to wait after SIGTERM before SIGKILL",
    )
    agentproc_stream_limit: int = Field(
        default=16 * 1024 * 1024,
        ge=1024,
        description="Maximum length in bytes of one subprocess output line",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance loaded from environment.

    Example:
        >>> settings = get_settings()
        >>> settings.agentproc_sweep_interval
        300.0
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()


def configure_logging(settings: Settings | None = None) -> None:
    """Configure loguru based on settings.

    Replaces loguru's default handler with a colourised stderr sink and,
    when ``agentproc_log_file`` is set, a daily-rotated file sink.
    """
    settings = settings or get_settings()
    level = "DEBUG" if settings.agentproc_debug else settings.agentproc_log_level

    logger.remove()  # Remove default handler
    logger.add(sys.stderr, level=level, format=LOG_FORMAT, colorize=True)

    if settings.agentproc_log_file:
        Path(settings.agentproc_log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.agentproc_log_file,
            rotation="1 day",
            retention="7 days",
            level=settings.agentproc_log_level,
            format=LOG_FORMAT,
        )
