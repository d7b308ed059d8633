"""Configuration settings for imprint_flash.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

import shlex
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the IMPRINT_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="IMPRINT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backend
    flasher_command: str = Field(
        default="imprint-flasher",
        description="Command line of the external flasher executable",
    )
    use_system_dd: bool = Field(
        default=False,
        description="Ask the flasher to use the system dd instead of its own writer",
    )
    disable_validation: bool = Field(
        default=False,
        description="Ask the flasher to skip read-back validation after writing",
    )

    # Display
    binary_units: bool = Field(
        default=False,
        description="Format byte sizes with 1024-based units (KiB, MiB, ...)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING",
        description="Logging level",
    )

    # Event pump
    event_poll_interval: float = Field(
        default=0.1,
        gt=0,
        le=5,
        description="Seconds to wait for backend events per pump iteration",
    )

    def flasher_argv(self) -> list[str]:
        """Split the flasher command into an argument vector."""
        return shlex.split(self.flasher_command)

    def flasher_flags(self) -> list[str]:
        """Return the optional flags passed to `flasher flash`."""
        flags: list[str] = []
        if self.use_system_dd:
            flags.append("--use-system-dd")
        if self.disable_validation:
            flags.append("--disable-validation")
        return flags


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
