"""Configuration for systempulse, loaded from the environment via pydantic-settings."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _home(*parts: str) -> Path:
    return Path.home().joinpath(*parts)


class PulseSettings(BaseSettings):
    """All systempulse configuration. Reads SYSTEMPULSE_* variables and an optional .env file."""

    # --- Sampling ---
    poll_interval: float = Field(default=2.0, description="Seconds between sampling cycles")
    history_capacity: int = Field(default=30, description="Snapshots kept for graphs")
    top_process_count: int = Field(default=8, description="Processes kept in the top list")
    interface_pattern: str = Field(
        default=r"^(en|eth|wl|ww)",
        description="Regex matching physical network interface names",
    )
    probe_timeout: float = Field(
        default=1.5,
        description="Seconds a single probe may run before its fallback is used",
    )
    command_timeout: float = Field(
        default=1.0,
        description="Seconds an external command may run before it is killed",
    )

    # --- Assistant telemetry ---
    usage_log_path: Path = Field(default_factory=lambda: _home(".claude", "stats-cache.json"))
    mcp_config_paths: list[Path] = Field(
        default_factory=lambda: [_home(".mcp.json"), _home(".claude.json")],
    )

    # --- Logging ---
    log_level: str = Field(default="WARNING", description="Log level")
    log_format: str = Field(
        default="console",
        description="Log format: 'console' for dev, 'json' for production",
    )
    log_file: Path | None = Field(
        default=None,
        description="Write logs here instead of stderr (keeps the dashboard clean)",
    )

    model_config = SettingsConfigDict(
        env_prefix="SYSTEMPULSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("poll_interval")
    @classmethod
    def _min_poll_interval(cls, value: float) -> float:
        return max(0.1, value)

    @field_validator("history_capacity", "top_process_count")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


def load_settings(**overrides) -> PulseSettings:
    """Build settings from the environment, with keyword overrides taking precedence."""
    return PulseSettings(**overrides)
