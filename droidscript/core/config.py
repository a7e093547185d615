"""Configuration management for the droidscript engine."""

from __future__ import annotations

from dataclasses import dataclass

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables
load_dotenv()


@dataclass(frozen=True)
class EngineSettings:
    """Per-run settings handed to the engine, executor and snapshotter."""

    snapshot_stabilize_attempts: int = 3
    snapshot_settle_delay_ms: int = 300
    wait_poll_interval_ms: int = 250
    default_wait_timeout_ms: int = 5000
    default_scroll_max_attempts: int = 10
    scroll_swipe_duration_ms: int = 300
    default_long_press_ms: int = 600


@dataclass(frozen=True)
class RecoveryConfig:
    """Recovery agent settings passed to the orchestrator at construction."""

    enabled: bool = True
    timeout_s: float = 30.0
    max_depth: int = 1
    history_window: int = 5
    max_corrective_steps: int = 10


class Config(BaseSettings):
    """Configuration class for the droidscript engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Ignore unexpected env vars rather than raising errors
    )

    # OpenAI Configuration
    openai_api_key: str = Field(default="", description="OpenAI API key (only needed for AI recovery)")
    openai_model: str = Field(default="gpt-4o")
    openai_max_tokens: int = Field(default=2000)
    openai_temperature: float = Field(default=0.2)

    # Logging
    log_level: str = Field(default="INFO")
    log_dir: str = Field(default="logs")
    log_to_file: bool = Field(default=False)

    # Android Configuration
    android_device_id: str = Field(default="emulator-5554")
    adb_command_timeout: int = Field(default=20)

    # Snapshotting
    snapshot_stabilize_attempts: int = Field(default=3)
    snapshot_settle_delay_ms: int = Field(default=300)

    # Actions
    wait_poll_interval_ms: int = Field(default=250)
    default_wait_timeout_ms: int = Field(default=5000)
    default_scroll_max_attempts: int = Field(default=10)
    scroll_swipe_duration_ms: int = Field(default=300)
    default_long_press_ms: int = Field(default=600)

    # Recovery (AITM)
    recovery_enabled: bool = Field(default=True)
    recovery_timeout_s: float = Field(default=30.0)
    recovery_max_depth: int = Field(default=1, description="Negotiations allowed after the first one")
    recovery_history_window: int = Field(default=5)
    recovery_max_corrective_steps: int = Field(default=10)

    # API Configuration
    api_host: str = Field(default="localhost")
    api_port: int = Field(default=8000)
    cors_origins: list[str] = Field(default=["http://localhost:3000"])

    def validate_config(self) -> bool:
        """Validate configuration values."""
        if self.snapshot_stabilize_attempts < 1:
            raise ValueError("Snapshot stabilize attempts must be at least 1")

        if self.wait_poll_interval_ms <= 0:
            raise ValueError("Wait poll interval must be positive")

        if self.default_scroll_max_attempts < 1:
            raise ValueError("Scroll max attempts must be at least 1")

        if self.recovery_max_depth < 0:
            raise ValueError("Recovery max depth cannot be negative")

        if self.recovery_timeout_s <= 0:
            raise ValueError("Recovery timeout must be positive")

        return True

    def engine_settings(self) -> EngineSettings:
        """Snapshot the action/snapshot settings into an ``EngineSettings``."""
        return EngineSettings(
            snapshot_stabilize_attempts=self.snapshot_stabilize_attempts,
            snapshot_settle_delay_ms=self.snapshot_settle_delay_ms,
            wait_poll_interval_ms=self.wait_poll_interval_ms,
            default_wait_timeout_ms=self.default_wait_timeout_ms,
            default_scroll_max_attempts=self.default_scroll_max_attempts,
            scroll_swipe_duration_ms=self.scroll_swipe_duration_ms,
            default_long_press_ms=self.default_long_press_ms,
        )

    def recovery_settings(self) -> RecoveryConfig:
        """Snapshot the recovery settings into a ``RecoveryConfig``."""
        return RecoveryConfig(
            enabled=self.recovery_enabled,
            timeout_s=self.recovery_timeout_s,
            max_depth=self.recovery_max_depth,
            history_window=self.recovery_history_window,
            max_corrective_steps=self.recovery_max_corrective_steps,
        )


# Global configuration instance
config = Config()
