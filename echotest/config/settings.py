"""Configuration management for the echotest engine."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OpenAI Configuration
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_model: str = Field(default="gpt-4.1", description="Model driving the browser")
    openai_base_url: Optional[str] = Field(
        default=None, description="Override for OpenAI-compatible endpoints"
    )
    openai_temperature: float = Field(
        default=0.2, ge=0.0, le=2.0, description="Sampling temperature"
    )
    openai_max_tokens: int = Field(
        default=1024, ge=1, description="Token budget per provider call"
    )
    openai_request_timeout_seconds: int = Field(
        default=900,
        ge=60,
        description="Request timeout for OpenAI API calls in seconds",
    )

    # Conversation Loop Configuration
    agent_max_retries: int = Field(
        default=3, ge=0, description="Conversation restarts allowed after transient provider failures"
    )
    agent_retry_delay_seconds: float = Field(
        default=5.0, ge=0.0, description="Backoff unit; attempt N waits N units"
    )
    agent_rate_limit_cooldown_seconds: float = Field(
        default=60.0, ge=0.0, description="Pause after a rate-limit response"
    )
    agent_request_delay_seconds: float = Field(
        default=1.0, ge=0.0, description="Delay before every provider call"
    )
    agent_max_turns: int = Field(
        default=50, ge=1, description="Maximum tool-dispatch turns per conversation"
    )

    # Cache Configuration
    cache_dir: Path = Field(
        default=Path(".echotest/cache"), description="Action cache directory"
    )
    cache_lock_max_attempts: int = Field(
        default=10, ge=1, description="Lock acquisition attempts before giving up"
    )
    cache_lock_base_delay_ms: int = Field(
        default=10, ge=1, description="Base delay for exponential lock backoff"
    )
    cache_lock_stale_ms: int = Field(
        default=10_000, ge=0, description="Age after which a dead owner's lock is reclaimed"
    )
    cache_max_age_ms: int = Field(
        default=7 * DAY_MS, ge=0, description="Maximum age of cache entries"
    )
    cache_max_entries: int = Field(
        default=1000, ge=1, description="Maximum number of cache entries kept by sweeps"
    )
    screenshot_max_age_ms: int = Field(
        default=5 * HOUR_MS, ge=0, description="Maximum age of screenshot artifacts"
    )
    screenshot_max_per_run: int = Field(
        default=10, ge=1, description="Screenshot artifacts kept per run directory"
    )
    save_screenshots: bool = Field(
        default=False, description="Persist screenshots returned by the browser"
    )
    no_cache: bool = Field(
        default=False, description="Skip cache lookups and always run the agent"
    )

    # Browser Configuration
    browser_headless: bool = Field(
        default=True, description="Run browser in headless mode"
    )
    browser_timeout: int = Field(
        default=30000, ge=1000, description="Default browser timeout (ms)"
    )
    browser_viewport_width: int = Field(
        default=1920, ge=800, description="Browser viewport width"
    )
    browser_viewport_height: int = Field(
        default=1080, ge=600, description="Browser viewport height"
    )
    shell_timeout_seconds: float = Field(
        default=120.0, gt=0, description="Timeout for bash tool commands"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: str = Field(
        default="text",
        description="Log format (json or text)",
    )
    log_file: Optional[str] = Field(
        default=None, description="Log file path"
    )

    # Development Configuration
    debug_mode: bool = Field(
        default=False, description="Log every tool call and tool result"
    )

    @field_validator("log_level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator("log_format")
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        if v not in ["json", "text"]:
            raise ValueError(f"Invalid log format: {v}")
        return v

    @property
    def screenshots_dir(self) -> Path:
        """Directory holding per-run screenshot artifacts."""
        return self.cache_dir / "screenshots"

    def create_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [self.cache_dir, self.screenshots_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    # Load .env file if it exists
    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)

    settings = Settings()
    settings.create_directories()
    return settings
