"""
Pydantic settings models for the Site Explorer.

All configuration is defined here with sensible defaults for a single
browser context driven by one decision service.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class BrowserSettings(BaseModel):
    """Playwright browser configuration."""

    headless: bool = Field(
        default=True,
        description="Run browser in headless mode",
    )
    timeout_ms: int = Field(
        default=30000,
        ge=1000,
        le=120000,
        description="Default timeout for page operations in milliseconds",
    )
    navigation_timeout_ms: int = Field(
        default=60000,
        ge=1000,
        le=180000,
        description="Timeout for page navigation in milliseconds",
    )
    user_agent: str | None = Field(
        default=None,
        description="Custom user agent string. None uses browser default.",
    )
    viewport_width: int = Field(
        default=1280,
        ge=320,
        le=3840,
        description="Browser viewport width in pixels",
    )
    viewport_height: int = Field(
        default=720,
        ge=240,
        le=2160,
        description="Browser viewport height in pixels",
    )
    ignore_https_errors: bool = Field(
        default=False,
        description="Whether to ignore HTTPS certificate errors",
    )
    browser_type: Literal["chromium", "firefox", "webkit"] = Field(
        default="chromium",
        description="Browser engine to use",
    )
    settle_timeout_ms: int = Field(
        default=2000,
        ge=0,
        le=30000,
        description="Time to wait for the page to settle after an action",
    )


class ExplorerSettings(BaseModel):
    """Exploration driver configuration."""

    max_pages: int = Field(
        default=6,
        ge=1,
        le=500,
        description="Maximum number of pages processed per session",
    )
    max_steps_per_page: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Counted steps (standby excluded) allowed per page",
    )
    strategy: Literal["auto", "sequential", "background"] = Field(
        default="auto",
        description="Scheduling strategy. 'auto' uses background for exploratory objectives.",
    )
    background_concurrency: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Maximum number of background extraction tasks running at once",
    )
    start_priority: int = Field(
        default=1,
        ge=1,
        le=5,
        description="Priority assigned to the start URL",
    )
    discovery_priority: int = Field(
        default=2,
        ge=1,
        le=5,
        description="Default priority for URLs discovered by actions",
    )
    volatile_query_params: list[str] = Field(
        default_factory=lambda: [
            "utm_*",
            "gclid",
            "fbclid",
            "msclkid",
            "_ga",
            "sessionid",
            "sid",
            "phpsessid",
            "jsessionid",
        ],
        description="Query parameters dropped during URL normalization (trailing * is a prefix match)",
    )
    keep_hash_routes: bool = Field(
        default=False,
        description="Keep '#/' and '#!/' fragments used by single-page app routers",
    )
    default_standby_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=120.0,
        description="Wait time used when a standby decision omits one",
    )


class DecisionSettings(BaseModel):
    """Decision service (Anthropic Claude) configuration."""

    provider: Literal["anthropic", "scripted"] = Field(
        default="anthropic",
        description="Decision service backend",
    )
    model_name: str = Field(
        default="claude-sonnet-4-20250514",
        description="Model identifier for API calls",
    )
    api_key_env_var: str = Field(
        default="ANTHROPIC_API_KEY",
        description="Environment variable name containing API key",
    )
    max_tokens: int = Field(
        default=2048,
        ge=256,
        le=8192,
        description="Maximum tokens in API response",
    )
    temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Sampling temperature for API calls",
    )
    timeout_seconds: int = Field(
        default=120,
        ge=10,
        le=600,
        description="Timeout for API requests in seconds",
    )
    max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Maximum retry attempts for API failures",
    )
    history_limit: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Number of recent action history entries sent with each decision",
    )
    use_llm_formatter: bool = Field(
        default=False,
        description="Format extraction summaries through the decision service",
    )


class InputSettings(BaseModel):
    """Human input transport configuration."""

    timeout_seconds: float = Field(
        default=300.0,
        gt=0.0,
        le=3600.0,
        description="How long to wait for a human to answer an input request",
    )
    user_name: str = Field(
        default="operator",
        description="Name attached to outbound input requests",
    )
    mask_sensitive: bool = Field(
        default=True,
        description="Mask password and OTP values when persisting",
    )


class StorageSettings(BaseModel):
    """Session persistence configuration."""

    base_dir: Path = Field(
        default=Path("exploration_sessions"),
        description="Directory holding one folder per session",
    )
    save_screenshots: bool = Field(
        default=True,
        description="Write screenshots to disk alongside page documents",
    )

    @field_validator("base_dir", mode="before")
    @classmethod
    def convert_to_path(cls, v: str | Path) -> Path:
        """Convert string paths to Path objects."""
        return Path(v) if isinstance(v, str) else v


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum logging level",
    )
    format: str = Field(
        default="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        description="Log message format string",
    )
    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Date format for log timestamps",
    )
    file_path: Path | None = Field(
        default=None,
        description="Path to log file. None means console only.",
    )
    max_file_size_mb: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum log file size before rotation",
    )
    backup_count: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Number of backup log files to keep",
    )
    log_to_console: bool = Field(
        default=True,
        description="Whether to output logs to console",
    )

    @field_validator("file_path", mode="before")
    @classmethod
    def convert_file_path(cls, v: str | Path | None) -> Path | None:
        """Convert string paths to Path objects."""
        if v is None:
            return None
        return Path(v) if isinstance(v, str) else v


class Settings(BaseModel):
    """
    Root configuration model containing all subsystem settings.

    Settings are loaded from YAML with environment variable overrides.
    """

    browser: BrowserSettings = Field(
        default_factory=BrowserSettings,
        description="Browser/Playwright settings",
    )
    explorer: ExplorerSettings = Field(
        default_factory=ExplorerSettings,
        description="Exploration driver settings",
    )
    decision: DecisionSettings = Field(
        default_factory=DecisionSettings,
        description="Decision service settings",
    )
    input: InputSettings = Field(
        default_factory=InputSettings,
        description="Human input settings",
    )
    storage: StorageSettings = Field(
        default_factory=StorageSettings,
        description="Session persistence settings",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration",
    )

    model_config = {
        "extra": "forbid",
        "validate_default": True,
    }
