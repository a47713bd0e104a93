"""
Application settings and configuration management.

This module handles all environment variables, API keys, and application
configuration using Pydantic settings management for type safety and validation.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All sensitive values are stored as SecretStr to prevent accidental logging.
    Settings are validated on load and cached for performance.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )

    # API Keys
    anthropic_api_key: SecretStr = Field(..., alias="ANTHROPIC_API_KEY")

    # Application Configuration
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        alias="APP_ENV"
    )
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        alias="LOG_LEVEL"
    )
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # Model Configuration
    claude_model: str = Field(
        default="claude-sonnet-4-20250514",
        alias="CLAUDE_MODEL"
    )
    claude_max_tokens: int = Field(default=1000, alias="CLAUDE_MAX_TOKENS")
    query_temperature: float = Field(default=0.8, alias="QUERY_TEMPERATURE")
    scoring_temperature: float = Field(default=0.2, alias="SCORING_TEMPERATURE")
    browser_temperature: float = Field(default=0.0, alias="BROWSER_TEMPERATURE")

    # Rate Limits
    request_timeout_seconds: int = Field(default=60, alias="REQUEST_TIMEOUT_SECONDS")
    max_retries: int = Field(default=3, alias="MAX_RETRIES")
    retry_backoff_seconds: float = Field(default=1.0, alias="RETRY_BACKOFF_SECONDS")

    # Search Settings
    target_site_url: str = Field(default="https://firebox.eu/", alias="TARGET_SITE_URL")
    max_queries: int = Field(default=3, ge=1, alias="MAX_QUERIES")
    max_products_per_search: int = Field(default=3, ge=1, alias="MAX_PRODUCTS_PER_SEARCH")
    settle_delay_seconds: float = Field(default=1.0, ge=0, alias="SETTLE_DELAY_SECONDS")
    max_concurrent_sessions: Optional[int] = Field(
        default=None,
        ge=1,
        alias="MAX_CONCURRENT_SESSIONS",
    )
    top_k: int = Field(default=3, ge=1, alias="TOP_K")

    # Browser Session Settings
    browser_cdp_url: Optional[str] = Field(default=None, alias="BROWSER_CDP_URL")
    browser_headless: bool = Field(default=True, alias="BROWSER_HEADLESS")
    browser_region: str = Field(default="us-east-1", alias="BROWSER_REGION")
    browser_session_timeout_seconds: int = Field(
        default=900,
        alias="BROWSER_SESSION_TIMEOUT_SECONDS",
    )
    browser_action_timeout_ms: int = Field(default=30000, alias="BROWSER_ACTION_TIMEOUT_MS")
    browser_block_ads: bool = Field(default=True, alias="BROWSER_BLOCK_ADS")
    browser_solve_captchas: bool = Field(default=True, alias="BROWSER_SOLVE_CAPTCHAS")
    browser_viewport_width: int = Field(default=1920, alias="BROWSER_VIEWPORT_WIDTH")
    browser_viewport_height: int = Field(default=1080, alias="BROWSER_VIEWPORT_HEIGHT")
    live_view_url_template: Optional[str] = Field(
        default=None,
        alias="LIVE_VIEW_URL_TEMPLATE",
        description="Format string with a {session_id} placeholder",
    )

    @field_validator("anthropic_api_key", mode="before")
    @classmethod
    def validate_anthropic_key(cls, v: str) -> str:
        """Validate Anthropic API key format."""
        if isinstance(v, SecretStr):
            v = v.get_secret_value()
        if not v or not v.startswith("sk-"):
            raise ValueError("Invalid Anthropic API key format")
        return v

    @field_validator("target_site_url")
    @classmethod
    def validate_target_site_url(cls, v: str) -> str:
        """Only absolute http(s) targets can be navigated to."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Target site must be an absolute http(s) URL: '{v}'")
        return v

    def live_view_url(self, session_id: str) -> Optional[str]:
        """Build the live view link for a browser session, if configured."""
        if not self.live_view_url_template:
            return None
        return self.live_view_url_template.format(session_id=session_id)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
