"""Configuration management for DriveLink.

Uses Pydantic Settings for type-safe, environment-based configuration.
"""

from typing import Callable

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
# Use override=True to ensure .env changes take effect immediately
load_dotenv(override=True)


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # App configuration
    app_name: str = Field("DriveLink", alias="DRIVELINK_APP_NAME")
    debug: bool = Field(False, alias="DRIVELINK_DEBUG")
    version: str = Field("0.1.0", alias="DRIVELINK_APP_VERSION")
    environment: str = Field("development", alias="DRIVELINK_ENVIRONMENT")

    # API configuration
    api_v1_prefix: str = Field("/api/v1", alias="DRIVELINK_API_V1_PREFIX")
    api_host: str = Field("127.0.0.1", alias="DRIVELINK_API_HOST")
    api_port: int = Field(8000, alias="DRIVELINK_API_PORT")

    # Chat server the plugin is mounted in. Webhook and dialog URLs are
    # built as {site_url}/plugins/{plugin_id}/...
    site_url: str = Field("http://localhost:8065", alias="DRIVELINK_SITE_URL")
    plugin_id: str = Field("com.mattermost.google-drive", alias="DRIVELINK_PLUGIN_ID")
    chat_server_url: str | None = Field(None, alias="DRIVELINK_CHAT_SERVER_URL")
    bot_token: str | None = Field(None, alias="DRIVELINK_BOT_TOKEN")
    bot_user_id: str | None = Field(None, alias="DRIVELINK_BOT_USER_ID")

    # Redis configuration
    # Set DRIVELINK_REDIS_URL to enable the Redis-backed store and cluster lock; omit for in-memory.
    redis_url: str | None = Field(None, alias="DRIVELINK_REDIS_URL")
    redis_connection_timeout: int = Field(5, alias="DRIVELINK_REDIS_CONNECTION_TIMEOUT")
    redis_socket_timeout: int = Field(5, alias="DRIVELINK_REDIS_SOCKET_TIMEOUT")

    @property
    def redis_enabled(self) -> bool:
        """Whether Redis should be used, based on DRIVELINK_REDIS_URL being set."""
        return bool(self.redis_url)

    # Google OAuth configuration
    google_client_id: str | None = Field(None, alias="GOOGLE_CLIENT_ID")
    google_client_secret: str | None = Field(None, alias="GOOGLE_CLIENT_SECRET")
    oauth_encryption_key: str | None = Field(None, alias="DRIVELINK_OAUTH_ENCRYPTION_KEY")
    oauth_state_ttl_seconds: int = Field(600, alias="DRIVELINK_OAUTH_STATE_TTL_SECONDS")
    oauth_connect_timeout_seconds: float = Field(45.0, alias="DRIVELINK_OAUTH_CONNECT_TIMEOUT_SECONDS")

    # Outbound Drive API rate limiting
    drive_queries_per_minute: int = Field(60, alias="DRIVELINK_DRIVE_QUERIES_PER_MINUTE")
    drive_burst_size: int = Field(10, alias="DRIVELINK_DRIVE_BURST_SIZE")
    rate_limit_flag_ttl_seconds: int = Field(10, alias="DRIVELINK_RATE_LIMIT_FLAG_TTL_SECONDS")
    rate_limit_wait_timeout_seconds: float = Field(30.0, alias="DRIVELINK_RATE_LIMIT_WAIT_TIMEOUT_SECONDS")

    # Request handling
    request_timeout_seconds: float = Field(60.0, alias="DRIVELINK_REQUEST_TIMEOUT_SECONDS")
    http_timeout_seconds: float = Field(30.0, alias="DRIVELINK_HTTP_TIMEOUT_SECONDS")

    # Change reconciliation tuning
    change_page_iteration_limit: int = Field(5, alias="DRIVELINK_CHANGE_PAGE_ITERATION_LIMIT")
    activity_page_iteration_limit: int = Field(5, alias="DRIVELINK_ACTIVITY_PAGE_ITERATION_LIMIT")
    multiple_activities_threshold: int = Field(5, alias="DRIVELINK_MULTIPLE_ACTIVITIES_THRESHOLD")

    # Watch channel lifecycle
    watch_channel_ttl_seconds: int = Field(7 * 24 * 3600, alias="DRIVELINK_WATCH_CHANNEL_TTL_SECONDS")
    watch_renewal_window_seconds: int = Field(24 * 3600, alias="DRIVELINK_WATCH_RENEWAL_WINDOW_SECONDS")
    watch_refresh_enabled: bool = Field(True, alias="DRIVELINK_WATCH_REFRESH_ENABLED")
    watch_refresh_interval_seconds: int = Field(12 * 3600, alias="DRIVELINK_WATCH_REFRESH_INTERVAL_SECONDS")
    watch_refresh_workers: int = Field(5, alias="DRIVELINK_WATCH_REFRESH_WORKERS")
    watch_refresh_page_size: int = Field(100, alias="DRIVELINK_WATCH_REFRESH_PAGE_SIZE")

    # Logging configuration
    log_level: str = Field("INFO", alias="DRIVELINK_LOG_LEVEL")
    log_format: str = Field("text", alias="DRIVELINK_LOG_FORMAT")  # text or json
    log_dir: str | None = Field(None, alias="DRIVELINK_LOG_DIR")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["text", "json"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of: {valid_formats}")
        return v.lower()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment setting."""
        valid_environments = ["development", "test", "staging", "production"]
        if v.lower() not in valid_environments:
            raise ValueError(f"Environment must be one of: {valid_environments}")
        return v.lower()

    @field_validator("drive_queries_per_minute", "drive_burst_size")
    @classmethod
    def validate_positive_rate(cls, v: int) -> int:
        """Queries per minute and burst size must both be greater than zero."""
        if v <= 0:
            raise ValueError("Rate limit values must be greater than zero")
        return v

    @field_validator("site_url", "chat_server_url")
    @classmethod
    def strip_trailing_slash(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.rstrip("/")

    @property
    def plugin_url(self) -> str:
        """Public base URL of the plugin's HTTP surface."""
        return f"{self.site_url}/plugins/{self.plugin_id}"

    @property
    def webhook_url(self) -> str:
        return f"{self.plugin_url}{self.api_v1_prefix}/webhook"

    @property
    def oauth_redirect_uri(self) -> str:
        return f"{self.plugin_url}/oauth/complete"

    @property
    def effective_chat_server_url(self) -> str:
        return self.chat_server_url or self.site_url

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra environment variables instead of forbidding them
    )


def get_settings() -> Settings:
    """Build a fresh settings instance from the environment."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance - will be created when first accessed
settings = None


def get_settings_instance() -> Settings:
    """Get the global settings instance, creating it if necessary."""
    global settings  # noqa: PLW0603
    if settings is None:
        settings = get_settings()
    return settings


def reload_settings(apply: Callable[[Settings], None] | None = None) -> Settings:
    """Re-read the environment and replace the global settings instance.

    Components that cache derived state (the Drive token bucket, the OAuth
    client configuration) must be told separately via
    ``DriveLinkContext.apply_settings``; pass it as ``apply`` and the global
    instance is only replaced once it succeeds.
    """
    global settings  # noqa: PLW0603
    load_dotenv(override=True)
    fresh = get_settings()
    if apply is not None:
        apply(fresh)
    settings = fresh
    return settings
