import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BASE_URL = "https://coach-kit.vercel.app"


def get_database_url() -> str:
    """Get database URL, using absolute path for SQLite to avoid path resolution issues.

    SQLite is for local development only. Set DATABASE_URL to a PostgreSQL
    connection string in any shared environment.
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        logger.info(f"Using DATABASE_URL from environment: {db_url}")
        return db_url

    db_path = Path(__file__).parent.parent.parent / "coachkit.db"
    abs_path = db_path.resolve()
    db_url = f"sqlite:///{abs_path}"
    logger.warning(f"Using SQLite database (LOCAL DEV ONLY): {db_url}")
    return db_url


class Settings(BaseSettings):
    strava_client_id: str = Field(default="", validation_alias="STRAVA_CLIENT_ID")
    strava_client_secret: str = Field(default="", validation_alias="STRAVA_CLIENT_SECRET")
    strava_redirect_uri: str = Field(
        default="http://localhost:8000/api/integrations/strava/callback",
        validation_alias="STRAVA_REDIRECT_URI",
    )
    strava_webhook_verify_token: str = Field(default="", validation_alias="STRAVA_WEBHOOK_VERIFY_TOKEN")
    strava_poll_enabled: bool = Field(
        default=False,
        validation_alias="STRAVA_POLL_ENABLED",
        description="Run the background Strava poll inside the API process",
    )
    strava_poll_interval_minutes: int = Field(default=15, validation_alias="STRAVA_POLL_INTERVAL_MINUTES")
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="DATABASE_URL",
    )
    base_url: str = Field(
        default=DEFAULT_BASE_URL,
        validation_alias="BASE_URL",
        description="Public web URL used for links inside calendar feeds",
    )
    default_timezone: str = Field(default="Australia/Brisbane", validation_alias="DEFAULT_TIMEZONE")
    ical_rate_limit_max: int = Field(default=120, validation_alias="ICAL_RATE_LIMIT_MAX")
    ical_rate_limit_window_seconds: int = Field(default=60, validation_alias="ICAL_RATE_LIMIT_WINDOW_SECONDS")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(sorted(valid_levels))}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    @field_validator("strava_client_id", "strava_client_secret")
    @classmethod
    def validate_strava_credentials(cls, value: str) -> str:
        """Warn when Strava credentials are missing.

        Calendar features work without them; Strava OAuth, token refresh and
        sync will fail until they are set.
        """
        if not value:
            logger.warning(
                "STRAVA_CLIENT_ID and/or STRAVA_CLIENT_SECRET are not set. "
                "Strava OAuth and sync will not work until they are configured."
            )
        return value

    @field_validator("strava_redirect_uri")
    @classmethod
    def validate_redirect_uri(cls, value: str) -> str:
        """Validate that redirect URI points to the Strava callback route."""
        if value and "/strava/callback" not in value:
            logger.warning(f"STRAVA_REDIRECT_URI should point to /api/integrations/strava/callback, but got: {value}. This may cause OAuth failures.")
        return value

    @field_validator("base_url")
    @classmethod
    def normalize_base_url(cls, value: str) -> str:
        """Ensure the base URL carries a scheme and no trailing slash."""
        raw = (value or "").strip()
        if not raw:
            return DEFAULT_BASE_URL
        if not raw.startswith(("http://", "https://")):
            raw = f"https://{raw}"
        return raw.rstrip("/")


settings = Settings()
