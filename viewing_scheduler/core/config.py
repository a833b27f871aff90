"""
Configuration module for the viewing scheduler.

This module handles all environment variables and application settings.
It uses Pydantic to validate and parse environment variables automatically.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """
    Settings class that manages all environment variables.

    How this works:
    - Pydantic reads environment variables automatically
    - If DATABASE_URL exists in env, it maps to database_url field
    - Every field has a default so the service boots in local development
      with nothing but a SQLite file

    Example:
        If you set LANDLORD_TIMEZONE="Europe/London" in your environment,
        settings.landlord_timezone will contain that value.
    """

    # Database configuration
    database_url: str = "sqlite:///./viewing_scheduler.db"
    auto_create_tables: bool = True  # Run create_all on startup

    # OpenAI configuration for intent classification and replies
    openai_api_key: Optional[str] = None  # Assistant degrades gracefully without it
    openai_model: str = "gpt-4o-mini"
    intent_confidence_threshold: float = 0.5  # Below this a date is not trusted

    # Landlord calendar rules
    landlord_timezone: str = "America/New_York"  # Timezone availability windows are written in
    availability_cache_ttl_seconds: int = 300  # 5 minutes
    minimum_notice_hours: int = 2  # Lead time before a viewing
    booking_buffer_minutes: int = 60  # +/- window around an existing booking

    # Timeouts for blocking collaborators
    intent_timeout_seconds: float = 10.0
    store_timeout_seconds: float = 5.0

    # Chat assistant
    assistant_enabled: bool = True  # Reply to tenant messages automatically
    assistant_max_attempts: int = 3  # Attempts to deliver a generated reply
    assistant_retry_delay_seconds: float = 0.5

    # Application settings with defaults
    debug: bool = False  # Enable debug mode (more logs, show docs)
    port: int = 8000    # Port to run the server on

    class Config:
        """
        Pydantic configuration.

        - env_file: Load from .env file if it exists (for local dev)
        - case_sensitive: False means DATABASE_URL or database_url both work
        """
        env_file = ".env"
        case_sensitive = False


# Create a single instance to use throughout the app
settings = Settings()
