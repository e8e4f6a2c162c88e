"""
Importer Configuration Management

Provides centralized configuration handling with environment-aware settings,
secure secret retrieval, and validation for the expense import pipeline.

Design Considerations:
- Environment-specific configuration profiles
- Secrets held as SecretStr so they never appear in logs or reprs
- Validation at start-up rather than mid-run
"""

import re
from enum import Enum
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings

from expense_importer.config.pipeline_config import PIPELINE_CONFIG


class EnvironmentType(str, Enum):
    """Valid environment types for configuration context."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


class ImporterSettings(BaseSettings):
    """
    Expense importer settings loaded from the environment and .env file.

    Credentials are optional at load time so that tooling can build settings
    without them; the components that need a credential fail fast with an
    AuthenticationError when it is absent.
    """
    # Environment Configuration
    ENVIRONMENT: EnvironmentType = Field(
        default=EnvironmentType.DEVELOPMENT,
        description="Runtime environment context"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level"
    )
    LOG_DIR: str = Field(
        default="logs",
        description="Directory for log files"
    )

    # Gmail
    GMAIL_ACCESS_TOKEN: Optional[SecretStr] = Field(
        default=None,
        description="Externally issued OAuth bearer token with gmail.readonly scope"
    )
    GMAIL_USER_ID: str = Field(
        default="me",
        description="Mailbox owner identifier for Gmail API calls"
    )
    GMAIL_PAGE_SIZE: int = Field(
        default=100,
        ge=1,
        le=500,
        description="maxResults used for each search page"
    )

    # Gemini
    GEMINI_API_KEY: Optional[SecretStr] = Field(
        default=None,
        description="API key for the generative text endpoint"
    )
    GEMINI_MODEL: str = Field(
        default="gemini-2.5-flash",
        description="Model used for expense categorization"
    )
    GEMINI_API_ENDPOINT: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Base URL of the generative text API"
    )
    GEMINI_TIMEOUT: int = Field(
        default=60,
        gt=0,
        description="Per-request timeout in seconds"
    )

    # Pipeline behaviour
    RATE_LIMIT_PROFILE: str = Field(
        default="normal",
        description="Named rate-limit profile: conservative, normal or aggressive"
    )
    DEFAULT_CURRENCY: str = Field(
        default="CRC",
        description="Currency used when a notification omits a recognizable code"
    )
    DEFAULT_LOCATION: str = Field(
        default="Unknown",
        description="Location used when a notification omits one"
    )
    TIMEZONE: str = Field(
        default="UTC",
        description="Timezone applied to naive dates found in notification bodies"
    )

    # Storage
    DATABASE_URL: str = Field(
        default="sqlite:///data/expenses.db",
        description="SQLAlchemy URL of the expense store"
    )

    @field_validator("RATE_LIMIT_PROFILE")
    @classmethod
    def validate_rate_limit_profile(cls, value: str) -> str:
        """Normalize and validate the rate-limit profile name."""
        normalized = value.strip().lower()
        if normalized not in PIPELINE_CONFIG["rate_limit_profiles"]:
            allowed = ", ".join(sorted(PIPELINE_CONFIG["rate_limit_profiles"]))
            raise ValueError(f"RATE_LIMIT_PROFILE must be one of: {allowed}")
        return normalized

    @field_validator("DEFAULT_CURRENCY")
    @classmethod
    def validate_currency(cls, value: str) -> str:
        """Currency codes are three upper-case letters."""
        normalized = value.strip().upper()
        if not re.fullmatch(r"[A-Z]{3}", normalized):
            raise ValueError("DEFAULT_CURRENCY must be a 3-letter currency code")
        return normalized

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid LOG_LEVEL: {value}")
        return normalized

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore"
    }


def get_settings() -> ImporterSettings:
    """
    Retrieve validated importer settings.

    Returns:
        Validated settings object

    Raises:
        ValidationError: If configuration fails validation
    """
    return ImporterSettings()
