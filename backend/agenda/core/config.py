# backend/agenda/core/config.py
from functools import lru_cache
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        validation_alias=AliasChoices("environment", "ENVIRONMENT", "SITE_MODE"),
    )
    database_url: str = Field(
        default="sqlite:///./agenda.db",
        description="SQLAlchemy URL (PostgreSQL in production, SQLite locally)",
    )

    # Business calendar
    timezone: str = Field(
        default="America/Sao_Paulo",
        description="IANA timezone the business calendar is expressed in",
    )
    slot_interval_minutes: int = Field(
        default=30,
        description="Grid step used when generating slots from the weekly schedule",
        ge=1,
    )
    business_start_min: int = Field(
        default=540,
        description="Default opening minute when no schedule has been configured",
        ge=0,
        le=1440,
    )
    business_end_min: int = Field(
        default=1140,
        description="Default closing minute when no schedule has been configured",
        ge=0,
        le=1440,
    )
    business_location: str | None = Field(
        default=None,
        description="Address appended to confirmation messages",
    )
    max_range_days: int = Field(
        default=62,
        description="Maximum number of days a single availability range query may span",
        ge=1,
    )

    # Booking
    reminder_lead_hours: int = Field(
        default=24,
        description="Hours before the appointment at which the reminder fires",
        ge=1,
    )
    booking_commit_max_attempts: int = Field(
        default=3,
        description="Validate-and-write attempts before a race surfaces as a conflict",
        ge=1,
    )
    booking_lock_ttl_seconds: int = Field(
        default=30,
        description="Expiry of the distributed per-day booking mutex",
        ge=1,
    )
    booking_lock_timeout_seconds: float = Field(
        default=10.0,
        description="How long a commit waits for the per-day booking lock",
        gt=0,
    )

    # Infrastructure
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis used for the distributed booking lock; process lock only when unset",
    )
    celery_broker_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("celery_broker_url", "CELERY_BROKER_URL", "REDIS_URL"),
    )
    jobs_poll_interval_seconds: int = Field(
        default=30,
        description="How often the beat schedule drains due background jobs",
        ge=1,
    )
    jobs_batch: int = Field(
        default=25,
        description="Maximum number of jobs processed per dispatch run",
        ge=1,
    )
    jobs_max_attempts: int = Field(
        default=5,
        description="Maximum delivery attempts before a job is marked failed",
        ge=1,
    )
    jobs_backoff_base: int = Field(
        default=30,
        description="Base backoff in seconds for background job retries",
        ge=1,
    )
    jobs_backoff_cap: int = Field(
        default=1800,
        description="Maximum backoff in seconds for background job retries",
        ge=1,
    )

    # Catalog (service names, prices, durations, message templates)
    catalog_base_url: str = Field(default="http://localhost:1337/api")
    catalog_api_token: SecretStr | None = Field(default=None)
    catalog_timeout_seconds: float = Field(default=5.0, gt=0)
    template_cache_ttl_seconds: int = Field(
        default=300,
        description="How long notification templates are reused before refetching",
        ge=0,
    )

    # Customer / loyalty store
    customer_store_url: str = Field(default="http://localhost:1337/api")
    customer_store_token: SecretStr | None = Field(default=None)

    # Outbound messaging gateway
    message_gateway_url: str = Field(default="http://localhost:3001")
    message_gateway_token: SecretStr | None = Field(default=None)

    # Staff auth is issued elsewhere; the API only checks the bearer token
    staff_api_token: SecretStr = Field(
        default=SecretStr("change-me"),
        validation_alias=AliasChoices("staff_api_token", "STAFF_API_TOKEN", "ADMIN_TOKEN"),
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        import pytz

        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @model_validator(mode="after")
    def _check_business_hours(self) -> "Settings":
        if self.business_start_min >= self.business_end_min:
            raise ValueError("BUSINESS_START_MIN must be before BUSINESS_END_MIN")
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
