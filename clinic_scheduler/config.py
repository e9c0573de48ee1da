# clinic_scheduler/config.py - Scheduling engine configuration
import os

from dotenv import load_dotenv

load_dotenv()
from typing import Optional, Union
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Application settings with validation and environment variable support (Pydantic V2 Syntax)"""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="allow",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Application
    app_name: str = "Dr. Dhingra's Clinic Scheduling Engine"
    app_version: str = "2.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database
    database_url: str = Field(default="sqlite:///./clinic_scheduler.db", alias="DATABASE_URL")
    database_pool_size: int = Field(default=20, alias="DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(default=30, alias="DATABASE_MAX_OVERFLOW")

    # CORS
    cors_origins: Union[str, list[str]] = Field(default=["http://localhost:3000", "http://localhost:8000"], alias="CORS_ORIGINS")

    # Scheduling
    clinic_timezone: str = Field(default="Asia/Kolkata", alias="CLINIC_TIMEZONE")
    availability_max_range_days: int = Field(default=31, alias="AVAILABILITY_MAX_RANGE_DAYS")

    # Reminders
    max_reminders: int = Field(default=3, alias="MAX_REMINDERS")
    reminder_tolerance_hours: float = Field(default=1.0, alias="REMINDER_TOLERANCE_HOURS")
    default_reminder_lead_hours: int = Field(default=24, alias="DEFAULT_REMINDER_LEAD_HOURS")
    reminder_sweep_hour: int = Field(default=9, alias="REMINDER_SWEEP_HOUR")
    reminder_sweep_minute: int = Field(default=0, alias="REMINDER_SWEEP_MINUTE")
    reminder_send_timeout_seconds: float = Field(default=30.0, alias="REMINDER_SEND_TIMEOUT_SECONDS")

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    booking_rate_limit: str = Field(default="10/minute", alias="BOOKING_RATE_LIMIT")

    # Email (SendGrid)
    sendgrid_api_key: Optional[str] = Field(default=None, alias="SENDGRID_API_KEY")
    sender_email: str = Field(default="noreply@dhingraclinic.com", alias="SENDER_EMAIL")

    # SMS / WhatsApp (Twilio)
    twilio_account_sid: Optional[str] = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: Optional[str] = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_sms_from: Optional[str] = Field(default=None, alias="TWILIO_SMS_FROM")
    twilio_whatsapp_from: Optional[str] = Field(default=None, alias="TWILIO_WHATSAPP_FROM")
    notify_doctors: bool = Field(default=False, alias="NOTIFY_DOCTORS")

    # Worker
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # --- Pydantic V2 Validators ---
    @field_validator("cors_origins", mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return ["http://localhost:3000", "http://localhost:8000"]
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        if not v.startswith(("postgresql://", "postgresql+psycopg2://", "sqlite:///", "sqlite://")):
            raise ValueError("DATABASE_URL must be a valid PostgreSQL or SQLite URL")
        return v

    @field_validator("clinic_timezone")
    @classmethod
    def validate_clinic_timezone(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"CLINIC_TIMEZONE '{v}' is not a known IANA time zone")
        return v

    @field_validator("reminder_sweep_hour")
    @classmethod
    def validate_sweep_hour(cls, v):
        if not 0 <= v <= 23:
            raise ValueError("REMINDER_SWEEP_HOUR must be between 0 and 23")
        return v

    @field_validator("reminder_sweep_minute")
    @classmethod
    def validate_sweep_minute(cls, v):
        if not 0 <= v <= 59:
            raise ValueError("REMINDER_SWEEP_MINUTE must be between 0 and 59")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def clinic_tz(self) -> ZoneInfo:
        return ZoneInfo(self.clinic_timezone)

    @property
    def email_enabled(self) -> bool:
        return bool(self.sendgrid_api_key)

    @property
    def sms_enabled(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_sms_from)

    @property
    def whatsapp_enabled(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_whatsapp_from)

    @property
    def redis_enabled(self) -> bool:
        return bool(self.redis_url)

# Environment-specific configurations
class DevelopmentConfig(Settings):
    """Development environment configuration"""
    debug: bool = True
    environment: str = "development"

class ProductionConfig(Settings):
    """Production environment configuration"""
    debug: bool = False
    environment: str = "production"
    log_json: bool = True

class TestingConfig(Settings):
    """Testing environment configuration"""
    debug: bool = True
    environment: str = "testing"
    database_url: str = "sqlite:///:memory:"
    rate_limit_enabled: bool = False

def get_config_by_env(env: str) -> Settings:
    """Get configuration by environment name"""
    configs = {
        "development": DevelopmentConfig,
        "production": ProductionConfig,
        "testing": TestingConfig
    }

    config_class = configs.get(env.lower(), Settings)
    return config_class()

@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance for the current ENVIRONMENT"""
    return get_config_by_env(os.getenv("ENVIRONMENT", "development"))

# Note: Do not instantiate settings at import time to avoid failing
# on missing environment variables. Use `get_settings()` instead.
