import os
from dotenv import load_dotenv
from pydantic_settings import BaseSettings

from bookingflow.errors import ConfigurationError

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application configuration from environment variables"""

    # App
    app_name: str = "BookingFlow"
    debug: bool = os.getenv("DEBUG", "False").lower() == "true"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./bookingflow.db")

    # Twilio
    twilio_account_sid: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    twilio_auth_token: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    twilio_from_number: str = os.getenv("TWILIO_FROM_NUMBER", "")
    messaging_channel: str = os.getenv("MESSAGING_CHANNEL", "whatsapp")
    messaging_timeout_seconds: float = float(os.getenv("MESSAGING_TIMEOUT_SECONDS", "10"))

    # Inbound webhook signature URL
    twilio_webhook_url: str = os.getenv("TWILIO_WEBHOOK_URL", "")
    webhook_base_url: str = os.getenv("WEBHOOK_BASE_URL", "")

    # Cron / admin access
    cron_secret: str = os.getenv("CRON_SECRET", "")
    admin_jwt_secret: str = os.getenv("ADMIN_JWT_SECRET", "")

    # Locale
    default_timezone: str = os.getenv("DEFAULT_TIMEZONE", "Asia/Jerusalem")
    default_country: str = os.getenv("DEFAULT_COUNTRY", "IL")

    # Reminder / confirmation windows
    reminder_lead_hours: int = int(os.getenv("REMINDER_LEAD_HOURS", "24"))
    reminder_window_tolerance_minutes: int = int(os.getenv("REMINDER_WINDOW_TOLERANCE_MINUTES", "60"))
    confirmation_grace_hours: int = int(os.getenv("CONFIRMATION_GRACE_HOURS", "2"))

    # Background scheduler
    scheduler_enabled: bool = os.getenv("SCHEDULER_ENABLED", "True").lower() == "true"
    reminder_interval_minutes: int = int(os.getenv("REMINDER_INTERVAL_MINUTES", "60"))
    archival_cron_hour: int = int(os.getenv("ARCHIVAL_CRON_HOUR", "3"))
    retention_interval_minutes: int = int(os.getenv("RETENTION_INTERVAL_MINUTES", "60"))

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()


def require_messaging_config(config: Settings = None) -> None:
    """Fail fast when outbound messaging credentials are missing."""
    config = config or settings
    if not config.twilio_account_sid.strip():
        raise ConfigurationError("TWILIO_ACCOUNT_SID is missing", code="TWILIO_ACCOUNT_SID_MISSING")
    if not config.twilio_auth_token.strip():
        raise ConfigurationError("TWILIO_AUTH_TOKEN is missing", code="TWILIO_AUTH_TOKEN_MISSING")
    if not config.twilio_from_number.strip():
        raise ConfigurationError("TWILIO_FROM_NUMBER is missing", code="TWILIO_FROM_NUMBER_MISSING")


def require_cron_config(config: Settings = None) -> None:
    """Fail fast when the cron endpoints are not protected by a secret."""
    config = config or settings
    if not config.cron_secret.strip():
        raise ConfigurationError("CRON_SECRET is missing", code="CRON_SECRET_MISSING")
