"""Application configuration via Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Resolve .env from the repository root regardless of CWD
_ENV_FILE = Path(__file__).resolve().parents[3] / ".env"


class Settings(BaseSettings):
    """Central configuration loaded from environment variables / .env file."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./fixit_platform.db"

    # Auth / JWT
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 1440

    # Email (SendGrid)
    sendgrid_api_key: str = ""
    email_from: str = "no-reply@fixit.app"

    # SMS gateway (Africa's Talking messaging API)
    sms_gateway_url: str = "https://api.africastalking.com/version1/messaging"
    sms_username: str = ""
    sms_api_key: str = ""
    sms_sender_id: str = "FixIt"
    sms_default_country_code: str = "256"

    # Cloudinary object storage
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    cloudinary_folder: str = "fixit"

    # CORS / Frontend
    cors_origins: str = "http://localhost:3000"
    frontend_url: str = "http://localhost:3000"

    # Public links
    public_link_default_days: int = 7
    invite_expiry_days: int = 7

    # Scheduler
    scheduler_interval_seconds: int = 3600
    scheduler_claim_minutes: int = 10
    overdue_reminder_days: int = 3
    lease_expiry_notice_days: int = 30
    rent_reminder_days_ahead: int = 3

    # Internal cron endpoints
    internal_token: str = "fixit-internal"

    # General
    debug: bool = True

    model_config = {"env_file": str(_ENV_FILE), "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list.

        In debug mode, returns ["*"] to allow any origin.
        """
        if self.debug:
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance."""
    return Settings()
