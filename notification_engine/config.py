"""Environment configuration for the notification engine."""

import os
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self) -> None:
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./notifications.db")
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
        self.CORS_ORIGINS: list[str] = [
            origin.strip() for origin in os.getenv("CORS_ORIGINS", "").split(",") if origin.strip()
        ]

        # Dispatch policy
        self.DUPLICATE_WINDOW_SECONDS: int = _int_env("DUPLICATE_WINDOW_SECONDS", 300)
        self.RETRY_COOLDOWN_SECONDS: int = _int_env("RETRY_COOLDOWN_SECONDS", 300)
        self.RETENTION_DAYS: int = _int_env("RETENTION_DAYS", 90)
        self.DEFAULT_MAX_RETRIES: int = _int_env("DEFAULT_MAX_RETRIES", 3)
        self.DEFAULT_EXPIRY_DAYS: int = _int_env("DEFAULT_EXPIRY_DAYS", 7)
        self.URGENT_EXPIRY_DAYS: int = _int_env("URGENT_EXPIRY_DAYS", 1)
        self.CLAIM_LEASE_SECONDS: int = _int_env("CLAIM_LEASE_SECONDS", 300)

        # Background workers
        self.WORKER_BATCH_SIZE: int = _int_env("WORKER_BATCH_SIZE", 50)
        self.WORKER_POLL_INTERVAL_SECONDS: int = _int_env("WORKER_POLL_INTERVAL_SECONDS", 60)
        self.CAMPAIGN_WORKERS: int = _int_env("CAMPAIGN_WORKERS", 4)

        # Providers
        self.PROVIDER_TIMEOUT_SECONDS: float = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10"))
        self.PROVIDER_RETRY_ATTEMPTS: int = _int_env("PROVIDER_RETRY_ATTEMPTS", 3)
        self.PROVIDER_RETRY_WAIT_SECONDS: float = float(os.getenv("PROVIDER_RETRY_WAIT_SECONDS", "1"))
        self.PROVIDER_API_KEY: str = os.getenv("PROVIDER_API_KEY", "")
        self.EMAIL_GATEWAY_URL: str = os.getenv("EMAIL_GATEWAY_URL", "")
        self.EMAIL_FROM_ADDRESS: str = os.getenv("EMAIL_FROM_ADDRESS", "noreply@localhost")
        self.SMS_GATEWAY_URL: str = os.getenv("SMS_GATEWAY_URL", "")
        self.SMS_FROM_NUMBER: str = os.getenv("SMS_FROM_NUMBER", "")
        self.PUSH_GATEWAY_URL: str = os.getenv("PUSH_GATEWAY_URL", "")

        self.TEMPLATE_CACHE_TTL_SECONDS: int = _int_env("TEMPLATE_CACHE_TTL_SECONDS", 300)

    def validate(self) -> None:
        """Validate that required environment variables are set."""
        if not self.DATABASE_URL:
            raise ValueError("DATABASE_URL environment variable is required")
        if self.DUPLICATE_WINDOW_SECONDS < 0 or self.RETRY_COOLDOWN_SECONDS < 0:
            raise ValueError("Policy windows must not be negative")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    return settings


@dataclass(frozen=True)
class DispatchPolicy:
    """Policy constants used by the dispatch engine and the sweeps."""

    duplicate_window: timedelta = timedelta(minutes=5)
    retry_cooldown: timedelta = timedelta(minutes=5)
    retention: timedelta = timedelta(days=90)
    claim_lease: timedelta = timedelta(minutes=5)
    default_max_retries: int = 3
    default_expiry: timedelta = timedelta(days=7)
    urgent_expiry: timedelta = timedelta(days=1)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "DispatchPolicy":
        settings = settings or get_settings()
        return cls(
            duplicate_window=timedelta(seconds=settings.DUPLICATE_WINDOW_SECONDS),
            retry_cooldown=timedelta(seconds=settings.RETRY_COOLDOWN_SECONDS),
            retention=timedelta(days=settings.RETENTION_DAYS),
            claim_lease=timedelta(seconds=settings.CLAIM_LEASE_SECONDS),
            default_max_retries=settings.DEFAULT_MAX_RETRIES,
            default_expiry=timedelta(days=settings.DEFAULT_EXPIRY_DAYS),
            urgent_expiry=timedelta(days=settings.URGENT_EXPIRY_DAYS),
        )
