from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "erp-outbox"
    APP_ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    ADMIN_TOKEN: str = "change-me-admin-token"
    AUTH_DISABLED: bool = False

    DATABASE_URL: str

    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    CELERY_TASK_ALWAYS_EAGER: bool = False

    # Enqueue side. Off by default: business services skip queueing entirely.
    NOTIFICATIONS_ENABLED: bool = False
    NOTIFICATIONS_EMAIL_ENABLED: bool = True
    NOTIFICATIONS_SMS_ENABLED: bool = True

    # Dispatcher side.
    DISPATCHER_ENABLED: bool = False
    DISPATCHER_POLL_SECONDS: float = 10
    DISPATCHER_BATCH_SIZE: int = 25
    DISPATCHER_MAX_ATTEMPTS: int = 5
    DISPATCHER_RETRY_DELAY_SECONDS: float = 30
    DISPATCHER_BACKOFF: Literal["fixed", "exponential"] = "fixed"
    DISPATCHER_MAX_RETRY_DELAY_SECONDS: float = 3600
    DISPATCHER_LEASE_SECONDS: float = 300
    DISPATCHER_SEND_CONCURRENCY: int = 1

    # Email provider (empty host -> null sender)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_STARTTLS: bool = True
    SMTP_FROM_EMAIL: str = ""
    SMTP_FROM_NAME: str = "ISS ERP"
    SMTP_TIMEOUT_S: float = 30.0

    # SMS provider (empty account sid -> null sender)
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_FROM: str = ""
    TWILIO_API_BASE: str = "https://api.twilio.com"
    TWILIO_TIMEOUT_S: float = 10.0

    class Config:
        env_file = ".env"
        extra = "ignore"


@dataclass(frozen=True)
class NotificationOptions:
    enabled: bool = False
    email_enabled: bool = True
    sms_enabled: bool = True


@dataclass(frozen=True)
class DispatcherOptions:
    enabled: bool = False
    poll_seconds: float = 10
    batch_size: int = 25
    max_attempts: int = 5
    retry_delay_seconds: float = 30
    backoff: Literal["fixed", "exponential"] = "fixed"
    max_retry_delay_seconds: float = 3600
    lease_seconds: float = 300
    send_concurrency: int = 1


def notification_options(s: Settings) -> NotificationOptions:
    return NotificationOptions(
        enabled=s.NOTIFICATIONS_ENABLED,
        email_enabled=s.NOTIFICATIONS_EMAIL_ENABLED,
        sms_enabled=s.NOTIFICATIONS_SMS_ENABLED,
    )


def dispatcher_options(s: Settings) -> DispatcherOptions:
    """Snapshot dispatcher settings, clamping values that would stall or flood the loop."""

    return DispatcherOptions(
        enabled=s.DISPATCHER_ENABLED,
        poll_seconds=max(1.0, float(s.DISPATCHER_POLL_SECONDS)),
        batch_size=min(500, max(1, int(s.DISPATCHER_BATCH_SIZE))),
        max_attempts=max(1, int(s.DISPATCHER_MAX_ATTEMPTS)),
        retry_delay_seconds=max(0.0, float(s.DISPATCHER_RETRY_DELAY_SECONDS)),
        backoff=s.DISPATCHER_BACKOFF,
        max_retry_delay_seconds=max(0.0, float(s.DISPATCHER_MAX_RETRY_DELAY_SECONDS)),
        # A lease must outlast the slowest single send, or a live worker loses items mid-send.
        lease_seconds=max(1.0, float(s.DISPATCHER_LEASE_SECONDS), 2 * max(s.SMTP_TIMEOUT_S, s.TWILIO_TIMEOUT_S)),
        send_concurrency=max(1, int(s.DISPATCHER_SEND_CONCURRENCY)),
    )


settings = Settings()
