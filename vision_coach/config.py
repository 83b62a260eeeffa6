"""Configuration helpers for the Vision Coach agent backend."""
from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Optional

from dotenv import load_dotenv


DEFAULT_TIMEZONE = "America/New_York"


class ConfigError(RuntimeError):
    """Raised when required configuration is missing."""


@dataclass(slots=True)
class Settings:
    """Runtime configuration for the API, the CLI and the scheduled jobs."""

    environment: str = "local"
    default_timezone: str = DEFAULT_TIMEZONE
    service_key: Optional[str] = None
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    email_account: str = "coach"

    @property
    def twilio_configured(self) -> bool:
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_phone_number
        )


def default_timezone_name() -> str:
    """Timezone for users without a valid one of their own."""
    return _env("VC_DEFAULT_TIMEZONE") or DEFAULT_TIMEZONE


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def load_settings(*, require_service_key: bool = False) -> Settings:
    """Load settings from environment variables.

    Args:
        require_service_key: Fail when VC_SERVICE_KEY is not set. Job
            endpoints need it to authenticate cron callers.

    Returns:
        Settings with the resolved values.

    Raises:
        ConfigError: if a required value is missing.
    """

    load_dotenv()

    service_key = _env("VC_SERVICE_KEY")
    if require_service_key and not service_key:
        raise ConfigError(
            "Missing service key. Export VC_SERVICE_KEY so scheduled jobs "
            "can authenticate."
        )

    return Settings(
        environment=_env("VC_ENV") or "local",
        default_timezone=default_timezone_name(),
        service_key=service_key,
        twilio_account_sid=_env("TWILIO_ACCOUNT_SID"),
        twilio_auth_token=_env("TWILIO_AUTH_TOKEN"),
        twilio_phone_number=_env("TWILIO_PHONE_NUMBER"),
        email_account=_env("VC_EMAIL_ACCOUNT") or "coach",
    )
