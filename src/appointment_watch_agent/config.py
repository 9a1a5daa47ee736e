"""Configuration objects and helpers for the appointment watch agent."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, HttpUrl, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import ProbeSpec

DEFAULT_AVAILABILITY_URL = (
    "https://outlook.office365.com/BookingsService/api/V1/bookingBusinessesc2/"
    "monetrapirkanmaarekrytointipalvelut@monetra.fi/GetStaffAvailability?app=BookingsC1"
)
DEFAULT_BOOKING_URL = (
    "https://outlook.office365.com/owa/calendar/"
    "monetrapirkanmaarekrytointipalvelut@monetra.fi/bookings/"
)


class ProbeTarget(BaseModel):
    """Service and staff identifiers for one probe."""

    service_id: str
    staff_ids: list[str]

    @field_validator("staff_ids")
    @classmethod
    def require_staff(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip() for item in value if item and item.strip()]
        if not cleaned:
            raise ValueError("at least one staff id is required")
        return cleaned


DEFAULT_PROBE_TARGETS = [
    ProbeTarget(
        service_id="1df7f565-8337-412b-91ec-b8ffd49fe6f2",
        staff_ids=["4f3b2516-99cd-4295-9328-afefb3b403e3"],
    ),
    ProbeTarget(
        service_id="51b3c1e4-2dc8-46ab-88e3-604cb4164c4c",
        staff_ids=["84d3f0dd-33f9-4d2d-a741-98b86e790315"],
    ),
]


class ConfigurationError(RuntimeError):
    """Raised when the settings are insufficient for the requested mode."""


class Settings(BaseSettings):
    """Runtime configuration sourced from environment variables."""

    telegram_bot_token: Optional[SecretStr] = Field(None, alias="TELEGRAM_BOT_TOKEN")
    telegram_api_base: HttpUrl = Field("https://api.telegram.org", alias="TELEGRAM_API_BASE")
    telegram_poll_timeout_seconds: int = 60
    availability_url: HttpUrl = DEFAULT_AVAILABILITY_URL
    booking_url: str = DEFAULT_BOOKING_URL
    time_zone_label: str = "FLE Standard Time"
    timezone: str = "Europe/Helsinki"
    window_months: int = 2
    probe_targets: list[ProbeTarget] = Field(default_factory=lambda: list(DEFAULT_PROBE_TARGETS))
    check_interval_seconds: float = 60.0
    digest_interval_seconds: float = 1800.0
    request_timeout_seconds: float = 30.0
    environment: str = Field("production", alias="ENVIRONMENT")

    model_config = SettingsConfigDict(
        env_prefix="APPOINTMENT_WATCH_",
        env_file=(".env",),
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator(
        "check_interval_seconds",
        "digest_interval_seconds",
        "request_timeout_seconds",
        "telegram_poll_timeout_seconds",
        "window_months",
    )
    @classmethod
    def require_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("probe_targets")
    @classmethod
    def require_targets(cls, value: list[ProbeTarget]) -> list[ProbeTarget]:
        if not value:
            raise ValueError("at least one probe target is required")
        return value

    def specs(self) -> tuple[ProbeSpec, ...]:
        """Probe specs for every configured target, in configuration order."""
        return tuple(
            ProbeSpec(
                service_id=target.service_id,
                staff_ids=tuple(target.staff_ids),
                time_zone=self.time_zone_label,
            )
            for target in self.probe_targets
        )

    def require_telegram(self) -> None:
        """Bot mode cannot start without a token."""
        if self.telegram_bot_token is None or not self.telegram_bot_token.get_secret_value():
            raise ConfigurationError("TELEGRAM_BOT_TOKEN must be set to run in bot mode")

    @property
    def telegram_api_endpoint(self) -> str:
        """Base Telegram Bot API endpoint."""
        token = self.telegram_bot_token.get_secret_value() if self.telegram_bot_token else ""
        return f"{str(self.telegram_api_base).rstrip('/')}/bot{token}"
