from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional, Union

import pytest
from appointment_watch_agent.config import ProbeTarget, Settings
from appointment_watch_agent.models import AvailabilityResult
from appointment_watch_agent.telegram import DeliveryError

AVAILABILITY_URL = "https://bookings.test/api/GetStaffAvailability"
TELEGRAM_BASE = "https://telegram.test"
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "telegram_bot_token": "123:abc",
        "telegram_api_base": TELEGRAM_BASE,
        "availability_url": AVAILABILITY_URL,
        "booking_url": "https://bookings.test/book",
        "timezone": "UTC",
        "probe_targets": [
            ProbeTarget(service_id="svc-1", staff_ids=["staff-1"]),
            ProbeTarget(service_id="svc-2", staff_ids=["staff-2"]),
        ],
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeTransport:
    """Records outgoing messages; chats in ``failing`` raise DeliveryError."""

    def __init__(self, failing: Optional[set[int]] = None) -> None:
        self.failing = failing or set()
        self.sent: list[tuple[int, str]] = []

    async def send_message(self, chat_id: int, text: str, reply_markup: Optional[dict] = None) -> None:
        if chat_id in self.failing:
            raise DeliveryError(chat_id, "blocked by user")
        self.sent.append((chat_id, text))

    def texts_for(self, chat_id: int) -> list[str]:
        return [text for target, text in self.sent if target == chat_id]


class FakeProber:
    """Returns queued results (or raises queued errors) from ``check_all``."""

    def __init__(self, *outcomes: Union[AvailabilityResult, Exception]) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0
        self.gate: Optional[asyncio.Event] = None

    async def check_all(self, specs, *, now=None) -> AvailabilityResult:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
