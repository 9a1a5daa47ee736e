"""Fan-out of availability changes and periodic digests to subscribers."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence

import structlog

from .config import Settings
from .models import DeliveryReport, MessageKind, ProbeSpec, Transition
from .prober import AvailabilityProber, ProbeError
from .registry import SubscriberRegistry
from .telegram import DeliveryError, MessageSender, format_availability_message, main_keyboard
from .utils import get_zone

LOGGER = structlog.get_logger(__name__)


class Notifier:
    """Sends change notifications to every known chat and digests to opted-in chats."""

    def __init__(
        self,
        transport: MessageSender,
        registry: SubscriberRegistry,
        prober: AvailabilityProber,
        specs: Sequence[ProbeSpec],
        settings: Settings,
    ) -> None:
        self._transport = transport
        self._registry = registry
        self._prober = prober
        self._specs = tuple(specs)
        self._settings = settings
        self._zone = get_zone(settings.timezone)

    async def on_transition(self, transition: Transition) -> DeliveryReport:
        """Tell every known subscriber that availability flipped."""
        recipients = self._registry.snapshot_known()
        text = format_availability_message(
            transition.as_result(),
            MessageKind.CHANGE,
            self._settings.booking_url,
            self._zone,
        )
        report = await self._broadcast(recipients, text, kind=MessageKind.CHANGE)
        LOGGER.info(
            "notifier.transition.sent",
            available=transition.current,
            delivered=len(report.delivered),
            failed=len(report.failed),
        )
        return report

    async def send_digest(self, *, now: Optional[datetime] = None) -> Optional[DeliveryReport]:
        """Probe live status and send it to digest subscribers.

        Returns None when the probe failed and nothing was sent.
        """
        recipients = self._registry.snapshot_digest()
        if not recipients:
            LOGGER.debug("notifier.digest.no_recipients")
            return DeliveryReport()

        try:
            result = await self._prober.check_all(self._specs, now=now)
        except ProbeError as exc:
            LOGGER.error("notifier.digest.check_failed", error=str(exc))
            return None

        text = format_availability_message(
            result,
            MessageKind.DIGEST,
            self._settings.booking_url,
            self._zone,
        )
        report = await self._broadcast(recipients, text, kind=MessageKind.DIGEST)
        LOGGER.info(
            "notifier.digest.sent",
            available=result.available,
            delivered=len(report.delivered),
            failed=len(report.failed),
        )
        return report

    async def _broadcast(self, recipients: Iterable[int], text: str, *, kind: MessageKind) -> DeliveryReport:
        report = DeliveryReport()
        keyboard = main_keyboard()
        for chat_id in sorted(recipients):
            try:
                await self._transport.send_message(chat_id, text, reply_markup=keyboard)
            except DeliveryError as exc:
                LOGGER.warning(
                    "notifier.delivery.failed",
                    chat_id=chat_id,
                    kind=kind.value,
                    error=str(exc),
                )
                report.failed.append(chat_id)
                continue
            report.delivered.append(chat_id)
        return report
