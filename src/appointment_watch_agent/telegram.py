"""Telegram Bot API transport and message formatting."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Protocol

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from zoneinfo import ZoneInfo

from .config import Settings
from .models import AvailabilityResult, InboundMessage, MessageKind, SlotCandidate

LOGGER = structlog.get_logger(__name__)

BUTTON_CHECK = "🔍 Check Availability"
BUTTON_STATUS = "📊 Status"
BUTTON_ENABLE_DIGEST = "⏰ Enable Status Updates"
BUTTON_DISABLE_DIGEST = "⏳ Disable Status Updates"

HELP_TEXT = (
    "👋 Welcome! I'll notify you when appointment availability changes.\n\n"
    "Available commands:\n"
    f"{BUTTON_CHECK} - Check current appointment availability\n"
    f"{BUTTON_STATUS} - Show your notification settings\n"
    f"{BUTTON_ENABLE_DIGEST} - Get status update every 30 minutes\n"
    f"{BUTTON_DISABLE_DIGEST} - Only get notifications when availability changes"
)
CHECKING_TEXT = "🔍 Checking appointment availability..."
DIGEST_HEADER = "⏰ Periodic status update"


class TelegramError(Exception):
    """Base error for Bot API failures."""


class DeliveryError(TelegramError):
    """Raised when a message could not be delivered to one chat."""

    def __init__(self, chat_id: int, reason: str) -> None:
        super().__init__(f"Telegram send to {chat_id} failed: {reason}")
        self.chat_id = chat_id
        self.reason = reason


class UpdatesError(TelegramError):
    """Raised when fetching inbound updates fails."""


class MessageSender(Protocol):
    """Anything that can deliver text to a chat."""

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[dict[str, Any]] = None,
    ) -> None: ...


def main_keyboard() -> dict[str, Any]:
    """Reply keyboard attached to every outgoing message."""
    return {
        "keyboard": [
            [{"text": BUTTON_CHECK}, {"text": BUTTON_STATUS}],
            [{"text": BUTTON_ENABLE_DIGEST}, {"text": BUTTON_DISABLE_DIGEST}],
        ],
        "resize_keyboard": True,
    }


def format_slot(slot: SlotCandidate, zone: Optional[ZoneInfo] = None) -> str:
    """Describe the next slot with its date, time and free count."""
    start = slot.start.astimezone(zone) if zone else slot.start
    return (
        "Next available appointment:\n"
        f"Date: {start:%A, %B} {start.day}, {start.year}\n"
        f"Time: {start:%H:%M}\n"
        f"Available slots: {slot.available_count}"
    )


def format_availability_message(
    result: AvailabilityResult,
    kind: MessageKind,
    booking_url: str,
    zone: Optional[ZoneInfo] = None,
) -> str:
    """Build the availability text for a manual check, a change, or a digest."""
    checked_at = result.checked_at.astimezone(zone) if zone else result.checked_at
    stamp = f"{checked_at:%Y-%m-%d %H:%M:%S}"

    if result.available:
        lines = ["🎉 Appointments are available!", ""]
        if result.slot is not None:
            lines.extend([format_slot(result.slot, zone), ""])
        lines.append(f"Booking website: {booking_url}")
        body = "\n".join(lines)
    elif kind is MessageKind.CHANGE:
        body = f"❌ Appointments are no longer available (as of {stamp})"
    else:
        body = f"❌ No appointments available (checked at {stamp})"

    if kind is MessageKind.DIGEST:
        return f"{DIGEST_HEADER}\n\n{body}"
    return body


def format_status_message(wants_digest: bool) -> str:
    if wants_digest:
        return "🟢 You will receive availability updates every 30 minutes."
    return "🔵 You will be notified only when appointment availability changes."


def format_digest_toggle(enabled: bool) -> str:
    if enabled:
        return "⏰ Status updates enabled! You'll receive availability updates every 30 minutes."
    return "⏳ Status updates disabled. You'll only be notified when appointment availability changes."


def format_probe_error(error: Exception) -> str:
    return f"❌ Error checking availability: {error}"


def parse_update(update: Any) -> Optional[InboundMessage]:
    """Extract a text message from a raw update; None for non-text updates.

    Raises :class:`UpdatesError` when the update itself is malformed.
    """
    if not isinstance(update, dict) or not isinstance(update.get("update_id"), int):
        raise UpdatesError(f"malformed update: {update!r}")
    message = update.get("message")
    if not isinstance(message, dict):
        return None
    chat = message.get("chat")
    text = message.get("text")
    if not isinstance(chat, dict) or not isinstance(chat.get("id"), int) or not isinstance(text, str):
        return None
    sender = message.get("from")
    username = sender.get("username") if isinstance(sender, dict) else None
    return InboundMessage(
        chat_id=chat["id"],
        text=text,
        username=username or None,
        update_id=update["update_id"],
    )


class TelegramClient:
    """Minimal Bot API client for sending replies and long-polling updates."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            timeout=httpx.Timeout(15.0, read=settings.telegram_poll_timeout_seconds + 15.0),
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[dict[str, Any]] = None,
    ) -> None:
        """Send ``text`` to one chat; raises :class:`DeliveryError` on failure."""
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup

        url = f"{self._settings.telegram_api_endpoint}/sendMessage"
        LOGGER.debug("telegram.send.start", chat_id=chat_id)
        try:
            response = await self.http.post(url, json=payload, timeout=15.0)
        except httpx.HTTPError as exc:
            raise DeliveryError(chat_id, str(exc) or exc.__class__.__name__) from exc
        if response.is_success:
            LOGGER.debug("telegram.send.success", chat_id=chat_id)
            return
        LOGGER.error(
            "telegram.send.failed",
            chat_id=chat_id,
            status_code=response.status_code,
            body=response.text,
        )
        raise DeliveryError(chat_id, f"{response.status_code}: {response.text}")

    async def get_me(self) -> dict[str, Any]:
        """Return the bot's own user record; used to validate the token at startup."""
        url = f"{self._settings.telegram_api_endpoint}/getMe"
        try:
            response = await self.http.get(url, timeout=15.0)
        except httpx.HTTPError as exc:
            raise TelegramError(f"getMe failed: {exc}") from exc
        if not response.is_success:
            raise TelegramError(f"getMe returned {response.status_code}: {response.text}")
        return dict(response.json().get("result") or {})

    async def get_updates(self, offset: int, timeout: Optional[int] = None) -> list[dict[str, Any]]:
        """Long-poll ``getUpdates`` and return the raw update objects."""
        params = {
            "offset": offset,
            "timeout": self._settings.telegram_poll_timeout_seconds if timeout is None else timeout,
            "allowed_updates": '["message"]',
        }
        url = f"{self._settings.telegram_api_endpoint}/getUpdates"
        try:
            response = await self.http.get(url, params=params)
        except httpx.HTTPError as exc:
            raise UpdatesError(f"getUpdates failed: {exc}") from exc
        if not response.is_success:
            raise UpdatesError(f"getUpdates returned {response.status_code}: {response.text}")
        try:
            body = response.json()
        except ValueError as exc:
            raise UpdatesError(f"getUpdates returned invalid JSON: {exc}") from exc
        if not isinstance(body, dict):
            raise UpdatesError(f"getUpdates returned a non-object body: {body!r}")
        if not body.get("ok", False):
            raise UpdatesError(f"getUpdates not ok: {body.get('description', 'unknown error')}")
        result = body.get("result") or []
        if not isinstance(result, list) or not all(isinstance(update, dict) for update in result):
            raise UpdatesError(f"getUpdates returned malformed result: {result!r}")
        return result


class UpdatePoller:
    """Producer feeding inbound messages into the command queue."""

    def __init__(
        self,
        client: TelegramClient,
        queue: "asyncio.Queue[InboundMessage]",
        *,
        max_attempts: int = 5,
        max_wait_seconds: float = 30.0,
    ) -> None:
        self._client = client
        self._queue = queue
        self._offset = 0
        self._max_attempts = max_attempts
        self._max_wait = max_wait_seconds

    @property
    def offset(self) -> int:
        return self._offset

    async def poll_once(self) -> int:
        """Fetch one batch of updates and enqueue the text messages; returns how many."""
        updates = await self._fetch()
        enqueued = 0
        for update in updates:
            update_id = update.get("update_id")
            if isinstance(update_id, int):
                self._offset = max(self._offset, update_id + 1)
            try:
                message = parse_update(update)
            except UpdatesError as exc:
                LOGGER.warning("telegram.poll.malformed_update", error=str(exc))
                continue
            if message is None:
                continue
            await self._queue.put(message)
            enqueued += 1
        return enqueued

    async def run(self) -> None:
        LOGGER.info("telegram.poll.started")
        while True:
            try:
                await self.poll_once()
            except UpdatesError as exc:
                LOGGER.error("telegram.poll.failed", error=str(exc), offset=self._offset)

    async def _fetch(self) -> list[dict[str, Any]]:
        """Fetch updates, retrying transient failures with backoff."""
        async for attempt in AsyncRetrying(
            wait=wait_exponential(multiplier=1, min=min(1.0, self._max_wait), max=self._max_wait),
            stop=stop_after_attempt(self._max_attempts),
            retry=retry_if_exception_type(UpdatesError),
            reraise=True,
        ):
            with attempt:
                return await self._client.get_updates(self._offset)
        raise UpdatesError("getUpdates retry loop exited without a result")  # safety net
