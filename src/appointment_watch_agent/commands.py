"""Inbound command handling for the Telegram bot."""

from __future__ import annotations

import asyncio
from typing import Sequence

import structlog

from .config import Settings
from .models import CommandKind, InboundMessage, MessageKind, ProbeSpec
from .prober import AvailabilityProber, ProbeError
from .registry import SubscriberRegistry
from .telegram import (
    BUTTON_CHECK,
    BUTTON_DISABLE_DIGEST,
    BUTTON_ENABLE_DIGEST,
    BUTTON_STATUS,
    CHECKING_TEXT,
    HELP_TEXT,
    DeliveryError,
    MessageSender,
    format_availability_message,
    format_digest_toggle,
    format_probe_error,
    format_status_message,
    main_keyboard,
)
from .utils import get_zone

LOGGER = structlog.get_logger(__name__)

SLASH_COMMANDS = {
    "start": CommandKind.HELP,
    "help": CommandKind.HELP,
    "check": CommandKind.CHECK,
    "status": CommandKind.STATUS,
    "autostart": CommandKind.ENABLE_DIGEST,
    "autostop": CommandKind.DISABLE_DIGEST,
}

BUTTON_COMMANDS = {
    BUTTON_CHECK: CommandKind.CHECK,
    BUTTON_STATUS: CommandKind.STATUS,
    BUTTON_ENABLE_DIGEST: CommandKind.ENABLE_DIGEST,
    BUTTON_DISABLE_DIGEST: CommandKind.DISABLE_DIGEST,
}


def parse_command(text: str) -> CommandKind:
    """Map a slash command or keyboard button label to a command; anything else is help."""
    stripped = (text or "").strip()
    if stripped.startswith("/"):
        word = stripped[1:].split(maxsplit=1)[0] if len(stripped) > 1 else ""
        name = word.split("@", 1)[0].lower()
        return SLASH_COMMANDS.get(name, CommandKind.HELP)
    return BUTTON_COMMANDS.get(stripped, CommandKind.HELP)


class CommandHandler:
    """Applies inbound commands to the registry and answers the sender."""

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

    async def handle(self, message: InboundMessage) -> CommandKind:
        """Parse and execute one inbound message."""
        LOGGER.info(
            "command.received",
            user=message.display_name,
            chat_id=message.chat_id,
            text=message.text,
        )
        kind = parse_command(message.text)
        await self.on_inbound(message.chat_id, kind)
        return kind

    async def on_inbound(self, chat_id: int, kind: CommandKind) -> None:
        self._registry.register(chat_id)
        LOGGER.info("command.dispatch", chat_id=chat_id, command=kind.value)

        if kind is CommandKind.CHECK:
            await self._check(chat_id)
        elif kind is CommandKind.STATUS:
            await self._reply(chat_id, format_status_message(self._registry.digest_flag(chat_id)))
        elif kind is CommandKind.ENABLE_DIGEST:
            self._registry.set_digest(chat_id, True)
            await self._reply(chat_id, format_digest_toggle(True))
        elif kind is CommandKind.DISABLE_DIGEST:
            self._registry.set_digest(chat_id, False)
            await self._reply(chat_id, format_digest_toggle(False))
        else:
            await self._reply(chat_id, HELP_TEXT)

    async def consume(self, queue: "asyncio.Queue[InboundMessage]") -> None:
        """Drain the inbound queue one message at a time until cancelled."""
        LOGGER.info("command.consumer.started")
        while True:
            message = await queue.get()
            try:
                await self.handle(message)
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("command.failed", chat_id=message.chat_id, error=str(exc))
            finally:
                queue.task_done()

    async def _check(self, chat_id: int) -> None:
        # Ad-hoc checks only report back to the caller; reconciler state stays untouched.
        await self._reply(chat_id, CHECKING_TEXT)
        try:
            result = await self._prober.check_all(self._specs)
        except ProbeError as exc:
            LOGGER.warning("command.check.failed", chat_id=chat_id, error=str(exc))
            await self._reply(chat_id, format_probe_error(exc))
            return
        text = format_availability_message(
            result,
            MessageKind.MANUAL,
            self._settings.booking_url,
            self._zone,
        )
        await self._reply(chat_id, text)

    async def _reply(self, chat_id: int, text: str) -> bool:
        try:
            await self._transport.send_message(chat_id, text, reply_markup=main_keyboard())
        except DeliveryError as exc:
            LOGGER.warning("command.reply.failed", chat_id=chat_id, error=str(exc))
            return False
        return True
