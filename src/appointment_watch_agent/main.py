"""Entry point for the appointment watch agent."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional

import structlog

from .commands import CommandHandler
from .config import ConfigurationError, Settings
from .models import InboundMessage, MessageKind
from .notifier import Notifier
from .prober import AvailabilityProber, ProbeError
from .reconciler import Reconciler
from .registry import SubscriberRegistry
from .scheduler import WatchScheduler
from .telegram import (
    TelegramClient,
    TelegramError,
    UpdatePoller,
    format_availability_message,
    format_probe_error,
)
from .utils import get_zone


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structlog + stdlib logging."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stdout,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"]),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


LOGGER = structlog.get_logger(__name__)


async def run_once(settings: Settings) -> int:
    """Perform a single combined check and print the outcome."""
    print("Checking appointment availability...")
    prober = AvailabilityProber(settings)
    try:
        result = await prober.check_all(settings.specs())
    except ProbeError as exc:
        LOGGER.error("once.check_failed", error=str(exc))
        print(format_probe_error(exc))
        return 1
    finally:
        await prober.aclose()

    print(
        format_availability_message(
            result,
            MessageKind.MANUAL,
            settings.booking_url,
            get_zone(settings.timezone),
        )
    )
    return 0


async def run_bot(settings: Settings) -> None:
    """Start the reconciler, digest timer, update poller and command consumer."""
    settings.require_telegram()
    specs = settings.specs()
    prober = AvailabilityProber(settings)
    telegram = TelegramClient(settings)
    try:
        try:
            me = await telegram.get_me()
        except TelegramError as exc:
            raise ConfigurationError(f"Telegram token rejected: {exc}") from exc
        LOGGER.info("bot.initialised", username=me.get("username"), environment=settings.environment)

        registry = SubscriberRegistry()
        notifier = Notifier(telegram, registry, prober, specs, settings)
        reconciler = Reconciler(prober, specs, notifier.on_transition)
        handler = CommandHandler(telegram, registry, prober, specs, settings)
        queue: asyncio.Queue[InboundMessage] = asyncio.Queue()
        poller = UpdatePoller(telegram, queue)
        scheduler = WatchScheduler(reconciler, notifier, settings)

        scheduler.start()
        LOGGER.info("bot.started", probes=len(specs))
        try:
            await asyncio.gather(poller.run(), handler.consume(queue))
        finally:
            scheduler.stop()
    finally:
        await telegram.aclose()
        await prober.aclose()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """CLI argument parsing."""
    parser = argparse.ArgumentParser(
        description="Watch a bookings page for open appointment slots and notify Telegram subscribers.",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--bot",
        action="store_true",
        help="Run in bot mode (continuous checking with Telegram notifications).",
    )
    mode.add_argument(
        "--once",
        action="store_true",
        help="Run a single availability check and exit (default).",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def cli(argv: Optional[list[str]] = None) -> int:
    """Console script entrypoint."""
    args = parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        settings = Settings()
    except Exception as exc:  # pragma: no cover - startup validation
        LOGGER.exception("settings.error", error=str(exc))
        return 2

    if not args.bot:
        return asyncio.run(run_once(settings))

    try:
        asyncio.run(run_bot(settings))
    except ConfigurationError as exc:
        LOGGER.error("bot.configuration_error", error=str(exc))
        return 2
    except KeyboardInterrupt:
        LOGGER.info("bot.stopped")
    except Exception as exc:  # pragma: no cover - top level
        LOGGER.exception("bot.failed", error=str(exc))
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(cli())
