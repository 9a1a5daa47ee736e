"""Utility helpers for time zones, timestamps and locking."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

import structlog
from dateutil import parser as date_parser
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

LOGGER = structlog.get_logger(__name__)


def get_zone(timezone_name: str) -> ZoneInfo:
    """Return a ZoneInfo instance, defaulting to UTC on failure."""
    try:
        return ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        LOGGER.warning("timezone.unknown", timezone=timezone_name, fallback="UTC")
        return ZoneInfo("UTC")


def lookup_zone(timezone_name: Optional[str]) -> Optional[ZoneInfo]:
    """Resolve an IANA zone name, returning None for labels zoneinfo does not know."""
    if not timezone_name:
        return None
    try:
        return ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None


def now_in_timezone(timezone_name: str) -> datetime:
    """Current datetime in the configured timezone."""
    return datetime.now(tz=get_zone(timezone_name))


def parse_instant(text: str, fallback_zone: ZoneInfo) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Naive values are placed in ``fallback_zone``. Returns None when the text
    cannot be parsed.
    """
    if not text or not text.strip():
        return None
    try:
        value = date_parser.isoparse(text.strip())
    except (ValueError, OverflowError):
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=fallback_zone)
    return value


class RWLock:
    """Reader/writer lock: many concurrent readers or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()
