"""Shared data models used across the appointment watch agent."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional


class SlotStatus(str, Enum):
    """Availability status tags returned by the bookings service."""

    AVAILABLE = "BOOKINGSAVAILABILITYSTATUS_AVAILABLE"
    SLOTS_AVAILABLE = "BOOKINGSAVAILABILITYSTATUS_SLOTS_AVAILABLE"
    BUSY = "BOOKINGSAVAILABILITYSTATUS_BUSY"
    OUT_OF_OFFICE = "BOOKINGSAVAILABILITYSTATUS_OUT_OF_OFFICE"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: object) -> "SlotStatus":
        try:
            return cls(str(value))
        except ValueError:
            return cls.OTHER

    @property
    def is_open(self) -> bool:
        return self in (SlotStatus.AVAILABLE, SlotStatus.SLOTS_AVAILABLE)


class MessageKind(str, Enum):
    """Framing used when composing an availability message."""

    MANUAL = "manual"
    CHANGE = "change"
    DIGEST = "digest"


class CommandKind(str, Enum):
    """Logical commands understood by the bot."""

    CHECK = "check"
    STATUS = "status"
    ENABLE_DIGEST = "enable_digest"
    DISABLE_DIGEST = "disable_digest"
    HELP = "help"


@dataclass(frozen=True)
class ProbeSpec:
    """One service/staff combination to query on every cycle."""

    service_id: str
    staff_ids: tuple[str, ...]
    time_zone: str


@dataclass(frozen=True)
class SlotCandidate:
    """A single availability item returned for a staff member."""

    status: SlotStatus
    start: datetime
    end: Optional[datetime]
    available_count: int
    staff_id: Optional[str] = None

    def is_eligible(self, now: datetime) -> bool:
        """Open status, at least one free unit, and starting strictly after ``now``."""
        return self.status.is_open and self.available_count > 0 and self.start > now


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of probing a single :class:`ProbeSpec`."""

    available: bool
    slot: Optional[SlotCandidate] = None


@dataclass(frozen=True)
class AvailabilityResult:
    """Outcome of a combined check across all configured probes."""

    available: bool
    slot: Optional[SlotCandidate]
    checked_at: datetime


@dataclass
class AvailabilityState:
    """Last known availability, owned and written by the reconciler only."""

    available: bool = False
    last_slot: Optional[SlotCandidate] = None
    last_checked_at: Optional[datetime] = None

    def copy(self) -> "AvailabilityState":
        return replace(self)


@dataclass(frozen=True)
class Transition:
    """Availability flipped between two consecutive successful checks."""

    previous: bool
    current: bool
    slot: Optional[SlotCandidate]
    checked_at: datetime

    def as_result(self) -> AvailabilityResult:
        return AvailabilityResult(available=self.current, slot=self.slot, checked_at=self.checked_at)


@dataclass(frozen=True)
class InboundMessage:
    """A text message received from a chat."""

    chat_id: int
    text: str
    username: Optional[str] = None
    update_id: int = 0

    @property
    def display_name(self) -> str:
        return f"@{self.username}" if self.username else f"id:{self.chat_id}"


@dataclass
class DeliveryReport:
    """Per-recipient outcome of a broadcast."""

    delivered: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.delivered) + len(self.failed)
