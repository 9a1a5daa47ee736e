"""Utilities for selecting the availability window sent with each probe."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from dateutil.relativedelta import relativedelta

from .utils import now_in_timezone

LOCAL_FORMAT = "%Y-%m-%dT%H:%M:%S"


@dataclass(frozen=True)
class ProbeWindow:
    """Half-open ``[start, end)`` window expressed in local wall-clock time."""

    start: datetime
    end: datetime

    @property
    def start_local(self) -> str:
        return self.start.strftime(LOCAL_FORMAT)

    @property
    def end_local(self) -> str:
        return self.end.strftime(LOCAL_FORMAT)


def compute_probe_window(
    now: Optional[datetime] = None,
    *,
    timezone_name: str = "UTC",
    months: int = 2,
) -> ProbeWindow:
    """
    Window covering today from midnight through ``months`` calendar months later.

    ``now`` defaults to the current time in ``timezone_name``; an aware ``now``
    keeps its own zone.
    """
    now = now or now_in_timezone(timezone_name)
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return ProbeWindow(start=start, end=start + relativedelta(months=months))
