"""HTTP prober for the bookings staff-availability endpoint."""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Iterable, Optional

import httpx
import structlog
from zoneinfo import ZoneInfo

from .config import Settings
from .date_window import ProbeWindow, compute_probe_window
from .models import AvailabilityResult, ProbeResult, ProbeSpec, SlotCandidate, SlotStatus
from .utils import get_zone, lookup_zone, parse_instant

LOGGER = structlog.get_logger(__name__)


class ProbeError(Exception):
    """Base error for a failed availability probe."""


class ProbeTransportError(ProbeError):
    """Raised when the bookings service cannot be reached or times out."""


class ProbeBadStatusError(ProbeError):
    """Raised when the bookings service answers with a non-success status."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"API returned status code: {status_code}")
        self.status_code = status_code
        self.body = body


class ProbeDecodeError(ProbeError):
    """Raised when the response body is not the expected JSON document."""


def build_payload(spec: ProbeSpec, window: ProbeWindow) -> dict[str, Any]:
    """Request body for ``GetStaffAvailability``."""
    return {
        "serviceId": spec.service_id,
        "staffIds": list(spec.staff_ids),
        "startDateTime": {"dateTime": window.start_local, "timeZone": spec.time_zone},
        "endDateTime": {"dateTime": window.end_local, "timeZone": spec.time_zone},
    }


def parse_candidate(
    item: dict[str, Any],
    *,
    staff_id: Optional[str],
    fallback_zone: ZoneInfo,
) -> Optional[SlotCandidate]:
    """Convert one ``availabilityItems`` entry; None if its start time is unusable."""
    start_block = item.get("startDateTime") or {}
    end_block = item.get("endDateTime") or {}
    if not isinstance(start_block, dict) or not isinstance(end_block, dict):
        raise ProbeDecodeError("availability item has malformed date blocks")

    start_zone = lookup_zone(start_block.get("timeZone")) or fallback_zone
    start = parse_instant(str(start_block.get("dateTime") or ""), start_zone)
    if start is None:
        return None
    end_zone = lookup_zone(end_block.get("timeZone")) or fallback_zone
    end = parse_instant(str(end_block.get("dateTime") or ""), end_zone)

    status = SlotStatus.parse(item.get("status") or "")
    try:
        count = int(item.get("availableCount") or 0)
    except (TypeError, ValueError) as exc:
        raise ProbeDecodeError(f"invalid availableCount: {item.get('availableCount')!r}") from exc

    return SlotCandidate(
        status=status,
        start=start,
        end=end,
        available_count=count,
        staff_id=staff_id,
    )


def first_eligible(
    document: Any,
    *,
    now: datetime,
    fallback_zone: ZoneInfo,
) -> Optional[SlotCandidate]:
    """Scan every staff entry in response order and return the first eligible slot."""
    if not isinstance(document, dict):
        raise ProbeDecodeError("response body is not a JSON object")
    staff_entries = document.get("staffAvailabilityResponse") or []
    if not isinstance(staff_entries, list):
        raise ProbeDecodeError("staffAvailabilityResponse is not a list")

    for staff in staff_entries:
        if not isinstance(staff, dict):
            raise ProbeDecodeError("staff entry is not an object")
        staff_id = staff.get("staffId")
        items = staff.get("availabilityItems") or []
        if not isinstance(items, list):
            raise ProbeDecodeError("availabilityItems is not a list")
        for item in items:
            if not isinstance(item, dict):
                raise ProbeDecodeError("availability item is not an object")
            candidate = parse_candidate(item, staff_id=staff_id, fallback_zone=fallback_zone)
            if candidate is None:
                LOGGER.debug("probe.item.unparseable_start", staff_id=staff_id, item=item)
                continue
            if candidate.is_eligible(now):
                return candidate
    return None


class AvailabilityProber:
    """Issues availability queries against the bookings service."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._zone = get_zone(settings.timezone)
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.request_timeout_seconds),
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def probe(self, spec: ProbeSpec, *, now: Optional[datetime] = None) -> ProbeResult:
        """Query one service and report whether it has a future open slot."""
        now = now or datetime.now(tz=self._zone)
        window = compute_probe_window(now.astimezone(self._zone), months=self._settings.window_months)
        payload = build_payload(spec, window)

        LOGGER.info("probe.request.start", service_id=spec.service_id, staff_ids=list(spec.staff_ids))
        started = time.monotonic()
        try:
            response = await self.http.post(str(self._settings.availability_url), json=payload)
        except httpx.TimeoutException as exc:
            raise ProbeTransportError(
                f"request for service {spec.service_id} timed out after "
                f"{self._settings.request_timeout_seconds}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProbeTransportError(f"request for service {spec.service_id} failed: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            LOGGER.warning(
                "probe.request.bad_status",
                service_id=spec.service_id,
                status_code=response.status_code,
            )
            raise ProbeBadStatusError(response.status_code, response.text)

        try:
            document = response.json()
        except ValueError as exc:
            raise ProbeDecodeError(f"failed to decode response: {exc}") from exc

        slot = first_eligible(document, now=now, fallback_zone=self._zone)
        elapsed = round(time.monotonic() - started, 3)
        if slot is None:
            LOGGER.info("probe.request.no_slots", service_id=spec.service_id, elapsed_seconds=elapsed)
            return ProbeResult(available=False)

        LOGGER.info(
            "probe.request.slot_found",
            service_id=spec.service_id,
            start=slot.start.isoformat(),
            available_count=slot.available_count,
            elapsed_seconds=elapsed,
        )
        return ProbeResult(available=True, slot=slot)

    async def check_all(
        self,
        specs: Iterable[ProbeSpec],
        *,
        now: Optional[datetime] = None,
    ) -> AvailabilityResult:
        """Run every probe in order and OR the results; the first failure aborts the check."""
        now = now or datetime.now(tz=self._zone)
        started = time.monotonic()
        available = False
        earliest: Optional[SlotCandidate] = None

        for spec in specs:
            result = await self.probe(spec, now=now)
            if not result.available:
                continue
            available = True
            if result.slot is not None and (earliest is None or result.slot.start < earliest.start):
                earliest = result.slot

        LOGGER.info(
            "probe.check.complete",
            available=available,
            elapsed_seconds=round(time.monotonic() - started, 3),
        )
        return AvailabilityResult(available=available, slot=earliest, checked_at=now)
