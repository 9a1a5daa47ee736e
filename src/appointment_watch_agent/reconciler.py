"""Periodic availability reconciliation and transition detection."""

from __future__ import annotations

from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence

import structlog

from .models import AvailabilityState, ProbeSpec, Transition
from .prober import AvailabilityProber, ProbeError

LOGGER = structlog.get_logger(__name__)

TransitionHandler = Callable[[Transition], Awaitable[object]]


class ReconcilerPhase(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"


class Reconciler:
    """Owns the availability state and emits a transition whenever it flips."""

    def __init__(
        self,
        prober: AvailabilityProber,
        specs: Sequence[ProbeSpec],
        on_transition: TransitionHandler,
        state: Optional[AvailabilityState] = None,
    ) -> None:
        self._prober = prober
        self._specs = tuple(specs)
        self._on_transition = on_transition
        self._state = state if state is not None else AvailabilityState()
        self._phase = ReconcilerPhase.IDLE
        self._check_count = 0

    @property
    def phase(self) -> ReconcilerPhase:
        return self._phase

    @property
    def check_count(self) -> int:
        return self._check_count

    def snapshot(self) -> AvailabilityState:
        """Point-in-time copy of the availability state."""
        return self._state.copy()

    async def tick(self) -> Optional[Transition]:
        """Run one reconciliation cycle.

        Returns the emitted transition, or None when nothing changed, the
        check failed, or another check was still in flight.
        """
        if self._phase is ReconcilerPhase.CHECKING:
            LOGGER.warning("reconciler.tick.dropped", check=self._check_count)
            return None

        self._phase = ReconcilerPhase.CHECKING
        self._check_count += 1
        check = self._check_count
        LOGGER.info("reconciler.check.start", check=check)
        try:
            transition = await self._check(check)
        finally:
            self._phase = ReconcilerPhase.IDLE

        # Dispatched outside the CHECKING phase.
        if transition is not None:
            await self._on_transition(transition)
        return transition

    async def _check(self, check: int) -> Optional[Transition]:
        try:
            result = await self._prober.check_all(self._specs)
        except ProbeError as exc:
            LOGGER.error("reconciler.check.failed", check=check, error=str(exc))
            return None

        LOGGER.info("reconciler.check.complete", check=check, available=result.available)
        previous = self._state.available
        self._state.last_checked_at = result.checked_at
        if result.slot is not None:
            self._state.last_slot = result.slot
        if result.available == previous:
            return None

        self._state.available = result.available
        LOGGER.info(
            "reconciler.transition",
            check=check,
            previous=previous,
            current=result.available,
        )
        return Transition(
            previous=previous,
            current=result.available,
            slot=self._state.last_slot,
            checked_at=result.checked_at,
        )
