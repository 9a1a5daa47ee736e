from datetime import timedelta

import pytest
from appointment_watch_agent.models import AvailabilityResult, SlotCandidate, SlotStatus, Transition
from appointment_watch_agent.notifier import Notifier
from appointment_watch_agent.prober import ProbeTransportError
from appointment_watch_agent.reconciler import Reconciler
from appointment_watch_agent.registry import SubscriberRegistry
from appointment_watch_agent.telegram import DIGEST_HEADER

from tests.conftest import NOW, FakeProber, FakeTransport

SLOT = SlotCandidate(
    status=SlotStatus.SLOTS_AVAILABLE,
    start=NOW + timedelta(days=2, hours=3),
    end=None,
    available_count=2,
)


def make_registry(known=(), digest=()):
    registry = SubscriberRegistry()
    for chat_id in known:
        registry.register(chat_id)
    for chat_id in digest:
        registry.set_digest(chat_id, True)
    return registry


@pytest.mark.asyncio
async def test_transition_goes_to_every_known_subscriber(settings, transport):
    registry = make_registry(known=[1, 2], digest=[3])
    notifier = Notifier(transport, registry, FakeProber(), settings.specs(), settings)

    report = await notifier.on_transition(Transition(previous=False, current=True, slot=SLOT, checked_at=NOW))

    assert sorted(report.delivered) == [1, 2, 3]
    assert report.failed == []
    text = transport.texts_for(1)[0]
    assert "Appointments are available" in text
    assert "Available slots: 2" in text
    assert "https://bookings.test/book" in text


@pytest.mark.asyncio
async def test_transition_to_unavailable_uses_change_wording(settings, transport):
    registry = make_registry(known=[1])
    notifier = Notifier(transport, registry, FakeProber(), settings.specs(), settings)

    await notifier.on_transition(Transition(previous=True, current=False, slot=SLOT, checked_at=NOW))

    assert transport.texts_for(1) == ["❌ Appointments are no longer available (as of 2026-10-19 12:00:00)"]


@pytest.mark.asyncio
async def test_failed_delivery_does_not_abort_batch(settings):
    transport = FakeTransport(failing={2})
    registry = make_registry(known=[1, 2, 3])
    notifier = Notifier(transport, registry, FakeProber(), settings.specs(), settings)

    report = await notifier.on_transition(Transition(previous=False, current=True, slot=SLOT, checked_at=NOW))

    assert report.delivered == [1, 3]
    assert report.failed == [2]
    assert report.total == 3
    assert {chat_id for chat_id, _ in transport.sent} == {1, 3}


@pytest.mark.asyncio
async def test_digest_goes_only_to_opted_in(settings, transport):
    registry = make_registry(known=[1, 2], digest=[2])
    prober = FakeProber(AvailabilityResult(available=False, slot=None, checked_at=NOW))
    notifier = Notifier(transport, registry, prober, settings.specs(), settings)

    report = await notifier.send_digest()

    assert report.delivered == [2]
    assert transport.texts_for(1) == []
    text = transport.texts_for(2)[0]
    assert text.startswith(DIGEST_HEADER)
    assert "No appointments available (checked at 2026-10-19 12:00:00)" in text
    assert prober.calls == 1


@pytest.mark.asyncio
async def test_digest_probe_failure_sends_nothing(settings, transport):
    registry = make_registry(digest=[5])
    notifier = Notifier(transport, registry, FakeProber(ProbeTransportError("down")), settings.specs(), settings)

    assert await notifier.send_digest() is None
    assert transport.sent == []


@pytest.mark.asyncio
async def test_digest_without_subscribers_skips_probe(settings, transport):
    prober = FakeProber()
    notifier = Notifier(transport, make_registry(known=[1]), prober, settings.specs(), settings)

    report = await notifier.send_digest()

    assert report.total == 0
    assert prober.calls == 0


@pytest.mark.asyncio
async def test_reconciler_flip_broadcasts_once_to_every_known_chat(settings, transport):
    registry = make_registry(known=[1, 2], digest=[3])
    notifier = Notifier(transport, registry, FakeProber(), settings.specs(), settings)
    checks = FakeProber(
        AvailabilityResult(available=False, slot=None, checked_at=NOW),
        AvailabilityResult(available=True, slot=SLOT, checked_at=NOW + timedelta(minutes=1)),
    )
    reconciler = Reconciler(checks, settings.specs(), notifier.on_transition)

    assert await reconciler.tick() is None
    assert transport.sent == []

    await reconciler.tick()

    assert sorted(chat_id for chat_id, _ in transport.sent) == [1, 2, 3]
    for chat_id in (1, 2, 3):
        [text] = transport.texts_for(chat_id)
        assert "Appointments are available" in text
