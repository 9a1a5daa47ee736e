import asyncio
from datetime import timedelta

import pytest
from appointment_watch_agent.commands import CommandHandler, parse_command
from appointment_watch_agent.models import (
    AvailabilityResult,
    AvailabilityState,
    CommandKind,
    InboundMessage,
    SlotCandidate,
    SlotStatus,
)
from appointment_watch_agent.notifier import Notifier
from appointment_watch_agent.prober import ProbeBadStatusError
from appointment_watch_agent.reconciler import Reconciler
from appointment_watch_agent.registry import SubscriberRegistry
from appointment_watch_agent.telegram import (
    BUTTON_CHECK,
    BUTTON_DISABLE_DIGEST,
    BUTTON_ENABLE_DIGEST,
    BUTTON_STATUS,
    CHECKING_TEXT,
    HELP_TEXT,
)

from tests.conftest import NOW, FakeProber

SLOT = SlotCandidate(
    status=SlotStatus.AVAILABLE,
    start=NOW + timedelta(days=1),
    end=None,
    available_count=1,
)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("/check", CommandKind.CHECK),
        ("/status", CommandKind.STATUS),
        ("/autostart", CommandKind.ENABLE_DIGEST),
        ("/autostop", CommandKind.DISABLE_DIGEST),
        ("/start", CommandKind.HELP),
        ("/help", CommandKind.HELP),
        ("/check@appointment_bot now", CommandKind.CHECK),
        (BUTTON_CHECK, CommandKind.CHECK),
        (BUTTON_STATUS, CommandKind.STATUS),
        (BUTTON_ENABLE_DIGEST, CommandKind.ENABLE_DIGEST),
        (BUTTON_DISABLE_DIGEST, CommandKind.DISABLE_DIGEST),
        ("hello there", CommandKind.HELP),
        ("/unknown", CommandKind.HELP),
        ("/", CommandKind.HELP),
        ("", CommandKind.HELP),
    ],
)
def test_parse_command(text, expected):
    assert parse_command(text) is expected


def make_handler(settings, transport, prober=None, registry=None):
    if registry is None:
        registry = SubscriberRegistry()
    if prober is None:
        prober = FakeProber()
    return CommandHandler(transport, registry, prober, settings.specs(), settings), registry


@pytest.mark.asyncio
async def test_enable_and_disable_digest(settings, transport):
    handler, registry = make_handler(settings, transport)

    await handler.handle(InboundMessage(chat_id=42, text="/autostart"))
    assert registry.snapshot_known() == {42}
    assert registry.snapshot_digest() == {42}

    await handler.handle(InboundMessage(chat_id=42, text=BUTTON_DISABLE_DIGEST))
    assert registry.snapshot_digest() == frozenset()
    assert registry.snapshot_known() == {42}
    assert "enabled" in transport.texts_for(42)[0]
    assert "disabled" in transport.texts_for(42)[1]


@pytest.mark.asyncio
async def test_every_command_registers_sender(settings, transport):
    handler, registry = make_handler(settings, transport)

    kind = await handler.handle(InboundMessage(chat_id=9, text="what is this?", username="someone"))

    assert kind is CommandKind.HELP
    assert registry.snapshot_known() == {9}
    assert transport.texts_for(9) == [HELP_TEXT]


@pytest.mark.asyncio
async def test_status_reports_digest_flag(settings, transport):
    handler, registry = make_handler(settings, transport)
    registry.set_digest(5, True)

    await handler.on_inbound(5, CommandKind.STATUS)
    await handler.on_inbound(6, CommandKind.STATUS)

    assert "every 30 minutes" in transport.texts_for(5)[0]
    assert "only when appointment availability changes" in transport.texts_for(6)[0]


@pytest.mark.asyncio
async def test_check_replies_only_to_requester_and_leaves_state(settings, transport):
    registry = SubscriberRegistry()
    for chat_id in (1, 2, 3):
        registry.register(chat_id)
    reconciler_prober = FakeProber()
    notifier = Notifier(transport, registry, reconciler_prober, settings.specs(), settings)
    state = AvailabilityState(available=False, last_slot=None, last_checked_at=NOW)
    reconciler = Reconciler(reconciler_prober, settings.specs(), notifier.on_transition, state=state)
    before = reconciler.snapshot()

    adhoc = FakeProber(AvailabilityResult(available=True, slot=SLOT, checked_at=NOW + timedelta(minutes=1)))
    handler, _ = make_handler(settings, transport, prober=adhoc, registry=registry)

    await handler.on_inbound(2, CommandKind.CHECK)

    assert reconciler.snapshot() == before
    assert reconciler_prober.calls == 0
    assert {chat_id for chat_id, _ in transport.sent} == {2}
    texts = transport.texts_for(2)
    assert texts[0] == CHECKING_TEXT
    assert "Appointments are available" in texts[1]


@pytest.mark.asyncio
async def test_check_reports_probe_error(settings, transport):
    handler, _ = make_handler(settings, transport, prober=FakeProber(ProbeBadStatusError(500)))

    await handler.on_inbound(3, CommandKind.CHECK)

    assert transport.texts_for(3)[-1] == "❌ Error checking availability: API returned status code: 500"


@pytest.mark.asyncio
async def test_check_unavailable_uses_manual_wording(settings, transport):
    prober = FakeProber(AvailabilityResult(available=False, slot=None, checked_at=NOW))
    handler, _ = make_handler(settings, transport, prober=prober)

    await handler.on_inbound(3, CommandKind.CHECK)

    assert transport.texts_for(3)[-1] == "❌ No appointments available (checked at 2026-10-19 12:00:00)"


@pytest.mark.asyncio
async def test_consumer_handles_messages_in_order(settings, transport):
    handler, registry = make_handler(settings, transport)
    queue = asyncio.Queue()
    await queue.put(InboundMessage(chat_id=1, text="/autostart"))
    await queue.put(InboundMessage(chat_id=1, text="/status"))
    consumer = asyncio.create_task(handler.consume(queue))

    await queue.join()
    consumer.cancel()

    assert registry.snapshot_digest() == {1}
    assert "every 30 minutes" in transport.texts_for(1)[-1]
