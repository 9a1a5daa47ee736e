"""In-memory subscriber registry shared by the bot's concurrent tasks."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from .utils import RWLock

LOGGER = structlog.get_logger(__name__)


@dataclass
class Subscriber:
    """A chat that has talked to the bot at least once."""

    chat_id: int
    is_known: bool = True
    wants_digest: bool = False


class SubscriberRegistry:
    """Known subscribers plus the subset that opted into periodic digests.

    Mutations and snapshots are serialised by a reader/writer lock, so a
    snapshot is always a consistent point-in-time view.
    """

    def __init__(self) -> None:
        self._lock = RWLock()
        self._subscribers: dict[int, Subscriber] = {}

    def register(self, chat_id: int) -> bool:
        """Add ``chat_id`` with default flags; returns True if it was new."""
        with self._lock.write():
            return self._register_locked(chat_id)

    def set_digest(self, chat_id: int, enabled: bool) -> None:
        """Toggle periodic digests, registering the chat first if needed."""
        with self._lock.write():
            self._register_locked(chat_id)
            self._subscribers[chat_id].wants_digest = enabled
        LOGGER.info("registry.digest_updated", chat_id=chat_id, enabled=enabled)

    def snapshot_known(self) -> frozenset[int]:
        with self._lock.read():
            return frozenset(chat_id for chat_id, sub in self._subscribers.items() if sub.is_known)

    def snapshot_digest(self) -> frozenset[int]:
        with self._lock.read():
            return frozenset(
                chat_id
                for chat_id, sub in self._subscribers.items()
                if sub.is_known and sub.wants_digest
            )

    def digest_flag(self, chat_id: int) -> bool:
        with self._lock.read():
            subscriber = self._subscribers.get(chat_id)
            return bool(subscriber and subscriber.wants_digest)

    def __contains__(self, chat_id: object) -> bool:
        with self._lock.read():
            return chat_id in self._subscribers

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._subscribers)

    def _register_locked(self, chat_id: int) -> bool:
        if chat_id in self._subscribers:
            return False
        self._subscribers[chat_id] = Subscriber(chat_id=chat_id)
        LOGGER.info("registry.subscriber_added", chat_id=chat_id, total=len(self._subscribers))
        return True
