# Overview: In-process publish/subscribe channel for real-time device updates.

"""
Real-time event channel.

Every connected device subscribes to one broadcaster. Publishing is
fire-and-forget: there is no delivery guarantee, a subscriber that raises is
logged and dropped, and publishers never see subscriber failures.

Events produced while a database transaction is open are queued on the
SQLAlchemy session (``session.info``) and published only after the
outermost commit succeeds. A rollback discards them, so devices never hear
about state that was not persisted.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from sqlalchemy import event
from sqlalchemy.orm import Session

from ..time_utils import server_timestamp

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, dict], None]

PENDING_EVENTS_KEY = "cafe_pos.pending_events"


class EventBroadcaster:
    """Fan-out of named events to every registered subscriber."""

    def __init__(self):
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe():
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event_name: str, payload: dict) -> dict:
        """Stamp the payload with the server time and deliver it to every subscriber."""
        message = dict(payload)
        message["timestamp"] = server_timestamp()

        with self._lock:
            subscribers = list(self._subscribers)

        dead = []
        for callback in subscribers:
            try:
                callback(event_name, message)
            except Exception:
                logger.exception("Subscriber failed on %s; dropping it", event_name)
                dead.append(callback)

        for callback in dead:
            self.unsubscribe(callback)

        return message


# =============================================================================
# TRANSACTION-BOUND QUEUE
# =============================================================================

def queue_event(session, event_name: str, payload: dict) -> None:
    """Hold an event until the session's outermost transaction commits."""
    session.info.setdefault(PENDING_EVENTS_KEY, []).append((event_name, payload))


def pending_count(session) -> int:
    return len(session.info.get(PENDING_EVENTS_KEY, []))


def discard_since(session, mark: int) -> None:
    """Drop events queued after ``mark`` (used when a savepoint rolls back)."""
    pending = session.info.get(PENDING_EVENTS_KEY)
    if pending is not None:
        del pending[mark:]


_installed: dict[str, EventBroadcaster] = {}


def _publish_pending(session) -> None:
    # Releasing a savepoint also fires after_commit; wait for the outermost commit
    if session.in_nested_transaction():
        return
    broadcaster = _installed.get("broadcaster")
    pending = session.info.pop(PENDING_EVENTS_KEY, [])
    if broadcaster is None:
        return
    for event_name, payload in pending:
        broadcaster.publish(event_name, payload)


def _discard_pending(session, previous_transaction) -> None:
    if previous_transaction.parent is None:
        session.info.pop(PENDING_EVENTS_KEY, None)


def install_transaction_hooks(broadcaster: EventBroadcaster) -> None:
    """Publish queued events on commit and drop them on rollback (idempotent)."""
    _installed["broadcaster"] = broadcaster
    if not event.contains(Session, "after_commit", _publish_pending):
        event.listen(Session, "after_commit", _publish_pending)
    if not event.contains(Session, "after_soft_rollback", _discard_pending):
        event.listen(Session, "after_soft_rollback", _discard_pending)
