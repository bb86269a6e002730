"""
Notification events and dispatch.

State transitions never call a notifier directly. They return typed
``NotificationEvent`` values; the caller hands them to
``NotificationDispatcher.dispatch`` *after* releasing the entity lock.
Delivery failures are logged and swallowed so a broken notifier can
never roll back or block a transition.

``InMemoryNotifier`` is the default collaborator: it keeps every
notification in memory, queryable per recipient.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol

from dataroom.utils.helpers import utc_now

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    SHARE_INVITE = "share_invite"
    APPROVAL_REQUEST = "approval_request"
    APPROVAL_DECISION = "approval_decision"
    NDA_REQUESTED = "nda_requested"
    NDA_SIGNED = "nda_signed"
    NDA_DECLINED = "nda_declined"


@dataclass(frozen=True)
class NotificationEvent:
    user_id: str
    type: NotificationType
    payload: dict = field(default_factory=dict)


class Notifier(Protocol):
    """Fire-and-forget delivery channel; the return value is ignored."""

    def send_notification(self, user_id: str, type: str, payload: dict) -> None:
        ...


class NotificationDispatcher:

    def __init__(self, notifier: Notifier | None) -> None:
        self.notifier = notifier

    def dispatch(self, events: Iterable[NotificationEvent]) -> int:
        """Deliver every event. Returns how many were delivered without error."""
        if self.notifier is None:
            return 0
        delivered = 0
        for event in events:
            try:
                self.notifier.send_notification(event.user_id, event.type.value, dict(event.payload))
                delivered += 1
            except Exception:
                logger.exception(
                    "Notification delivery failed: type=%s recipient=%s",
                    event.type.value, event.user_id,
                )
        return delivered


# ── Default in-memory notifier ───────────────────────────────────────────────

@dataclass
class Notification:
    id: int
    recipient: str
    type: str
    payload: dict
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "recipient": self.recipient,
            "type": self.type,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }


class InMemoryNotifier:
    """Keeps every notification in process memory."""

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._items: list[Notification] = []

    def send_notification(self, user_id: str, type: str, payload: dict) -> None:
        with self._lock:
            self._items.append(Notification(
                id=next(self._ids),
                recipient=user_id,
                type=type,
                payload=payload,
                created_at=self._clock(),
            ))
        logger.debug("Notification queued: %s -> %s", type, user_id)

    # ── Query ─────────────────────────────────────────────────────────────

    def list_for_recipient(self, recipient: str, *, type: str | None = None,
                           limit: int = 50, offset: int = 0):
        """Notifications for a recipient, newest first. Returns (items, total)."""
        with self._lock:
            items = [n for n in self._items if n.recipient == recipient]
        if type:
            items = [n for n in items if n.type == type]
        items.reverse()
        return items[offset:offset + limit], len(items)

    @property
    def sent(self) -> list[Notification]:
        with self._lock:
            return list(self._items)
