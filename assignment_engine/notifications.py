"""
Notification outbox. The engine only records intents; delivery (email, in-app,
push) is done by whoever drains the outbox.
"""

import logging
import threading
from typing import Optional

from assignment_engine import activity
from assignment_engine.models import NotificationIntent, NotificationType

logger = logging.getLogger(__name__)

MAX_PENDING = 1000


class NotificationOutbox:
    """Bounded, thread-safe queue of notification intents."""

    def __init__(self, max_pending: int = MAX_PENDING):
        self._lock = threading.Lock()
        self._pending: list[NotificationIntent] = []
        self._max_pending = max_pending

    def emit(
        self,
        type: NotificationType,
        target_user_id: str,
        ticket_id: str,
        priority: str = "medium",
    ) -> NotificationIntent:
        intent = NotificationIntent(type=type, target_user_id=target_user_id, ticket_id=ticket_id, priority=priority)
        with self._lock:
            self._pending.append(intent)
            if len(self._pending) > self._max_pending:
                dropped = self._pending.pop(0)
                logger.warning("Notification outbox full; dropped %s for ticket %s.", dropped.type.value, dropped.ticket_id)
        logger.info("Notification %s -> %s (ticket %s).", type.value, target_user_id, ticket_id)
        activity.emit("notification", intent.model_dump(mode="json"))
        return intent

    def pending(self, type: Optional[NotificationType] = None) -> list[NotificationIntent]:
        with self._lock:
            return [n for n in self._pending if type is None or n.type == type]

    def drain(self) -> list[NotificationIntent]:
        """Remove and return every pending intent."""
        with self._lock:
            out, self._pending = self._pending, []
        return out
