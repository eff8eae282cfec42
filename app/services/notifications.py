"""Per-user change notification channel for story status updates."""

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from app.models.story import StoryStatus

logger = logging.getLogger("storycoach.notifications")


@dataclass(frozen=True)
class StoryEvent:
    """Change event emitted after a committed status write."""

    story_id: int
    status: StoryStatus
    updated_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "story_id": self.story_id,
            "status": self.status.value,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class Subscription:
    """Handle returned by ``subscribe``; pass it back to ``unsubscribe``."""

    id: int
    user_id: str


EventCallback = Callable[[StoryEvent], None]


class ChangeNotificationChannel:
    """In-process publish/subscribe feed scoped by user.

    Delivery is synchronous on the publishing thread. Subscribers that need to
    hop onto an event loop must do so themselves. No ordering is promised, so
    consumers should re-read the story rather than trust the event payload.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._subscribers: dict[int, tuple[str, EventCallback]] = {}

    def subscribe(self, user_id: str, on_event: EventCallback) -> Subscription:
        with self._lock:
            handle = Subscription(id=next(self._ids), user_id=user_id)
            self._subscribers[handle.id] = (user_id, on_event)
        logger.debug("Subscription %d opened for user %s", handle.id, user_id)
        return handle

    def unsubscribe(self, handle: Subscription) -> None:
        with self._lock:
            removed = self._subscribers.pop(handle.id, None)
        if removed is not None:
            logger.debug("Subscription %d closed for user %s", handle.id, handle.user_id)

    def publish(self, user_id: str, event: StoryEvent) -> int:
        """Deliver ``event`` to every subscriber of ``user_id``. Returns the delivery count."""
        with self._lock:
            callbacks = [cb for owner, cb in self._subscribers.values() if owner == user_id]

        delivered = 0
        for callback in callbacks:
            try:
                callback(event)
                delivered += 1
            except Exception:
                logger.exception("Subscriber callback failed for story %s", event.story_id)
        return delivered

    def subscriber_count(self, user_id: str | None = None) -> int:
        with self._lock:
            if user_id is None:
                return len(self._subscribers)
            return sum(1 for owner, _ in self._subscribers.values() if owner == user_id)


_channel: ChangeNotificationChannel | None = None


def get_notification_channel() -> ChangeNotificationChannel:
    """Get singleton notification channel instance."""
    global _channel
    if _channel is None:
        _channel = ChangeNotificationChannel()
    return _channel
