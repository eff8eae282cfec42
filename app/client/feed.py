"""Change feeds the tracker can subscribe to.

Both feeds expose ``subscribe(user_id, on_event) -> handle`` and
``unsubscribe(handle)``. ``on_event`` is always invoked on the event loop
that called ``subscribe``.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol

from app.client.api import StoryApiClient, StoryApiError
from app.services.notifications import ChangeNotificationChannel, StoryEvent, Subscription

logger = logging.getLogger("storycoach.client")

EventHandler = Callable[[Any], None]


class ChangeFeed(Protocol):
    def subscribe(self, user_id: str, on_event: EventHandler) -> Any: ...

    def unsubscribe(self, handle: Any) -> None: ...


class EventStreamFeed:
    """Follows the server-sent change feed, reconnecting after errors."""

    def __init__(self, api: StoryApiClient, reconnect_delay: float = 2.0) -> None:
        self._api = api
        self._reconnect_delay = reconnect_delay

    def subscribe(self, user_id: str, on_event: EventHandler) -> asyncio.Task:
        # The stream is already scoped to the token's user.
        return asyncio.get_running_loop().create_task(self._follow(on_event))

    def unsubscribe(self, handle: asyncio.Task) -> None:
        handle.cancel()

    async def _follow(self, on_event: EventHandler) -> None:
        while True:
            try:
                async for event in self._api.stream_events():
                    on_event(event)
                logger.info("Change feed closed by server, reconnecting")
            except StoryApiError as e:
                logger.warning("Change feed error: %s", e)
            await asyncio.sleep(self._reconnect_delay)


class ChannelFeed:
    """Adapts the in-process notification channel for an asyncio consumer."""

    def __init__(self, channel: ChangeNotificationChannel) -> None:
        self._channel = channel

    def subscribe(self, user_id: str, on_event: EventHandler) -> Subscription:
        loop = asyncio.get_running_loop()

        def deliver(event: StoryEvent) -> None:
            loop.call_soon_threadsafe(on_event, event)

        return self._channel.subscribe(user_id, deliver)

    def unsubscribe(self, handle: Subscription) -> None:
        self._channel.unsubscribe(handle)
