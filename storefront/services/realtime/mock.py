"""
In-Memory Realtime Service Implementation

Delivers change events produced by the InMemoryBackendClient to
subscribers, asynchronously, on the running event loop.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from storefront.services.realtime.base import (
    BaseRealtimeService,
    ChangeCallback,
    ChangeEvent,
    Subscription,
    deliver,
    validate_event,
)

if TYPE_CHECKING:
    from storefront.services.backend.mock import InMemoryBackendClient

logger = logging.getLogger(__name__)


class InMemoryRealtimeService(BaseRealtimeService):
    """
    Change feed fed by the in-memory backend.

    Example:
        >>> realtime = InMemoryRealtimeService(backend)
        >>> sub = await realtime.subscribe("orders", on_change)
        >>> await backend.update("orders", order_id, {"status": "preparing"})
        >>> await realtime.drain()  # on_change has run
        >>> await sub.unsubscribe()
    """

    def __init__(self, backend: "InMemoryBackendClient"):
        self._backend = backend
        self._subscriptions: list[Subscription] = []
        self._pending: set[asyncio.Task] = set()
        backend.add_change_listener(self.publish)

        logger.info("InMemoryRealtimeService initialized")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "memory"

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> None:
        """Fan an event out to matching subscriptions."""
        for subscription in list(self._subscriptions):
            if not subscription.active or not event.matches(subscription.table, subscription.event):
                continue
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug(f"Realtime: no running loop, dropping {event.table}/{event.event}")
                return
            task = loop.create_task(deliver(subscription.callback, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait until every event published so far has been delivered."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        event: str = "UPDATE",
        access_token: Optional[str] = None,
    ) -> Subscription:
        subscription = Subscription(
            table=table,
            event=validate_event(event),
            callback=callback,
            on_unsubscribe=self._remove,
        )
        self._subscriptions.append(subscription)
        logger.debug(f"Realtime: subscribed to {table}/{subscription.event}")
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.unsubscribe()
        self._backend.remove_change_listener(self.publish)
