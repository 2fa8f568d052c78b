"""
Polling Realtime Service Implementation

Change feed for the hosted and postgres providers. Each subscription runs a
background task that polls its table for rows whose updated_at moved past
the last one seen and turns them into change events.

Only tables carrying updated_at (profiles, orders) can be watched. DELETE
events are not observable by polling.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from storefront.services.backend.base import BaseBackendClient, gt
from storefront.services.realtime.base import (
    BaseRealtimeService,
    ChangeCallback,
    ChangeEvent,
    Subscription,
    deliver,
    validate_event,
)

logger = logging.getLogger(__name__)

WATCHABLE_TABLES = ("profiles", "orders")


class PollingRealtimeService(BaseRealtimeService):
    """
    Change feed that polls the backend data client.

    Args:
        backend: Data client used for polling
        interval: Seconds between polls
    """

    def __init__(self, backend: BaseBackendClient, interval: float = 2.0):
        self._backend = backend
        self._interval = interval
        self._tasks: dict[int, asyncio.Task] = {}

        logger.info(f"PollingRealtimeService initialized (interval={interval}s)")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return f"polling:{self._backend.provider_name}"

    async def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        event: str = "UPDATE",
        access_token: Optional[str] = None,
    ) -> Subscription:
        if table not in WATCHABLE_TABLES:
            raise ValueError(f"Table '{table}' cannot be watched. Options: {WATCHABLE_TABLES}")

        subscription = Subscription(
            table=table,
            event=validate_event(event),
            callback=callback,
            on_unsubscribe=self._cancel,
        )
        backend = self._backend.for_session(access_token)
        self._tasks[id(subscription)] = asyncio.create_task(self._poll(subscription, backend))
        logger.debug(f"Realtime: polling {table}/{subscription.event}")
        return subscription

    async def _poll(self, subscription: Subscription, backend: BaseBackendClient) -> None:
        last_seen = datetime.now(timezone.utc).isoformat()

        while subscription.active:
            await asyncio.sleep(self._interval)
            try:
                last_seen = await self._poll_once(subscription, backend, last_seen)
            except Exception as e:
                logger.exception(f"Realtime: poll of {subscription.table} crashed, retrying: {e}")

    async def _poll_once(
        self,
        subscription: Subscription,
        backend: BaseBackendClient,
        last_seen: str,
    ) -> str:
        """Deliver rows changed since `last_seen`; returns the new high-water mark."""
        result = await backend.select(
            subscription.table,
            [gt("updated_at", last_seen)],
            order_by="updated_at",
        )
        if not result.success:
            logger.warning(f"Realtime: poll of {subscription.table} failed: {result.error.message}")
            return last_seen

        for row in result.data:
            last_seen = max(last_seen, row["updated_at"])
            kind = "INSERT" if row.get("created_at") == row.get("updated_at") else "UPDATE"
            change = ChangeEvent(table=subscription.table, event=kind, new=row)
            if subscription.active and change.matches(subscription.table, subscription.event):
                await deliver(subscription.callback, change)
        return last_seen

    async def _cancel(self, subscription: Subscription) -> None:
        task = self._tasks.pop(id(subscription), None)
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def health_check(self) -> bool:
        return await self._backend.health_check()

    async def close(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._tasks.clear()
