"""
Realtime Service Abstract Base Class

Defines the change-notification interface: subscribe to row-level events
for a named table, receive them asynchronously, unsubscribe on teardown.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

EVENT_TYPES = ("INSERT", "UPDATE", "DELETE", "*")


@dataclass
class ChangeEvent:
    """
    A row-level change on a table.

    Attributes:
        table: Table the row belongs to
        event: INSERT, UPDATE or DELETE
        new: Row after the change (None for DELETE)
        old: Row before the change, when known
        commit_timestamp: When the change was observed
    """
    table: str
    event: str
    new: Optional[dict] = None
    old: Optional[dict] = None
    commit_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def matches(self, table: str, event: str) -> bool:
        return self.table == table and (event == "*" or self.event == event)


ChangeCallback = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


async def deliver(callback: ChangeCallback, event: ChangeEvent) -> None:
    """Run a subscriber callback; errors are logged, never propagated to the feed."""
    try:
        result = callback(event)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.exception(f"Realtime callback failed for {event.table}/{event.event}: {e}")


class Subscription:
    """Handle returned by subscribe(); call unsubscribe() on teardown."""

    def __init__(
        self,
        table: str,
        event: str,
        callback: ChangeCallback,
        on_unsubscribe: Callable[["Subscription"], Any],
    ):
        self.table = table
        self.event = event
        self.callback = callback
        self._on_unsubscribe = on_unsubscribe
        self.active = True

    async def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        result = self._on_unsubscribe(self)
        if inspect.isawaitable(result):
            await result
        logger.debug(f"Unsubscribed from {self.table}/{self.event}")

    def __repr__(self):
        state = "active" if self.active else "closed"
        return f"<Subscription {self.table}/{self.event} {state}>"


class BaseRealtimeService(ABC):
    """Abstract base class for change-notification providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        event: str = "UPDATE",
        access_token: Optional[str] = None,
    ) -> Subscription:
        """
        Subscribe to row-level events on a table.

        Args:
            table: Table name (e.g. "orders")
            callback: Sync or async callable receiving each ChangeEvent
            event: INSERT, UPDATE, DELETE or "*"
            access_token: Session token, for providers enforcing row security

        Returns:
            Subscription: call unsubscribe() on teardown
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check provider connectivity."""
        pass

    async def close(self) -> None:
        """Tear down every open subscription."""
        return None


def validate_event(event: str) -> str:
    event = event.upper()
    if event not in EVENT_TYPES:
        raise ValueError(f"Invalid event '{event}'. Options: {EVENT_TYPES}")
    return event
