"""
Realtime Service Factory

Returns the change-notification provider matching the backend client:
the in-memory backend gets the in-memory feed, every other provider the
polling feed.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache

from storefront.core.config import get_settings
from storefront.services.realtime.base import (
    BaseRealtimeService,
    ChangeEvent,
    Subscription,
)
from storefront.services.realtime.mock import InMemoryRealtimeService
from storefront.services.realtime.polling import PollingRealtimeService

logger = logging.getLogger(__name__)


@lru_cache()
def get_realtime_service() -> BaseRealtimeService:
    """Get the configured realtime service."""
    # Imported here: the backend package imports the realtime event types
    from storefront.services.backend import get_backend_client
    from storefront.services.backend.mock import InMemoryBackendClient

    settings = get_settings()
    backend = get_backend_client()

    if isinstance(backend, InMemoryBackendClient):
        logger.info("Realtime Service: Using InMemoryRealtimeService (development mode)")
        return InMemoryRealtimeService(backend)

    logger.info(f"Realtime Service: Using PollingRealtimeService ({backend.provider_name})")
    return PollingRealtimeService(backend, interval=settings.realtime_poll_seconds)


def reset_realtime_service() -> None:
    """Clear the cached service instance."""
    get_realtime_service.cache_clear()


__all__ = [
    "get_realtime_service",
    "reset_realtime_service",
    "BaseRealtimeService",
    "ChangeEvent",
    "Subscription",
    "InMemoryRealtimeService",
    "PollingRealtimeService",
]
