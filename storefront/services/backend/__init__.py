"""
Backend Client Factory

Provides a single entry point for obtaining the backend data client.
The rest of the application stays agnostic about which provider is used.

Usage:
    from storefront.services.backend import get_backend_client

    backend = get_backend_client()
    result = await backend.select("products", [eq("available", True)])

Environment Switching:
    - ENV_MODE=development → InMemoryBackendClient
    - ENV_MODE=staging/production → HostedBackendClient
    - BACKEND_PROVIDER=postgres → PostgresBackendClient (any mode)

Background jobs use get_service_backend_client() to act with the service role.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache
from typing import Optional

from storefront.core.config import BackendProvider, get_settings
from storefront.services.backend.base import (
    BaseBackendClient,
    BackendResult,
    Filter,
    Row,
    eq,
    gt,
    in_,
    lt,
    neq,
)
from storefront.services.backend.mock import InMemoryBackendClient
from storefront.services.backend.hosted import HostedBackendClient

logger = logging.getLogger(__name__)


@lru_cache()
def get_backend_client() -> BaseBackendClient:
    """
    Get the configured backend data client.

    The instance is cached (singleton pattern) so the in-memory provider
    keeps its state and the REST provider reuses its connection pool.

    Returns:
        BaseBackendClient: Configured provider

    Raises:
        ValueError: If the hosted provider is selected but not configured
    """
    settings = get_settings()
    provider = settings.effective_backend_provider

    if provider == BackendProvider.MEMORY:
        logger.info("Backend: Using InMemoryBackendClient (development mode)")
        return InMemoryBackendClient()

    if provider == BackendProvider.POSTGRES:
        from storefront.services.backend.postgres import PostgresBackendClient

        logger.info("Backend: Using PostgresBackendClient (direct connection)")
        return PostgresBackendClient()

    logger.info(
        f"Backend: Using HostedBackendClient "
        f"({settings.env_mode.value} mode)"
    )
    return HostedBackendClient()


def reset_backend_client() -> None:
    """
    Clear the cached backend client.

    Useful for testing or when configuration changes at runtime.
    """
    get_backend_client.cache_clear()
    logger.debug("Backend client cache cleared")


def as_service_role(
    backend: BaseBackendClient,
    service_key: Optional[str] = None,
) -> BaseBackendClient:
    """
    Bind a client to the service-role key (BACKEND_SERVICE_KEY).

    Row-level security hides other accounts' rows from the anon key, so jobs
    that sweep every account (orphaned-order reconciliation) must use this.
    Providers without row-level security return the client unchanged.
    """
    key = service_key or get_settings().backend_service_key
    if not key:
        if backend.provider_name == "hosted":
            logger.warning("⚠️ BACKEND_SERVICE_KEY not set: the sweep only sees rows visible to the anon key")
        return backend
    return backend.for_session(key)


def get_service_backend_client() -> BaseBackendClient:
    """The configured backend client, acting with the service role."""
    return as_service_role(get_backend_client())


__all__ = [
    "get_backend_client",
    "reset_backend_client",
    "as_service_role",
    "get_service_backend_client",
    "BaseBackendClient",
    "BackendResult",
    "Filter",
    "Row",
    "eq",
    "neq",
    "gt",
    "lt",
    "in_",
    "InMemoryBackendClient",
    "HostedBackendClient",
]
