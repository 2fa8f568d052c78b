"""
Auth Service Factory

Usage:
    from storefront.services.auth import get_auth_service

    auth = get_auth_service()
    result = await auth.sign_in_with_password(email, password)

Environment Switching:
    - BACKEND_PROVIDER=memory (development default) → InMemoryAuthService
    - BACKEND_PROVIDER=hosted/postgres → HostedAuthService

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache

from storefront.core.config import get_settings
from storefront.services.auth.base import (
    AuthEvent,
    AuthResult,
    AuthSession,
    AuthUser,
    BaseAuthService,
    GOOGLE_QUERY_PARAMS,
    auth_error_message,
    oauth_error_message,
)
from storefront.services.auth.hosted import HostedAuthService
from storefront.services.auth.mock import InMemoryAuthService

logger = logging.getLogger(__name__)


@lru_cache()
def get_auth_service() -> BaseAuthService:
    """
    Get the configured auth service.

    Cached so in-memory accounts and sessions survive between requests.
    """
    settings = get_settings()

    if not settings.use_hosted_auth:
        logger.info("Auth Service: Using InMemoryAuthService (development mode)")
        return InMemoryAuthService()

    logger.info(f"Auth Service: Using HostedAuthService ({settings.env_mode.value} mode)")
    return HostedAuthService()


def reset_auth_service() -> None:
    """Clear the cached auth service instance."""
    get_auth_service.cache_clear()
    logger.debug("Auth service cache cleared")


__all__ = [
    "get_auth_service",
    "reset_auth_service",
    "AuthEvent",
    "AuthResult",
    "AuthSession",
    "AuthUser",
    "BaseAuthService",
    "GOOGLE_QUERY_PARAMS",
    "auth_error_message",
    "oauth_error_message",
    "InMemoryAuthService",
    "HostedAuthService",
]
