"""
Session Context

Resolves the caller's access token (bearer header or session cookie) into
a SessionContext once per request: account id, email, token, profile and
admin flag. Contexts are cached in a process-wide SessionRegistry and
dropped on auth-state events (SIGNED_IN, SIGNED_OUT, USER_UPDATED) or when
a profile changes.

Usage:
    @app.get("/api/profile")
    async def profile(session: SessionContext = Depends(current_session)):
        return session.profile

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request

from storefront.core.config import get_settings
from storefront.errors import AccessDenied, NotAuthenticated
from storefront.services.admin import AdminPolicy, get_admin_policy
from storefront.services.auth import AuthEvent, AuthSession, BaseAuthService, get_auth_service
from storefront.services.backend import BaseBackendClient, get_backend_client
from storefront.services.backend.base import Row
from storefront.services.profiles import ProfileService

logger = logging.getLogger(__name__)

# Profile fields copied from sign-up metadata into a new profile
PROFILE_METADATA_FIELDS = ("full_name", "address", "pincode")

# Cached contexts kept before the least recently used are dropped
MAX_CACHED_SESSIONS = 1024


@dataclass
class SessionContext:
    """Who is calling, resolved once per request."""
    user_id: str
    email: Optional[str]
    access_token: str
    profile: Row
    is_admin: bool
    expires_at: Optional[int] = None

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and self.expires_at < time.time()


class SessionRegistry:
    """
    Token -> SessionContext cache shared by every request.

    Args:
        auth: Auth service resolving tokens
        backend: Data client (bound to each session's token for profile reads)
        policy: Admin policy evaluated when a context is built
        max_contexts: Cache bound; expired contexts go first, then the least recently used
    """

    def __init__(
        self,
        auth: BaseAuthService,
        backend: BaseBackendClient,
        policy: AdminPolicy,
        max_contexts: int = MAX_CACHED_SESSIONS,
    ):
        self._auth = auth
        self._backend = backend
        self._policy = policy
        self._max_contexts = max_contexts
        self._contexts: OrderedDict[str, SessionContext] = OrderedDict()
        self._remove_listener = auth.on_auth_state_change(self._on_auth_event)

    def __len__(self) -> int:
        return len(self._contexts)

    def backend_for(self, session: Optional[SessionContext]) -> BaseBackendClient:
        return self._backend.for_session(session.access_token if session else None)

    async def resolve(self, access_token: Optional[str]) -> SessionContext:
        """
        Raises:
            NotAuthenticated: If there is no token or the token is not valid
        """
        if not access_token:
            raise NotAuthenticated()

        cached = self._contexts.get(access_token)
        if cached is not None and not cached.expired:
            self._contexts.move_to_end(access_token)
            return cached

        result = await self._auth.get_session(access_token)
        if not result.success:
            self._contexts.pop(access_token, None)
            logger.debug(f"Session rejected: {result.error.message}")
            raise NotAuthenticated()

        context = await self._build(result.session)
        self._store(access_token, context)
        return context

    def _store(self, access_token: str, context: SessionContext) -> None:
        for token in [t for t, c in self._contexts.items() if c.expired]:
            del self._contexts[token]
        self._contexts[access_token] = context
        self._contexts.move_to_end(access_token)
        while len(self._contexts) > self._max_contexts:
            _, dropped = self._contexts.popitem(last=False)
            logger.debug(f"Session cache full, dropped context for {dropped.email}")

    async def _build(self, session: AuthSession) -> SessionContext:
        user = session.user
        defaults = {
            key: user.user_metadata[key]
            for key in PROFILE_METADATA_FIELDS
            if user.user_metadata.get(key)
        }
        profiles = ProfileService(self._backend.for_session(session.access_token))
        profile = await profiles.get_or_create(user.id, user.email, defaults)

        return SessionContext(
            user_id=user.id,
            email=user.email,
            access_token=session.access_token,
            profile=profile,
            is_admin=self._policy.is_admin(profile),
            expires_at=session.expires_at,
        )

    def invalidate(self, access_token: Optional[str] = None, user_id: Optional[str] = None) -> None:
        """Drop cached contexts by token, by account, or all when neither is given."""
        if access_token is None and user_id is None:
            self._contexts.clear()
            return
        for token, context in list(self._contexts.items()):
            if token == access_token or context.user_id == user_id:
                del self._contexts[token]

    def _on_auth_event(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        if event not in (AuthEvent.SIGNED_IN, AuthEvent.SIGNED_OUT, AuthEvent.USER_UPDATED):
            return
        if session is None:
            self.invalidate()
        else:
            self.invalidate(access_token=session.access_token, user_id=session.user.id)
        logger.debug(f"Session registry invalidated on {event.value}")

    def close(self) -> None:
        self._remove_listener()
        self._contexts.clear()


@lru_cache()
def get_session_registry() -> SessionRegistry:
    return SessionRegistry(get_auth_service(), get_backend_client(), get_admin_policy())


def reset_session_registry() -> None:
    if get_session_registry.cache_info().currsize:
        get_session_registry().close()
    get_session_registry.cache_clear()


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

def extract_token(request: Request) -> Optional[str]:
    """Bearer token from the Authorization header, else the session cookie."""
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        token = header[7:].strip()
        if token:
            return token
    return request.cookies.get(get_settings().session_cookie_name)


async def optional_session(request: Request) -> Optional[SessionContext]:
    token = extract_token(request)
    if not token:
        return None
    try:
        return await get_session_registry().resolve(token)
    except NotAuthenticated:
        return None


async def current_session(request: Request) -> SessionContext:
    return await get_session_registry().resolve(extract_token(request))


async def require_admin(session: SessionContext = Depends(current_session)) -> SessionContext:
    if not session.is_admin:
        logger.warning(f"🚫 Admin access denied for {session.email}")
        raise AccessDenied()
    return session
