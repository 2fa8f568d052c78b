"""
Hosted Auth Service Implementation

Talks to the hosted auth server (GoTrue dialect) with httpx.
Used when ENV_MODE=production or staging.

Requirements:
    - BACKEND_URL (https://<project>.supabase.co)
    - BACKEND_ANON_KEY (public anon key)

Endpoints used:
    POST /auth/v1/token?grant_type=password   password sign-in
    POST /auth/v1/token?grant_type=pkce       finish redirect sign-in
    POST /auth/v1/signup                      sign-up
    GET  /auth/v1/authorize                   redirect target (URL only)
    GET  /auth/v1/user                        token -> user
    POST /auth/v1/logout                      sign-out

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from storefront.core.config import get_settings
from storefront.errors import BackendError, NETWORK_ERROR_CODE
from storefront.services.auth.base import (
    AuthEvent,
    AuthResult,
    AuthSession,
    AuthUser,
    BaseAuthService,
    generate_pkce_pair,
)

logger = logging.getLogger(__name__)


def parse_user(body: dict) -> AuthUser:
    return AuthUser(
        id=body["id"],
        email=body.get("email"),
        user_metadata=body.get("user_metadata") or {},
        app_metadata=body.get("app_metadata") or {},
    )


def parse_session(body: dict) -> Optional[AuthSession]:
    """Build a session from a token response; None if the body has no token."""
    if not body.get("access_token"):
        return None
    return AuthSession(
        access_token=body["access_token"],
        refresh_token=body.get("refresh_token"),
        expires_at=body.get("expires_at"),
        user=parse_user(body["user"]),
    )


def parse_auth_error(response: httpx.Response) -> BackendError:
    """
    Build an error descriptor from an auth-server error response.

    The server answers either {"error_code", "msg"} or the OAuth2 shape
    {"error", "error_description"}.
    """
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    return BackendError(
        message=(
            body.get("msg")
            or body.get("message")
            or body.get("error_description")
            or response.text
            or f"HTTP {response.status_code}"
        ),
        code=body.get("error_code") or body.get("error"),
        status=response.status_code,
    )


class HostedAuthService(BaseAuthService):
    """
    Production auth client.

    Example:
        >>> auth = HostedAuthService()
        >>> result = await auth.sign_in_with_password("jane@example.com", "secret1")
        >>> result.session.user.email
        'jane@example.com'
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the auth client.

        Raises:
            ValueError: If the backend URL or anon key is not configured
        """
        super().__init__()
        settings = get_settings()
        base_url = base_url or settings.backend_url
        api_key = api_key or settings.backend_anon_key

        if not base_url or not api_key:
            raise ValueError(
                "BACKEND_URL and BACKEND_ANON_KEY are required for hosted auth. "
                "Set them in your .env file or environment variables."
            )

        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(
            base_url=f"{self._base_url}/auth/v1",
            timeout=settings.backend_timeout_seconds,
        )

        logger.debug(f"HostedAuthService ready ({self._base_url})")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "hosted"

    def _headers(self, access_token: Optional[str] = None) -> dict[str, str]:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {access_token or self._api_key}",
            "Content-Type": "application/json",
        }

    async def _call(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Any = None,
        access_token: Optional[str] = None,
    ) -> tuple[Optional[dict], Optional[BackendError]]:
        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                json=json,
                headers=self._headers(access_token),
            )
        except httpx.HTTPError as e:
            logger.error(f"Auth: {method} {path} transport error: {e}")
            return None, BackendError(message=str(e) or e.__class__.__name__, code=NETWORK_ERROR_CODE)

        if response.is_error:
            error = parse_auth_error(response)
            logger.warning(
                f"Auth: {method} {path} failed "
                f"(status={error.status}, code={error.code}): {error.message}"
            )
            return None, error

        return (response.json() if response.content else {}), None

    async def get_session(self, access_token: str) -> AuthResult:
        body, error = await self._call("GET", "/user", access_token=access_token)
        if error:
            return AuthResult(success=False, error=error)
        user = parse_user(body)
        return AuthResult(
            success=True,
            user=user,
            session=AuthSession(access_token=access_token, user=user),
        )

    async def _token_grant(self, grant_type: str, payload: dict) -> AuthResult:
        body, error = await self._call(
            "POST",
            "/token",
            params={"grant_type": grant_type},
            json=payload,
        )
        if error:
            return AuthResult(success=False, error=error)

        session = parse_session(body)
        self._notify(AuthEvent.SIGNED_IN, session)
        return AuthResult(success=True, session=session, user=session.user)

    async def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        result = await self._token_grant("password", {"email": email, "password": password})
        if result.success:
            logger.info(f"🔑 Auth: {email} signed in")
        return result

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: Optional[dict] = None,
        redirect_to: Optional[str] = None,
    ) -> AuthResult:
        params = {"redirect_to": redirect_to} if redirect_to else None
        body, error = await self._call(
            "POST",
            "/signup",
            params=params,
            json={"email": email, "password": password, "data": metadata or {}},
        )
        if error:
            return AuthResult(success=False, error=error)

        session = parse_session(body)
        if session is None:
            # Email confirmation pending: the body is the bare user
            logger.info(f"🆕 Auth: account created for {email} (confirmation required)")
            return AuthResult(success=True, user=parse_user(body), confirmation_required=True)

        logger.info(f"🆕 Auth: account created for {email}")
        self._notify(AuthEvent.SIGNED_IN, session)
        return AuthResult(success=True, session=session, user=session.user)

    async def sign_in_with_oauth(
        self,
        provider: str,
        redirect_to: str,
        scopes: Optional[str] = None,
        query_params: Optional[dict] = None,
    ) -> AuthResult:
        verifier, challenge = generate_pkce_pair()
        params = {
            "provider": provider,
            "redirect_to": redirect_to,
            "code_challenge": challenge,
            "code_challenge_method": "s256",
        }
        if scopes:
            params["scopes"] = scopes
        params.update(query_params or {})

        redirect_url = f"{self._base_url}/auth/v1/authorize?{urlencode(params)}"
        return AuthResult(success=True, redirect_url=redirect_url, code_verifier=verifier)

    async def exchange_code_for_session(self, auth_code: str, code_verifier: str) -> AuthResult:
        return await self._token_grant(
            "pkce",
            {"auth_code": auth_code, "code_verifier": code_verifier},
        )

    async def sign_out(self, access_token: str) -> AuthResult:
        _, error = await self._call("POST", "/logout", access_token=access_token)
        if error:
            return AuthResult(success=False, error=error)
        logger.info("👋 Auth: signed out")
        self._notify(AuthEvent.SIGNED_OUT, None)
        return AuthResult(success=True)

    async def health_check(self) -> bool:
        try:
            response = await self._client.get("/health", headers=self._headers())
            return response.status_code < 500
        except httpx.HTTPError as e:
            logger.error(f"Auth health check failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()
