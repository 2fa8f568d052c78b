"""
In-Memory Auth Service Implementation

Simulates the hosted auth server without any network calls.
Used in development mode (ENV_MODE=development) and in tests to:
    - Sign up / sign in with email and password
    - Walk through the redirect-based sign-in flow locally
    - Resolve bearer tokens to sessions

Behavior:
    - Passwords are stored as bcrypt hashes
    - Expired sessions and unused sign-in codes are dropped as new ones are issued
    - Sign-up signs the user in immediately (no confirmation email)
    - Redirect-based sign-in redirects straight back with a one-time code

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
import secrets
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlencode

import bcrypt

from storefront.errors import BackendError
from storefront.services.auth.base import (
    AuthEvent,
    AuthResult,
    AuthSession,
    AuthUser,
    BaseAuthService,
    generate_pkce_pair,
    pkce_challenge,
)

logger = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 3600
CODE_TTL_SECONDS = 300
BCRYPT_ROUNDS = 12

# bcrypt only looks at the first 72 bytes and rejects longer input
BCRYPT_MAX_BYTES = 72


@dataclass
class _Account:
    user: AuthUser
    password_hash: bytes


@dataclass
class _PendingCode:
    provider: str
    code_challenge: Optional[str]
    email: str
    metadata: dict = field(default_factory=dict)
    expires_at: float = field(default_factory=lambda: time.time() + CODE_TTL_SECONDS)


def _password_too_long(password: str) -> bool:
    return len(password.encode("utf-8")) > BCRYPT_MAX_BYTES


class InMemoryAuthService(BaseAuthService):
    """
    In-memory implementation of the auth service.

    Example:
        >>> auth = InMemoryAuthService()
        >>> result = await auth.sign_up("jane@example.com", "secret1", {"full_name": "Jane"})
        >>> result.session.access_token
        'mock_...'
    """

    def __init__(
        self,
        oauth_email: str = "oauth.user@example.com",
        password_rounds: Optional[int] = None,
    ):
        """
        Args:
            oauth_email: Email of the account created by redirect-based sign-in
            password_rounds: bcrypt cost factor (BCRYPT_ROUNDS by default)
        """
        super().__init__()
        self._accounts: dict[str, _Account] = {}
        self._sessions: dict[str, AuthSession] = {}
        self._codes: dict[str, _PendingCode] = {}
        self.oauth_email = oauth_email
        self.password_rounds = password_rounds or BCRYPT_ROUNDS

        logger.info("InMemoryAuthService initialized")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "memory"

    # ==================== HELPERS ====================

    def _prune(self) -> None:
        """Drop expired sessions and sign-in codes."""
        now = time.time()
        for token in [t for t, s in self._sessions.items() if s.expires_at is not None and s.expires_at < now]:
            del self._sessions[token]
        for code in [c for c, p in self._codes.items() if p.expires_at < now]:
            del self._codes[code]

    def _hash_password(self, password: str) -> bytes:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.password_rounds))

    def _issue_session(self, user: AuthUser) -> AuthSession:
        self._prune()
        session = AuthSession(
            access_token=f"mock_{secrets.token_urlsafe(24)}",
            refresh_token=f"mock_refresh_{secrets.token_urlsafe(16)}",
            user=user,
            expires_at=int(time.time()) + SESSION_TTL_SECONDS,
        )
        self._sessions[session.access_token] = session
        return session

    def _create_account(self, email: str, password: str, metadata: Optional[dict]) -> AuthUser:
        user = AuthUser(
            id=str(uuid.uuid4()),
            email=email,
            user_metadata=dict(metadata or {}),
            app_metadata={"provider": "email"},
        )
        self._accounts[email.lower()] = _Account(user=user, password_hash=self._hash_password(password))
        return user

    @staticmethod
    def _error(message: str, code: str, status: int) -> AuthResult:
        return AuthResult(
            success=False,
            error=BackendError(message=message, code=code, status=status),
        )

    # ==================== INTERFACE ====================

    async def get_session(self, access_token: str) -> AuthResult:
        session = self._sessions.get(access_token)
        if session is None:
            return self._error("Invalid or expired token", "bad_jwt", 401)
        if session.expires_at is not None and session.expires_at < time.time():
            del self._sessions[access_token]
            return self._error("Token has expired", "bad_jwt", 401)
        return AuthResult(success=True, session=session, user=session.user)

    async def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        account = self._accounts.get(email.lower())
        if (
            account is None
            or _password_too_long(password)
            or not bcrypt.checkpw(password.encode("utf-8"), account.password_hash)
        ):
            logger.info(f"Auth: failed sign-in for {email}")
            return self._error("Invalid login credentials", "invalid_credentials", 400)

        session = self._issue_session(account.user)
        logger.info(f"🔑 Auth: {email} signed in")
        self._notify(AuthEvent.SIGNED_IN, session)
        return AuthResult(success=True, session=session, user=account.user)

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: Optional[dict] = None,
        redirect_to: Optional[str] = None,
    ) -> AuthResult:
        if email.lower() in self._accounts:
            return self._error("User already registered", "user_already_exists", 422)
        if _password_too_long(password):
            return self._error(
                f"Password cannot be longer than {BCRYPT_MAX_BYTES} bytes", "weak_password", 422,
            )

        user = self._create_account(email, password, metadata)
        session = self._issue_session(user)
        logger.info(f"🆕 Auth: account created for {email}")
        self._notify(AuthEvent.SIGNED_IN, session)
        return AuthResult(success=True, session=session, user=user)

    async def sign_in_with_oauth(
        self,
        provider: str,
        redirect_to: str,
        scopes: Optional[str] = None,
        query_params: Optional[dict] = None,
    ) -> AuthResult:
        self._prune()
        verifier, challenge = generate_pkce_pair()
        code = uuid.uuid4().hex
        self._codes[code] = _PendingCode(
            provider=provider,
            code_challenge=challenge,
            email=self.oauth_email,
            metadata={"full_name": "OAuth User"},
        )
        separator = "&" if "?" in redirect_to else "?"
        redirect_url = f"{redirect_to}{separator}{urlencode({'code': code})}"
        logger.debug(f"Auth: {provider} redirect prepared")
        return AuthResult(success=True, redirect_url=redirect_url, code_verifier=verifier)

    async def exchange_code_for_session(self, auth_code: str, code_verifier: str) -> AuthResult:
        pending = self._codes.pop(auth_code, None)
        if (
            pending is None
            or pending.expires_at < time.time()
            or pending.code_challenge != pkce_challenge(code_verifier)
        ):
            return self._error("invalid flow state, no valid flow state found", "flow_state_not_found", 404)

        account = self._accounts.get(pending.email.lower())
        if account is None:
            user = self._create_account(pending.email, secrets.token_urlsafe(16), pending.metadata)
            user.app_metadata["provider"] = pending.provider
        else:
            user = account.user

        session = self._issue_session(user)
        logger.info(f"🔑 Auth: {pending.email} signed in with {pending.provider}")
        self._notify(AuthEvent.SIGNED_IN, session)
        return AuthResult(success=True, session=session, user=user)

    async def sign_out(self, access_token: str) -> AuthResult:
        session = self._sessions.pop(access_token, None)
        if session is None:
            return self._error("Session not found", "session_not_found", 401)
        logger.info(f"👋 Auth: {session.user.email} signed out")
        self._notify(AuthEvent.SIGNED_OUT, session)
        return AuthResult(success=True, user=session.user)

    async def health_check(self) -> bool:
        return True

    # ==================== TEST HELPERS ====================

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    @property
    def pending_code_count(self) -> int:
        return len(self._codes)

    def expire(self, access_token: str) -> None:
        """Force a session to be expired."""
        session = self._sessions.get(access_token)
        if session is not None:
            session.expires_at = int(time.time()) - 1

    def update_user_metadata(self, user_id: str, metadata: dict) -> Optional[AuthUser]:
        """Merge metadata into an account and broadcast USER_UPDATED."""
        for account in self._accounts.values():
            if account.user.id == user_id:
                account.user.user_metadata.update(metadata)
                session = next(
                    (s for s in self._sessions.values() if s.user.id == user_id),
                    None,
                )
                self._notify(AuthEvent.USER_UPDATED, session)
                return account.user
        return None
