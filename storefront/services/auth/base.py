"""
Authentication Service Abstract Base Class

Defines the interface for the external auth provider: session lookup,
password sign-in/sign-up, redirect-based identity-provider sign-in (PKCE),
sign-out, and auth-state listeners.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import base64
import hashlib
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from storefront.errors import BackendError, ErrorKind, user_message

logger = logging.getLogger(__name__)


class AuthEvent(str, Enum):
    """Auth-state transitions broadcast to listeners."""
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    USER_UPDATED = "USER_UPDATED"


@dataclass
class AuthUser:
    """Account as known to the auth provider."""
    id: str
    email: Optional[str] = None
    user_metadata: dict = field(default_factory=dict)
    app_metadata: dict = field(default_factory=dict)


@dataclass
class AuthSession:
    """An authenticated session."""
    access_token: str
    user: AuthUser
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None


@dataclass
class AuthResult:
    """
    Standardized result of an auth call.

    Attributes:
        success: Whether the call succeeded
        session: Established session (sign-in, or sign-up without confirmation)
        user: Account involved
        redirect_url: Where to send the browser (identity-provider sign-in)
        code_verifier: PKCE verifier to keep until the redirect comes back
        confirmation_required: Sign-up succeeded but the email must be confirmed
        error: Error descriptor if the call failed
    """
    success: bool
    session: Optional[AuthSession] = None
    user: Optional[AuthUser] = None
    redirect_url: Optional[str] = None
    code_verifier: Optional[str] = None
    confirmation_required: bool = False
    error: Optional[BackendError] = None


AuthListener = Callable[[AuthEvent, Optional[AuthSession]], None]


# Identity-provider redirect errors and their user-facing messages
OAUTH_ERROR_MESSAGES = {
    "redirect_uri_mismatch": "Authentication configuration error. Please contact support.",
    "invalid_client": "OAuth client configuration is invalid. Please contact support.",
    "invalid_request": "Invalid authentication request. Please try again.",
}
DEFAULT_OAUTH_ERROR = "Authentication failed. Please try again later."

# Query parameters sent to the Google consent screen
GOOGLE_QUERY_PARAMS = {
    "access_type": "offline",  # refresh token
    "prompt": "consent",
}


# Sign-in / sign-up failures by error kind
AUTH_ERROR_MESSAGES = {
    ErrorKind.CONFLICT: "An account with this email already exists. Please sign in.",
    ErrorKind.UNAUTHENTICATED: "Invalid email or password.",
    ErrorKind.FORBIDDEN: "Please confirm your email address before signing in.",
    ErrorKind.VALIDATION: "Please check the details you entered.",
}


def auth_error_message(error: BackendError) -> str:
    return AUTH_ERROR_MESSAGES.get(error.kind, user_message(error.kind))


def oauth_error_message(error_code: Optional[str]) -> str:
    """Map an identity-provider redirect error code to a user-facing message."""
    if not error_code:
        return DEFAULT_OAUTH_ERROR
    return OAUTH_ERROR_MESSAGES.get(error_code.lower(), DEFAULT_OAUTH_ERROR)


def pkce_challenge(verifier: str) -> str:
    """S256 code challenge for a PKCE verifier."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce_pair() -> tuple[str, str]:
    """Return (code_verifier, code_challenge)."""
    verifier = secrets.token_urlsafe(48)
    return verifier, pkce_challenge(verifier)


class BaseAuthService(ABC):
    """
    Abstract base class for auth providers.

    Listeners registered with on_auth_state_change() are called after every
    sign-in, sign-out and user update, in registration order.
    """

    def __init__(self):
        self._listeners: list[AuthListener] = []

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def get_session(self, access_token: str) -> AuthResult:
        """Resolve an access token to its session; fails if expired or unknown."""
        pass

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        """Sign in with email and password."""
        pass

    @abstractmethod
    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: Optional[dict] = None,
        redirect_to: Optional[str] = None,
    ) -> AuthResult:
        """
        Create an account.

        Args:
            email: Account email
            password: Account password
            metadata: Auxiliary profile fields (full_name, address, pincode)
            redirect_to: Where the confirmation email links back to
        """
        pass

    @abstractmethod
    async def sign_in_with_oauth(
        self,
        provider: str,
        redirect_to: str,
        scopes: Optional[str] = None,
        query_params: Optional[dict] = None,
    ) -> AuthResult:
        """Start redirect-based sign-in; returns redirect_url and code_verifier."""
        pass

    @abstractmethod
    async def exchange_code_for_session(self, auth_code: str, code_verifier: str) -> AuthResult:
        """Finish redirect-based sign-in."""
        pass

    @abstractmethod
    async def sign_out(self, access_token: str) -> AuthResult:
        """Revoke the session."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check provider connectivity."""
        pass

    async def close(self) -> None:
        return None

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """
        Register a listener for auth-state transitions.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception as e:
                logger.exception(f"Auth listener failed on {event.value}: {e}")
