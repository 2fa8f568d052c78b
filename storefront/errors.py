"""
Error Taxonomy

A closed set of error kinds shared by every service. Backend-specific error
shapes (Postgres SQLSTATE, PostgREST and auth-server codes, HTTP status,
transport failures) are translated into an ErrorKind here, once, so that
views never inspect message text.

Author: Khalil_Bannouri
Version: 1.0.0
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Closed enumeration of failure categories surfaced to callers."""
    VALIDATION = "validation"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    NETWORK = "network"
    PERMISSION_DENIED = "permission_denied"
    MISSING_TABLE = "missing_table"
    BACKEND = "backend"
    UNKNOWN = "unknown"


# Code attached to transport-level failures (connection refused, DNS, ...)
NETWORK_ERROR_CODE = "network_error"

SQLSTATE_KINDS: dict[str, ErrorKind] = {
    "23505": ErrorKind.CONFLICT,           # unique_violation
    "23503": ErrorKind.VALIDATION,         # foreign_key_violation
    "23502": ErrorKind.VALIDATION,         # not_null_violation
    "23514": ErrorKind.VALIDATION,         # check_violation
    "22P02": ErrorKind.VALIDATION,         # invalid_text_representation
    "42501": ErrorKind.PERMISSION_DENIED,  # insufficient_privilege / RLS
    "42P01": ErrorKind.MISSING_TABLE,      # undefined_table
    "08000": ErrorKind.NETWORK,
    "08001": ErrorKind.NETWORK,
    "08006": ErrorKind.NETWORK,
}

PROVIDER_CODE_KINDS: dict[str, ErrorKind] = {
    # PostgREST
    "PGRST116": ErrorKind.NOT_FOUND,
    "PGRST301": ErrorKind.UNAUTHENTICATED,
    "PGRST302": ErrorKind.UNAUTHENTICATED,
    "PGRST204": ErrorKind.VALIDATION,
    "PGRST205": ErrorKind.MISSING_TABLE,
    # Auth server
    "user_already_exists": ErrorKind.CONFLICT,
    "email_exists": ErrorKind.CONFLICT,
    "invalid_credentials": ErrorKind.UNAUTHENTICATED,
    "invalid_grant": ErrorKind.UNAUTHENTICATED,
    "flow_state_not_found": ErrorKind.UNAUTHENTICATED,
    "bad_jwt": ErrorKind.UNAUTHENTICATED,
    "session_not_found": ErrorKind.UNAUTHENTICATED,
    "weak_password": ErrorKind.VALIDATION,
    "validation_failed": ErrorKind.VALIDATION,
    "email_not_confirmed": ErrorKind.FORBIDDEN,
    NETWORK_ERROR_CODE: ErrorKind.NETWORK,
}

HTTP_STATUS_KINDS: dict[int, ErrorKind] = {
    400: ErrorKind.VALIDATION,
    401: ErrorKind.UNAUTHENTICATED,
    403: ErrorKind.PERMISSION_DENIED,
    404: ErrorKind.NOT_FOUND,
    406: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    422: ErrorKind.VALIDATION,
}

KIND_HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.NETWORK: 503,
    ErrorKind.MISSING_TABLE: 500,
    ErrorKind.BACKEND: 502,
    ErrorKind.UNKNOWN: 500,
}

USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "Some of the information provided is invalid.",
    ErrorKind.UNAUTHENTICATED: "Please login to continue.",
    ErrorKind.FORBIDDEN: "You do not have permission to do that.",
    ErrorKind.PERMISSION_DENIED: "You do not have permission to access this data.",
    ErrorKind.NOT_FOUND: "We could not find what you were looking for.",
    ErrorKind.CONFLICT: "This record already exists.",
    ErrorKind.NETWORK: "Network error. Please check your connection and try again.",
    ErrorKind.MISSING_TABLE: "The store database is not set up yet. Please contact support.",
    ErrorKind.BACKEND: "The store backend returned an error. Please try again.",
    ErrorKind.UNKNOWN: "Something went wrong. Please try again.",
}


@dataclass
class BackendError:
    """
    Error descriptor returned by backend, auth and realtime providers.

    Attributes:
        message: Provider message (for logs, never shown as-is)
        code: SQLSTATE or provider-specific code
        status: HTTP status when the provider speaks HTTP
        details: Provider details
        hint: Provider hint
        table: Table the failing call targeted
    """
    message: str
    code: Optional[str] = None
    status: Optional[int] = None
    details: Optional[str] = None
    hint: Optional[str] = None
    table: Optional[str] = None

    @property
    def kind(self) -> ErrorKind:
        return classify_backend_error(self)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "message": self.message,
            "code": self.code,
            "status": self.status,
            "details": self.details,
            "hint": self.hint,
            "table": self.table,
            "kind": self.kind.value,
        }


def classify_backend_error(error: BackendError) -> ErrorKind:
    """Map a provider error onto the closed ErrorKind set."""
    if error.code:
        if error.code in PROVIDER_CODE_KINDS:
            return PROVIDER_CODE_KINDS[error.code]
        if error.code in SQLSTATE_KINDS:
            return SQLSTATE_KINDS[error.code]
        if error.code.startswith("08"):
            return ErrorKind.NETWORK
    if error.status is not None:
        if error.status in HTTP_STATUS_KINDS:
            return HTTP_STATUS_KINDS[error.status]
        if error.status >= 500:
            return ErrorKind.BACKEND
    return ErrorKind.UNKNOWN


def user_message(kind: ErrorKind) -> str:
    return USER_MESSAGES.get(kind, USER_MESSAGES[ErrorKind.UNKNOWN])


class StorefrontError(Exception):
    """
    Base exception surfaced to the view boundary.

    The FastAPI exception handler renders it as
    {"success": false, "error": <kind>, "message": ..., "field": ...}.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: Optional[str] = None,
        field: Optional[str] = None,
        details: Optional[Any] = None,
    ):
        self.kind = kind
        self.message = message or user_message(kind)
        self.field = field
        self.details = details
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return KIND_HTTP_STATUS.get(self.kind, 500)

    def to_dict(self) -> dict:
        body = {
            "success": False,
            "error": self.kind.value,
            "message": self.message,
        }
        if self.field:
            body["field"] = self.field
        return body


class ValidationFailed(StorefrontError):
    """Client-side validation error scoped to one field."""

    def __init__(self, field: str, message: str):
        super().__init__(ErrorKind.VALIDATION, message=message, field=field)


class NotAuthenticated(StorefrontError):
    def __init__(self, message: str = "Please login to continue."):
        super().__init__(ErrorKind.UNAUTHENTICATED, message=message)


class AccessDenied(StorefrontError):
    def __init__(self, message: str = "You do not have admin privileges."):
        super().__init__(ErrorKind.FORBIDDEN, message=message)


class BackendCallError(StorefrontError):
    """A backend call returned an error descriptor."""

    def __init__(self, error: BackendError, context: Optional[str] = None):
        self.error = error
        self.context = context
        super().__init__(error.kind, details=error.to_dict())

    def __str__(self) -> str:
        prefix = f"{self.context}: " if self.context else ""
        return f"{prefix}{self.error.message} ({self.kind.value})"


class FormInvalid(StorefrontError):
    """Several field-scoped validation errors at once."""

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        field, message = next(iter(self.errors.items()))
        super().__init__(ErrorKind.VALIDATION, message=message, field=field)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["errors"] = self.errors
        return body
