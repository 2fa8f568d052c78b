import pytest

from storefront.errors import (
    BackendCallError,
    BackendError,
    ErrorKind,
    FormInvalid,
    NETWORK_ERROR_CODE,
    StorefrontError,
    classify_backend_error,
)
from storefront.services.backend.base import BackendResult


@pytest.mark.parametrize("error, kind", [
    (BackendError("duplicate key", code="23505"), ErrorKind.CONFLICT),
    (BackendError("fk", code="23503"), ErrorKind.VALIDATION),
    (BackendError("rls", code="42501", status=403), ErrorKind.PERMISSION_DENIED),
    (BackendError("no table", code="42P01"), ErrorKind.MISSING_TABLE),
    (BackendError("no table", code="PGRST205", status=404), ErrorKind.MISSING_TABLE),
    (BackendError("zero rows", code="PGRST116", status=406), ErrorKind.NOT_FOUND),
    (BackendError("jwt expired", code="PGRST301", status=401), ErrorKind.UNAUTHENTICATED),
    (BackendError("exists", code="user_already_exists", status=422), ErrorKind.CONFLICT),
    (BackendError("bad login", code="invalid_credentials", status=400), ErrorKind.UNAUTHENTICATED),
    (BackendError("refused", code=NETWORK_ERROR_CODE), ErrorKind.NETWORK),
    (BackendError("conn lost", code="08003"), ErrorKind.NETWORK),
    (BackendError("bad gateway", status=502), ErrorKind.BACKEND),
    (BackendError("teapot", status=418), ErrorKind.UNKNOWN),
    (BackendError("???"), ErrorKind.UNKNOWN),
])
def test_classification(error, kind):
    assert classify_backend_error(error) == kind
    assert error.kind == kind


def test_code_wins_over_status():
    # A unique violation reported with a generic 400
    assert classify_backend_error(BackendError("dup", code="23505", status=400)) == ErrorKind.CONFLICT


def test_unwrap_raises_with_context():
    result = BackendResult(error=BackendError("no table", code="42P01", table="orders"))

    with pytest.raises(BackendCallError) as info:
        result.unwrap("list orders")

    assert info.value.kind == ErrorKind.MISSING_TABLE
    assert info.value.http_status == 500
    assert str(info.value).startswith("list orders: no table")
    assert info.value.details["table"] == "orders"


def test_unwrap_returns_data():
    assert BackendResult(data=[1, 2]).unwrap() == [1, 2]


def test_storefront_error_body():
    error = StorefrontError(ErrorKind.NOT_FOUND, field="order_id")

    assert error.http_status == 404
    assert error.to_dict() == {
        "success": False,
        "error": "not_found",
        "message": "We could not find what you were looking for.",
        "field": "order_id",
    }


def test_form_invalid_reports_every_field():
    error = FormInvalid({"email": "Email is required", "password": "Password is required"})

    body = error.to_dict()
    assert body["field"] == "email"
    assert body["message"] == "Email is required"
    assert body["errors"]["password"] == "Password is required"
    assert error.http_status == 400
