import asyncio
import json
from urllib.parse import parse_qs, urlparse

import httpx

from storefront.core.config import get_settings
from storefront.errors import ErrorKind
from storefront.services.auth.hosted import HostedAuthService
from storefront.services.backend import as_service_role
from storefront.services.backend.base import eq, in_, neq
from storefront.services.backend.hosted import HostedBackendClient, build_filter_params
from storefront.services.orders import OrderService
from storefront.services.realtime.polling import PollingRealtimeService
from storefront.services.reconciliation import purge_orphaned_orders

BASE_URL = "https://pizza.supabase.co"
ANON_KEY = "anon-key"


class Recorder:
    """MockTransport handler answering from a queue of canned responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def hosted_backend(recorder: Recorder) -> HostedBackendClient:
    client = httpx.AsyncClient(base_url=f"{BASE_URL}/rest/v1", transport=httpx.MockTransport(recorder))
    return HostedBackendClient(base_url=BASE_URL, api_key=ANON_KEY, client=client)


def hosted_auth(recorder: Recorder) -> HostedAuthService:
    client = httpx.AsyncClient(base_url=f"{BASE_URL}/auth/v1", transport=httpx.MockTransport(recorder))
    return HostedAuthService(base_url=BASE_URL, api_key=ANON_KEY, client=client)


# =============================================================================
# DATA API
# =============================================================================

def test_filter_params():
    params = build_filter_params([
        eq("user_id", "u1"),
        neq("status", "delivered"),
        in_("id", ["a", "b"]),
        eq("available", True),
        eq("deleted_at", None),
    ])
    assert params == [
        ("user_id", "eq.u1"),
        ("status", "neq.delivered"),
        ("id", "in.(a,b)"),
        ("available", "eq.true"),
        ("deleted_at", "is.null"),
    ]


def test_select_sends_query_and_session_token():
    recorder = Recorder(httpx.Response(200, json=[{"id": "o1", "status": "pending"}]))
    backend = hosted_backend(recorder).for_session("user-jwt")

    orders = asyncio.run(OrderService(backend).list_user_orders("u1"))

    assert orders == [{"id": "o1", "status": "pending"}]
    request = recorder.requests[0]
    assert request.method == "GET"
    assert request.url.path == "/rest/v1/orders"
    assert request.url.params["user_id"] == "eq.u1"
    assert request.url.params["order"] == "created_at.desc"
    assert request.headers["apikey"] == ANON_KEY
    assert request.headers["authorization"] == "Bearer user-jwt"


def test_insert_posts_batch_and_returns_rows():
    rows = [{"id": "i1", "order_id": "o1"}, {"id": "i2", "order_id": "o1"}]
    recorder = Recorder(httpx.Response(201, json=rows))
    backend = hosted_backend(recorder)

    result = asyncio.run(backend.insert("order_items", [{"order_id": "o1"}, {"order_id": "o1"}]))

    assert result.data == rows
    request = recorder.requests[0]
    assert request.headers["prefer"] == "return=representation"
    assert len(json.loads(request.content)) == 2
    assert request.headers["authorization"] == f"Bearer {ANON_KEY}"


def test_update_of_missing_row_is_not_found():
    recorder = Recorder(httpx.Response(200, json=[]))

    result = asyncio.run(hosted_backend(recorder).update("orders", "o1", {"status": "preparing"}))

    assert result.error.kind == ErrorKind.NOT_FOUND
    assert recorder.requests[0].url.params["id"] == "eq.o1"


def test_conditional_update_guards_on_expected_values():
    recorder = Recorder(httpx.Response(200, json=[]))

    result = asyncio.run(hosted_backend(recorder).update_if(
        "profiles", "u1", {"loyalty_points": 35}, expected={"loyalty_points": 0},
    ))

    assert result.error.kind == ErrorKind.NOT_FOUND
    params = recorder.requests[0].url.params
    assert params["id"] == "eq.u1"
    assert params["loyalty_points"] == "eq.0"


def test_increment_retries_after_lost_race():
    recorder = Recorder(
        httpx.Response(200, json=[{"id": "u1", "loyalty_points": 0}]),
        httpx.Response(200, json=[]),
        httpx.Response(200, json=[{"id": "u1", "loyalty_points": 10}]),
        httpx.Response(200, json=[{"id": "u1", "loyalty_points": 45}]),
    )

    result = asyncio.run(hosted_backend(recorder).increment("profiles", "u1", "loyalty_points", 35))

    assert result.data["loyalty_points"] == 45
    last = recorder.requests[-1]
    assert last.method == "PATCH"
    assert last.url.params["loyalty_points"] == "eq.10"
    assert json.loads(last.content) == {"loyalty_points": 45}


def test_reconciliation_sweep_acts_with_service_key():
    recorder = Recorder(
        httpx.Response(200, json=[{"id": "o1", "created_at": "2026-01-01T00:00:00+00:00"}]),
        httpx.Response(200, json=[]),
        httpx.Response(204),
    )
    backend = as_service_role(hosted_backend(recorder), service_key="service-key")

    report = asyncio.run(purge_orphaned_orders(backend, grace_minutes=5))

    assert report.purged == ["o1"]
    assert [r.method for r in recorder.requests] == ["GET", "GET", "DELETE"]
    assert {r.headers["authorization"] for r in recorder.requests} == {"Bearer service-key"}
    assert {r.headers["apikey"] for r in recorder.requests} == {ANON_KEY}


def test_sweep_without_service_key_falls_back_to_anon():
    backend = hosted_backend(Recorder())

    assert as_service_role(backend) is backend


def test_hosted_deployment_requires_service_key(monkeypatch):
    monkeypatch.setenv("BACKEND_PROVIDER", "hosted")
    monkeypatch.setenv("BACKEND_URL", BASE_URL)
    monkeypatch.setenv("BACKEND_ANON_KEY", ANON_KEY)
    get_settings.cache_clear()

    assert get_settings().validate_production_config() == ["BACKEND_SERVICE_KEY"]

    monkeypatch.setenv("BACKEND_SERVICE_KEY", "service-key")
    get_settings.cache_clear()

    assert get_settings().validate_production_config() == []


def test_error_body_is_classified():
    recorder = Recorder(httpx.Response(
        404,
        json={"code": "42P01", "message": 'relation "public.orders" does not exist'},
    ))

    result = asyncio.run(hosted_backend(recorder).select("orders"))

    assert result.error.kind == ErrorKind.MISSING_TABLE
    assert result.error.table == "orders"


def test_row_security_denial():
    recorder = Recorder(httpx.Response(
        403,
        json={"code": "42501", "message": 'new row violates row-level security policy for table "orders"'},
    ))

    result = asyncio.run(hosted_backend(recorder).insert("orders", {"user_id": "someone-else"}))

    assert result.error.kind == ErrorKind.PERMISSION_DENIED


def test_transport_failure_is_network():
    recorder = Recorder(httpx.ConnectError("connection refused"))

    result = asyncio.run(hosted_backend(recorder).delete("orders", "o1"))

    assert result.error.kind == ErrorKind.NETWORK


def test_upsert_uses_merge_duplicates():
    recorder = Recorder(httpx.Response(201, json=[{"id": "veg"}]))

    asyncio.run(hosted_backend(recorder).upsert("categories", [{"id": "veg"}], on_conflict="id"))

    request = recorder.requests[0]
    assert request.url.params["on_conflict"] == "id"
    assert request.headers["prefer"].startswith("resolution=merge-duplicates")


# =============================================================================
# AUTH API
# =============================================================================

def token_body(email="jane@example.com"):
    return {
        "access_token": "jwt-1",
        "refresh_token": "refresh-1",
        "expires_at": 1900000000,
        "user": {"id": "u1", "email": email, "user_metadata": {"full_name": "Jane Doe"}},
    }


def test_password_sign_in():
    recorder = Recorder(httpx.Response(200, json=token_body()))

    result = asyncio.run(hosted_auth(recorder).sign_in_with_password("jane@example.com", "secret1"))

    assert result.success
    assert result.session.access_token == "jwt-1"
    assert result.user.user_metadata["full_name"] == "Jane Doe"
    request = recorder.requests[0]
    assert request.url.path == "/auth/v1/token"
    assert request.url.params["grant_type"] == "password"


def test_bad_credentials():
    recorder = Recorder(httpx.Response(
        400,
        json={"code": 400, "error_code": "invalid_credentials", "msg": "Invalid login credentials"},
    ))

    result = asyncio.run(hosted_auth(recorder).sign_in_with_password("jane@example.com", "nope"))

    assert result.error.kind == ErrorKind.UNAUTHENTICATED
    assert result.error.message == "Invalid login credentials"


def test_sign_up_pending_confirmation():
    recorder = Recorder(httpx.Response(200, json={"id": "u2", "email": "raj@example.com"}))

    result = asyncio.run(hosted_auth(recorder).sign_up(
        "raj@example.com", "secret1", {"full_name": "Raj"}, redirect_to="http://localhost:8001/dashboard",
    ))

    assert result.success
    assert result.confirmation_required
    assert result.session is None
    request = recorder.requests[0]
    assert request.url.params["redirect_to"] == "http://localhost:8001/dashboard"
    assert json.loads(request.content)["data"] == {"full_name": "Raj"}


def test_authorize_url_carries_pkce_and_google_params():
    auth = hosted_auth(Recorder())

    result = asyncio.run(auth.sign_in_with_oauth(
        "google",
        redirect_to="http://localhost:8001/dashboard",
        scopes="email profile",
        query_params={"access_type": "offline", "prompt": "consent"},
    ))

    url = urlparse(result.redirect_url)
    query = {k: v[0] for k, v in parse_qs(url.query).items()}
    assert url.path == "/auth/v1/authorize"
    assert query["provider"] == "google"
    assert query["code_challenge_method"] == "s256"
    assert query["access_type"] == "offline"
    assert query["prompt"] == "consent"
    assert result.code_verifier


def test_code_exchange_failure():
    recorder = Recorder(httpx.Response(
        404,
        json={"error_code": "flow_state_not_found", "msg": "invalid flow state"},
    ))

    result = asyncio.run(hosted_auth(recorder).exchange_code_for_session("code", "verifier"))

    assert result.error.kind == ErrorKind.UNAUTHENTICATED
    assert json.loads(recorder.requests[0].content) == {"auth_code": "code", "code_verifier": "verifier"}


# =============================================================================
# POLLING FEED
# =============================================================================

def test_polling_feed_reports_updates(backend):
    realtime = PollingRealtimeService(backend, interval=0.01)

    async def scenario():
        order = (await backend.insert("orders", {
            "user_id": "u1", "status": "pending",
            "total_amount": 299.0, "shipping_address": "12 MG Road, 560001",
        })).data[0]
        events = asyncio.Queue()
        subscription = await realtime.subscribe("orders", events.put_nowait, event="UPDATE")
        await asyncio.sleep(0.05)

        await OrderService(backend).update_status(order["id"], "preparing")
        change = await asyncio.wait_for(events.get(), timeout=1)

        assert change.event == "UPDATE"
        assert change.new["status"] == "preparing"
        await subscription.unsubscribe()
        await realtime.close()

    asyncio.run(scenario())


def test_polling_feed_survives_a_crashed_poll(backend, monkeypatch, caplog):
    realtime = PollingRealtimeService(backend, interval=0.01)
    select = backend.select
    crashes = []

    async def flaky_select(table, *args, **kwargs):
        if not crashes:
            crashes.append(table)
            raise RuntimeError("connection pool exhausted")
        return await select(table, *args, **kwargs)

    monkeypatch.setattr(backend, "select", flaky_select)

    async def scenario():
        order = (await backend.insert("orders", {
            "user_id": "u1", "status": "pending",
            "total_amount": 299.0, "shipping_address": "12 MG Road, 560001",
        })).data[0]
        events = asyncio.Queue()
        subscription = await realtime.subscribe("orders", events.put_nowait, event="UPDATE")
        await asyncio.sleep(0.05)

        await OrderService(backend).update_status(order["id"], "preparing")
        change = await asyncio.wait_for(events.get(), timeout=1)

        assert change.new["status"] == "preparing"
        await subscription.unsubscribe()
        await realtime.close()

    asyncio.run(scenario())

    assert crashes == ["orders"]
    assert "poll of orders crashed" in caplog.text
