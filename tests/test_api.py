import asyncio
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from storefront.main import app
from storefront.services.backend import get_backend_client
from storefront.session import get_session_registry

JANE = {
    "email": "jane@example.com",
    "password": "secret1",
    "full_name": "Jane Doe",
    "address": "12 MG Road, Bengaluru",
    "pincode": "560001",
}


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def sign_up(client, **overrides) -> dict:
    response = client.post("/api/auth/sign-up", json={**JANE, **overrides})
    assert response.status_code == 201, response.text
    token = response.json()["access_token"]
    client.cookies.clear()
    return {"Authorization": f"Bearer {token}"}


def menu_ids(client, headers) -> dict:
    products = client.get("/api/menu", headers=headers).json()["products"]
    return {p["name"]: p["id"] for p in products}


def fill_cart(client, headers):
    ids = menu_ids(client, headers)
    for name in ("Margherita", "Margherita", "Cheese Dip"):
        response = client.post("/api/cart/items", json={"product_id": ids[name]}, headers=headers)
        assert response.status_code == 200, response.text
    return response.json()


def promote_to_admin(headers_of_user, client):
    session = client.get("/api/auth/session", headers=headers_of_user).json()
    asyncio.run(get_backend_client().update("profiles", session["user_id"], {"role": "admin"}))
    get_session_registry().invalidate(user_id=session["user_id"])


# =============================================================================
# ROOT & HEALTH
# =============================================================================

def test_root(client):
    body = client.get("/").json()
    assert body["menu"] == "/api/menu"


def test_health_reports_each_component(client):
    body = client.get("/health").json()

    assert body["backend"] == "healthy"
    assert body["auth"] == "healthy"
    assert body["realtime"] == "healthy"
    assert body["providers"]["backend"] == "memory"
    # No broker in the test environment
    assert body["redis"].startswith("unhealthy")
    assert body["status"] == "degraded"


def test_unknown_route_is_json_404(client):
    response = client.get("/api/nope")

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


# =============================================================================
# AUTH
# =============================================================================

def test_sign_up_creates_profile(client):
    response = client.post("/api/auth/sign-up", json=JANE)

    assert response.status_code == 201
    body = response.json()
    assert body["profile"]["full_name"] == "Jane Doe"
    assert body["profile"]["loyalty_points"] == 0
    assert "sb-access-token" in response.cookies


def test_sign_up_validation_lists_fields(client):
    response = client.post("/api/auth/sign-up", json={**JANE, "email": "jane", "password": "123", "pincode": "12"})

    assert response.status_code == 400
    errors = response.json()["errors"]
    assert set(errors) == {"email", "password", "pincode"}


def test_duplicate_sign_up(client):
    sign_up(client)
    response = client.post("/api/auth/sign-up", json=JANE)

    assert response.status_code == 409
    assert response.json()["message"].startswith("An account with this email already exists")


def test_sign_in_and_out(client):
    sign_up(client)

    wrong = client.post("/api/auth/sign-in", json={"email": JANE["email"], "password": "wrong-password"})
    assert wrong.status_code == 401
    assert wrong.json()["message"] == "Invalid email or password."

    response = client.post("/api/auth/sign-in", json={"email": JANE["email"], "password": JANE["password"]})
    assert response.status_code == 200
    headers = {"Authorization": f"Bearer {response.json()['access_token']}"}
    client.cookies.clear()

    assert client.get("/api/auth/session", headers=headers).json()["authenticated"]
    assert client.post("/api/auth/sign-out", headers=headers).status_code == 200
    assert client.get("/api/auth/session", headers=headers).json() == {"authenticated": False}


def test_oauth_redirect_flow(client):
    start = client.get("/api/auth/oauth", params={"provider": "google"}, follow_redirects=False)
    assert start.status_code == 302
    location = urlparse(start.headers["location"])
    assert location.path == "/dashboard"
    code = parse_qs(location.query)["code"][0]

    finish = client.get("/dashboard", params={"code": code}, follow_redirects=False)
    assert finish.status_code == 302
    assert finish.headers["location"] == "/api/dashboard"

    dashboard = client.get("/api/dashboard")
    assert dashboard.status_code == 200
    assert dashboard.json()["profile"]["email"] == "oauth.user@example.com"


def test_oauth_error_is_explained(client):
    response = client.get("/dashboard", params={"error": "redirect_uri_mismatch"})

    assert response.status_code == 400
    assert response.json()["message"].startswith("Authentication configuration error")


def test_protected_routes_need_a_session(client):
    response = client.get("/api/cart")

    assert response.status_code == 401
    assert response.json()["error"] == "unauthenticated"


# =============================================================================
# STOREFRONT
# =============================================================================

def test_menu_lists_seeded_catalog(client):
    body = client.get("/api/menu").json()

    assert [c["id"] for c in body["categories"]] == ["veg", "non-veg", "specialty", "sides"]
    assert len(body["products"]) == 14
    sides = client.get("/api/menu", params={"category": "sides"}).json()["products"]
    assert {p["name"] for p in sides} == {"Garlic Breadsticks", "Cheese Dip", "Spicy Wings"}


def test_cart_and_checkout(client):
    headers = sign_up(client)

    cart = fill_cart(client, headers)
    assert cart["total"] == 697.0
    assert cart["points_to_earn"] == 35

    ids = menu_ids(client, headers)
    menu = client.get("/api/menu", headers=headers).json()["products"]
    assert next(p for p in menu if p["name"] == "Margherita")["quantity_in_cart"] == 2

    response = client.post("/api/checkout", json={}, headers=headers)
    assert response.status_code == 200, response.text
    confirmation = response.json()
    assert confirmation["points_earned"] == 35
    assert confirmation["shipping_address"] == "12 MG Road, Bengaluru, 560001"

    assert client.get("/api/cart", headers=headers).json()["item_count"] == 0

    history = client.get("/api/orders", headers=headers).json()
    assert history["total"] == 1
    assert history["orders"][0]["status_display"]["label"] == "Pending"

    detail = client.get(f"/api/orders/{confirmation['order_id']}", headers=headers).json()
    assert {i["product_id"] for i in detail["items"]} == {ids["Margherita"], ids["Cheese Dip"]}

    active = client.get("/api/orders/active", headers=headers).json()["orders"]
    assert active[0]["product_names"]

    dashboard = client.get("/api/dashboard", headers=headers).json()
    assert dashboard["profile"]["loyalty_points"] == 35
    assert dashboard["loyalty"]["name"] == "Bronze"
    assert len(dashboard["recent_orders"]) == 1


def test_remove_from_cart(client):
    headers = sign_up(client)
    fill_cart(client, headers)
    dip = menu_ids(client, headers)["Cheese Dip"]

    cart = client.delete(f"/api/cart/items/{dip}", headers=headers).json()
    assert cart["total"] == 598.0

    assert client.delete("/api/cart", headers=headers).json()["items"] == []


def test_checkout_without_session(client):
    response = client.post("/api/checkout", json={})

    assert response.status_code == 401
    assert response.json()["error"] == "no_session"


def test_checkout_errors(client):
    headers = sign_up(client)

    empty = client.post("/api/checkout", json={}, headers=headers)
    assert empty.status_code == 400
    assert empty.json()["error"] == "empty_cart"

    fill_cart(client, headers)
    bad = client.post("/api/checkout", json={"pincode": "1234"}, headers=headers)
    assert bad.status_code == 400
    assert bad.json()["error"] == "invalid_postal_code"
    assert bad.json()["message"] == "Please enter a valid 6-digit pincode"


def test_checkout_rollback_surfaces(client):
    headers = sign_up(client)
    fill_cart(client, headers)
    get_backend_client().fail_next("order_items", "insert")

    response = client.post("/api/checkout", json={}, headers=headers)

    assert response.status_code == 502
    assert response.json()["error"] == "order_items_failed"
    assert response.json()["rolled_back"] is True
    assert client.get("/api/orders", headers=headers).json()["total"] == 0
    assert client.get("/api/cart", headers=headers).json()["item_count"] == 3


def test_profile_update(client):
    headers = sign_up(client)

    response = client.patch("/api/profile", json={"address": "7 Brigade Road"}, headers=headers)
    assert response.status_code == 200
    assert client.get("/api/profile", headers=headers).json()["address"] == "7 Brigade Road"

    assert client.patch("/api/profile", json={}, headers=headers).status_code == 400


def test_orders_of_other_accounts_are_hidden(client):
    jane = sign_up(client)
    fill_cart(client, jane)
    order_id = client.post("/api/checkout", json={}, headers=jane).json()["order_id"]

    raj = sign_up(client, email="raj@example.com", full_name="Raj Kumar")
    assert client.get(f"/api/orders/{order_id}", headers=raj).status_code == 404


# =============================================================================
# ADMIN
# =============================================================================

def test_admin_routes_are_forbidden_for_customers(client):
    headers = sign_up(client)

    response = client.get("/api/admin/orders", headers=headers)
    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"


def test_admin_order_management(client):
    jane = sign_up(client)
    fill_cart(client, jane)
    order_id = client.post("/api/checkout", json={}, headers=jane).json()["order_id"]

    admin = sign_up(client, email="owner@example.com", full_name="Store Owner")
    promote_to_admin(admin, client)

    orders = client.get("/api/admin/orders", params={"search": "JANE"}, headers=admin).json()
    assert orders["total"] == 1
    assert orders["orders"][0]["profiles"]["email"] == "jane@example.com"

    response = client.patch(f"/api/admin/orders/{order_id}/status", json={"status": "preparing"}, headers=admin)
    assert response.status_code == 200
    assert response.json()["order"]["status_display"]["label"] == "Preparing"

    invalid = client.patch(f"/api/admin/orders/{order_id}/status", json={"status": "teleported"}, headers=admin)
    assert invalid.status_code == 422

    stats = client.get("/api/admin/stats", headers=admin).json()
    assert stats == {"total": 1, "pending": 0, "preparing": 1, "delivered": 0}

    filtered = client.get("/api/admin/orders", params={"status": "delivered"}, headers=admin).json()
    assert filtered["total"] == 0

    # Admins can open any account's order
    detail = client.get(f"/api/orders/{order_id}", headers=admin)
    assert detail.status_code == 200

    page = client.get("/admin", headers=admin)
    assert page.status_code == 200
    assert "Preparing" in page.text
    assert "jane@example.com" in page.text


def test_admin_database_init_and_reconcile(client):
    admin = sign_up(client, email="owner@example.com")
    promote_to_admin(admin, client)

    seeded = client.post("/api/admin/database-init", headers=admin).json()
    assert seeded == {"success": True, "message": "Database initialized successfully",
                      "categories": 4, "products": 14}

    report = client.post("/api/admin/reconcile", params={"dry_run": True}, headers=admin).json()
    assert report["orphaned"] == []
