import asyncio
import logging

import pytest

from storefront.core.config import AdminPolicyName
from storefront.services.admin import (
    AdminOrderService,
    EmailSubstringPolicy,
    RolePolicy,
    build_admin_policy,
    get_admin_policy,
    search_orders,
)
from storefront.services.orders import OrderService
from storefront.services.profiles import ProfileService


@pytest.fixture
def shop(backend):
    """Two customers with three orders between them."""
    async def setup():
        profiles = ProfileService(backend)
        await profiles.create({"id": "u-jane", "email": "jane@example.com", "full_name": "Jane Doe"})
        await profiles.create({"id": "u-raj", "email": "raj@example.com", "full_name": "Raj Kumar"})
        placed = []
        for user_id, status in (("u-jane", "pending"), ("u-raj", "preparing"), ("u-jane", "delivered")):
            result = await backend.insert("orders", {
                "user_id": user_id, "status": status,
                "total_amount": 299.0, "shipping_address": "12 MG Road, 560001",
            })
            placed.append(result.data[0])
        return placed

    return asyncio.run(setup())


@pytest.fixture
def admin(backend):
    return AdminOrderService(OrderService(backend))


def test_list_joins_owner_profile(admin, shop):
    orders = asyncio.run(admin.list_orders())

    assert len(orders) == 3
    owners = {o["id"]: o["profiles"]["full_name"] for o in orders}
    assert owners[shop[1]["id"]] == "Raj Kumar"


def test_list_filters_by_status(admin, shop):
    orders = asyncio.run(admin.list_orders(status="preparing"))
    assert [o["id"] for o in orders] == [shop[1]["id"]]

    assert len(asyncio.run(admin.list_orders(status="all"))) == 3


def test_search_by_name_email_and_id(admin, shop):
    assert len(asyncio.run(admin.list_orders(search="JANE"))) == 2
    assert len(asyncio.run(admin.list_orders(search="raj@"))) == 1

    order_id = shop[2]["id"]
    found = asyncio.run(admin.list_orders(search=order_id[:8].upper()))
    assert [o["id"] for o in found] == [order_id]


def test_search_combines_with_status(admin, shop):
    orders = asyncio.run(admin.list_orders(status="delivered", search="jane"))
    assert [o["id"] for o in orders] == [shop[2]["id"]]


def test_search_tolerates_missing_profile():
    orders = [{"id": "abc123", "profiles": None}]
    assert search_orders(orders, "ABC") == orders
    assert search_orders(orders, "jane") == []
    assert search_orders(orders, "") == orders


def test_status_update_and_stats(admin, shop):
    asyncio.run(admin.update_status(shop[0]["id"], "preparing"))

    stats = asyncio.run(admin.stats())
    assert stats.to_dict() == {"total": 3, "pending": 0, "preparing": 2, "delivered": 1}


def test_role_policy():
    policy = RolePolicy()
    assert policy.is_admin({"email": "someone@example.com", "role": "admin"})
    assert not policy.is_admin({"email": "store.admin@example.com", "role": "customer"})
    assert not policy.is_admin(None)


def test_email_substring_policy_warns(caplog):
    with caplog.at_level(logging.WARNING):
        policy = EmailSubstringPolicy("admin")

    assert "email substring" in caplog.text
    assert policy.is_admin({"email": "store.admin@example.com"})
    assert policy.is_admin({"email": "Store.ADMIN@example.com"})
    assert not policy.is_admin({"email": "jane@example.com"})
    assert not policy.is_admin({})


def test_empty_marker_is_rejected():
    with pytest.raises(ValueError):
        EmailSubstringPolicy("")


def test_policy_from_settings():
    assert isinstance(get_admin_policy(), RolePolicy)

    policy = build_admin_policy(AdminPolicyName.EMAIL_SUBSTRING, marker="staff")
    assert isinstance(policy, EmailSubstringPolicy)
    assert policy.is_admin({"email": "staff.one@example.com"})
