import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from storefront.errors import BackendCallError, ErrorKind, ValidationFailed
from storefront.services.orders import (
    STATUS_DISPLAY,
    OrderService,
    filter_order_history,
    status_display,
    watch_active_orders,
)
from storefront.services.realtime.mock import InMemoryRealtimeService

HISTORY = [
    {"id": "a1b2c3", "status": "pending", "created_at": "2026-03-01T10:00:00+00:00"},
    {"id": "ffee01", "status": "delivered", "created_at": "2026-03-03T10:00:00+00:00"},
    {"id": "0b2c99", "status": "delivered", "created_at": "2026-03-02T10:00:00Z"},
]


def days_ago(days: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()


async def place(backend, user_id, status="pending", created_at=None, product=None):
    order = {"user_id": user_id, "status": status, "total_amount": 299.0,
             "shipping_address": "12 MG Road, 560001"}
    if created_at:
        order["created_at"] = created_at
    created = (await backend.insert("orders", order)).data[0]
    if product:
        await backend.insert("order_items", [{
            "order_id": created["id"], "product_id": product["id"],
            "quantity": 1, "unit_price": product["price"],
        }])
    return created


# =============================================================================
# STATUS DISPLAY
# =============================================================================

def test_every_status_has_a_display():
    assert status_display("pending").label == "Pending"
    assert status_display("out_for_delivery").icon == "truck"
    assert status_display("cancelled").color == "red"
    assert len(STATUS_DISPLAY) == 5


def test_unknown_status_is_rejected():
    with pytest.raises(ValidationFailed) as info:
        status_display("lost")
    assert info.value.field == "status"


# =============================================================================
# HISTORY FILTERING
# =============================================================================

def test_history_newest_first():
    assert [o["id"] for o in filter_order_history(HISTORY)] == ["ffee01", "0b2c99", "a1b2c3"]


def test_history_sort_by_id():
    assert [o["id"] for o in filter_order_history(HISTORY, sort_by="id")] == ["0b2c99", "a1b2c3", "ffee01"]


def test_history_search_is_case_insensitive():
    assert [o["id"] for o in filter_order_history(HISTORY, search="B2C")] == ["0b2c99", "a1b2c3"]


def test_history_status_filter():
    assert [o["id"] for o in filter_order_history(HISTORY, status="delivered")] == ["ffee01", "0b2c99"]


def test_history_rejects_unknown_sort_and_status():
    with pytest.raises(ValidationFailed):
        filter_order_history(HISTORY, sort_by="total")
    with pytest.raises(ValidationFailed):
        filter_order_history(HISTORY, status="lost")


# =============================================================================
# QUERIES
# =============================================================================

def test_order_with_items_joins_products(backend, products):
    service = OrderService(backend)
    order = asyncio.run(place(backend, "u1", product=products["Margherita"]))

    detail = asyncio.run(service.get_order_with_items(order["id"]))

    assert detail["order"]["id"] == order["id"]
    assert detail["items"][0]["product_name"] == "Margherita"
    assert detail["items"][0]["product"]["price"] == 299.0


def test_missing_order_is_not_found(backend):
    with pytest.raises(BackendCallError) as info:
        asyncio.run(OrderService(backend).get_order("nope"))
    assert info.value.kind == ErrorKind.NOT_FOUND


def test_update_status_validates(backend):
    order = asyncio.run(place(backend, "u1"))
    service = OrderService(backend)

    updated = asyncio.run(service.update_status(order["id"], "preparing"))
    assert updated["status"] == "preparing"

    with pytest.raises(ValidationFailed):
        asyncio.run(service.update_status(order["id"], "teleported"))


def test_list_by_status(backend):
    asyncio.run(place(backend, "u1", status="pending"))
    asyncio.run(place(backend, "u2", status="delivered"))

    orders = asyncio.run(OrderService(backend).list_orders_by_status("delivered"))
    assert [o["user_id"] for o in orders] == ["u2"]


def test_active_orders_window_and_statuses(backend, products):
    asyncio.run(place(backend, "u1", status="pending", product=products["Margherita"]))
    asyncio.run(place(backend, "u1", status="out_for_delivery"))
    asyncio.run(place(backend, "u1", status="delivered"))
    asyncio.run(place(backend, "u1", status="cancelled"))
    asyncio.run(place(backend, "u1", status="pending", created_at=days_ago(45)))
    asyncio.run(place(backend, "u2", status="pending"))

    active = asyncio.run(OrderService(backend).active_orders("u1", window_days=30))

    assert sorted(o["status"] for o in active) == ["out_for_delivery", "pending"]
    pending = next(o for o in active if o["status"] == "pending")
    assert pending["product_names"] == ["Margherita"]


def test_active_orders_item_failure_leaves_order_empty(backend, products):
    asyncio.run(place(backend, "u1", product=products["Margherita"]))
    backend.fail_next("order_items", "select")

    active = asyncio.run(OrderService(backend).active_orders("u1"))

    assert len(active) == 1
    assert active[0]["items"] == []
    assert active[0]["product_names"] == []


# =============================================================================
# LIVE UPDATES
# =============================================================================

def test_watch_refetches_on_update(backend, products):
    realtime = InMemoryRealtimeService(backend)
    service = OrderService(backend)

    async def scenario():
        order = await place(backend, "u1", product=products["Margherita"])
        feed = watch_active_orders(service, realtime, "u1")

        first = await feed.__anext__()
        assert [o["status"] for o in first] == ["pending"]
        assert realtime.subscription_count == 1

        await service.update_status(order["id"], "preparing")
        await service.update_status(order["id"], "out_for_delivery")
        await realtime.drain()
        second = await asyncio.wait_for(feed.__anext__(), timeout=1)
        assert [o["status"] for o in second] == ["out_for_delivery"]

        await service.update_status(order["id"], "delivered")
        await realtime.drain()
        third = await asyncio.wait_for(feed.__anext__(), timeout=1)
        assert third == []

        await feed.aclose()
        assert realtime.subscription_count == 0

    asyncio.run(scenario())


def test_watch_ignores_inserts(backend):
    realtime = InMemoryRealtimeService(backend)
    service = OrderService(backend)

    async def scenario():
        feed = watch_active_orders(service, realtime, "u1")
        assert await feed.__anext__() == []

        await place(backend, "u1")
        await realtime.drain()
        order = (await service.list_user_orders("u1"))[0]
        await service.update_status(order["id"], "preparing")
        await realtime.drain()

        refreshed = await asyncio.wait_for(feed.__anext__(), timeout=1)
        assert [o["status"] for o in refreshed] == ["preparing"]
        await feed.aclose()

    asyncio.run(scenario())
