"""
Order Service

Order access for customers and the order-placement primitive used by
checkout.

Placement:
    - Transactional providers insert the order and its items in one
      transaction; nothing persists on failure.
    - Other providers insert the order, then the item batch, and delete the
      order again if the batch fails. A failed delete leaves an order with
      zero items behind; it is logged and swept by the reconciliation task.

Views:
    - Order history: id search, status filter, sort
    - Active orders: recent, not delivered/cancelled, with product names
    - Live feed: re-fetch of the active orders on every orders UPDATE event

Author: Khalil_Bannouri
Version: 1.0.0
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional, Sequence

from storefront.core.config import get_settings
from storefront.errors import BackendCallError, BackendError, ErrorKind, ValidationFailed
from storefront.models import OrderStatus
from storefront.services.backend.base import BaseBackendClient, Row, eq, gt, neq
from storefront.services.products import ProductService
from storefront.services.realtime.base import BaseRealtimeService, ChangeEvent

logger = logging.getLogger(__name__)


# =============================================================================
# STATUS DISPLAY
# =============================================================================

@dataclass(frozen=True)
class StatusDisplay:
    icon: str
    label: str
    color: str

    def to_dict(self) -> dict:
        return {"icon": self.icon, "label": self.label, "color": self.color}


STATUS_DISPLAY: dict[OrderStatus, StatusDisplay] = {
    OrderStatus.PENDING: StatusDisplay("clock", "Pending", "orange"),
    OrderStatus.PREPARING: StatusDisplay("package", "Preparing", "yellow"),
    OrderStatus.OUT_FOR_DELIVERY: StatusDisplay("truck", "Out for Delivery", "blue"),
    OrderStatus.DELIVERED: StatusDisplay("check-circle", "Delivered", "green"),
    OrderStatus.CANCELLED: StatusDisplay("ban", "Cancelled", "red"),
}

# Statuses after which an order is no longer tracked
FINAL_STATUSES = (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


def parse_status(status: str) -> OrderStatus:
    """
    Raises:
        ValidationFailed: If the value is not a known status
    """
    try:
        return OrderStatus(status)
    except ValueError:
        options = [s.value for s in OrderStatus]
        raise ValidationFailed("status", f"Invalid status '{status}'. Options: {options}")


def status_display(status: str) -> StatusDisplay:
    return STATUS_DISPLAY[parse_status(status)]


# =============================================================================
# HISTORY FILTERING
# =============================================================================

HISTORY_SORTS = ("created_at", "id")


def parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def filter_order_history(
    orders: Sequence[Row],
    search: str = "",
    status: str = "all",
    sort_by: str = "created_at",
) -> list[Row]:
    """
    Filter and sort a customer's orders.

    Args:
        orders: Orders to filter
        search: Case-insensitive substring of the order id
        status: "all" or one status value
        sort_by: "created_at" (newest first) or "id" (ascending)
    """
    if sort_by not in HISTORY_SORTS:
        raise ValidationFailed("sort_by", f"Invalid sort '{sort_by}'. Options: {list(HISTORY_SORTS)}")
    if status != "all":
        parse_status(status)

    needle = (search or "").lower()
    matched = [
        order for order in orders
        if needle in str(order["id"]).lower()
        and (status == "all" or order.get("status") == status)
    ]

    if sort_by == "created_at":
        matched.sort(key=lambda o: parse_timestamp(o["created_at"]), reverse=True)
    else:
        matched.sort(key=lambda o: str(o["id"]))
    return matched


# =============================================================================
# PLACEMENT RESULT
# =============================================================================

class OrderPlacementError(Exception):
    """
    Order placement failed.

    Attributes:
        stage: "order" if the order insert failed, "items" if the item batch did
        error: Backend error of the failing insert
        order_id: Id of the order created before the items failed
        rolled_back: For stage "items": True if no order row remains
    """

    def __init__(
        self,
        stage: str,
        error: BackendError,
        order_id: Optional[str] = None,
        rolled_back: bool = True,
    ):
        self.stage = stage
        self.error = error
        self.order_id = order_id
        self.rolled_back = rolled_back
        super().__init__(f"{stage} insert failed: {error.message}")


@dataclass
class PlacedOrder:
    order: Row
    items: list[Row]


# =============================================================================
# SERVICE
# =============================================================================

class OrderService:
    """
    Orders and order items of the signed-in account (or every account,
    for admin sessions under row-level security).
    """

    def __init__(self, backend: BaseBackendClient):
        self._backend = backend
        self._products = ProductService(backend)

    @property
    def backend(self) -> BaseBackendClient:
        return self._backend

    async def list_user_orders(self, user_id: str) -> list[Row]:
        """A user's orders, newest first."""
        result = await self._backend.select(
            "orders",
            [eq("user_id", user_id)],
            order_by="created_at",
            descending=True,
        )
        return result.unwrap(f"list orders of {user_id}")

    async def list_orders_by_status(self, status: str) -> list[Row]:
        parse_status(status)
        result = await self._backend.select(
            "orders",
            [eq("status", status)],
            order_by="created_at",
            descending=True,
        )
        return result.unwrap(f"list {status} orders")

    async def list_all(self, status: Optional[str] = None) -> list[Row]:
        """Every order, newest first; status None or "all" means unfiltered."""
        filters = None
        if status and status != "all":
            parse_status(status)
            filters = [eq("status", status)]
        result = await self._backend.select(
            "orders",
            filters,
            order_by="created_at",
            descending=True,
        )
        return result.unwrap("list orders")

    async def get_order(self, order_id: str) -> Row:
        result = await self._backend.select_one("orders", order_id)
        return result.unwrap(f"get order {order_id}")

    async def get_items(self, order_id: str) -> list[Row]:
        """Items of one order, each joined with its product (None if gone)."""
        result = await self._backend.select("order_items", [eq("order_id", order_id)])
        items = result.unwrap(f"get items of order {order_id}")
        products = await self._products.get_many([item["product_id"] for item in items])
        for item in items:
            product = products.get(item["product_id"])
            item["product"] = product
            item["product_name"] = product["name"] if product else None
        return items

    async def get_order_with_items(self, order_id: str) -> dict:
        order = await self.get_order(order_id)
        items = await self.get_items(order_id)
        return {"order": order, "items": items}

    async def update_status(self, order_id: str, status: str) -> Row:
        """Set one order's status; last write wins."""
        parse_status(status)
        result = await self._backend.update(
            "orders",
            order_id,
            {"status": status, "updated_at": datetime.now(timezone.utc).isoformat()},
        )
        updated = result.unwrap(f"update status of order {order_id}")
        logger.info(f"📦 Order {order_id} → {status}")
        return updated

    # -------------------------------------------------------------------------
    # Placement
    # -------------------------------------------------------------------------

    async def place_order(self, order: Row, items: Sequence[Row]) -> PlacedOrder:
        """
        Persist an order and its items.

        Raises:
            OrderPlacementError: stage "order" or "items"
        """
        if self._backend.supports_transactions:
            return await self._place_transactional(order, items)
        return await self._place_with_compensation(order, items)

    async def _place_transactional(self, order: Row, items: Sequence[Row]) -> PlacedOrder:
        result = await self._backend.insert_order_with_items(order, items)
        if not result.success:
            stage = "items" if result.error.table == "order_items" else "order"
            logger.error(f"Order placement rolled back ({stage}): {result.error.message}")
            raise OrderPlacementError(stage, result.error, rolled_back=True)
        return PlacedOrder(order=result.data["order"], items=result.data["items"])

    async def _place_with_compensation(self, order: Row, items: Sequence[Row]) -> PlacedOrder:
        order_result = await self._backend.insert("orders", order)
        if not order_result.success:
            logger.error(f"Order insert failed: {order_result.error.message}")
            raise OrderPlacementError("order", order_result.error)

        created = order_result.data[0]
        order_id = created["id"]
        batch = [{**item, "order_id": order_id} for item in items]

        items_result = await self._backend.insert("order_items", batch)
        if items_result.success:
            logger.info(f"🍕 Order {order_id} placed with {len(batch)} item(s)")
            return PlacedOrder(order=created, items=items_result.data)

        logger.error(
            f"Order item insert failed for {order_id} "
            f"(code={items_result.error.code}): {items_result.error.message}"
        )
        delete_result = await self._backend.delete("orders", order_id)
        if delete_result.success:
            logger.warning(f"Order {order_id} rolled back")
            rolled_back = True
        else:
            logger.error(
                f"❌ Rollback of order {order_id} failed: {delete_result.error.message}. "
                f"Left for the orphaned-order sweep."
            )
            rolled_back = False

        raise OrderPlacementError(
            "items",
            items_result.error,
            order_id=order_id,
            rolled_back=rolled_back,
        )

    # -------------------------------------------------------------------------
    # Active orders
    # -------------------------------------------------------------------------

    async def active_orders(self, user_id: str, window_days: Optional[int] = None) -> list[Row]:
        """
        Recent orders still in progress, each with its items and product names.

        An item fetch failure for one order leaves that order with no items.
        """
        if window_days is None:
            window_days = get_settings().active_order_window_days
        since = (datetime.now(timezone.utc) - timedelta(days=window_days)).isoformat()

        result = await self._backend.select(
            "orders",
            [
                eq("user_id", user_id),
                gt("created_at", since),
                neq("status", OrderStatus.DELIVERED.value),
                neq("status", OrderStatus.CANCELLED.value),
            ],
            order_by="created_at",
            descending=True,
        )
        orders = result.unwrap("list active orders")
        if not orders:
            return []

        async def with_items(order: Row) -> Row:
            try:
                items = await self.get_items(order["id"])
            except BackendCallError as e:
                logger.error(f"Error fetching items for order {order['id']}: {e}")
                items = []
            return {
                **order,
                "items": items,
                "product_names": [i["product_name"] for i in items if i["product_name"]],
            }

        return list(await asyncio.gather(*(with_items(order) for order in orders)))


async def watch_active_orders(
    service: OrderService,
    realtime: BaseRealtimeService,
    user_id: str,
    access_token: Optional[str] = None,
) -> AsyncIterator[list[Row]]:
    """
    Yield the active orders now and again after every orders UPDATE event.

    Events are not filtered by owner; each one triggers a full re-fetch, and
    a burst of events collapses into one re-fetch. The subscription is torn
    down when the generator is closed.
    """
    changes: asyncio.Queue[ChangeEvent] = asyncio.Queue()
    subscription = await realtime.subscribe(
        "orders",
        changes.put_nowait,
        event="UPDATE",
        access_token=access_token,
    )
    try:
        yield await service.active_orders(user_id)
        while True:
            await changes.get()
            while not changes.empty():
                changes.get_nowait()
            try:
                yield await service.active_orders(user_id)
            except BackendCallError as e:
                if e.kind == ErrorKind.UNAUTHENTICATED:
                    raise
                logger.warning(f"Active orders re-fetch failed: {e}")
    finally:
        await subscription.unsubscribe()
