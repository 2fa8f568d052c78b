"""
Checkout Service

Turns the signed-in account's cart into a persisted order.

Flow:
    1. Preconditions: session, non-empty cart, delivery address, postal code
    2. Order payload (status "pending", cart total, "<address>, <pincode>")
    3. Order + item batch placement (see OrderService.place_order)
    4. On success: cart cleared, loyalty points and address stored on the
       profile, confirmation returned

A failed profile update after a successful placement does not undo the
order; it is logged and the confirmation is still returned.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from storefront.core.config import get_settings
from storefront.errors import BackendCallError, ErrorKind, StorefrontError
from storefront.models import OrderStatus
from storefront.services.backend.base import Row
from storefront.services.cart import Cart, CartStore
from storefront.services.orders import OrderPlacementError, OrderService, PlacedOrder
from storefront.services.profiles import ProfileService

logger = logging.getLogger(__name__)


class CheckoutErrorKind(str, Enum):
    """Every way a checkout can fail."""
    NO_SESSION = "no_session"
    EMPTY_CART = "empty_cart"
    MISSING_ADDRESS = "missing_address"
    INVALID_POSTAL_CODE = "invalid_postal_code"
    ORDER_CREATE_FAILED = "order_create_failed"
    ORDER_ITEMS_FAILED = "order_items_failed"
    UNKNOWN = "unknown"


CHECKOUT_MESSAGES: dict[CheckoutErrorKind, str] = {
    CheckoutErrorKind.NO_SESSION: "Please login to place an order",
    CheckoutErrorKind.EMPTY_CART: "Your cart is empty. Please add items before checkout.",
    CheckoutErrorKind.MISSING_ADDRESS: "Please provide your delivery address and pincode",
    CheckoutErrorKind.INVALID_POSTAL_CODE: "Please enter a valid 6-digit pincode",
    CheckoutErrorKind.ORDER_CREATE_FAILED: "There was an error placing your order. Please try again.",
    CheckoutErrorKind.ORDER_ITEMS_FAILED: (
        "There was an issue with your order items. Please try again or contact support."
    ),
    CheckoutErrorKind.UNKNOWN: "There was an error placing your order. Please try again.",
}

CHECKOUT_ERROR_KINDS: dict[CheckoutErrorKind, ErrorKind] = {
    CheckoutErrorKind.NO_SESSION: ErrorKind.UNAUTHENTICATED,
    CheckoutErrorKind.EMPTY_CART: ErrorKind.VALIDATION,
    CheckoutErrorKind.MISSING_ADDRESS: ErrorKind.VALIDATION,
    CheckoutErrorKind.INVALID_POSTAL_CODE: ErrorKind.VALIDATION,
    CheckoutErrorKind.ORDER_CREATE_FAILED: ErrorKind.BACKEND,
    CheckoutErrorKind.ORDER_ITEMS_FAILED: ErrorKind.BACKEND,
    CheckoutErrorKind.UNKNOWN: ErrorKind.UNKNOWN,
}

NETWORK_MESSAGE = "Network error. Please check your connection and try again."


class CheckoutError(StorefrontError):
    """
    Checkout failure with its closed kind.

    Attributes:
        checkout_kind: Which precondition or step failed
        backend_kind: Kind of the underlying backend error, if any
        rolled_back: For ORDER_ITEMS_FAILED, whether the order row is gone
    """

    def __init__(
        self,
        checkout_kind: CheckoutErrorKind,
        field: Optional[str] = None,
        backend_kind: Optional[ErrorKind] = None,
        rolled_back: Optional[bool] = None,
    ):
        self.checkout_kind = checkout_kind
        self.backend_kind = backend_kind
        self.rolled_back = rolled_back

        message = CHECKOUT_MESSAGES[checkout_kind]
        if backend_kind == ErrorKind.NETWORK:
            message = NETWORK_MESSAGE
        super().__init__(
            backend_kind or CHECKOUT_ERROR_KINDS[checkout_kind],
            message=message,
            field=field,
        )

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["error"] = self.checkout_kind.value
        if self.rolled_back is not None:
            body["rolled_back"] = self.rolled_back
        return body


@dataclass
class OrderConfirmation:
    """What the confirmation page shows."""
    order_id: str
    total: float
    item_count: int
    points_earned: int
    ordered_at: str
    shipping_address: str
    status: str = OrderStatus.PENDING.value

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "total": self.total,
            "item_count": self.item_count,
            "points_earned": self.points_earned,
            "ordered_at": self.ordered_at,
            "shipping_address": self.shipping_address,
            "status": self.status,
        }


class CheckoutService:
    """
    Example:
        >>> service = CheckoutService(OrderService(backend), ProfileService(backend), carts)
        >>> confirmation = await service.checkout(user_id, profile, address="12 MG Road", pincode="560001")
        >>> confirmation.points_earned
        35
    """

    def __init__(
        self,
        orders: OrderService,
        profiles: ProfileService,
        carts: CartStore,
        pincode_pattern: Optional[str] = None,
    ):
        self._orders = orders
        self._profiles = profiles
        self._carts = carts
        self._pincode_re = re.compile(pincode_pattern or get_settings().pincode_pattern)

    def validate_pincode(self, pincode: str) -> bool:
        return bool(self._pincode_re.match(pincode))

    def _validate(
        self,
        user_id: Optional[str],
        cart: Optional[Cart],
        address: str,
        pincode: str,
    ) -> None:
        if not user_id:
            raise CheckoutError(CheckoutErrorKind.NO_SESSION)
        if cart is None or cart.is_empty:
            raise CheckoutError(CheckoutErrorKind.EMPTY_CART)
        if not address:
            raise CheckoutError(CheckoutErrorKind.MISSING_ADDRESS, field="address")
        if not pincode:
            raise CheckoutError(CheckoutErrorKind.MISSING_ADDRESS, field="pincode")
        if not self.validate_pincode(pincode):
            raise CheckoutError(CheckoutErrorKind.INVALID_POSTAL_CODE, field="pincode")

    async def checkout(
        self,
        user_id: Optional[str],
        profile: Optional[Row] = None,
        address: Optional[str] = None,
        pincode: Optional[str] = None,
    ) -> OrderConfirmation:
        """
        Place the account's cart as an order.

        The cart leaves the store for the whole placement: products added
        meanwhile go into a fresh cart, and a second checkout of the same
        account finds nothing to place. On failure the cart is put back.

        Args:
            user_id: Signed-in account id (None if no session)
            profile: The account's profile; supplies address/pincode defaults
            address: Delivery address (defaults to the profile's)
            pincode: Postal code (defaults to the profile's)

        Raises:
            CheckoutError: On any precondition or placement failure
        """
        profile = profile or {}
        address = (address if address is not None else profile.get("address") or "").strip()
        pincode = (pincode if pincode is not None else profile.get("pincode") or "").strip()
        cart = self._carts.take(user_id) if user_id else None

        try:
            self._validate(user_id, cart, address, pincode)
            order, placed = await self._place(user_id, cart, address, pincode)
        except CheckoutError:
            if cart is not None:
                self._carts.restore(user_id, cart)
            raise

        points = cart.points_to_earn
        try:
            await self._profiles.add_loyalty_points(
                user_id,
                points,
                extra={"address": address, "pincode": pincode},
            )
        except BackendCallError as e:
            logger.error(f"Order {placed.order['id']} placed but profile update failed: {e}")

        return OrderConfirmation(
            order_id=placed.order["id"],
            total=cart.total,
            item_count=cart.item_count,
            points_earned=points,
            ordered_at=str(placed.order.get("created_at")),
            shipping_address=order["shipping_address"],
        )

    async def _place(
        self,
        user_id: str,
        cart: Cart,
        address: str,
        pincode: str,
    ) -> tuple[Row, PlacedOrder]:
        order = {
            "user_id": user_id,
            "status": OrderStatus.PENDING.value,
            "total_amount": cart.total,
            "shipping_address": f"{address}, {pincode}",
        }
        items = [
            {
                "product_id": line.product_id,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
            }
            for line in cart.lines
        ]

        logger.info(f"🛒 Checkout for {user_id}: {cart.item_count} item(s), total {cart.total:.2f}")

        try:
            placed = await self._orders.place_order(order, items)
        except OrderPlacementError as e:
            kind = (
                CheckoutErrorKind.ORDER_CREATE_FAILED
                if e.stage == "order"
                else CheckoutErrorKind.ORDER_ITEMS_FAILED
            )
            raise CheckoutError(
                kind,
                backend_kind=e.error.kind,
                rolled_back=e.rolled_back if e.stage == "items" else None,
            ) from e
        except Exception as e:
            logger.exception(f"Unexpected error placing order for {user_id}: {e}")
            raise CheckoutError(CheckoutErrorKind.UNKNOWN) from e
        return order, placed
