"""
Shopping Cart

Ephemeral per-account cart: an insertion-ordered mapping of product id to
line (product snapshot + quantity). Carts live in the storefront process
only and are discarded after checkout or on restart.

Money is summed with Decimal and rounded half-up, so a cart of
2 x 199 + 1 x 299 totals 697.00 and earns round(697 x 0.05) = 35 points.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from functools import lru_cache
from typing import Optional

from storefront.core.config import get_settings
from storefront.services.backend.base import Row

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def to_decimal(value) -> Decimal:
    return Decimal(str(value))


@dataclass
class CartLine:
    """A product snapshot and how many of it are in the cart."""
    product: Row
    quantity: int = 1

    @property
    def product_id(self) -> str:
        return self.product["id"]

    @property
    def unit_price(self) -> float:
        return float(self.product["price"])

    @property
    def subtotal(self) -> Decimal:
        return to_decimal(self.product["price"]) * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.product.get("name"),
            "unit_price": self.unit_price,
            "quantity": self.quantity,
            "subtotal": float(self.subtotal.quantize(CENTS, ROUND_HALF_UP)),
            "image_url": self.product.get("image_url"),
        }


class Cart:
    """
    Example:
        >>> cart = Cart()
        >>> cart.add({"id": "p1", "name": "Margherita", "price": 199})
        >>> cart.add({"id": "p1", "name": "Margherita", "price": 199})
        >>> cart.quantity_of("p1")
        2
    """

    def __init__(self, loyalty_rate: Optional[float] = None):
        self._lines: dict[str, CartLine] = {}
        self.loyalty_rate = (
            loyalty_rate if loyalty_rate is not None else get_settings().loyalty_rate
        )

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self):
        return iter(self._lines.values())

    @property
    def lines(self) -> list[CartLine]:
        return list(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def add(self, product: Row) -> CartLine:
        """Insert at quantity 1, or increment an existing line."""
        line = self._lines.get(product["id"])
        if line is None:
            line = CartLine(product=dict(product))
            self._lines[line.product_id] = line
        else:
            line.quantity += 1
        return line

    def remove(self, product_id: str) -> Optional[CartLine]:
        """
        Decrement a line; the line disappears at zero. Unknown ids are ignored.

        Returns:
            The remaining line, or None if it is gone (or never existed)
        """
        line = self._lines.get(product_id)
        if line is None:
            return None
        line.quantity -= 1
        if line.quantity <= 0:
            del self._lines[product_id]
            return None
        return line

    def clear(self) -> None:
        self._lines.clear()

    def merge(self, other: "Cart") -> None:
        """Fold another cart's lines into this one, summing shared products."""
        for line in other:
            existing = self._lines.get(line.product_id)
            if existing is None:
                self._lines[line.product_id] = CartLine(product=dict(line.product), quantity=line.quantity)
            else:
                existing.quantity += line.quantity

    def quantity_of(self, product_id: str) -> int:
        line = self._lines.get(product_id)
        return line.quantity if line else 0

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    @property
    def total_decimal(self) -> Decimal:
        total = sum((line.subtotal for line in self._lines.values()), Decimal("0"))
        return total.quantize(CENTS, ROUND_HALF_UP)

    @property
    def total(self) -> float:
        return float(self.total_decimal)

    @property
    def points_to_earn(self) -> int:
        earned = self.total_decimal * to_decimal(self.loyalty_rate)
        return int(earned.quantize(Decimal("1"), ROUND_HALF_UP))

    def to_dict(self) -> dict:
        return {
            "items": [line.to_dict() for line in self._lines.values()],
            "item_count": self.item_count,
            "total": self.total,
            "points_to_earn": self.points_to_earn,
        }


class CartStore:
    """Carts of every signed-in account, keyed by account id."""

    def __init__(self):
        self._carts: dict[str, Cart] = {}

    def get(self, user_id: str) -> Cart:
        cart = self._carts.get(user_id)
        if cart is None:
            cart = self._carts[user_id] = Cart()
        return cart

    def take(self, user_id: str) -> Optional[Cart]:
        """Remove and return the account's cart; the next get() starts an empty one."""
        return self._carts.pop(user_id, None)

    def restore(self, user_id: str, cart: Cart) -> Cart:
        """Put a taken cart back, keeping whatever was added since it was taken."""
        added = self._carts.get(user_id)
        if added is not None:
            cart.merge(added)
        self._carts[user_id] = cart
        return cart

    def discard(self, user_id: str) -> None:
        self._carts.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._carts)

    def clear(self) -> None:
        self._carts.clear()


@lru_cache()
def get_cart_store() -> CartStore:
    """Process-wide cart store."""
    return CartStore()


def reset_cart_store() -> None:
    get_cart_store.cache_clear()
