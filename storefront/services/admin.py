"""
Admin Order Management

Authorization policies for privileged operators, plus the order
management operations behind the admin dashboard: list with owning
profile, status filter, free-text search, status update and counters.

Policies:
    - RolePolicy (default): profile.role == "admin"
    - EmailSubstringPolicy: email contains a marker ("admin"). Anyone who
      can register such an address becomes an admin; only meant for demos.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Sequence

from storefront.core.config import AdminPolicyName, get_settings
from storefront.errors import ValidationFailed
from storefront.models import OrderStatus, ProfileRole
from storefront.services.backend.base import Row, in_
from storefront.services.orders import OrderService, parse_status

logger = logging.getLogger(__name__)


# =============================================================================
# POLICIES
# =============================================================================

class AdminPolicy(ABC):
    """Decides whether a profile may use the admin routes."""

    name: str = "base"

    @abstractmethod
    def is_admin(self, profile: Optional[Row]) -> bool:
        pass


class RolePolicy(AdminPolicy):
    """Admin iff the profile carries the admin role claim."""

    name = AdminPolicyName.ROLE.value

    def is_admin(self, profile: Optional[Row]) -> bool:
        return bool(profile) and profile.get("role") == ProfileRole.ADMIN.value


class EmailSubstringPolicy(AdminPolicy):
    """Admin iff the profile email contains the marker (case-insensitive)."""

    name = AdminPolicyName.EMAIL_SUBSTRING.value

    def __init__(self, marker: str = "admin"):
        if not marker:
            raise ValueError("EmailSubstringPolicy needs a non-empty marker")
        self.marker = marker.lower()
        logger.warning(
            f"⚠️ Admin policy is email substring ('{marker}'). "
            f"Any account whose email contains it gets admin access."
        )

    def is_admin(self, profile: Optional[Row]) -> bool:
        email = (profile or {}).get("email") or ""
        return self.marker in email.lower()


def build_admin_policy(
    name: Optional[AdminPolicyName] = None,
    marker: Optional[str] = None,
) -> AdminPolicy:
    settings = get_settings()
    name = name or settings.admin_policy
    if name == AdminPolicyName.EMAIL_SUBSTRING:
        return EmailSubstringPolicy(marker or settings.admin_email_marker)
    return RolePolicy()


@lru_cache()
def get_admin_policy() -> AdminPolicy:
    """Configured policy, built once per process."""
    policy = build_admin_policy()
    logger.info(f"Admin policy: {policy.name}")
    return policy


def reset_admin_policy() -> None:
    get_admin_policy.cache_clear()


# =============================================================================
# SEARCH
# =============================================================================

def search_orders(orders: Sequence[Row], query: str) -> list[Row]:
    """
    Case-insensitive substring match over customer name, email and order id.

    Orders are expected in the joined shape produced by
    AdminOrderService.list_orders (profile under "profiles").
    """
    if not query:
        return list(orders)

    needle = query.lower()
    matched = []
    for order in orders:
        profile = order.get("profiles") or {}
        haystacks = (
            (profile.get("full_name") or "").lower(),
            (profile.get("email") or "").lower(),
            str(order["id"]).lower(),
        )
        if any(needle in haystack for haystack in haystacks):
            matched.append(order)
    return matched


# =============================================================================
# SERVICE
# =============================================================================

@dataclass
class OrderStats:
    total: int = 0
    pending: int = 0
    preparing: int = 0
    delivered: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "pending": self.pending,
            "preparing": self.preparing,
            "delivered": self.delivered,
        }


class AdminOrderService:
    """Operations over every customer's orders."""

    def __init__(self, orders: OrderService):
        self._orders = orders

    async def list_orders(self, status: str = "all", search: str = "") -> list[Row]:
        """
        All orders joined with the owning profile (id, full_name, email),
        newest first.

        Args:
            status: "all" or one status value
            search: Optional free-text query (see search_orders)
        """
        orders = await self._orders.list_all(status)
        user_ids = list(dict.fromkeys(order["user_id"] for order in orders))

        profiles: dict[str, Row] = {}
        if user_ids:
            result = await self._orders.backend.select("profiles", [in_("id", user_ids)])
            profiles = {row["id"]: row for row in result.unwrap("list order owners")}

        joined = []
        for order in orders:
            profile = profiles.get(order["user_id"])
            joined.append({
                **order,
                "profiles": (
                    {
                        "id": profile["id"],
                        "full_name": profile.get("full_name"),
                        "email": profile.get("email"),
                    }
                    if profile else None
                ),
            })
        return search_orders(joined, search)

    async def update_status(self, order_id: str, status: str) -> Row:
        return await self._orders.update_status(order_id, status)

    async def stats(self) -> OrderStats:
        orders = await self._orders.list_all()
        counts = {status: 0 for status in OrderStatus}
        for order in orders:
            try:
                counts[parse_status(order["status"])] += 1
            except ValidationFailed:
                logger.warning(f"Order {order['id']} has unknown status '{order.get('status')}'")
        return OrderStats(
            total=len(orders),
            pending=counts[OrderStatus.PENDING],
            preparing=counts[OrderStatus.PREPARING],
            delivered=counts[OrderStatus.DELIVERED],
        )
