"""
Profile Service

Customer profile access plus the loyalty tier ladder shown on the
dashboard.

Loyalty Tiers:
    Bronze    0 - 199 points
    Silver  200 - 499 points
    Gold    500 - 999 points
    Platinum 1000+ points

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from storefront.errors import BackendCallError, ErrorKind
from storefront.models import ProfileRole
from storefront.services.backend.base import BaseBackendClient, Row

logger = logging.getLogger(__name__)


# (name, minimum points), ascending
LOYALTY_TIERS: list[tuple[str, int]] = [
    ("Bronze", 0),
    ("Silver", 200),
    ("Gold", 500),
    ("Platinum", 1000),
]


@dataclass
class LoyaltyTier:
    """
    Attributes:
        name: Current tier
        points: Points held
        next_tier: Name of the next tier (None at the top)
        next_threshold: Points needed for the next tier (None at the top)
        points_to_next: Points still missing (None at the top)
    """
    name: str
    points: int
    next_tier: Optional[str] = None
    next_threshold: Optional[int] = None
    points_to_next: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "points": self.points,
            "next_tier": self.next_tier,
            "next_threshold": self.next_threshold,
            "points_to_next": self.points_to_next,
        }


def loyalty_tier(points: int) -> LoyaltyTier:
    """
    Resolve the tier for a points balance.

    Example:
        >>> loyalty_tier(250)
        LoyaltyTier(name='Silver', points=250, next_tier='Gold', next_threshold=500, points_to_next=250)
    """
    points = max(int(points or 0), 0)
    index = 0
    for i, (_, minimum) in enumerate(LOYALTY_TIERS):
        if points >= minimum:
            index = i

    name = LOYALTY_TIERS[index][0]
    if index + 1 >= len(LOYALTY_TIERS):
        return LoyaltyTier(name=name, points=points)

    next_name, threshold = LOYALTY_TIERS[index + 1]
    return LoyaltyTier(
        name=name,
        points=points,
        next_tier=next_name,
        next_threshold=threshold,
        points_to_next=threshold - points,
    )


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProfileService:
    """Profile rows keyed by account id."""

    def __init__(self, backend: BaseBackendClient):
        self._backend = backend

    async def get(self, user_id: str) -> Row:
        result = await self._backend.select_one("profiles", user_id)
        return result.unwrap(f"get profile {user_id}")

    async def create(self, profile: Row) -> Row:
        now = utc_now()
        row = {
            "loyalty_points": 0,
            "role": ProfileRole.CUSTOMER.value,
            "created_at": now,
            "updated_at": now,
            **profile,
        }
        result = await self._backend.insert("profiles", row)
        created = result.unwrap("create profile")[0]
        logger.info(f"Profile created for {created.get('email')}")
        return created

    async def update(self, user_id: str, updates: Row) -> Row:
        """Apply updates and stamp updated_at."""
        result = await self._backend.update(
            "profiles",
            user_id,
            {**updates, "updated_at": utc_now()},
        )
        return result.unwrap(f"update profile {user_id}")

    async def get_or_create(
        self,
        user_id: str,
        email: Optional[str],
        defaults: Optional[Row] = None,
    ) -> Row:
        """
        Return the account's profile, creating it on first sight.

        Args:
            user_id: Account id
            email: Account email
            defaults: Extra columns for a new profile (full_name, address, pincode)
        """
        try:
            return await self.get(user_id)
        except BackendCallError as e:
            if e.kind != ErrorKind.NOT_FOUND:
                raise

        return await self.create({"id": user_id, "email": email, **(defaults or {})})

    async def add_loyalty_points(self, user_id: str, points: int, extra: Optional[Row] = None) -> Row:
        """
        Add points to the running total, optionally updating other columns.

        The increment happens on the backend, so concurrent checkouts of the
        same account never overwrite each other's points.
        """
        result = await self._backend.increment(
            "profiles",
            user_id,
            "loyalty_points",
            int(points),
            values={**(extra or {}), "updated_at": utc_now()},
        )
        return result.unwrap(f"add loyalty points to {user_id}")
