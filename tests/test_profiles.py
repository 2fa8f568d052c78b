import asyncio

import pytest

from storefront.errors import BackendCallError, ErrorKind
from storefront.services.backend.mock import InMemoryBackendClient
from storefront.services.profiles import ProfileService, loyalty_tier


@pytest.mark.parametrize("points, name, next_tier, missing", [
    (0, "Bronze", "Silver", 200),
    (199, "Bronze", "Silver", 1),
    (200, "Silver", "Gold", 300),
    (750, "Gold", "Platinum", 250),
    (1000, "Platinum", None, None),
    (-5, "Bronze", "Silver", 200),
])
def test_loyalty_tiers(points, name, next_tier, missing):
    tier = loyalty_tier(points)
    assert tier.name == name
    assert tier.next_tier == next_tier
    assert tier.points_to_next == missing


def test_get_or_create_creates_once(backend):
    profiles = ProfileService(backend)

    created = asyncio.run(profiles.get_or_create("u1", "jane@example.com", {"full_name": "Jane Doe"}))
    assert created["loyalty_points"] == 0
    assert created["role"] == "customer"
    assert created["full_name"] == "Jane Doe"

    again = asyncio.run(profiles.get_or_create("u1", "jane@example.com", {"full_name": "Other"}))
    assert again["full_name"] == "Jane Doe"
    assert len(backend.rows("profiles")) == 1


def test_get_or_create_propagates_other_errors(backend):
    backend.fail_next("profiles", "select")

    with pytest.raises(BackendCallError) as info:
        asyncio.run(ProfileService(backend).get_or_create("u1", "jane@example.com"))
    assert info.value.kind == ErrorKind.BACKEND
    assert backend.rows("profiles") == []


def test_add_loyalty_points(backend, customer):
    profiles = ProfileService(backend)

    asyncio.run(profiles.add_loyalty_points("user-1", 35))
    updated = asyncio.run(profiles.add_loyalty_points("user-1", 15, extra={"pincode": "560025"}))

    assert updated["loyalty_points"] == 50
    assert updated["pincode"] == "560025"
    assert updated["updated_at"] >= customer["updated_at"]


class YieldingBackend(InMemoryBackendClient):
    """Memory backend that lets other tasks run after every read."""

    async def select(self, *args, **kwargs):
        result = await super().select(*args, **kwargs)
        await asyncio.sleep(0)
        return result


def test_concurrent_point_credits_add_up():
    backend = YieldingBackend()
    profiles = ProfileService(backend)

    async def scenario():
        await profiles.create({"id": "u1", "email": "jane@example.com"})
        await asyncio.gather(
            profiles.add_loyalty_points("u1", 35),
            profiles.add_loyalty_points("u1", 10),
        )
        return await profiles.get("u1")

    assert asyncio.run(scenario())["loyalty_points"] == 45


def test_points_for_missing_profile(backend):
    with pytest.raises(BackendCallError) as info:
        asyncio.run(ProfileService(backend).add_loyalty_points("nobody", 10))
    assert info.value.kind == ErrorKind.NOT_FOUND
