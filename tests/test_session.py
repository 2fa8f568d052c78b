import asyncio

import pytest

from storefront.errors import NotAuthenticated
from storefront.services.admin import EmailSubstringPolicy, RolePolicy
from storefront.session import SessionRegistry


@pytest.fixture
def registry(auth, backend):
    return SessionRegistry(auth, backend, RolePolicy())


def sign_up(auth, email="jane@example.com"):
    metadata = {"full_name": "Jane Doe", "address": "12 MG Road", "pincode": "560001"}
    return asyncio.run(auth.sign_up(email, "secret1", metadata)).session.access_token


def test_resolve_creates_profile_from_metadata(registry, auth, backend):
    token = sign_up(auth)

    session = asyncio.run(registry.resolve(token))

    assert session.email == "jane@example.com"
    assert session.profile["full_name"] == "Jane Doe"
    assert session.profile["pincode"] == "560001"
    assert not session.is_admin
    assert len(backend.rows("profiles")) == 1


def test_resolve_is_cached(registry, auth, backend):
    token = sign_up(auth)

    first = asyncio.run(registry.resolve(token))
    assert asyncio.run(registry.resolve(token)) is first
    assert len(registry) == 1


def test_missing_or_bad_token(registry):
    with pytest.raises(NotAuthenticated):
        asyncio.run(registry.resolve(None))
    with pytest.raises(NotAuthenticated):
        asyncio.run(registry.resolve("mock_unknown"))


def test_sign_out_drops_context(registry, auth):
    token = sign_up(auth)
    asyncio.run(registry.resolve(token))

    asyncio.run(auth.sign_out(token))

    assert len(registry) == 0
    with pytest.raises(NotAuthenticated):
        asyncio.run(registry.resolve(token))


def test_user_update_drops_context(registry, auth):
    token = sign_up(auth)
    session = asyncio.run(registry.resolve(token))

    auth.update_user_metadata(session.user_id, {"full_name": "Jane D."})

    assert len(registry) == 0


def test_invalidate_by_account(registry, auth, backend):
    token = sign_up(auth)
    session = asyncio.run(registry.resolve(token))
    asyncio.run(backend.update("profiles", session.user_id, {"role": "admin"}))

    registry.invalidate(user_id=session.user_id)

    assert asyncio.run(registry.resolve(token)).is_admin


def test_email_policy_flags_admin_address(auth, backend):
    registry = SessionRegistry(auth, backend, EmailSubstringPolicy("admin"))
    token = sign_up(auth, email="store.admin@example.com")

    assert asyncio.run(registry.resolve(token)).is_admin


def test_close_detaches_listener(registry, auth):
    token = sign_up(auth)
    asyncio.run(registry.resolve(token))
    registry.close()

    sign_up(auth, email="raj@example.com")
    assert len(registry) == 0


def test_cache_drops_least_recently_used(auth, backend):
    registry = SessionRegistry(auth, backend, RolePolicy(), max_contexts=2)
    first, second, third = (sign_up(auth, f"user{i}@example.com") for i in range(3))

    kept = asyncio.run(registry.resolve(first))
    asyncio.run(registry.resolve(second))
    asyncio.run(registry.resolve(first))
    asyncio.run(registry.resolve(third))

    assert len(registry) == 2
    assert asyncio.run(registry.resolve(first)) is kept
    assert second not in registry._contexts


def test_expired_contexts_are_evicted(registry, auth):
    for i in range(2):
        context = asyncio.run(registry.resolve(sign_up(auth, f"user{i}@example.com")))
        context.expires_at = 0

    asyncio.run(registry.resolve(sign_up(auth, "late@example.com")))

    assert len(registry) == 1
