"""Tests for the principal store and auth-change propagation."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from taskboard.auth import LocalAuthProvider, Principal, PrincipalStore, principal_from_user
from taskboard.errors import EntityStoreError, NotAuthenticatedError

from conftest import settle


@pytest.fixture
def ada():
    return Principal(id="user-1", email="ada@example.com", full_name="Ada")


class TestPrincipalFromUser:
    def test_full_name_from_metadata(self):
        p = principal_from_user(
            {"id": "u1", "email": "ada@example.com", "user_metadata": {"full_name": "Ada L."}}
        )
        assert p.full_name == "Ada L."

    def test_full_name_falls_back_to_email(self):
        p = principal_from_user({"id": "u1", "email": "grace.hopper@example.com"})
        assert p.full_name == "grace.hopper"
        assert p.avatar_url is None


class TestPrincipalStore:
    @pytest.mark.asyncio
    async def test_start_loads_current_user(self, ada):
        store = PrincipalStore(LocalAuthProvider(ada))
        assert store.loading is True
        await store.start()
        assert store.loading is False
        assert store.principal == ada
        assert store.require() == ada
        await store.close()

    @pytest.mark.asyncio
    async def test_require_without_principal(self):
        store = PrincipalStore(LocalAuthProvider())
        await store.start()
        assert store.is_authenticated is False
        with pytest.raises(NotAuthenticatedError, match="User not authenticated"):
            store.require()
        await store.close()

    @pytest.mark.asyncio
    async def test_events_update_principal(self, ada):
        provider = LocalAuthProvider()
        signed_out = MagicMock()
        store = PrincipalStore(provider, on_signed_out=signed_out)
        await store.start()

        await provider.sign_in(ada)
        # Delivery is asynchronous, never inline.
        assert store.principal is None
        await settle()
        assert store.principal == ada

        await provider.sign_out()
        await settle()
        assert store.principal is None
        signed_out.assert_called_once_with()
        await store.close()

    @pytest.mark.asyncio
    async def test_close_unsubscribes(self, ada):
        provider = LocalAuthProvider()
        store = PrincipalStore(provider)
        await store.start()
        assert provider.subscriber_count == 1
        assert store.started

        await store.close()
        assert provider.subscriber_count == 0
        assert store.started is False
        await provider.sign_in(ada)
        await settle()
        assert store.principal is None

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        provider = LocalAuthProvider()
        store = PrincipalStore(provider)
        await store.start()
        await store.start()
        assert provider.subscriber_count == 1
        await store.close()

    @pytest.mark.asyncio
    async def test_provider_failure_leaves_signed_out(self):
        provider = LocalAuthProvider()
        provider.get_current_user = AsyncMock(side_effect=EntityStoreError("Network error: down"))
        store = PrincipalStore(provider)
        await store.start()
        assert store.principal is None
        assert store.loading is False
        await store.close()


class TestClientSignOut:
    @pytest.mark.asyncio
    async def test_sign_out_clears_cache(self, client, project):
        await client.list("projects")
        assert client.cache.keys() != []
        await client.auth.sign_out()
        await settle()
        assert client.cache.keys() == []
        assert client.principals.principal is None
