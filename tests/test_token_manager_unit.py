#!/usr/bin/env python3
"""
Unit tests for the TokenManager refresh coordination.

Tests that valid tokens are returned without a network call, that concurrent
callers share one refresh exchange, and that a failed refresh leaves the
identity in place and can be retried.
"""

import pytest
import asyncio
from unittest.mock import AsyncMock, MagicMock

from identity_client.auth.observers import ObserverRegistry
from identity_client.auth.persistence import SessionPersistence
from identity_client.auth.session_state import SessionState
from identity_client.auth.token_manager import TokenManager
from identity_client.auth.token_storage import MemoryTokenStorage
from identity_shared.exceptions import RemoteError, RequestError, ErrorCode
from identity_shared.models import Identity, Operation, current_time_ms


def expired_identity():
    return Identity("u1", "a@b.com", "r1", "stale", current_time_ms() - 10000)


def fresh_identity():
    return Identity("u1", "a@b.com", "r1", "t1", current_time_ms() + 3600000)


REFRESH_RESPONSE = {
    "id_token": "t2",
    "refresh_token": "r1",
    "expires_in": "3600",
    "user_id": "u1",
}


class TestTokenManager:
    """Test TokenManager."""

    @pytest.fixture
    def storage(self):
        return MemoryTokenStorage()

    @pytest.fixture
    def state(self, storage):
        return SessionState(SessionPersistence(storage, "key", "t1"), ObserverRegistry())

    @pytest.fixture
    def api_client(self):
        client = AsyncMock()
        client.call.return_value = dict(REFRESH_RESPONSE)
        return client

    @pytest.fixture
    def audit(self):
        return MagicMock()

    @pytest.fixture
    def token_manager(self, state, api_client, audit):
        return TokenManager(state, api_client, audit, "t1")

    @pytest.mark.asyncio
    async def test_bearer_token_when_signed_out(self, token_manager, api_client):
        assert await token_manager.get_bearer_token() is None
        api_client.call.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_without_identity_is_request_error(self, token_manager, api_client):
        with pytest.raises(RequestError) as exc_info:
            await token_manager.refresh()

        assert exc_info.value.error_code == ErrorCode.REQUEST_NO_IDENTITY
        api_client.call.assert_not_called()

    @pytest.mark.asyncio
    async def test_valid_token_is_returned_without_refresh(self, token_manager, state, api_client):
        await state.replace_identity(fresh_identity())

        assert await token_manager.get_bearer_token() == "t1"
        api_client.call.assert_not_called()

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed(self, token_manager, state, api_client, storage, audit):
        await state.replace_identity(expired_identity())

        token = await token_manager.get_bearer_token()

        assert token == "t2"
        api_client.call.assert_awaited_once_with(Operation.TOKEN, {
            'grant_type': 'refresh_token',
            'refresh_token': 'r1',
        })
        assert state.identity.expires_at > current_time_ms()
        assert state.identity.email == "a@b.com"
        assert Identity.from_json(await storage.get("auth:user:t1:key")) == state.identity
        audit.log_token_refresh.assert_called_once_with("t1", "u1")
        assert token_manager.is_refreshing is False

    @pytest.mark.asyncio
    async def test_refresh_is_silent_to_observers(self, token_manager, state):
        await state.replace_identity(expired_identity())
        callback = MagicMock()
        state.observers.subscribe(callback, invoke_immediately=False)

        await token_manager.refresh()

        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_exchange(self, token_manager, state, api_client):
        await state.replace_identity(expired_identity())
        release = asyncio.Event()

        async def slow_refresh(operation, body):
            await release.wait()
            return dict(REFRESH_RESPONSE)

        api_client.call.side_effect = slow_refresh

        first = asyncio.ensure_future(token_manager.get_bearer_token())
        second = asyncio.ensure_future(token_manager.get_bearer_token())
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert token_manager.is_refreshing is True
        third = asyncio.ensure_future(token_manager.get_bearer_token())
        await asyncio.sleep(0)

        release.set()
        results = await asyncio.gather(first, second, third)

        assert results == ["t2", "t2", "t2"]
        assert api_client.call.await_count == 1
        assert token_manager.is_refreshing is False

    @pytest.mark.asyncio
    async def test_failed_refresh_reaches_all_waiters_and_keeps_identity(self, token_manager, state, api_client, audit):
        stale = expired_identity()
        await state.replace_identity(stale)
        release = asyncio.Event()

        async def failing_refresh(operation, body):
            await release.wait()
            raise RemoteError("rejected", status_code=400, body={"error": {"message": "TOKEN_EXPIRED"}})

        api_client.call.side_effect = failing_refresh

        first = asyncio.ensure_future(token_manager.get_bearer_token())
        second = asyncio.ensure_future(token_manager.get_bearer_token())
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(first, second, return_exceptions=True)

        assert all(isinstance(result, RemoteError) for result in results)
        assert results[0].remote_message == "TOKEN_EXPIRED"
        assert api_client.call.await_count == 1
        assert state.identity == stale
        assert token_manager.is_refreshing is False
        audit.log_token_refresh.assert_called_once_with("t1", "u1", success=False, failure_reason="rejected")

    @pytest.mark.asyncio
    async def test_refresh_is_retried_after_failure(self, token_manager, state, api_client):
        await state.replace_identity(expired_identity())
        api_client.call.side_effect = [
            RemoteError("unavailable", status_code=503),
            dict(REFRESH_RESPONSE),
        ]

        with pytest.raises(RemoteError):
            await token_manager.get_bearer_token()
        assert state.identity.id_token == "stale"

        assert await token_manager.get_bearer_token() == "t2"
        assert api_client.call.await_count == 2

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_abort_shared_refresh(self, token_manager, state, api_client):
        await state.replace_identity(expired_identity())
        release = asyncio.Event()

        async def slow_refresh(operation, body):
            await release.wait()
            return dict(REFRESH_RESPONSE)

        api_client.call.side_effect = slow_refresh

        first = asyncio.ensure_future(token_manager.get_bearer_token())
        second = asyncio.ensure_future(token_manager.get_bearer_token())
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        first.cancel()
        release.set()

        assert await second == "t2"
        assert first.cancelled()
        assert api_client.call.await_count == 1
