"""Tests for the Drive OAuth token manager."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.cycles.config_loader import SyncConfig
from src.cycles.sync.auth import OAuthTokens, TokenManager
from src.cycles.tests.conftest import TEST_NOW


def make_token_response(payload: dict) -> MagicMock:
    response = MagicMock()
    response.raise_for_status = MagicMock()
    response.json = MagicMock(return_value=payload)
    return response


def make_manager(
    tokens: OAuthTokens | None,
    http_client: MagicMock | None = None,
    config: SyncConfig | None = None,
) -> TokenManager:
    return TokenManager(
        "client-id",
        "client-secret",
        tokens,
        config=config or SyncConfig(),
        http_client=http_client,
        clock=lambda: TEST_NOW,
    )


def expired_tokens() -> OAuthTokens:
    return OAuthTokens(
        access_token="stale",
        refresh_token="refresh-1",
        expires_at=TEST_NOW - timedelta(seconds=1),
    )


# ---------------------------------------------------------------------------
# Cached token
# ---------------------------------------------------------------------------


class TestCachedToken:
    @pytest.mark.asyncio
    async def test_no_tokens_returns_none(self) -> None:
        manager = make_manager(None)
        assert manager.has_token is False
        assert await manager.get_valid_token() is None

    @pytest.mark.asyncio
    async def test_unexpired_token_returned_without_http(self) -> None:
        client = MagicMock()
        client.post = AsyncMock()
        tokens = OAuthTokens(access_token="live", expires_at=TEST_NOW + timedelta(minutes=5))
        manager = make_manager(tokens, client)

        assert await manager.get_valid_token() == "live"
        client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token_returns_none(self) -> None:
        tokens = OAuthTokens(access_token="stale", expires_at=TEST_NOW)
        assert await make_manager(tokens).get_valid_token() is None

    def test_store_token_applies_expiry_buffer(self) -> None:
        manager = make_manager(OAuthTokens(refresh_token="refresh-1"))
        manager.store_token("fresh", 3600)
        assert manager._tokens.expires_at == TEST_NOW + timedelta(seconds=3540)
        assert manager._tokens.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(self) -> None:
        client = MagicMock()
        client.post = AsyncMock(return_value=make_token_response({"access_token": "next"}))
        tokens = OAuthTokens(
            access_token="live",
            refresh_token="refresh-1",
            expires_at=TEST_NOW + timedelta(minutes=5),
        )
        manager = make_manager(tokens, client)

        manager.invalidate()
        assert await manager.get_valid_token() == "next"


# ---------------------------------------------------------------------------
# Silent refresh
# ---------------------------------------------------------------------------


class TestSilentRefresh:
    @pytest.mark.asyncio
    async def test_refresh_stores_new_token(self) -> None:
        client = MagicMock()
        client.post = AsyncMock(
            return_value=make_token_response({"access_token": "fresh", "expires_in": 1800})
        )
        manager = make_manager(expired_tokens(), client)

        assert await manager.get_valid_token() == "fresh"
        url = client.post.call_args.args[0]
        form = client.post.call_args.kwargs["data"]
        assert url == "https://oauth2.googleapis.com/token"
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "refresh-1"
        assert form["client_id"] == "client-id"
        assert manager._tokens.expires_at == TEST_NOW + timedelta(seconds=1740)

    @pytest.mark.asyncio
    async def test_refresh_http_error_returns_none(self) -> None:
        client = MagicMock()
        response = make_token_response({})
        response.raise_for_status = MagicMock(
            side_effect=httpx.HTTPStatusError("400", request=MagicMock(), response=MagicMock())
        )
        client.post = AsyncMock(return_value=response)

        assert await make_manager(expired_tokens(), client).get_valid_token() is None

    @pytest.mark.asyncio
    async def test_response_without_access_token_returns_none(self) -> None:
        client = MagicMock()
        client.post = AsyncMock(return_value=make_token_response({"error": "invalid_grant"}))
        assert await make_manager(expired_tokens(), client).get_valid_token() is None

    @pytest.mark.asyncio
    async def test_refresh_timeout_returns_none(self) -> None:
        async def slow_post(*args, **kwargs):
            await asyncio.sleep(1)
            return make_token_response({"access_token": "too-late"})

        client = MagicMock()
        client.post = AsyncMock(side_effect=slow_post)
        config = SyncConfig(silent_refresh_timeout_seconds=0.01)

        assert await make_manager(expired_tokens(), client, config).get_valid_token() is None

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self) -> None:
        async def slow_post(*args, **kwargs):
            await asyncio.sleep(0.01)
            return make_token_response({"access_token": "shared"})

        client = MagicMock()
        client.post = AsyncMock(side_effect=slow_post)
        manager = make_manager(expired_tokens(), client)

        results = await asyncio.gather(*(manager.get_valid_token() for _ in range(3)))
        assert results == ["shared", "shared", "shared"]
        assert client.post.await_count == 1


# ---------------------------------------------------------------------------
# Disconnect
# ---------------------------------------------------------------------------


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_disconnect_revokes_and_forgets(self) -> None:
        client = MagicMock()
        client.post = AsyncMock(return_value=MagicMock())
        manager = make_manager(expired_tokens(), client)

        await manager.disconnect()
        client.post.assert_awaited_once_with(
            "https://oauth2.googleapis.com/revoke", data={"token": "refresh-1"}
        )
        assert manager.has_token is False

    @pytest.mark.asyncio
    async def test_revoke_failure_is_ignored(self) -> None:
        client = MagicMock()
        client.post = AsyncMock(side_effect=httpx.ConnectError("offline"))
        manager = make_manager(expired_tokens(), client)

        await manager.disconnect()
        assert manager.has_token is False
