"""Google OAuth token handling for Drive backup.

The access token is treated as opaque.  ``TokenManager`` caches it with an
expiry (stored 60 s early), and when it has expired performs one silent
refresh with the refresh token, bounded by a short timeout.  Failure
yields ``None`` rather than an exception so callers can simply mark the
session disconnected.

Environment variables (via ``src.config.Settings``):
    LUA_GOOGLE_CLIENT_ID
    LUA_GOOGLE_CLIENT_SECRET
    LUA_GOOGLE_REFRESH_TOKEN
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

import httpx

from src.cycles.config_loader import SyncConfig, get_cycle_config
from src.models.base import utc_now

logger = logging.getLogger("lua.cycles.sync.auth")

_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"


@dataclass
class OAuthTokens:
    """OAuth token pair.

    Attributes:
        access_token:  Bearer token for Drive calls ("" when not yet fetched).
        refresh_token: Long-lived token used to obtain a new access_token.
        expires_at:    UTC datetime after which access_token is not used.
    """

    access_token: str = ""
    refresh_token: str | None = None
    expires_at: datetime | None = None


class TokenManager:
    """Caches the Drive access token and refreshes it silently."""

    def __init__(
        self,
        client_id: str = "",
        client_secret: str = "",
        tokens: OAuthTokens | None = None,
        *,
        config: SyncConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Args:
            client_id:     OAuth2 client ID.
            client_secret: OAuth2 client secret.
            tokens:        Previously stored tokens (None = never connected).
            config:        Sync timings override.
            http_client:   Optional pre-configured httpx client (for testing).
            clock:         Returns the current UTC datetime.
        """
        self._client_id = client_id
        self._client_secret = client_secret
        self._tokens = tokens
        self._config = config or get_cycle_config().sync
        self._http_client = http_client
        self._clock = clock or utc_now
        self._refresh_task: asyncio.Task[str | None] | None = None

    @property
    def has_token(self) -> bool:
        """True when tokens are stored; they may still need a refresh."""
        return self._tokens is not None

    def store_token(
        self,
        access_token: str,
        expires_in: int,
        refresh_token: str | None = None,
    ) -> None:
        """Cache a fresh access token, expiring ``token_expiry_buffer_seconds`` early."""
        expires_at = self._clock() + timedelta(
            seconds=expires_in - self._config.token_expiry_buffer_seconds
        )
        previous_refresh = self._tokens.refresh_token if self._tokens else None
        self._tokens = OAuthTokens(
            access_token=access_token,
            refresh_token=refresh_token or previous_refresh,
            expires_at=expires_at,
        )

    def invalidate(self) -> None:
        """Forget the cached access token so the next call refreshes."""
        if self._tokens is not None:
            self._tokens.access_token = ""
            self._tokens.expires_at = None

    async def get_valid_token(self) -> str | None:
        """Return a usable access token, or None.

        A cached, unexpired token is returned as-is.  Otherwise one silent
        refresh is attempted; concurrent callers share it.
        """
        t = self._tokens
        if t is None:
            return None
        if t.access_token and t.expires_at is not None and self._clock() < t.expires_at:
            return t.access_token
        if not t.refresh_token:
            return None

        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._silent_refresh(t.refresh_token))
        return await asyncio.shield(self._refresh_task)

    async def _silent_refresh(self, refresh_token: str) -> str | None:
        timeout = self._config.silent_refresh_timeout_seconds
        try:
            data = await asyncio.wait_for(self._post_refresh(refresh_token), timeout)
        except asyncio.TimeoutError:
            logger.warning("Silent token refresh timed out after %.1fs", timeout)
            return None
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.warning("Silent token refresh failed: %s", exc)
            return None

        self.store_token(
            data["access_token"],
            int(data.get("expires_in", 3600)),
            data.get("refresh_token"),
        )
        logger.info("Drive access token refreshed")
        return self._tokens.access_token

    async def _post_refresh(self, refresh_token: str) -> dict:
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        if self._http_client:
            response = await self._http_client.post(_GOOGLE_TOKEN_URL, data=form)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(_GOOGLE_TOKEN_URL, data=form)
        response.raise_for_status()
        data = response.json()
        if "access_token" not in data:
            raise KeyError("access_token")
        return data

    async def disconnect(self) -> None:
        """Revoke the token (best effort) and forget it."""
        t = self._tokens
        self._tokens = None
        if t is None:
            return
        token = t.refresh_token or t.access_token
        if not token:
            return
        try:
            if self._http_client:
                await self._http_client.post(_GOOGLE_REVOKE_URL, data={"token": token})
            else:
                async with httpx.AsyncClient() as client:
                    await client.post(_GOOGLE_REVOKE_URL, data={"token": token})
        except httpx.HTTPError as exc:
            logger.warning("Token revoke failed (ignored): %s", exc)
        logger.info("Disconnected from Google Drive")
