"""Bearer token handling for the WHO ICD API.

``CachedTokenProvider`` caches a token until shortly before it expires and
refreshes it single-flight: concurrent callers that find the cache stale wait
on one refresh instead of issuing parallel token requests. The token itself
comes from any ``TokenSource`` (an async callable returning
``(token, expires_at)``), normally ``ClientCredentialsTokenSource``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

import httpx

from app.clinical.icd11.errors import AuthenticationError

logger = logging.getLogger(__name__)

TokenSource = Callable[[], Awaitable[tuple[str, float]]]


class CachedTokenProvider:
    def __init__(
        self,
        source: TokenSource,
        *,
        expiry_margin: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = source
        self._expiry_margin = float(expiry_margin)
        self._clock = clock
        self._token: str | None = None
        self._valid_until = 0.0
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    def _is_valid(self) -> bool:
        return self._token is not None and self._clock() < self._valid_until

    async def get_token(self) -> str:
        if self._is_valid():
            return self._token

        async with self._lock:
            # Another caller may have refreshed while we waited for the lock.
            if self._is_valid():
                return self._token

            token, expires_at = await self._source()
            self.refresh_count += 1
            self._token = token
            self._valid_until = expires_at - self._expiry_margin
            return token

    def invalidate(self, token: str | None = None) -> None:
        """Drop the cached token (only if it is still ``token`` when given)."""
        if token is None or token == self._token:
            self._token = None
            self._valid_until = 0.0


class ClientCredentialsTokenSource:
    """OAuth2 client-credentials exchange against the ICD access-management endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: str = "icdapi_access",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self._clock = clock

    async def __call__(self) -> tuple[str, float]:
        logger.info("Fetching new access token from %s", self.token_url)
        response = await self.client.post(
            self.token_url,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "scope": self.scope,
                "grant_type": "client_credentials",
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if response.status_code in (400, 401, 403):
            logger.error("Authentication failed: token endpoint returned %s", response.status_code)
            raise AuthenticationError(f"token endpoint rejected credentials ({response.status_code})")
        response.raise_for_status()

        payload = response.json()
        token = payload.get("access_token")
        if not token:
            raise AuthenticationError("token endpoint response has no access_token")

        expires_in = float(payload.get("expires_in") or 3600)
        return token, self._clock() + expires_in
