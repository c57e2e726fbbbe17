"""Bounded-retry fetch of a single ICD-11 entity.

Each attempt takes a token from the provider, issues one GET and classifies the
outcome. Transient failures (timeouts, connection errors, 429, 5xx, unreadable
bodies, 401/403 which also drop the cached token) are retried with exponential
backoff: 2s, then 4s, then 8s, ... between attempts. Other 4xx answers are
terminal at once. A URL that cannot be fetched yields a ``FetchError`` value;
only a credential rejection is raised, because it is fatal for the whole run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx
from pydantic import ValidationError

from app.clinical.icd11.auth import CachedTokenProvider
from app.clinical.icd11.errors import AuthenticationError, FetchError
from app.schemas.icd11 import Icd11Entity

logger = logging.getLogger(__name__)

AUTH_STATUSES = (401, 403)


def _is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class Icd11Fetcher:
    def __init__(
        self,
        client: httpx.AsyncClient,
        token_provider: CachedTokenProvider,
        *,
        language: str = "en",
        api_version: str = "v2",
        max_attempts: int = 3,
        backoff_initial: float = 2.0,
        timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.token_provider = token_provider
        self.language = language
        self.api_version = api_version
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_initial = float(backoff_initial)
        self.timeout = float(timeout)
        self._sleep = sleep

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Accept-Language": self.language,
            "API-Version": self.api_version,
        }

    async def fetch(self, url: str) -> Icd11Entity | FetchError:
        delay = self.backoff_initial
        reason = "not attempted"
        status_code: int | None = None
        auth_rejections = 0

        for attempt in range(1, self.max_attempts + 1):
            try:
                token = await self.token_provider.get_token()
                response = await self.client.get(url, headers=self._headers(token), timeout=self.timeout)
            except AuthenticationError:
                raise
            except httpx.HTTPError as exc:
                reason = f"{type(exc).__name__}: {exc}"
                status_code = None
            else:
                status_code = response.status_code
                if response.is_success:
                    try:
                        entity = Icd11Entity.model_validate(response.json())
                    except (ValueError, ValidationError) as exc:
                        reason = f"unreadable entity payload: {exc}"
                    else:
                        return entity.model_copy(update={"source_url": url})
                elif status_code in AUTH_STATUSES:
                    auth_rejections += 1
                    self.token_provider.invalidate(token)
                    reason = f"HTTP {status_code}"
                elif _is_transient_status(status_code):
                    reason = f"HTTP {status_code}"
                else:
                    logger.error("Fetch of %s failed with non-retryable HTTP %s", url, status_code)
                    return FetchError(url=url, attempts=attempt, reason=f"HTTP {status_code}", status_code=status_code)

            logger.warning("Fetch attempt %s failed for URL: %s. Error: %s", attempt, url, reason)
            if attempt < self.max_attempts:
                await self._sleep(delay)
                delay *= 2

        if auth_rejections == self.max_attempts:
            raise AuthenticationError(f"API kept rejecting the bearer token for {url}")

        logger.error("Max retries reached for URL: %s", url)
        return FetchError(url=url, attempts=self.max_attempts, reason=reason, status_code=status_code)
