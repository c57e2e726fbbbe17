import asyncio

import httpx
import pytest

from app.clinical.icd11.errors import AuthenticationError, FetchError
from app.clinical.icd11.fetcher import Icd11Fetcher
from app.schemas.icd11 import Icd11Entity

URL = "https://icd.test/mms/257068234"


def _run_fetch(fake_api, token_provider, url=URL, **kwargs):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    async def scenario():
        async with fake_api.client() as client:
            fetcher = Icd11Fetcher(client, token_provider, sleep=fake_sleep, **kwargs)
            return await fetcher.fetch(url)

    return asyncio.run(scenario()), delays


def test_fetch_returns_entity_with_api_headers(fake_api, token_provider):
    fake_api.entities[URL] = {"@id": URL, "code": "1A00", "classKind": "category", "title": {"@value": "Cholera"}}

    result, delays = _run_fetch(fake_api, token_provider, language="es")

    assert isinstance(result, Icd11Entity)
    assert result.code == "1A00"
    assert result.source_url == URL
    assert delays == []
    headers = fake_api.requests[0].headers
    assert headers["Authorization"] == "Bearer test-token"
    assert headers["Accept"] == "application/json"
    assert headers["Accept-Language"] == "es"
    assert headers["API-Version"] == "v2"


def test_timeouts_exhaust_three_attempts_with_backoff(fake_api, token_provider):
    fake_api.failures[URL] = httpx.ConnectTimeout("timed out")

    result, delays = _run_fetch(fake_api, token_provider)

    assert isinstance(result, FetchError)
    assert result.attempts == 3
    assert "ConnectTimeout" in result.reason
    assert fake_api.fetch_count(URL) == 3
    assert len(delays) == 2
    assert delays[0] >= 2.0
    assert delays[1] >= 4.0


def test_server_errors_are_retried_until_success(fake_api, token_provider):
    responses = iter([httpx.Response(503), httpx.Response(502)])

    def handler(request):
        fake_api.requests.append(request)
        try:
            return next(responses)
        except StopIteration:
            return httpx.Response(200, json={"code": "1A00", "classKind": "category"})

    fake_api.handler = handler
    result, delays = _run_fetch(fake_api, token_provider)

    assert isinstance(result, Icd11Entity)
    assert delays == [2.0, 4.0]


def test_not_found_is_terminal_without_retry(fake_api, token_provider):
    result, delays = _run_fetch(fake_api, token_provider)

    assert isinstance(result, FetchError)
    assert result.status_code == 404
    assert result.attempts == 1
    assert delays == []


def test_persistent_401_is_fatal(fake_api, token_provider):
    fake_api.failures[URL] = 401

    with pytest.raises(AuthenticationError):
        _run_fetch(fake_api, token_provider)

    assert fake_api.fetch_count(URL) == 3
    # The rejected token is dropped before every retry.
    assert token_provider.refresh_count == 3
