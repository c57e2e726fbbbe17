import time

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.clinical.icd11.auth import CachedTokenProvider
from app.db.models import Base


class FakeIcdApi:
    """Serves canned entity payloads by URL and counts requests."""

    def __init__(self, entities=None):
        self.entities = dict(entities or {})
        self.failures = {}
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(request)
        failure = self.failures.get(url)
        if failure is not None:
            if isinstance(failure, Exception):
                raise failure
            return httpx.Response(failure)
        if url not in self.entities:
            return httpx.Response(404)
        return httpx.Response(200, json=self.entities[url])

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def fetch_count(self, url: str) -> int:
        return sum(1 for r in self.requests if str(r.url) == url)


async def _static_token():
    return "test-token", time.time() + 3600


@pytest.fixture
def token_provider():
    return CachedTokenProvider(_static_token)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    yield factory
    engine.dispose()


@pytest.fixture
def fake_api():
    return FakeIcdApi()
