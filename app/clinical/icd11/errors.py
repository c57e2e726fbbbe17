from __future__ import annotations

from dataclasses import dataclass


class Icd11CrawlError(Exception):
    pass


class AuthenticationError(Icd11CrawlError):
    """Credentials were rejected; the whole crawl must stop."""


class ConfigurationError(Icd11CrawlError, ValueError):
    pass


@dataclass(frozen=True)
class FetchError:
    """Terminal outcome of a fetch whose retry budget is exhausted."""

    url: str
    attempts: int
    reason: str
    status_code: int | None = None
