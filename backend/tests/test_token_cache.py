"""
Tests for the OAuth access token cache.
"""

import asyncio

import pytest

from app.core.exceptions import ExternalServiceError
from app.infrastructure.token_cache import OAuthTokenCache, TokenGrant


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class CountingFetcher:
    def __init__(self, expires_in: int = 3600, rotate: bool = False, delay: float = 0):
        self.calls = 0
        self.seen_refresh_tokens = []
        self.expires_in = expires_in
        self.rotate = rotate
        self.delay = delay

    async def __call__(self, refresh_token):
        self.calls += 1
        self.seen_refresh_tokens.append(refresh_token)
        if self.delay:
            await asyncio.sleep(self.delay)
        return TokenGrant(
            access_token=f"token-{self.calls}",
            expires_in=self.expires_in,
            refresh_token=f"refresh-{self.calls}" if self.rotate else None,
        )


@pytest.mark.asyncio
async def test_token_is_reused_until_near_expiry():
    clock = FakeClock()
    fetcher = CountingFetcher(expires_in=3600)
    cache = OAuthTokenCache("zoom", fetcher, refresh_margin=300, clock=clock)

    assert await cache.get_valid_token() == "token-1"
    clock.now += 3000
    assert await cache.get_valid_token() == "token-1"
    assert fetcher.calls == 1

    # Inside the margin: refresh before the provider rejects it.
    clock.now += 301
    assert await cache.get_valid_token() == "token-2"
    assert fetcher.calls == 2


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh():
    fetcher = CountingFetcher(delay=0.01)
    cache = OAuthTokenCache("backstage", fetcher, refresh_margin=60, clock=FakeClock())

    tokens = await asyncio.gather(*(cache.get_valid_token() for _ in range(10)))
    assert set(tokens) == {"token-1"}
    assert fetcher.calls == 1


@pytest.mark.asyncio
async def test_invalidate_forces_refresh():
    fetcher = CountingFetcher()
    cache = OAuthTokenCache("xero", fetcher, refresh_margin=60, clock=FakeClock())

    await cache.get_valid_token()
    cache.invalidate()
    assert await cache.get_valid_token() == "token-2"


@pytest.mark.asyncio
async def test_rotated_refresh_token_is_used_next_time():
    clock = FakeClock()
    fetcher = CountingFetcher(expires_in=100, rotate=True)
    cache = OAuthTokenCache("xero", fetcher, refresh_token="initial", refresh_margin=10, clock=clock)

    await cache.get_valid_token()
    clock.now += 200
    await cache.get_valid_token()
    assert fetcher.seen_refresh_tokens == ["initial", "refresh-1"]


@pytest.mark.asyncio
async def test_failed_refresh_raises_and_caches_nothing():
    attempts = 0

    async def failing(refresh_token):
        nonlocal attempts
        attempts += 1
        raise ExternalServiceError("zoom", "token request failed (401): invalid_client", 401)

    cache = OAuthTokenCache("zoom", failing, refresh_margin=60, clock=FakeClock())
    with pytest.raises(ExternalServiceError):
        await cache.get_valid_token()
    with pytest.raises(ExternalServiceError):
        await cache.get_valid_token()
    assert attempts == 2
