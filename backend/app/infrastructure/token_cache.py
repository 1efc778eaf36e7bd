"""
Time-bounded OAuth access token cache.

One instance per provider. get_valid_token() hands out the cached bearer
token until it is within the refresh margin of expiry, then refreshes it
through the provider's fetcher. A single asyncio.Lock keeps one refresh in
flight per process; concurrent callers wait and reuse the new token.

Providers that rotate refresh tokens (Xero, Zoho) return the new refresh
token from the fetcher; it is kept in memory and mirrored to Redis so other
workers pick it up.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from redis.exceptions import RedisError

from app.core.config import get_settings
from app.core.exceptions import ExternalServiceError
from app.core.logging import get_logger
from app.core.metrics import record_token_refresh
from app.infrastructure.redis_client import get_redis

logger = get_logger(__name__)
settings = get_settings()


@dataclass
class TokenGrant:
    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None


# Receives the current refresh token (None for client-credentials flows).
TokenFetcher = Callable[[Optional[str]], Awaitable[TokenGrant]]


class OAuthTokenCache:
    def __init__(
        self,
        provider: str,
        fetcher: TokenFetcher,
        refresh_token: Optional[str] = None,
        refresh_margin: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self._fetcher = fetcher
        self._refresh_token = refresh_token or None
        self._margin = (
            refresh_margin if refresh_margin is not None else settings.TOKEN_REFRESH_MARGIN_SECONDS
        )
        self._clock = clock
        self._access_token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def _redis_key(self) -> str:
        return f"oauth:{self.provider}:refresh_token"

    def _is_fresh(self) -> bool:
        return self._access_token is not None and self._clock() < self._expires_at - self._margin

    async def get_valid_token(self) -> str:
        if self._is_fresh():
            return self._access_token

        async with self._lock:
            # Another caller may have refreshed while we waited.
            if self._is_fresh():
                return self._access_token
            await self._refresh()
            return self._access_token

    def invalidate(self) -> None:
        """Force the next call to refresh (e.g. after a 401 from the provider)."""
        self._access_token = None
        self._expires_at = 0.0

    async def _refresh(self) -> None:
        refresh_token = await self._load_refresh_token()
        try:
            grant = await self._fetcher(refresh_token)
        except ExternalServiceError:
            record_token_refresh(self.provider, success=False)
            logger.error("oauth_token_refresh_failed", provider=self.provider)
            raise

        self._access_token = grant.access_token
        self._expires_at = self._clock() + grant.expires_in
        if grant.refresh_token and grant.refresh_token != refresh_token:
            self._refresh_token = grant.refresh_token
            await self._store_refresh_token(grant.refresh_token)

        record_token_refresh(self.provider, success=True)
        logger.info("oauth_token_refreshed", provider=self.provider, expires_in=grant.expires_in)

    async def _load_refresh_token(self) -> Optional[str]:
        client = await get_redis()
        if client is not None:
            try:
                stored = await client.get(self._redis_key)
                if stored:
                    self._refresh_token = stored
            except RedisError as e:
                logger.warning("oauth_refresh_token_load_failed", provider=self.provider, error=str(e))
        return self._refresh_token

    async def _store_refresh_token(self, refresh_token: str) -> None:
        client = await get_redis()
        if client is None:
            return
        try:
            await client.set(self._redis_key, refresh_token)
        except RedisError as e:
            logger.warning("oauth_refresh_token_store_failed", provider=self.provider, error=str(e))
