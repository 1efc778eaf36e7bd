"""
Per-organisation balance guard backed by Redis.
Implements BalanceGuard using a Redis lock.

Circuit Breaker Pattern:
  On Redis failure, the guard "fails open" (runs the section unlocked).
  The database conditional updates remain authoritative - Redis only
  serialises the check-and-commit section so concurrent bookings for the
  same organisation fail fast instead of racing to the UPDATE.
"""

from contextlib import asynccontextmanager

from redis.exceptions import LockError, RedisError

from app.core.config import get_settings
from app.core.exceptions import BalanceConflictError
from app.core.logging import get_logger
from app.core.metrics import balance_guard_fail_open, redis_connection_errors
from app.infrastructure.redis_client import get_redis
from app.services.interfaces.balance_guard import BalanceGuard

logger = get_logger(__name__)
settings = get_settings()


class RedisBalanceGuard(BalanceGuard):
    """
    Redis-based per-organisation lock.

    Use when:
    - Many members of one organisation book at the same time
    - Several external calls sit between balance check and commit
    """

    def __init__(self, lock_timeout: int = None, wait_timeout: int = None):
        self.lock_timeout = lock_timeout or settings.BALANCE_GUARD_LOCK_TIMEOUT
        self.wait_timeout = wait_timeout or settings.BALANCE_GUARD_WAIT_TIMEOUT

    @asynccontextmanager
    async def hold(self, organization_id: int):
        client = await get_redis()
        lock = None
        if client is not None:
            lock = client.lock(
                f"balance-guard:org:{organization_id}",
                timeout=self.lock_timeout,
                blocking_timeout=self.wait_timeout,
            )
            try:
                acquired = await lock.acquire()
            except RedisError as e:
                redis_connection_errors.inc()
                logger.warning("balance_guard_fail_open", organization_id=organization_id, error=str(e))
                lock = None
                acquired = True
            if not acquired:
                raise BalanceConflictError(
                    "Another booking for your organisation is in progress. Please try again."
                )

        balance_guard_fail_open.set(0 if lock is not None else 1)
        try:
            yield
        finally:
            if lock is not None:
                try:
                    await lock.release()
                except (LockError, RedisError) as e:
                    # Lock expired mid-saga; the DB conditions still held.
                    logger.warning("balance_guard_release_failed", organization_id=organization_id, error=str(e))
