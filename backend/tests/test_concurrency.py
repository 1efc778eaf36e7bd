"""
Tests for balance guards and check-then-commit races on the ticket balance.
"""

from decimal import Decimal

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.exceptions import BalanceConflictError, ConsistencyViolation, InsufficientBalanceError
from app.services import balance_guard_service, integration_factory, ledger_service
from app.services.balance_guard_service import RedisBalanceGuard
from app.services.interfaces.balance_guard import OptimisticGuard
from conftest import set_balance


class FakeLock:
    def __init__(self, acquired=True, error=None):
        self.acquired = acquired
        self.error = error
        self.released = False

    async def acquire(self):
        if self.error:
            raise self.error
        return self.acquired

    async def release(self):
        self.released = True


class FakeRedis:
    def __init__(self, lock: FakeLock):
        self._lock = lock
        self.names = []

    def lock(self, name, timeout=None, blocking_timeout=None):
        self.names.append(name)
        return self._lock


def _use_redis(monkeypatch, client):
    async def fake_get_redis():
        return client

    monkeypatch.setattr(balance_guard_service, "get_redis", fake_get_redis)


@pytest.mark.asyncio
async def test_redis_guard_locks_per_organisation(monkeypatch):
    lock = FakeLock()
    client = FakeRedis(lock)
    _use_redis(monkeypatch, client)

    async with RedisBalanceGuard(lock_timeout=5, wait_timeout=1).hold(42):
        assert not lock.released
    assert lock.released
    assert client.names == ["balance-guard:org:42"]


@pytest.mark.asyncio
async def test_redis_guard_busy_organisation_conflicts(monkeypatch):
    _use_redis(monkeypatch, FakeRedis(FakeLock(acquired=False)))

    with pytest.raises(BalanceConflictError):
        async with RedisBalanceGuard(lock_timeout=5, wait_timeout=1).hold(42):
            pytest.fail("section must not run without the lock")


@pytest.mark.asyncio
async def test_redis_guard_fails_open(monkeypatch):
    _use_redis(monkeypatch, FakeRedis(FakeLock(error=RedisConnectionError("down"))))
    ran = False
    async with RedisBalanceGuard(lock_timeout=5, wait_timeout=1).hold(42):
        ran = True
    assert ran

    _use_redis(monkeypatch, None)
    async with RedisBalanceGuard(lock_timeout=5, wait_timeout=1).hold(42):
        pass


def test_guard_strategy_from_settings(monkeypatch):
    monkeypatch.setattr(integration_factory.settings, "BALANCE_GUARD_STRATEGY", "redis")
    assert isinstance(integration_factory.get_balance_guard_strategy(), RedisBalanceGuard)
    monkeypatch.setattr(integration_factory.settings, "BALANCE_GUARD_STRATEGY", "optimistic")
    assert isinstance(integration_factory.get_balance_guard_strategy(), OptimisticGuard)


@pytest.mark.asyncio
async def test_second_booker_loses_after_passing_precheck(db_session, organization):
    """Both pass the read-only check; only one conditional decrement can win."""
    org_id = organization.id
    await set_balance(db_session, org_id, "leadership", 10)

    await ledger_service.check_available(db_session, org_id, "leadership", 8)
    await ledger_service.check_available(db_session, org_id, "leadership", 5)

    await ledger_service.commit_usage(db_session, org_id, "leadership", 8, "BK-FIRST")
    await db_session.commit()

    with pytest.raises(InsufficientBalanceError) as exc:
        await ledger_service.commit_usage(db_session, org_id, "leadership", 5, "BK-SECOND")
    await db_session.rollback()
    assert exc.value.available == 2
    assert await ledger_service.get_balance(db_session, org_id, "leadership") == 2


@pytest.mark.asyncio
async def test_cancel_guard_reads_balance_at_commit(db_session, organization):
    """Tickets spent after the purchase shrink what an admin may cancel."""
    org_id = organization.id
    purchase = await ledger_service.commit_purchase(db_session, org_id, "leadership", 6, Decimal("60.00"))
    await db_session.commit()
    purchase_id = purchase.id

    await ledger_service.commit_usage(db_session, org_id, "leadership", 5, "BK-LATE")
    await db_session.commit()

    with pytest.raises(ConsistencyViolation) as exc:
        await ledger_service.cancel_purchase(db_session, purchase_id, 2, "admin@portal.test")
    await db_session.rollback()
    assert exc.value.extra["maxCancellable"] == 1
