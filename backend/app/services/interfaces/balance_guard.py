"""
Balance guard strategy interface.
Allows swapping between concurrency control approaches for the
check-and-commit section of a purchase or booking.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator


class BalanceGuard(ABC):
    """
    Interface for per-organisation balance guards.

    Implementations:
    - OptimisticGuard: no lock, rely on conditional UPDATEs in the database
    - RedisBalanceGuard: per-organisation Redis lock around check-and-commit
    """

    @abstractmethod
    def hold(self, organization_id: int) -> AsyncIterator[None]:
        """
        Async context manager held while balances for the organisation are
        checked and committed.
        """
        pass


class OptimisticGuard(BalanceGuard):
    """
    No lock - the database conditions are the only gate.

    Use when:
    - A single organisation rarely books concurrently
    - Simplicity preferred over fail-fast
    """

    @asynccontextmanager
    async def hold(self, organization_id: int):
        yield
