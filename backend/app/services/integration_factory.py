"""
Integration and strategy factory.
Configures which platform clients and balance guard the sagas use.
"""

from dataclasses import dataclass
from typing import Optional

from app.core.config import get_settings
from app.infrastructure.backstage_client import BackstageClient
from app.infrastructure.stripe_client import StripePaymentProcessor
from app.infrastructure.xero_client import XeroClient
from app.infrastructure.zoom_client import ZoomClient
from app.services.balance_guard_service import RedisBalanceGuard
from app.services.interfaces.balance_guard import BalanceGuard, OptimisticGuard
from app.services.interfaces.platforms import (
    AccountingPlatform,
    PaymentProcessor,
    TicketingPlatform,
    WebinarPlatform,
)

settings = get_settings()


@dataclass
class Integrations:
    ticketing: TicketingPlatform
    webinars: WebinarPlatform
    accounting: AccountingPlatform
    payments: PaymentProcessor
    guard: BalanceGuard


def get_balance_guard_strategy() -> BalanceGuard:
    """
    Get configured balance guard.

    Can be overridden via BALANCE_GUARD_STRATEGY env var:
    - optimistic (default): conditional UPDATEs only
    - redis: per-organisation Redis lock as well
    """
    if settings.BALANCE_GUARD_STRATEGY == "redis":
        return RedisBalanceGuard()
    return OptimisticGuard()


def build_integrations() -> Integrations:
    return Integrations(
        ticketing=BackstageClient(),
        webinars=ZoomClient(),
        accounting=XeroClient(),
        payments=StripePaymentProcessor(),
        guard=get_balance_guard_strategy(),
    )


# Singleton instance
_integrations: Optional[Integrations] = None

def get_integrations() -> Integrations:
    """FastAPI dependency: shared platform clients (token caches live on them)."""
    global _integrations
    if _integrations is None:
        _integrations = build_integrations()
    return _integrations


async def close_integrations() -> None:
    global _integrations
    if _integrations is None:
        return
    for client in (_integrations.ticketing, _integrations.webinars, _integrations.accounting):
        close = getattr(client, "close", None)
        if close is not None:
            await close()
    _integrations = None
