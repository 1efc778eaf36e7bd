"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .balance_guard import BalanceGuard, OptimisticGuard
from .platforms import (
    AccountingPlatform,
    AttendeeDetails,
    ExternalOrder,
    ExternalReservation,
    InvoiceLine,
    InvoiceResult,
    PaymentProcessor,
    PaymentVerification,
    TicketingPlatform,
    WebinarInfo,
    WebinarPlatform,
)

__all__ = [
    'BalanceGuard', 'OptimisticGuard',
    'AccountingPlatform', 'AttendeeDetails', 'ExternalOrder', 'ExternalReservation',
    'InvoiceLine', 'InvoiceResult', 'PaymentProcessor', 'PaymentVerification',
    'TicketingPlatform', 'WebinarInfo', 'WebinarPlatform',
]
