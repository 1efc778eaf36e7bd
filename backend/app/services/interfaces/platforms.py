"""
External platform interfaces.

The booking saga only depends on these capabilities, never on a vendor's
wire format. Implementations live in app.infrastructure; tests substitute
in-memory fakes.

Every method raises ExternalServiceError when the provider call fails.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional


@dataclass
class AttendeeDetails:
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


@dataclass
class ExternalReservation:
    external_id: Optional[str]
    join_url: Optional[str] = None
    # The platform already had this attendee; treated as success.
    duplicate: bool = False


@dataclass
class ExternalOrder:
    order_id: str
    emails: list[str] = field(default_factory=list)
    cancelled: bool = False


@dataclass
class WebinarInfo:
    webinar_id: str
    registration_required: bool
    topic: Optional[str] = None


@dataclass
class InvoiceLine:
    description: str
    quantity: int
    unit_amount: Decimal


@dataclass
class InvoiceResult:
    invoice_id: str
    invoice_number: Optional[str]
    total: Decimal


@dataclass
class PaymentVerification:
    payment_intent_id: str
    succeeded: bool
    amount: Decimal
    currency: str


class TicketingPlatform(ABC):
    """Event ticketing platform (orders per attendee)."""

    @abstractmethod
    async def create_order(
        self, event_external_id: str, ticket_class_id: Optional[str], attendee: AttendeeDetails
    ) -> ExternalReservation:
        pass

    @abstractmethod
    async def list_orders(self, event_external_id: str) -> list[ExternalOrder]:
        pass

    @abstractmethod
    async def cancel_order(self, event_external_id: str, order_id: str, reason: str) -> None:
        pass


class WebinarPlatform(ABC):
    """Webinar platform (registrants per attendee)."""

    @abstractmethod
    async def get_webinar(self, webinar_id: str) -> Optional[WebinarInfo]:
        """Return None when the webinar does not exist."""
        pass

    @abstractmethod
    async def register_attendee(self, webinar_id: str, attendee: AttendeeDetails) -> ExternalReservation:
        pass

    @abstractmethod
    async def cancel_registrant(self, webinar_id: str, registrant_id: str, email: str) -> None:
        pass


class AccountingPlatform(ABC):
    """Accounting/invoicing platform."""

    @abstractmethod
    async def find_or_create_contact(self, name: str, email: Optional[str] = None) -> str:
        pass

    @abstractmethod
    async def create_invoice(
        self, contact_id: str, lines: list[InvoiceLine], reference: Optional[str]
    ) -> InvoiceResult:
        pass

    @abstractmethod
    async def update_invoice_reference(self, invoice_id: str, reference: str) -> None:
        pass


class PaymentProcessor(ABC):
    """Card payment processor. Read-only: this service never initiates charges."""

    @abstractmethod
    async def verify_payment_intent(self, payment_intent_id: str) -> PaymentVerification:
        pass
