"""
Pytest fixtures for test database, client, fake platforms and authentication.

Each test gets a fresh in-memory SQLite database (override with
TEST_DATABASE_URL to run against PostgreSQL). External platforms are
replaced with in-memory fakes injected through the integrations dependency.
"""

import os

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("INVOICING_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.db.base import Base
from app.db.session import get_db
from app.core.exceptions import ExternalServiceError
from app.core.security import create_access_token
from app.models import Event, Member, Organization, Program, ProgramTicketBalance
from app.services.integration_factory import Integrations, get_integrations
from app.services.interfaces.balance_guard import OptimisticGuard
from app.services.interfaces.platforms import (
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

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")

BACKSTAGE_EVENT_ID = "bs-1001"
WEBINAR_ID = "81234567890"


# ---------------------------------------------------------------------------
# Fake platforms
# ---------------------------------------------------------------------------

class FakeTicketing(TicketingPlatform):
    def __init__(self):
        self.orders: dict[str, list[ExternalOrder]] = {}
        self.fail_emails: set[str] = set()
        self.duplicate_emails: set[str] = set()
        self.created: list[tuple[str, str]] = []
        self.cancelled: list[str] = []
        self.fail_cancel = False

    async def create_order(self, event_external_id, ticket_class_id, attendee: AttendeeDetails):
        if attendee.email in self.fail_emails:
            raise ExternalServiceError("backstage", "create_order failed (503): unavailable", 503)
        if attendee.email in self.duplicate_emails:
            return ExternalReservation(external_id="existing-order", duplicate=True)
        order_id = f"ord-{len(self.created) + 1}"
        self.created.append((event_external_id, attendee.email))
        self.orders.setdefault(event_external_id, []).append(ExternalOrder(order_id, [attendee.email]))
        return ExternalReservation(external_id=order_id)

    async def list_orders(self, event_external_id):
        return list(self.orders.get(event_external_id, []))

    async def cancel_order(self, event_external_id, order_id, reason):
        if self.fail_cancel:
            raise ExternalServiceError("backstage", "cancel_order failed (500): boom", 500)
        self.cancelled.append(order_id)


class FakeWebinars(WebinarPlatform):
    def __init__(self):
        self.webinars: dict[str, WebinarInfo] = {
            WEBINAR_ID: WebinarInfo(WEBINAR_ID, registration_required=True, topic="Webinar"),
        }
        self.fail_emails: set[str] = set()
        self.registered: list[tuple[str, str]] = []
        self.cancelled: list[str] = []

    async def get_webinar(self, webinar_id):
        return self.webinars.get(webinar_id)

    async def register_attendee(self, webinar_id, attendee: AttendeeDetails):
        if attendee.email in self.fail_emails:
            raise ExternalServiceError("zoom", "register_attendee failed (429): rate limited", 429)
        self.registered.append((webinar_id, attendee.email))
        registrant_id = f"reg-{len(self.registered)}"
        return ExternalReservation(
            external_id=registrant_id,
            join_url=f"https://us02web.zoom.us/w/{webinar_id}?tk={registrant_id}",
        )

    async def cancel_registrant(self, webinar_id, registrant_id, email):
        self.cancelled.append(registrant_id)


class FakeAccounting(AccountingPlatform):
    def __init__(self):
        self.fail = False
        self.invoices: list[tuple[str, list[InvoiceLine], Optional[str]]] = []
        self.references: dict[str, str] = {}

    async def find_or_create_contact(self, name, email=None):
        if self.fail:
            raise ExternalServiceError("xero", "find_contact failed (503): unavailable", 503)
        return f"contact-{name}"

    async def create_invoice(self, contact_id, lines, reference):
        if self.fail:
            raise ExternalServiceError("xero", "create_invoice failed (503): unavailable", 503)
        self.invoices.append((contact_id, lines, reference))
        number = len(self.invoices)
        total = sum((line.unit_amount * line.quantity for line in lines), Decimal("0"))
        return InvoiceResult(invoice_id=f"inv-{number}", invoice_number=f"INV-{number:04d}", total=total)

    async def update_invoice_reference(self, invoice_id, reference):
        if self.fail:
            raise ExternalServiceError("xero", "update_invoice failed (503): unavailable", 503)
        self.references[invoice_id] = reference


class FakePayments(PaymentProcessor):
    def __init__(self):
        self.intents: dict[str, PaymentVerification] = {}

    def add_intent(self, intent_id: str, amount: str, succeeded: bool = True, currency: str = "GBP"):
        self.intents[intent_id] = PaymentVerification(intent_id, succeeded, Decimal(amount), currency)

    async def verify_payment_intent(self, payment_intent_id):
        if payment_intent_id not in self.intents:
            raise ExternalServiceError("stripe", "could not retrieve payment intent: No such payment_intent")
        return self.intents[payment_intent_id]


# ---------------------------------------------------------------------------
# Database and client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield session, then drop tables for isolation."""
    connect_args = {"check_same_thread": False} if TEST_DATABASE_URL.startswith("sqlite") else {}
    engine = create_async_engine(
        TEST_DATABASE_URL, echo=False, poolclass=StaticPool, connect_args=connect_args
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def integrations() -> Integrations:
    return Integrations(
        ticketing=FakeTicketing(),
        webinars=FakeWebinars(),
        accounting=FakeAccounting(),
        payments=FakePayments(),
        guard=OptimisticGuard(),
    )


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, integrations: Integrations) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB and platform dependencies."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_integrations] = lambda: integrations

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Domain data
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def organization(db_session: AsyncSession) -> Organization:
    org = Organization(
        name="Acme Training Ltd",
        training_fund_balance=Decimal("100.00"),
        purchase_order_enabled=True,
    )
    db_session.add(org)
    await db_session.commit()
    await db_session.refresh(org)
    return org


@pytest_asyncio.fixture
async def test_member(db_session: AsyncSession, organization: Organization) -> Member:
    member = Member(
        email="member@acme.test",
        first_name="Morgan",
        last_name="Lee",
        organization_id=organization.id,
    )
    db_session.add(member)
    await db_session.commit()
    await db_session.refresh(member)
    return member


@pytest_asyncio.fixture
async def admin_member(db_session: AsyncSession) -> Member:
    admin = Member(email="admin@portal.test", first_name="Ada", last_name="Admin", is_admin=True)
    db_session.add(admin)
    await db_session.commit()
    await db_session.refresh(admin)
    return admin


@pytest_asyncio.fixture
async def auth_headers(test_member: Member) -> dict:
    """Authorization headers with Bearer token."""
    token = create_access_token(data={"sub": str(test_member.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def program(db_session: AsyncSession) -> Program:
    program = Program(name="Leadership Programme", program_tag="leadership", ticket_price=Decimal("10.00"))
    db_session.add(program)
    await db_session.commit()
    await db_session.refresh(program)
    return program


async def set_balance(db: AsyncSession, organization_id: int, program_tag: str, balance: int) -> None:
    db.add(ProgramTicketBalance(organization_id=organization_id, program_tag=program_tag, balance=balance))
    await db.commit()


@pytest_asyncio.fixture
async def funded_organization(db_session: AsyncSession, organization: Organization, program: Program) -> Organization:
    """Organisation holding 10 leadership tickets."""
    await set_balance(db_session, organization.id, program.program_tag, 10)
    return organization


def _future(days: int = 30) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


@pytest_asyncio.fixture
async def backstage_event(db_session: AsyncSession, program: Program) -> Event:
    event = Event(
        title="Leadership Day",
        start_date=_future(),
        location="Conference Centre",
        program_tag=program.program_tag,
        backstage_event_id=BACKSTAGE_EVENT_ID,
        backstage_ticket_type_id="tt-standard",
    )
    db_session.add(event)
    await db_session.commit()
    await db_session.refresh(event)
    return event


@pytest_asyncio.fixture
async def webinar_event(db_session: AsyncSession, program: Program) -> Event:
    event = Event(
        title="Leadership Webinar",
        start_date=_future(),
        location=f"https://us02web.zoom.us/j/{WEBINAR_ID}?pwd=abc",
        program_tag=program.program_tag,
    )
    db_session.add(event)
    await db_session.commit()
    await db_session.refresh(event)
    return event


@pytest_asyncio.fixture
async def local_event(db_session: AsyncSession, program: Program) -> Event:
    """Program event with no external platform."""
    event = Event(
        title="Leadership Breakfast",
        start_date=_future(),
        location="Head Office",
        program_tag=program.program_tag,
    )
    db_session.add(event)
    await db_session.commit()
    await db_session.refresh(event)
    return event


@pytest_asyncio.fixture
async def one_off_event(db_session: AsyncSession) -> Event:
    event = Event(
        title="Annual Conference",
        start_date=_future(60),
        location="City Hall",
        ticket_price=Decimal("50.00"),
        backstage_event_id="bs-2002",
        backstage_ticket_type_id="tt-delegate",
    )
    db_session.add(event)
    await db_session.commit()
    await db_session.refresh(event)
    return event
