"""
Booking orchestrator: program-ticket purchases and event bookings.

SAGA
====

  RECEIVED -> PRICED -> ALLOCATION_VALIDATED -> BALANCE_RESERVED
           -> ATTENDEES_RESERVED (partial ok) -> PERSISTED
           -> [INVOICE_REQUESTED] -> DONE

Everything up to BALANCE_RESERVED is read-only: pricing, discount code and
voucher validation, payment allocation, the balance pre-check and the
duplicate-registration pre-check. Any rejection there leaves no trace.

BALANCE_RESERVED is one database unit, committed before any external call:
tickets (or vouchers, discount usage and training fund) are debited with
conditional updates, ledger rows are appended and one booking row per
attendee is written as `pending`. External calls cannot join a database
transaction, so from here on nothing is rolled back:

  - a failed reservation leaves that attendee's row in pending_*_sync and
    adds a warning to the response
  - a failed invoice adds a warning; the booking stands

Every step logs with the organisation id and booking reference bound into
the structlog context so a half-finished saga can be reconciled by hand.
"""

import secrets
import time
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import (
    BalanceConflictError,
    BookingError,
    ConsistencyViolation,
    DuplicateRegistrationError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from app.core.logging import bind_saga_context, get_logger
from app.core.metrics import (
    booking_latency,
    record_booking_attempt,
    record_invoice,
    record_purchase_attempt,
)
from app.db.base import utcnow
from app.db.session import commit_unit
from app.models.booking import Booking, BookingStatus
from app.models.event import Event
from app.models.organization import Organization
from app.models.program import Program
from app.models.transaction import ProgramTicketTransaction, TransactionType
from app.services import ledger_service
from app.services.integration_factory import Integrations
from app.services.interfaces.platforms import AttendeeDetails, InvoiceLine, InvoiceResult
from app.services.organization_service import MemberContext, get_member_context
from app.services.payment_allocator import PaymentAllocation, validate_allocation, verify_card_payment
from app.services.pricing_service import (
    ZERO,
    OfferConfig,
    PricingResult,
    VoucherPlan,
    apply_discount_code,
    calculate_offer_price,
    consume_vouchers,
    load_vouchers,
    money,
    plan_voucher_usage,
    record_discount_usage,
)
from app.services.reservation_service import (
    ReservationCoordinator,
    normalise_email,
    warning_for,
)

logger = get_logger(__name__)
settings = get_settings()

REGISTRATION_SELF = "self"
REGISTRATION_COLLEAGUES = "colleagues"
REGISTRATION_LINKS = "links"


def new_booking_reference(prefix: str = "BK") -> str:
    return f"{prefix}-{utcnow():%Y%m%d}-{secrets.token_hex(3).upper()}"


def split_amount(amount: Decimal, parts: int) -> list[Decimal]:
    """Split into `parts` penny amounts that sum back to `amount` exactly."""
    pennies = int(money(amount) * 100)
    base, extra = divmod(pennies, parts)
    return [money(Decimal(base + (1 if i < extra else 0)) / 100) for i in range(parts)]


def _failure_status(error: BookingError) -> str:
    if isinstance(error, DuplicateRegistrationError):
        return "duplicate"
    if isinstance(error, BalanceConflictError):
        return "conflict"
    if isinstance(error, ExternalServiceError):
        return "error"
    return "rejected"


def _resolve_attendees(context: MemberContext, mode: str, attendees: list) -> list[AttendeeDetails]:
    if mode == REGISTRATION_SELF:
        member = context.member
        return [AttendeeDetails(normalise_email(member.email), member.first_name, member.last_name)]

    resolved = [
        AttendeeDetails(normalise_email(a.email), a.first_name, a.last_name)
        for a in attendees
        if a.email and a.email.strip()
    ]
    if not resolved:
        raise ValidationError("At least one attendee is required")
    emails = [a.email for a in resolved]
    repeated = sorted({e for e in emails if emails.count(e) > 1})
    if repeated:
        raise ValidationError(f"Attendees listed more than once: {', '.join(repeated)}")
    return resolved


async def _get_event(db: AsyncSession, event_id: int) -> Event:
    result = await db.execute(select(Event).where(Event.id == event_id))
    event = result.scalar_one_or_none()
    if not event:
        raise NotFoundError(f"Event {event_id} not found")
    return event


async def _get_program(db: AsyncSession, program_name: str) -> Program:
    result = await db.execute(
        select(Program).where(
            (Program.program_tag == program_name) | (Program.name == program_name)
        )
    )
    program = result.scalars().first()
    if not program or not program.is_active:
        raise NotFoundError(f"Program '{program_name}' not found")
    return program


async def _request_invoice(
    integrations: Integrations,
    organization: Organization,
    lines: list[InvoiceLine],
    reference: Optional[str],
) -> tuple[Optional[InvoiceResult], Optional[str]]:
    """Best effort. Returns (invoice, warning)."""
    try:
        contact_id = await integrations.accounting.find_or_create_contact(organization.name)
        invoice = await integrations.accounting.create_invoice(contact_id, lines, reference)
    except ExternalServiceError as e:
        record_invoice(False)
        logger.error("invoice_creation_failed", reference=reference, error=e.detail)
        return None, f"Booking saved, but the invoice could not be created ({e.detail}). It will be raised manually."

    record_invoice(True)
    logger.info(
        "invoice_created",
        invoice_id=invoice.invoice_id,
        invoice_number=invoice.invoice_number,
        total=invoice.total,
    )
    return invoice, None


def _invoice_body(invoice: Optional[InvoiceResult]) -> Optional[dict]:
    if invoice is None:
        return None
    return {
        "invoice_id": invoice.invoice_id,
        "invoice_number": invoice.invoice_number,
        "total": float(invoice.total),
    }


def _join_warnings(*warnings: Optional[str]) -> Optional[str]:
    present = [w for w in warnings if w]
    return " ".join(present) if present else None


async def _price_and_allocate(
    db: AsyncSession,
    integrations: Integrations,
    context: MemberContext,
    pricing: PricingResult,
    request,
    program_tag: Optional[str],
) -> tuple[PricingResult, VoucherPlan, PaymentAllocation]:
    """Discount code, vouchers and payment allocation. Read-only."""
    organization = context.organization
    if request.applied_discount_id is not None:
        pricing = await apply_discount_code(
            db, pricing, request.applied_discount_id, organization.id, program_tag
        )

    vouchers = await load_vouchers(db, request.selected_voucher_ids or [])
    plan = plan_voucher_usage(vouchers, organization.id, pricing.total_cost)

    card_amount = await verify_card_payment(
        integrations.payments, request.stripe_payment_intent_id, request.payment_method
    )
    allocation = validate_allocation(
        total_cost=pricing.total_cost,
        organization=organization,
        voucher_amount=plan.total,
        requested_training_fund=request.training_fund_amount,
        account_amount=request.account_amount,
        card_amount=card_amount,
        purchase_order_number=request.purchase_order_number,
        po_to_follow=request.po_to_follow,
        stripe_payment_intent_id=request.stripe_payment_intent_id,
    )
    return pricing, plan, allocation


async def _commit_funding(
    db: AsyncSession,
    context: MemberContext,
    pricing: PricingResult,
    plan: VoucherPlan,
    allocation: PaymentAllocation,
    booking_reference: str,
    program_tag: Optional[str],
) -> None:
    """Spend the card payment, vouchers, discount usage and training fund; one ledger row per source."""
    organization = context.organization
    member_id = context.member.id

    if allocation.stripe_payment_intent_id:
        await ledger_service.record_card_payment(
            db,
            organization.id,
            allocation.stripe_payment_intent_id,
            allocation.card_amount,
            program_tag=program_tag,
            member_id=member_id,
            booking_reference=booking_reference,
        )
    if plan.applications:
        await consume_vouchers(db, plan)
    if pricing.discount_code is not None:
        await record_discount_usage(db, pricing.discount_code, organization.id)
    if allocation.training_fund_amount > ZERO:
        await ledger_service.debit_training_fund(db, organization.id, allocation.training_fund_amount)

    for application in plan.applications:
        await ledger_service.record_funding(
            db,
            organization.id,
            TransactionType.VOUCHER,
            application.amount,
            program_tag=program_tag,
            member_id=member_id,
            booking_reference=booking_reference,
            voucher_id=application.voucher.id,
        )
    if allocation.training_fund_amount > ZERO:
        await ledger_service.record_funding(
            db,
            organization.id,
            TransactionType.TRAINING_FUND_USAGE,
            allocation.training_fund_amount,
            program_tag=program_tag,
            member_id=member_id,
            booking_reference=booking_reference,
        )
    if allocation.account_amount > ZERO:
        await ledger_service.record_funding(
            db,
            organization.id,
            TransactionType.ACCOUNT_CHARGE,
            allocation.account_amount,
            program_tag=program_tag,
            member_id=member_id,
            booking_reference=booking_reference,
            purchase_order_number=allocation.purchase_order_number,
            notes="PO to follow" if allocation.po_to_follow else None,
        )


def _apply_outcomes(rows: list[Booking], outcomes) -> None:
    for row, outcome in zip(rows, outcomes):
        row.transition_to(outcome.status)
        row.external_reservation_id = outcome.external_id
        row.join_url = outcome.join_url
        row.sync_error = outcome.error[:500] if outcome.error else None


# ---------------------------------------------------------------------------
# Program ticket purchase
# ---------------------------------------------------------------------------

async def process_purchase(db: AsyncSession, integrations: Integrations, member_id: int, request) -> dict:
    try:
        result = await _process_purchase(db, integrations, member_id, request)
    except BookingError as e:
        record_purchase_attempt(_failure_status(e))
        raise
    record_purchase_attempt("success")
    return result


async def _process_purchase(db: AsyncSession, integrations: Integrations, member_id: int, request) -> dict:
    context = await get_member_context(db, member_id)
    organization = context.organization
    booking_reference = new_booking_reference("PT")
    bind_saga_context(organization_id=organization.id, member_id=member_id, booking_reference=booking_reference)

    program = await _get_program(db, request.program_name)
    pricing = calculate_offer_price(OfferConfig.from_program(program), request.quantity)
    pricing, plan, allocation = await _price_and_allocate(
        db, integrations, context, pricing, request, program.program_tag
    )
    logger.info(
        "purchase_priced",
        program=program.program_tag,
        quantity=request.quantity,
        tickets=pricing.total_tickets_received,
        total_cost=pricing.total_cost,
        discount_applied=pricing.discount_applied,
    )

    async with integrations.guard.hold(organization.id):
        async with commit_unit(db):
            await _commit_funding(db, context, pricing, plan, allocation, booking_reference, program.program_tag)
            purchase = await ledger_service.commit_purchase(
                db,
                organization.id,
                program.program_tag,
                pricing.total_tickets_received,
                pricing.total_cost,
                member_id=member_id,
                booking_reference=booking_reference,
                purchase_order_number=allocation.purchase_order_number,
                notes=pricing.discount_details or None,
            )

    invoice, warning = None, None
    if settings.INVOICING_ENABLED and allocation.account_amount > ZERO:
        lines = [
            InvoiceLine(
                description=f"{program.name}: {pricing.total_tickets_received} program tickets",
                quantity=1,
                unit_amount=allocation.account_amount,
            )
        ]
        invoice, warning = await _request_invoice(
            integrations, organization, lines, allocation.purchase_order_number or booking_reference
        )
        if invoice is not None:
            async with commit_unit(db):
                purchase.invoice_id = invoice.invoice_id
                purchase.invoice_number = invoice.invoice_number

    new_balance = await ledger_service.get_balance(db, organization.id, program.program_tag)
    logger.info(
        "purchase_completed",
        transaction_id=purchase.id,
        tickets=pricing.total_tickets_received,
        new_balance=new_balance,
    )
    return {
        "success": True,
        "booking_reference": booking_reference,
        "transaction_id": purchase.id,
        "program_tag": program.program_tag,
        "total_tickets_received": pricing.total_tickets_received,
        "total_cost": float(pricing.total_cost),
        "discount_applied": pricing.discount_applied,
        "discount_details": pricing.discount_details,
        "payment_breakdown": allocation.as_breakdown(),
        "new_balance": new_balance,
        "xero_invoice": _invoice_body(invoice),
        "warning": warning,
    }


# ---------------------------------------------------------------------------
# Program ticket booking
# ---------------------------------------------------------------------------

async def create_program_booking(db: AsyncSession, integrations: Integrations, member_id: int, request) -> dict:
    started = time.perf_counter()
    try:
        result = await _create_program_booking(db, integrations, member_id, request)
    except BookingError as e:
        record_booking_attempt("program", _failure_status(e))
        raise
    record_booking_attempt("program", "partial" if result["warning"] else "success")
    booking_latency.labels(kind="program").observe(time.perf_counter() - started)
    return result


async def _create_program_booking(db: AsyncSession, integrations: Integrations, member_id: int, request) -> dict:
    context = await get_member_context(db, member_id)
    organization = context.organization
    event = await _get_event(db, request.event_id)

    if not event.is_program_event:
        raise ValidationError("This event is not part of a program. Book it as a one-off event instead.")
    if request.program_tag and request.program_tag != event.program_tag:
        raise ValidationError(
            f"Event {event.id} belongs to program '{event.program_tag}', not '{request.program_tag}'"
        )
    program_tag = event.program_tag

    links_mode = request.registration_mode == REGISTRATION_LINKS
    if links_mode:
        attendees = []
        quantity = request.tickets_required or 0
        if quantity <= 0:
            raise ValidationError("ticketsRequired must be at least 1 for link registration")
    else:
        attendees = _resolve_attendees(context, request.registration_mode, request.attendees)
        quantity = len(attendees)
        if request.tickets_required is not None and request.tickets_required != quantity:
            raise ValidationError(
                f"ticketsRequired ({request.tickets_required}) does not match the {quantity} attendee(s) given"
            )

    booking_reference = new_booking_reference()
    bind_saga_context(
        organization_id=organization.id,
        member_id=member_id,
        booking_reference=booking_reference,
        event_id=event.id,
    )

    await ledger_service.check_available(db, organization.id, program_tag, quantity)
    coordinator = ReservationCoordinator(integrations.ticketing, integrations.webinars)
    binding = await coordinator.resolve_binding(event)
    if attendees:
        await coordinator.precheck_duplicates(db, event, binding, [a.email for a in attendees])

    async with integrations.guard.hold(organization.id):
        async with commit_unit(db):
            await ledger_service.commit_usage(
                db,
                organization.id,
                program_tag,
                quantity,
                booking_reference,
                member_id=member_id,
                notes=f"{event.title}: {quantity} place(s)",
            )
            rows = []
            for index in range(quantity):
                attendee = attendees[index] if attendees else None
                row = Booking(
                    event_id=event.id,
                    member_id=member_id,
                    organization_id=organization.id,
                    attendee_email=attendee.email if attendee else None,
                    attendee_first_name=attendee.first_name if attendee else None,
                    attendee_last_name=attendee.last_name if attendee else None,
                    booking_reference=booking_reference,
                    status=BookingStatus.PENDING.value,
                    program_tag=program_tag,
                    ticket_price=event.ticket_price,
                    confirmation_token=secrets.token_urlsafe(24) if links_mode else None,
                )
                db.add(row)
                rows.append(row)
            await db.flush()
    logger.info("program_booking_reserved", program=program_tag, quantity=quantity, mode=request.registration_mode)

    warning = None
    if links_mode:
        logger.info("registration_links_issued", count=quantity)
    else:
        outcomes = await coordinator.reserve_all(binding, attendees)
        async with commit_unit(db):
            _apply_outcomes(rows, outcomes)
        warning = warning_for(outcomes)

    remaining = await ledger_service.get_balance(db, organization.id, program_tag)
    logger.info(
        "program_booking_completed",
        bookings=len(rows),
        remaining_balance=remaining,
        degraded=sum(1 for r in rows if r.status not in (BookingStatus.CONFIRMED.value, BookingStatus.PENDING.value)),
    )
    return {
        "success": True,
        "booking_reference": booking_reference,
        "bookings": rows,
        "remaining_balance": remaining,
        "warning": warning,
    }


# ---------------------------------------------------------------------------
# One-off (paid) event booking
# ---------------------------------------------------------------------------

async def create_one_off_booking(db: AsyncSession, integrations: Integrations, member_id: int, request) -> dict:
    started = time.perf_counter()
    try:
        result = await _create_one_off_booking(db, integrations, member_id, request)
    except BookingError as e:
        record_booking_attempt("one_off", _failure_status(e))
        raise
    record_booking_attempt("one_off", "partial" if result["warning"] else "success")
    booking_latency.labels(kind="one_off").observe(time.perf_counter() - started)
    return result


async def _create_one_off_booking(db: AsyncSession, integrations: Integrations, member_id: int, request) -> dict:
    context = await get_member_context(db, member_id)
    organization = context.organization
    event = await _get_event(db, request.event_id)
    if event.is_program_event:
        raise ValidationError("This event is booked with program tickets. Use a program booking instead.")

    attendees = _resolve_attendees(context, request.registration_mode, request.attendees)
    quantity = len(attendees)
    booking_reference = new_booking_reference()
    bind_saga_context(
        organization_id=organization.id,
        member_id=member_id,
        booking_reference=booking_reference,
        event_id=event.id,
    )

    pricing = calculate_offer_price(OfferConfig(unit_price=money(event.ticket_price or 0)), quantity)
    pricing, plan, allocation = await _price_and_allocate(db, integrations, context, pricing, request, None)

    coordinator = ReservationCoordinator(integrations.ticketing, integrations.webinars)
    binding = await coordinator.resolve_binding(event)
    await coordinator.precheck_duplicates(db, event, binding, [a.email for a in attendees])

    shares = {
        "voucher_amount": split_amount(allocation.voucher_amount, quantity),
        "training_fund_amount": split_amount(allocation.training_fund_amount, quantity),
        "account_amount": split_amount(allocation.account_amount, quantity),
        "card_amount": split_amount(allocation.card_amount, quantity),
    }

    async with integrations.guard.hold(organization.id):
        async with commit_unit(db):
            await _commit_funding(db, context, pricing, plan, allocation, booking_reference, None)
            rows = []
            for index, attendee in enumerate(attendees):
                row = Booking(
                    event_id=event.id,
                    member_id=member_id,
                    organization_id=organization.id,
                    attendee_email=attendee.email,
                    attendee_first_name=attendee.first_name,
                    attendee_last_name=attendee.last_name,
                    booking_reference=booking_reference,
                    status=BookingStatus.PENDING.value,
                    ticket_price=event.ticket_price,
                    purchase_order_number=allocation.purchase_order_number,
                    po_to_follow=allocation.po_to_follow,
                    stripe_payment_intent_id=allocation.stripe_payment_intent_id,
                    **{field: amounts[index] for field, amounts in shares.items()},
                )
                db.add(row)
                rows.append(row)
            await db.flush()
    logger.info("one_off_booking_reserved", quantity=quantity, total_cost=pricing.total_cost)

    outcomes = await coordinator.reserve_all(binding, attendees)
    async with commit_unit(db):
        _apply_outcomes(rows, outcomes)
    reservation_warning = warning_for(outcomes)

    invoice, invoice_warning = None, None
    if settings.INVOICING_ENABLED and allocation.account_amount > ZERO:
        lines = [
            InvoiceLine(
                description=f"{event.title}: {quantity} attendee(s)",
                quantity=1,
                unit_amount=allocation.account_amount,
            )
        ]
        invoice, invoice_warning = await _request_invoice(
            integrations, organization, lines, allocation.purchase_order_number or booking_reference
        )
        if invoice is not None:
            async with commit_unit(db):
                for row in rows:
                    row.invoice_id = invoice.invoice_id
                    row.invoice_number = invoice.invoice_number

    logger.info("one_off_booking_completed", bookings=len(rows))
    return {
        "success": True,
        "booking_reference": booking_reference,
        "bookings": rows,
        "total_cost": float(pricing.total_cost),
        "discount_applied": pricing.discount_applied,
        "discount_details": pricing.discount_details,
        "payment_breakdown": allocation.as_breakdown(),
        "xero_invoice": _invoice_body(invoice),
        "warning": _join_warnings(reservation_warning, invoice_warning),
    }


# ---------------------------------------------------------------------------
# Registration links
# ---------------------------------------------------------------------------

async def claim_link_booking(db: AsyncSession, integrations: Integrations, token: str, attendee) -> dict:
    try:
        result = await _claim_link_booking(db, integrations, token, attendee)
    except BookingError as e:
        record_booking_attempt("claim", _failure_status(e))
        raise
    record_booking_attempt("claim", "partial" if result["warning"] else "success")
    return result


async def _claim_link_booking(db: AsyncSession, integrations: Integrations, token: str, attendee) -> dict:
    result = await db.execute(select(Booking).where(Booking.confirmation_token == token))
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFoundError("Registration link not found")
    if booking.claimed_at is not None or booking.status != BookingStatus.PENDING.value:
        raise ConsistencyViolation("This registration link has already been used")

    bind_saga_context(
        organization_id=booking.organization_id,
        booking_reference=booking.booking_reference,
        booking_id=booking.id,
    )
    event = await _get_event(db, booking.event_id)
    details = AttendeeDetails(normalise_email(attendee.email), attendee.first_name, attendee.last_name)

    coordinator = ReservationCoordinator(integrations.ticketing, integrations.webinars)
    binding = await coordinator.resolve_binding(event)
    await coordinator.precheck_duplicates(db, event, binding, [details.email])

    async with commit_unit(db):
        claimed = await db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.claimed_at.is_(None))
            .values(
                attendee_email=details.email,
                attendee_first_name=details.first_name,
                attendee_last_name=details.last_name,
                claimed_at=utcnow(),
            )
        )
        if claimed.rowcount == 0:
            raise BalanceConflictError("This registration link was claimed by someone else just now")

    outcome = await coordinator.reserve(binding, details)
    async with commit_unit(db):
        _apply_outcomes([booking], [outcome])
    logger.info("registration_link_claimed", attendee_email=details.email, status=booking.status)
    return {"success": True, "booking": booking, "warning": warning_for([outcome])}


# ---------------------------------------------------------------------------
# Member cancellation and follow-up
# ---------------------------------------------------------------------------

async def cancel_member_booking(
    db: AsyncSession, integrations: Integrations, member_id: int, booking_id: int
) -> dict:
    """
    Cancel one attendee's place. Program bookings return their ticket to
    the organisation balance; the external cancellation is best effort.
    """
    context = await get_member_context(db, member_id)
    result = await db.execute(
        select(Booking).where(
            Booking.id == booking_id,
            Booking.organization_id == context.organization.id,
        )
    )
    booking = result.scalar_one_or_none()
    if not booking or (booking.member_id != member_id and not context.member.is_admin):
        raise NotFoundError("Booking not found")
    if booking.status == BookingStatus.CANCELLED.value:
        raise ValidationError("Booking is already cancelled")

    bind_saga_context(
        organization_id=booking.organization_id,
        booking_reference=booking.booking_reference,
        booking_id=booking.id,
    )
    event = await _get_event(db, booking.event_id)
    coordinator = ReservationCoordinator(integrations.ticketing, integrations.webinars)
    binding = await coordinator.resolve_binding(event)
    external_error = await coordinator.cancel(binding, booking)

    remaining = None
    async with commit_unit(db):
        booking.transition_to(BookingStatus.CANCELLED)
        if booking.program_tag:
            await ledger_service.refund_usage(
                db,
                booking.organization_id,
                booking.program_tag,
                1,
                booking.booking_reference,
                actor_email=context.member.email,
                notes=f"Booking {booking.id} cancelled ({booking.attendee_email or 'unclaimed link'})",
            )
    if booking.program_tag:
        remaining = await ledger_service.get_balance(db, booking.organization_id, booking.program_tag)

    logger.info("booking_cancelled", booking_id=booking.id, remaining_balance=remaining)
    warning = None
    if external_error:
        warning = (
            "Booking cancelled, but the event platform could not be updated "
            f"({external_error}). It will be removed manually."
        )
    return {"success": True, "booking": booking, "remaining_balance": remaining, "warning": warning}


async def update_purchase_order(
    db: AsyncSession,
    integrations: Integrations,
    member_id: int,
    booking_reference: str,
    purchase_order_number: str,
) -> dict:
    """Supply the PO number for a booking or purchase that was marked 'PO to follow'."""
    context = await get_member_context(db, member_id)
    organization_id = context.organization.id
    po_number = purchase_order_number.strip()
    if not po_number:
        raise ValidationError("Purchase order number is required")
    bind_saga_context(organization_id=organization_id, booking_reference=booking_reference)

    bookings = list(
        (
            await db.execute(
                select(Booking).where(
                    Booking.booking_reference == booking_reference,
                    Booking.organization_id == organization_id,
                )
            )
        ).scalars().all()
    )
    transactions = list(
        (
            await db.execute(
                select(ProgramTicketTransaction).where(
                    ProgramTicketTransaction.booking_reference == booking_reference,
                    ProgramTicketTransaction.organization_id == organization_id,
                )
            )
        ).scalars().all()
    )
    if not bookings and not transactions:
        raise NotFoundError(f"No booking found with reference {booking_reference}")

    async with commit_unit(db):
        for booking in bookings:
            booking.purchase_order_number = po_number
            booking.po_to_follow = False
        for txn in transactions:
            if txn.transaction_type in (TransactionType.PURCHASE.value, TransactionType.ACCOUNT_CHARGE.value):
                txn.purchase_order_number = po_number

    invoice_ids = sorted(
        {b.invoice_id for b in bookings if b.invoice_id} | {t.invoice_id for t in transactions if t.invoice_id}
    )
    failures = []
    for invoice_id in invoice_ids:
        try:
            await integrations.accounting.update_invoice_reference(invoice_id, po_number)
        except ExternalServiceError as e:
            logger.error("invoice_reference_update_failed", invoice_id=invoice_id, error=e.detail)
            failures.append(invoice_id)

    logger.info("purchase_order_updated", bookings=len(bookings), invoices=len(invoice_ids))
    warning = None
    if failures:
        warning = f"Purchase order saved, but invoice(s) {', '.join(failures)} could not be updated."
    return {
        "success": True,
        "booking_reference": booking_reference,
        "purchase_order_number": po_number,
        "updated_bookings": len(bookings),
        "warning": warning,
    }


async def get_member_bookings(db: AsyncSession, member_id: int) -> list[Booking]:
    result = await db.execute(
        select(Booking)
        .where(Booking.member_id == member_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    return list(result.scalars().all())
