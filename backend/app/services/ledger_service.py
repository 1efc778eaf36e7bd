"""
Balance ledger: program ticket balances, the training fund, and the
append-only transaction log that explains every change to them.

CONCURRENCY STRATEGY: Conditional Updates
=========================================

Problem:
  Two members of one organisation book at the same time. Both read a
  balance of 3, both subtract 2 in application code, both write 1.
  Result: 4 tickets spent from a balance of 3.

Solution:
  Every decrement is a single conditional statement:

    UPDATE program_ticket_balances
       SET balance = balance - :n
     WHERE organization_id = :org AND program_tag = :tag AND balance >= :n

  rows_affected == 0 means the balance could not cover the request at the
  moment of the write, whatever an earlier read said. The CHECK constraint
  (balance >= 0) is the final safety net. The training fund uses the same
  pattern on the organisation row, and purchase counters use a
  compare-and-set on cancelled_quantity.

Every mutation here is paired with its ledger row in the same session; the
caller owns the commit so both land (or roll back) together.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    BalanceConflictError,
    ConsistencyViolation,
    InsufficientBalanceError,
    InsufficientResourceError,
    NotFoundError,
    ValidationError,
)
from app.core.logging import get_logger
from app.core.metrics import record_balance_conflict, record_ledger_operation
from app.models.organization import Organization, ProgramTicketBalance
from app.models.transaction import ProgramTicketTransaction, TransactionStatus, TransactionType
from app.services.pricing_service import money

logger = get_logger(__name__)


@dataclass
class LedgerOutcome:
    transaction: ProgramTicketTransaction
    audit: ProgramTicketTransaction
    new_balance: int


async def get_balance(db: AsyncSession, organization_id: int, program_tag: str) -> int:
    result = await db.execute(
        select(ProgramTicketBalance.balance).where(
            ProgramTicketBalance.organization_id == organization_id,
            ProgramTicketBalance.program_tag == program_tag,
        )
    )
    return result.scalar_one_or_none() or 0


async def get_balances(db: AsyncSession, organization_id: int) -> dict[str, int]:
    result = await db.execute(
        select(ProgramTicketBalance.program_tag, ProgramTicketBalance.balance)
        .where(ProgramTicketBalance.organization_id == organization_id)
        .order_by(ProgramTicketBalance.program_tag)
    )
    return {tag: balance for tag, balance in result.all()}


async def get_training_fund_balance(db: AsyncSession, organization_id: int) -> Decimal:
    result = await db.execute(
        select(Organization.training_fund_balance).where(Organization.id == organization_id)
    )
    return money(result.scalar_one_or_none() or 0)


async def check_available(db: AsyncSession, organization_id: int, program_tag: str, quantity: int) -> int:
    """Cheap pre-check before any external call. No state change."""
    available = await get_balance(db, organization_id, program_tag)
    if available < quantity:
        logger.warning(
            "insufficient_program_tickets",
            organization_id=organization_id,
            program=program_tag,
            requested=quantity,
            available=available,
        )
        raise InsufficientBalanceError(program_tag, available, quantity)
    return available


async def _decrement_balance(db: AsyncSession, organization_id: int, program_tag: str, quantity: int) -> bool:
    result = await db.execute(
        update(ProgramTicketBalance)
        .where(
            ProgramTicketBalance.organization_id == organization_id,
            ProgramTicketBalance.program_tag == program_tag,
            ProgramTicketBalance.balance >= quantity,
        )
        .values(balance=ProgramTicketBalance.balance - quantity)
    )
    return result.rowcount > 0


async def _increment_balance(db: AsyncSession, organization_id: int, program_tag: str, quantity: int) -> None:
    result = await db.execute(
        update(ProgramTicketBalance)
        .where(
            ProgramTicketBalance.organization_id == organization_id,
            ProgramTicketBalance.program_tag == program_tag,
        )
        .values(balance=ProgramTicketBalance.balance + quantity)
    )
    if result.rowcount == 0:
        db.add(ProgramTicketBalance(organization_id=organization_id, program_tag=program_tag, balance=quantity))
        await db.flush()


async def _append(db: AsyncSession, **fields) -> ProgramTicketTransaction:
    row = ProgramTicketTransaction(**fields)
    db.add(row)
    await db.flush()
    record_ledger_operation(row.transaction_type)
    return row


async def commit_usage(
    db: AsyncSession,
    organization_id: int,
    program_tag: str,
    quantity: int,
    booking_reference: str,
    member_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> ProgramTicketTransaction:
    """Atomically spend tickets and record the usage row."""
    if not await _decrement_balance(db, organization_id, program_tag, quantity):
        available = await get_balance(db, organization_id, program_tag)
        record_balance_conflict("ticket_balance")
        logger.warning(
            "ticket_usage_rejected",
            organization_id=organization_id,
            program=program_tag,
            requested=quantity,
            available=available,
        )
        raise InsufficientBalanceError(program_tag, available, quantity)

    row = await _append(
        db,
        organization_id=organization_id,
        member_id=member_id,
        program_name=program_tag,
        transaction_type=TransactionType.USAGE.value,
        quantity=quantity,
        original_quantity=quantity,
        booking_reference=booking_reference,
        notes=notes,
    )
    logger.info(
        "ticket_usage_committed",
        transaction_id=row.id,
        organization_id=organization_id,
        program=program_tag,
        quantity=quantity,
    )
    return row


async def commit_purchase(
    db: AsyncSession,
    organization_id: int,
    program_tag: str,
    tickets_granted: int,
    cost: Decimal,
    member_id: Optional[int] = None,
    booking_reference: Optional[str] = None,
    purchase_order_number: Optional[str] = None,
    notes: Optional[str] = None,
) -> ProgramTicketTransaction:
    """Atomically credit tickets and record the purchase row."""
    await _increment_balance(db, organization_id, program_tag, tickets_granted)
    row = await _append(
        db,
        organization_id=organization_id,
        member_id=member_id,
        program_name=program_tag,
        transaction_type=TransactionType.PURCHASE.value,
        quantity=tickets_granted,
        value=money(cost),
        original_quantity=tickets_granted,
        cancelled_quantity=0,
        status=TransactionStatus.ACTIVE.value,
        booking_reference=booking_reference,
        purchase_order_number=purchase_order_number,
        notes=notes,
    )
    logger.info(
        "ticket_purchase_committed",
        transaction_id=row.id,
        organization_id=organization_id,
        program=program_tag,
        tickets=tickets_granted,
        cost=money(cost),
    )
    return row


async def refund_usage(
    db: AsyncSession,
    organization_id: int,
    program_tag: str,
    quantity: int,
    booking_reference: Optional[str],
    actor_email: Optional[str] = None,
    notes: Optional[str] = None,
) -> ProgramTicketTransaction:
    """Return tickets from a cancelled booking."""
    await _increment_balance(db, organization_id, program_tag, quantity)
    return await _append(
        db,
        organization_id=organization_id,
        program_name=program_tag,
        transaction_type=TransactionType.REFUND.value,
        quantity=quantity,
        original_quantity=quantity,
        booking_reference=booking_reference,
        actor_email=actor_email,
        notes=notes,
    )


async def debit_training_fund(db: AsyncSession, organization_id: int, amount: Decimal) -> None:
    amount = money(amount)
    result = await db.execute(
        update(Organization)
        .where(Organization.id == organization_id, Organization.training_fund_balance >= amount)
        .values(training_fund_balance=Organization.training_fund_balance - amount)
    )
    if result.rowcount == 0:
        record_balance_conflict("training_fund")
        available = await get_training_fund_balance(db, organization_id)
        raise InsufficientResourceError(
            f"Training fund balance is £{available}, which no longer covers £{amount}"
        )


async def record_funding(
    db: AsyncSession,
    organization_id: int,
    transaction_type: TransactionType,
    value: Decimal,
    program_tag: Optional[str] = None,
    member_id: Optional[int] = None,
    booking_reference: Optional[str] = None,
    voucher_id: Optional[int] = None,
    purchase_order_number: Optional[str] = None,
    notes: Optional[str] = None,
) -> ProgramTicketTransaction:
    """Ledger row for one funding source (voucher, training fund, account charge)."""
    return await _append(
        db,
        organization_id=organization_id,
        member_id=member_id,
        program_name=program_tag,
        transaction_type=transaction_type.value,
        value=money(value),
        booking_reference=booking_reference,
        voucher_id=voucher_id,
        purchase_order_number=purchase_order_number,
        notes=notes,
    )



async def record_card_payment(
    db: AsyncSession,
    organization_id: int,
    payment_intent_id: str,
    value: Decimal,
    program_tag: Optional[str] = None,
    member_id: Optional[int] = None,
    booking_reference: Optional[str] = None,
) -> ProgramTicketTransaction:
    """
    Ledger row for money received on a Stripe payment intent. An intent can
    fund one order only; a second use is rejected.
    """
    result = await db.execute(
        select(ProgramTicketTransaction.booking_reference).where(
            ProgramTicketTransaction.stripe_payment_intent_id == payment_intent_id
        )
    )
    if result.first() is not None:
        logger.warning("payment_intent_reused", payment_intent_id=payment_intent_id)
        raise ValidationError("This card payment has already been used for another order")

    try:
        return await _append(
            db,
            organization_id=organization_id,
            member_id=member_id,
            program_name=program_tag,
            transaction_type=TransactionType.CARD_PAYMENT.value,
            value=money(value),
            booking_reference=booking_reference,
            stripe_payment_intent_id=payment_intent_id,
        )
    except IntegrityError as e:
        logger.warning("payment_intent_reused", payment_intent_id=payment_intent_id)
        raise ValidationError("This card payment has already been used for another order") from e


async def _get_purchase(db: AsyncSession, transaction_id: int) -> ProgramTicketTransaction:
    result = await db.execute(
        select(ProgramTicketTransaction).where(ProgramTicketTransaction.id == transaction_id)
    )
    txn = result.scalar_one_or_none()
    if not txn:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    if txn.transaction_type != TransactionType.PURCHASE.value:
        raise ConsistencyViolation(
            f"Only purchase transactions can be cancelled or reinstated (this is a {txn.transaction_type})"
        )
    return txn


async def _set_cancelled_quantity(
    db: AsyncSession, txn: ProgramTicketTransaction, expected: int, new_value: int
) -> None:
    new_status = (
        TransactionStatus.CANCELLED.value
        if new_value >= txn.original_quantity
        else TransactionStatus.ACTIVE.value
    )
    result = await db.execute(
        update(ProgramTicketTransaction)
        .where(
            ProgramTicketTransaction.id == txn.id,
            ProgramTicketTransaction.cancelled_quantity == expected,
        )
        .values(cancelled_quantity=new_value, status=new_status)
    )
    if result.rowcount == 0:
        record_balance_conflict("ticket_balance")
        raise BalanceConflictError(
            f"Transaction {txn.id} was changed by another request. Please reload and try again."
        )


async def cancel_purchase(
    db: AsyncSession, transaction_id: int, quantity: int, actor_email: str
) -> LedgerOutcome:
    """
    Void part or all of a purchase.

    Tickets that were already spent cannot be un-spent, so the cancellable
    amount is capped by the organisation's current balance for the program,
    not just by what is left uncancelled on the purchase.
    """
    txn = await _get_purchase(db, transaction_id)
    program = txn.program_name
    already_cancelled = txn.cancelled_quantity or 0
    remaining = txn.original_quantity - already_cancelled

    if txn.status == TransactionStatus.CANCELLED.value or remaining <= 0:
        raise ConsistencyViolation(f"Transaction {txn.id} has already been fully cancelled")
    if quantity > remaining:
        raise ConsistencyViolation(
            f"Cannot cancel {quantity} tickets: only {remaining} of the "
            f"{txn.original_quantity} purchased remain uncancelled",
            extra={"maxCancellable": remaining, "requested": quantity},
        )

    balance = await get_balance(db, txn.organization_id, program)
    if quantity > balance:
        cancellable = min(balance, remaining)
        logger.warning(
            "cancellation_exceeds_unallocated",
            transaction_id=txn.id,
            requested=quantity,
            unallocated=balance,
        )
        raise ConsistencyViolation(
            f"Cannot cancel {quantity} tickets: only {cancellable} ticket(s) are still unallocated "
            f"for {program}; the others have already been used. "
            f"You can cancel at most {cancellable}.",
            extra={"maxCancellable": cancellable, "requested": quantity, "unallocated": balance},
        )

    if not await _decrement_balance(db, txn.organization_id, program, quantity):
        record_balance_conflict("ticket_balance")
        raise BalanceConflictError("Balance changed while cancelling. Please reload and try again.")
    await _set_cancelled_quantity(db, txn, already_cancelled, already_cancelled + quantity)

    audit = await _append(
        db,
        organization_id=txn.organization_id,
        program_name=program,
        transaction_type=TransactionType.CANCELLATION_VOID.value,
        quantity=quantity,
        original_quantity=quantity,
        related_transaction_id=txn.id,
        actor_email=actor_email,
        notes=f"Cancelled {quantity} of {txn.original_quantity} tickets from purchase #{txn.id}",
    )
    new_balance = await get_balance(db, txn.organization_id, program)
    logger.info(
        "purchase_cancelled",
        transaction_id=txn.id,
        audit_transaction_id=audit.id,
        quantity=quantity,
        new_balance=new_balance,
        actor=actor_email,
    )
    return LedgerOutcome(transaction=txn, audit=audit, new_balance=new_balance)


async def reinstate_purchase(db: AsyncSession, transaction_id: int, actor_email: str) -> LedgerOutcome:
    """Undo every cancellation on a purchase, restoring exactly what was voided."""
    txn = await _get_purchase(db, transaction_id)
    cancelled = txn.cancelled_quantity or 0
    if cancelled <= 0:
        raise ConsistencyViolation(f"Transaction {txn.id} has no cancelled tickets to reinstate")

    program = txn.program_name
    await _increment_balance(db, txn.organization_id, program, cancelled)
    await _set_cancelled_quantity(db, txn, cancelled, 0)

    audit = await _append(
        db,
        organization_id=txn.organization_id,
        program_name=program,
        transaction_type=TransactionType.REINSTATEMENT.value,
        quantity=cancelled,
        original_quantity=cancelled,
        related_transaction_id=txn.id,
        actor_email=actor_email,
        notes=f"Reinstated {cancelled} tickets on purchase #{txn.id}",
    )
    new_balance = await get_balance(db, txn.organization_id, program)
    logger.info(
        "purchase_reinstated",
        transaction_id=txn.id,
        audit_transaction_id=audit.id,
        quantity=cancelled,
        new_balance=new_balance,
        actor=actor_email,
    )
    return LedgerOutcome(transaction=txn, audit=audit, new_balance=new_balance)


async def list_transactions(
    db: AsyncSession, organization_id: int, limit: int = 100
) -> list[ProgramTicketTransaction]:
    result = await db.execute(
        select(ProgramTicketTransaction)
        .where(ProgramTicketTransaction.organization_id == organization_id)
        .order_by(ProgramTicketTransaction.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
