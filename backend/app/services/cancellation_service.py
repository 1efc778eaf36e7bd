"""
Admin cancellation and reinstatement of program ticket purchases.

Only administrators may void or restore purchased tickets. The purchase row
itself is never deleted: each action updates its counters and appends an
audit row that points back at it.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AuthorizationError, ValidationError
from app.core.logging import bind_saga_context, get_logger
from app.db.session import commit_unit
from app.models.member import Member
from app.services import ledger_service
from app.services.organization_service import find_member_by_email

logger = get_logger(__name__)


async def require_admin(db: AsyncSession, admin_email: str) -> Member:
    if not admin_email or not admin_email.strip():
        raise AuthorizationError("An administrator email is required")
    member = await find_member_by_email(db, admin_email)
    if not member or not member.is_admin or not member.is_active:
        logger.warning("admin_check_failed", actor=admin_email)
        raise AuthorizationError("Only administrators can cancel or reinstate program tickets")
    return member


def _transaction_body(txn) -> dict:
    return {
        "id": txn.id,
        "program_name": txn.program_name,
        "original_quantity": txn.original_quantity,
        "cancelled_quantity": txn.cancelled_quantity,
        "remaining_quantity": txn.remaining_quantity,
        "status": txn.status,
    }


async def cancel_transaction(db: AsyncSession, transaction_id: int, quantity: int, admin_email: str) -> dict:
    if quantity is None or quantity <= 0:
        raise ValidationError("quantityToCancel must be a positive whole number")
    admin = await require_admin(db, admin_email)
    bind_saga_context(transaction_id=transaction_id, actor=admin.email)

    async with commit_unit(db):
        outcome = await ledger_service.cancel_purchase(db, transaction_id, quantity, admin.email)

    txn = outcome.transaction
    balances = await ledger_service.get_balances(db, txn.organization_id)
    return {
        "success": True,
        "message": (
            f"Cancelled {quantity} {txn.program_name} ticket(s). "
            f"New balance: {outcome.new_balance}"
        ),
        "transaction": _transaction_body(txn),
        "audit_transaction_id": outcome.audit.id,
        "new_balance": outcome.new_balance,
        "program_ticket_balances": balances,
    }


async def reinstate_transaction(db: AsyncSession, transaction_id: int, admin_email: str) -> dict:
    admin = await require_admin(db, admin_email)
    bind_saga_context(transaction_id=transaction_id, actor=admin.email)

    async with commit_unit(db):
        outcome = await ledger_service.reinstate_purchase(db, transaction_id, admin.email)

    txn = outcome.transaction
    return {
        "success": True,
        "message": (
            f"Reinstated {outcome.audit.quantity} {txn.program_name} ticket(s). "
            f"New balance: {outcome.new_balance}"
        ),
        "transaction": _transaction_body(txn),
        "audit_transaction_id": outcome.audit.id,
        "new_balance": outcome.new_balance,
    }
