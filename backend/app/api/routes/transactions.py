"""
Program ticket ledger endpoints: admin cancellation/reinstatement and the
organisation's transaction history.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import get_current_member_id
from app.db.session import get_db
from app.schemas.transaction import (
    CancelTransactionRequest,
    CancelTransactionResponse,
    ReinstateTransactionRequest,
    ReinstateTransactionResponse,
    TransactionResponse,
)
from app.services import ledger_service
from app.services.cancellation_service import cancel_transaction, reinstate_transaction
from app.services.organization_service import get_member_context

router = APIRouter(prefix="/transactions", tags=["Transactions"])


@router.post("/{transaction_id}/cancel", response_model=CancelTransactionResponse)
async def cancel_purchase_transaction(
    transaction_id: int,
    request: CancelTransactionRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Void some or all tickets from a purchase (admin only).

    Tickets already spent cannot be cancelled: the request is rejected with
    the number that are still unallocated.
    """
    return await cancel_transaction(db, transaction_id, request.quantity_to_cancel, request.admin_email)


@router.post("/{transaction_id}/reinstate", response_model=ReinstateTransactionResponse)
async def reinstate_purchase_transaction(
    transaction_id: int,
    request: ReinstateTransactionRequest,
    db: AsyncSession = Depends(get_db),
):
    """Restore every ticket previously cancelled on a purchase (admin only)."""
    return await reinstate_transaction(db, transaction_id, request.admin_email)


@router.get("", response_model=list[TransactionResponse])
async def list_organization_transactions(
    limit: int = Query(default=100, ge=1, le=500),
    member_id: int = Depends(get_current_member_id),
    db: AsyncSession = Depends(get_db),
):
    """The member's organisation ledger, newest first."""
    context = await get_member_context(db, member_id)
    return await ledger_service.list_transactions(db, context.organization.id, limit)
