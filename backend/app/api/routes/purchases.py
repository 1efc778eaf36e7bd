"""
Program ticket purchase endpoint.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import get_current_member_id
from app.db.session import get_db
from app.schemas.purchase import PurchaseRequest, PurchaseResponse
from app.services.booking_service import process_purchase
from app.services.integration_factory import Integrations, get_integrations

router = APIRouter(tags=["Purchases"])


@router.post("/purchase", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED)
async def purchase_program_tickets(
    request: PurchaseRequest,
    member_id: int = Depends(get_current_member_id),
    db: AsyncSession = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    """
    Buy program tickets for the member's organisation.

    The payment allocation (vouchers + training fund + account + card) must
    match the priced total to the penny or nothing is charged.
    """
    return await process_purchase(db, integrations, member_id, request)
