"""
Organisation summary for the authenticated member.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import get_current_member_id
from app.db.session import get_db
from app.schemas.organization import OrganizationSummary
from app.services.organization_service import get_summary

router = APIRouter(prefix="/organizations", tags=["Organizations"])


@router.get("/me", response_model=OrganizationSummary)
async def get_my_organization(
    member_id: int = Depends(get_current_member_id),
    db: AsyncSession = Depends(get_db),
):
    """Program ticket balances, training fund and active vouchers."""
    return await get_summary(db, member_id)
